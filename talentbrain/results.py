"""Explicit degraded-value wrapper returned by best-effort components."""
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class StepResult(Generic[T]):
    """
    A value plus whether it is the real thing or a fallback.

    Leaf components (matcher, context loader, planner) never raise on a
    dependency outage; they hand back ``StepResult.fallback(...)`` and let the
    executor decide whether the degraded value is good enough.
    """

    value: T
    degraded: bool = False
    reason: Optional[str] = None

    @classmethod
    def ok(cls, value: T) -> "StepResult[T]":
        return cls(value=value)

    @classmethod
    def fallback(cls, value: T, reason: str) -> "StepResult[T]":
        return cls(value=value, degraded=True, reason=reason)
