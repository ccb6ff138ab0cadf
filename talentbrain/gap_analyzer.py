"""Capability and skill gap analysis for a (profile, role) pair."""
import asyncio
import logging
from typing import Dict, List, Optional, Sequence, Union

from talentbrain.config import LEVELS
from talentbrain.errors import InvalidInput
from talentbrain.models import GapRecord
from talentbrain.store import WorkforceStore

logger = logging.getLogger(__name__)

REQUIREMENT_KINDS = ("capability", "skill")

# Foundational=1 ... Highly Advanced=5
LEVEL_ORDINALS: Dict[str, int] = {name.lower(): i for i, name in enumerate(LEVELS, start=1)}
MAX_LEVEL = len(LEVELS)


def level_ordinal(level: Union[str, int, float, None]) -> int:
    """Map a level label (or a 1-5 rating) onto the ordinal scale; unknown labels map to 1."""
    if level is None:
        return 1
    if isinstance(level, (int, float)):
        return min(MAX_LEVEL, max(1, int(level)))

    label = str(level).strip().lower()
    if label.isdigit():
        return min(MAX_LEVEL, max(1, int(label)))
    return LEVEL_ORDINALS.get(label, 1)


def classify(required_level, achieved_level) -> tuple:
    """Return (gap_type, severity) for one requirement."""
    if achieved_level is None:
        return "missing", 100.0

    required = level_ordinal(required_level)
    achieved = level_ordinal(achieved_level)
    if achieved >= required:
        return "met", 0.0
    return "insufficient", (required - achieved) / required * 100


def sort_gaps(gaps: List[GapRecord]) -> List[GapRecord]:
    return sorted(gaps, key=lambda g: (-g.severity, g.category or ""))


class GapAnalyzer:
    """Joins a role's requirements against a profile's achieved levels."""

    def __init__(self, store: WorkforceStore):
        self.store = store

    async def analyze(self, profile_id: str, role_id: str, kind: Optional[str] = None) -> List[GapRecord]:
        """
        One GapRecord per requirement the role declares.

        Args:
            profile_id: Profile being assessed
            role_id: Role whose requirements are checked
            kind: "capability", "skill", or None for both

        Raises:
            InvalidInput: missing IDs or unknown kind (before any I/O)
            DatabaseError: store failure
        """
        if not profile_id or not role_id:
            raise InvalidInput("Both profileId and roleId are required")
        if kind is not None and kind not in REQUIREMENT_KINDS:
            raise InvalidInput(f"Unknown requirement kind: {kind}")

        kinds: Sequence[str] = (kind,) if kind else REQUIREMENT_KINDS
        per_kind = await asyncio.gather(*(self._analyze_kind(profile_id, role_id, k) for k in kinds))

        gaps = sort_gaps([gap for group in per_kind for gap in group])
        logger.debug(
            "Gaps %s → %s: %d records (%d missing)",
            profile_id, role_id, len(gaps), sum(1 for g in gaps if g.gap_type == "missing"),
        )
        return gaps

    async def _analyze_kind(self, profile_id: str, role_id: str, kind: str) -> List[GapRecord]:
        requirements, achieved = await asyncio.gather(
            self.store.get_role_requirements(role_id, kind),
            self.store.get_profile_levels(profile_id, kind),
        )

        gaps = []
        for req in requirements:
            item_id = str(req["item_id"])
            achieved_level = achieved.get(item_id)
            gap_type, severity = classify(req.get("level"), achieved_level)
            gaps.append(
                GapRecord(
                    item_id=item_id,
                    name=req.get("name") or item_id,
                    category=req.get("category") or "",
                    kind=kind,
                    required_level=str(req.get("level") or LEVELS[0]),
                    achieved_level=str(achieved_level) if achieved_level is not None else None,
                    gap_type=gap_type,
                    severity=severity,
                )
            )
        return gaps
