"""Error taxonomy for the MCP loop."""
from typing import Any, Optional

VALIDATION_ERROR = "VALIDATION_ERROR"
DATABASE_ERROR = "DATABASE_ERROR"
INVALID_INPUT = "INVALID_INPUT"
RETRY_EXCEEDED = "RETRY_EXCEEDED"
INTERNAL_ERROR = "INTERNAL_ERROR"


class MCPError(Exception):
    """Base class for every typed error the loop knows how to report."""

    error_type = INTERNAL_ERROR

    def __init__(self, message: str, details: Optional[Any] = None):
        self.message = message
        self.details = details
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return 400 if self.error_type == VALIDATION_ERROR else 500


class InvalidRequest(MCPError):
    """Raised when the inbound request is missing its mode or anchor ID."""

    error_type = VALIDATION_ERROR


class DatabaseError(MCPError):
    """Raised when the backing store fails or times out."""

    error_type = DATABASE_ERROR


class InvalidInput(MCPError):
    """Raised deep inside a scoring call when an ID is missing."""

    error_type = INVALID_INPUT


class RetryExceeded(MCPError):
    """Raised when a session has hit its retry ceiling."""

    error_type = RETRY_EXCEEDED

    def __init__(self, session_id: str, ceiling: int):
        self.session_id = session_id
        self.ceiling = ceiling
        super().__init__(
            f"Maximum retry attempts exceeded ({ceiling}) for session {session_id}"
        )


def error_type_of(exc: BaseException) -> str:
    return exc.error_type if isinstance(exc, MCPError) else INTERNAL_ERROR
