"""
Error taxonomy for the deliberation engine.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Every failure the council can observe or report."""
    TRANSPORT = "TRANSPORT"
    QUOTA = "QUOTA"
    MALFORMED_RANKING = "MALFORMED_RANKING"
    INSUFFICIENT_QUORUM = "INSUFFICIENT_QUORUM"
    SYNTHESIS_UNAVAILABLE = "SYNTHESIS_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"

    @classmethod
    def from_backend(cls, error_type: Optional[str]) -> "ErrorKind":
        """Map a backend ``error_type`` string onto the taxonomy."""
        if error_type == "quota":
            return cls.QUOTA
        if error_type == "timeout":
            return cls.TIMEOUT
        return cls.TRANSPORT


FATAL_KINDS = frozenset({
    ErrorKind.INSUFFICIENT_QUORUM,
    ErrorKind.SYNTHESIS_UNAVAILABLE,
    ErrorKind.TIMEOUT,
})


class CouncilError(Exception):
    """Base class for deliberation engine errors."""


class GatewayError(CouncilError):
    """A single backend call failed."""

    def __init__(self, kind: ErrorKind, model_id: str, message: str = ""):
        self.kind = kind
        self.model_id = model_id
        self.message = message
        super().__init__(f"[{model_id}] {kind.value}: {message}")


class DeliberationFailed(CouncilError):
    """A failure that ends the whole session."""

    def __init__(self, reason: ErrorKind, message: str = ""):
        if reason not in FATAL_KINDS:
            raise ValueError(f"{reason.value} is not a session-level failure")
        self.reason = reason
        self.message = message
        super().__init__(f"{reason.value}: {message}" if message else reason.value)


class InvalidDeliberationRequest(CouncilError, ValueError):
    """The caller's request cannot start a session."""


class BudgetExceeded(CouncilError):
    """The pre-flight cost estimate exceeds a configured limit."""

    def __init__(self, reason: str, estimated: float, remaining: float):
        self.reason = reason
        self.estimated = estimated
        self.remaining = remaining
        super().__init__(reason)


class InvalidTransition(CouncilError):
    """A session state change that the state machine does not allow."""
