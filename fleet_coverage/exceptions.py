"""
Exception hierarchy for the fleet coverage engine.

Every error carries a machine-readable code (FC_*) and structured details
so that callers can explain a rejection to a human.
"""

from dataclasses import dataclass, field
from typing import Dict, Any


@dataclass(eq=False)
class CoverageEngineError(Exception):
    """Base exception for all engine errors."""
    message: str
    code: str = "FC_INTERNAL_ERROR"
    details: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logging and API responses."""
        result: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation
# ============================================================================

@dataclass(eq=False)
class ValidationError(CoverageEngineError):
    """Malformed input or unknown identifier."""
    code: str = "FC_VALIDATION_ERROR"


@dataclass(eq=False)
class NotFoundError(ValidationError):
    """Referenced host, vehicle or provider does not exist."""
    code: str = "FC_NOT_FOUND"


# ============================================================================
# Preconditions
# ============================================================================

@dataclass(eq=False)
class PreconditionError(CoverageEngineError):
    """A tier transition was rejected by one of its preconditions."""
    code: str = "FC_PRECONDITION_FAILED"


@dataclass(eq=False)
class AccountBlockedError(PreconditionError):
    code: str = "FC_ACCOUNT_BLOCKED"


@dataclass(eq=False)
class InsuranceNotEligibleError(PreconditionError):
    code: str = "FC_INSURANCE_NOT_ELIGIBLE"


@dataclass(eq=False)
class AlreadyActiveError(PreconditionError):
    code: str = "FC_ALREADY_ACTIVE"


@dataclass(eq=False)
class BookingLockError(PreconditionError):
    """Host has active or future bookings."""
    code: str = "FC_BOOKING_LOCK"


# ============================================================================
# Infrastructure / defects
# ============================================================================

@dataclass(eq=False)
class DataAccessError(CoverageEngineError):
    """Underlying store failed; nothing was written."""
    code: str = "FC_DATA_ACCESS_ERROR"
    operation: str = "unknown"

    def __post_init__(self) -> None:
        super().__post_init__()
        self.details.setdefault("operation", self.operation)


@dataclass(eq=False)
class InvariantViolation(CoverageEngineError):
    """Both insurance slots observed ACTIVE on one host."""
    code: str = "FC_INVARIANT_VIOLATION"
