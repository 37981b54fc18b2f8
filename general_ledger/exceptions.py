"""
Typed exceptions for the general ledger engine.

Callers catch by type, never by message text. Every error
carries a machine-readable ``code``, a human ``message`` and
structured ``details`` so an API client can highlight the
offending line without re-deriving the cause.

    LedgerError
    +-- ValidationError       (VALIDATION_FAILED)  recoverable, caller's input
    +-- ConflictError         (CONFLICT)           refetch and retry
    +-- NotFoundError         (NOT_FOUND)
    +-- PermissionDeniedError (PERMISSION_DENIED)  actor not eligible
    +-- StateError            (INVALID_STATE)      incompatible status
    +-- ImmutabilityError     (IMMUTABLE_RECORD)   posted/append-only data
"""

from dataclasses import dataclass, asdict
from typing import Any


@dataclass(frozen=True)
class ValidationIssue:
    """One reason a journal entry (or request) was refused."""
    reason: str
    message: str
    line_number: int | None = None
    field: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class LedgerError(Exception):
    """Base class for every error the engine raises on purpose."""

    code: str = "LEDGER_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(LedgerError):
    """
    Structural, referential, arithmetic or semantic failure.

    ``issues`` holds every problem found in the failing
    validation stage; ``reason`` is the first one's code.
    """

    code = "VALIDATION_FAILED"

    def __init__(self, issues: list[ValidationIssue] | ValidationIssue):
        if isinstance(issues, ValidationIssue):
            issues = [issues]
        self.issues = list(issues)
        super().__init__(
            "; ".join(issue.message for issue in self.issues),
            {"issues": [issue.to_dict() for issue in self.issues]},
        )

    @property
    def reason(self) -> str:
        return self.issues[0].reason

    @property
    def reasons(self) -> list[str]:
        return [issue.reason for issue in self.issues]

    @classmethod
    def single(
        cls,
        reason: str,
        message: str,
        line_number: int | None = None,
        field: str | None = None,
    ) -> "ValidationError":
        return cls(ValidationIssue(reason, message, line_number, field))


class ConflictError(LedgerError):
    """The entity changed underneath the caller, or the action was already taken."""
    code = "CONFLICT"


class NotFoundError(LedgerError):
    code = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(
            f"{entity_type} {entity_id} not found",
            {"entity_type": entity_type, "entity_id": str(entity_id)},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class PermissionDeniedError(LedgerError):
    code = "PERMISSION_DENIED"


class StateError(LedgerError):
    """A transition was attempted from a status that does not allow it."""

    code = "INVALID_STATE"

    def __init__(
        self,
        message: str,
        current_status: str | None = None,
        requested: str | None = None,
    ):
        details = {}
        if current_status is not None:
            details["current_status"] = current_status
        if requested is not None:
            details["requested"] = requested
        super().__init__(message, details)
        self.current_status = current_status
        self.requested = requested


class ImmutabilityError(LedgerError):
    code = "IMMUTABLE_RECORD"

    def __init__(self, entity_type: str, entity_id: Any, reason: str):
        super().__init__(
            reason,
            {"entity_type": entity_type, "entity_id": str(entity_id)},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
