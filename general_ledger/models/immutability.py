"""
ORM-level immutability enforcement.

SQLAlchemy fires mapper events before UPDATE/DELETE statements
reach the database. The listeners here refuse:

Entity           | When immutable
-----------------|------------------------------------------------
JournalEntry     | header and totals once POSTED or REVERSED
JournalEntryLine | whenever the parent entry is POSTED or REVERSED
AuditTrail       | always
ApprovalHistory  | always
ApprovalRequest  | once terminal (APPROVED/REJECTED/RECALLED/EXPIRED)

A POSTED entry may still move to REVERSED; only the reversal
stamps and audit metadata are allowed to change on that update.

register_immutability_listeners() is called when the models
package is imported and is safe to call more than once.
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm.attributes import get_history

from general_ledger.exceptions import ImmutabilityError
from general_ledger.logging_config import get_logger
from general_ledger.models.approval import ApprovalHistory, ApprovalRequest
from general_ledger.models.audit_trail import AuditTrail
from general_ledger.models.enums import TERMINAL_APPROVAL_STATUSES
from general_ledger.models.journal_entry import (
    FROZEN_STATUSES,
    JournalEntry,
    JournalEntryLine,
)

logger = get_logger("models.immutability")

# Fields a frozen entry may still change (POSTED -> REVERSED)
_REVERSAL_MUTABLE_FIELDS = frozenset({
    "status",
    "reversed_by_id",
    "reversed_at",
    "reversed_by",
    "reversal_reason",
    "updated_at",
    "updated_by",
    "version",
})


def _blocked(entity_type: str, entity_id, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
        },
    )
    return ImmutabilityError(entity_type, entity_id, reason)


def _previous_value(target, key: str):
    """The value loaded from the database, before this flush."""
    hist = get_history(target, key)
    if hist.deleted:
        return hist.deleted[0]
    return getattr(target, key)


def _parent_status(connection, journal_entry_id):
    return connection.execute(
        select(JournalEntry.__table__.c.status).where(
            JournalEntry.__table__.c.id == journal_entry_id
        )
    ).scalar()


def _check_journal_entry_update(mapper, connection, target):
    if _previous_value(target, "status") not in FROZEN_STATUSES:
        return

    for attr in inspect(target).attrs:
        if attr.key in _REVERSAL_MUTABLE_FIELDS or attr.key == "lines":
            continue
        if attr.history.has_changes():
            raise _blocked(
                "JournalEntry", target.id, "UPDATE",
                f"Cannot modify field '{attr.key}' on posted journal entry "
                f"{target.entry_number}",
            )


def _check_journal_entry_delete(mapper, connection, target):
    if _previous_value(target, "status") in FROZEN_STATUSES:
        raise _blocked(
            "JournalEntry", target.id, "DELETE",
            "Posted journal entries cannot be deleted",
        )


def _check_line_update(mapper, connection, target):
    if _parent_status(connection, target.journal_entry_id) in FROZEN_STATUSES:
        raise _blocked(
            "JournalEntryLine", target.id, "UPDATE",
            "Journal entry lines cannot be modified after the entry is posted",
        )


def _check_line_delete(mapper, connection, target):
    if _parent_status(connection, target.journal_entry_id) in FROZEN_STATUSES:
        raise _blocked(
            "JournalEntryLine", target.id, "DELETE",
            "Journal entry lines cannot be deleted after the entry is posted",
        )


def _append_only(entity_type: str):
    def _refuse_update(mapper, connection, target):
        raise _blocked(
            entity_type, target.id, "UPDATE",
            f"{entity_type} records are append-only",
        )

    def _refuse_delete(mapper, connection, target):
        raise _blocked(
            entity_type, target.id, "DELETE",
            f"{entity_type} records are append-only",
        )

    return _refuse_update, _refuse_delete


_audit_update, _audit_delete = _append_only("AuditTrail")
_history_update, _history_delete = _append_only("ApprovalHistory")


def _check_request_update(mapper, connection, target):
    if _previous_value(target, "status") in TERMINAL_APPROVAL_STATUSES:
        raise _blocked(
            "ApprovalRequest", target.id, "UPDATE",
            "A completed approval request cannot be changed",
        )


_LISTENERS = (
    (JournalEntry, "before_update", _check_journal_entry_update),
    (JournalEntry, "before_delete", _check_journal_entry_delete),
    (JournalEntryLine, "before_update", _check_line_update),
    (JournalEntryLine, "before_delete", _check_line_delete),
    (AuditTrail, "before_update", _audit_update),
    (AuditTrail, "before_delete", _audit_delete),
    (ApprovalHistory, "before_update", _history_update),
    (ApprovalHistory, "before_delete", _history_delete),
    (ApprovalRequest, "before_update", _check_request_update),
)


def register_immutability_listeners() -> None:
    """Register every guard; already-registered listeners are skipped."""
    for model, name, fn in _LISTENERS:
        if not event.contains(model, name, fn):
            event.listen(model, name, fn)
