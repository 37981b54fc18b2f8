"""Business logic services."""

from general_ledger.services.audit_service import AuditService
from general_ledger.services.ledger_service import LedgerService
from general_ledger.services.journal_service import JournalService
from general_ledger.services.approval_engine import ApprovalEngine
from general_ledger.services.posting_service import PostingService
from general_ledger.services.fx_revaluation_service import FxRevaluationService

__all__ = [
    "AuditService",
    "LedgerService",
    "JournalService",
    "ApprovalEngine",
    "PostingService",
    "FxRevaluationService",
]
