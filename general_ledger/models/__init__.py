"""
Database models package.

All models must be imported here so that Alembic can discover
them through Base.metadata when generating migrations.
Importing the package also installs the immutability guards.
"""

from general_ledger.models.base import Base
from general_ledger.models.enums import (
    AccountType,
    PeriodStatus,
    JournalEntryStatus,
    JournalEntryType,
    SourceModule,
    SubledgerType,
    ApprovalRuleType,
    ApproverType,
    EscalationAction,
    ApprovalStatus,
    ApprovalAction,
    AuditAction,
    ExchangeRateType,
    FxRevaluationMethod,
    FxGainLossStatus,
    FxBatchStatus,
    OpenItemStatus,
)
from general_ledger.models.ledger_account import LedgerAccount
from general_ledger.models.financial_period import (
    FinancialPeriod,
    PeriodAccountBalance,
)
from general_ledger.models.gl_configuration import GLConfiguration
from general_ledger.models.journal_entry import JournalEntry, JournalEntryLine
from general_ledger.models.approval import (
    ApprovalWorkflow,
    ApprovalStep,
    ApprovalRequest,
    ApprovalHistory,
)
from general_ledger.models.audit_trail import AuditTrail
from general_ledger.models.fx import (
    ExchangeRate,
    OpenItem,
    FxRevaluationBatch,
    FxRevaluationEntry,
)
from general_ledger.models.immutability import register_immutability_listeners

register_immutability_listeners()

__all__ = [
    "Base",
    "AccountType",
    "PeriodStatus",
    "JournalEntryStatus",
    "JournalEntryType",
    "SourceModule",
    "SubledgerType",
    "ApprovalRuleType",
    "ApproverType",
    "EscalationAction",
    "ApprovalStatus",
    "ApprovalAction",
    "AuditAction",
    "ExchangeRateType",
    "FxRevaluationMethod",
    "FxGainLossStatus",
    "FxBatchStatus",
    "OpenItemStatus",
    "LedgerAccount",
    "FinancialPeriod",
    "PeriodAccountBalance",
    "GLConfiguration",
    "JournalEntry",
    "JournalEntryLine",
    "ApprovalWorkflow",
    "ApprovalStep",
    "ApprovalRequest",
    "ApprovalHistory",
    "AuditTrail",
    "ExchangeRate",
    "OpenItem",
    "FxRevaluationBatch",
    "FxRevaluationEntry",
]
