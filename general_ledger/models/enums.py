"""
Shared enumerations for database models.

Using Python enums mapped to database enums ensures that
only valid values can be stored.
"""

import enum


class AccountType(str, enum.Enum):
    """The five fundamental accounting categories."""
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"
    REVENUE = "REVENUE"
    EXPENSE = "EXPENSE"


BALANCE_SHEET_TYPES = frozenset({
    AccountType.ASSET,
    AccountType.LIABILITY,
    AccountType.EQUITY,
})


class PeriodStatus(str, enum.Enum):
    FUTURE = "FUTURE"
    OPEN = "OPEN"
    LOCKED = "LOCKED"
    CLOSED = "CLOSED"


class JournalEntryStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    POSTED = "POSTED"
    REVERSED = "REVERSED"
    VOID = "VOID"


class JournalEntryType(str, enum.Enum):
    NORMAL = "NORMAL"
    OPENING = "OPENING"
    CLOSING = "CLOSING"
    CARRY_FORWARD = "CARRY_FORWARD"
    BROUGHT_FORWARD = "BROUGHT_FORWARD"
    YEAR_END_CLOSING = "YEAR_END_CLOSING"
    ADJUSTMENT = "ADJUSTMENT"
    REVERSAL = "REVERSAL"
    CONSOLIDATION = "CONSOLIDATION"
    ELIMINATION = "ELIMINATION"


class SourceModule(str, enum.Enum):
    MANUAL = "MANUAL"
    INVOICE = "INVOICE"
    PAYMENT = "PAYMENT"
    EXPENSE = "EXPENSE"
    PAYROLL = "PAYROLL"
    ASSET = "ASSET"
    INVENTORY = "INVENTORY"
    BANK = "BANK"
    ADJUSTMENT = "ADJUSTMENT"
    CONSOLIDATION = "CONSOLIDATION"
    INTERCOMPANY = "INTERCOMPANY"
    REVERSAL = "REVERSAL"
    YEAR_END = "YEAR_END"
    OPENING_BALANCE = "OPENING_BALANCE"
    FX_REVALUATION = "FX_REVALUATION"


class SubledgerType(str, enum.Enum):
    NONE = "NONE"
    ACCOUNTS_RECEIVABLE = "ACCOUNTS_RECEIVABLE"
    ACCOUNTS_PAYABLE = "ACCOUNTS_PAYABLE"
    INVENTORY = "INVENTORY"
    FIXED_ASSETS = "FIXED_ASSETS"
    PAYROLL = "PAYROLL"
    BANK = "BANK"


# --- Approval workflow ---

class ApprovalRuleType(str, enum.Enum):
    ANY = "ANY"
    ALL = "ALL"
    SEQUENTIAL = "SEQUENTIAL"
    THRESHOLD = "THRESHOLD"
    MATRIX = "MATRIX"


class ApproverType(str, enum.Enum):
    USER = "USER"
    ROLE = "ROLE"
    MANAGER = "MANAGER"
    DYNAMIC = "DYNAMIC"


class EscalationAction(str, enum.Enum):
    ESCALATE = "ESCALATE"
    AUTO_APPROVE = "AUTO_APPROVE"
    AUTO_REJECT = "AUTO_REJECT"
    NOTIFY = "NOTIFY"
    NONE = "NONE"


class ApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ESCALATED = "ESCALATED"
    RECALLED = "RECALLED"
    EXPIRED = "EXPIRED"
    DELEGATED = "DELEGATED"


OPEN_APPROVAL_STATUSES = frozenset({
    ApprovalStatus.PENDING,
    ApprovalStatus.ESCALATED,
    ApprovalStatus.DELEGATED,
})

TERMINAL_APPROVAL_STATUSES = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.RECALLED,
    ApprovalStatus.EXPIRED,
})


class ApprovalAction(str, enum.Enum):
    SUBMIT = "SUBMIT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    ESCALATE = "ESCALATE"
    RECALL = "RECALL"
    DELEGATE = "DELEGATE"
    COMMENT = "COMMENT"
    EXPIRE = "EXPIRE"
    SKIP = "SKIP"


# --- Audit ---

class AuditAction(str, enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    SUBMIT = "SUBMIT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    POST = "POST"
    REVERSE = "REVERSE"
    VOID = "VOID"
    RECALL = "RECALL"
    DELEGATE = "DELEGATE"
    ESCALATE = "ESCALATE"
    EXPIRE = "EXPIRE"
    SKIP = "SKIP"
    COMMENT = "COMMENT"
    CLOSE = "CLOSE"
    CONFIGURE = "CONFIGURE"
    FX_REVALUATION_POSTED = "FX_REVALUATION_POSTED"
    FX_SETTLED = "FX_SETTLED"


# --- FX ---

class ExchangeRateType(str, enum.Enum):
    SPOT = "SPOT"
    AVERAGE = "AVERAGE"
    CLOSING = "CLOSING"
    HISTORICAL = "HISTORICAL"


class FxRevaluationMethod(str, enum.Enum):
    BALANCE_SHEET = "BALANCE_SHEET"
    OPEN_ITEM = "OPEN_ITEM"
    AVERAGE_RATE = "AVERAGE_RATE"
    CLOSING_RATE = "CLOSING_RATE"


class FxGainLossStatus(str, enum.Enum):
    UNREALIZED = "UNREALIZED"
    REALIZED = "REALIZED"
    REVERSED = "REVERSED"


class FxBatchStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    POSTED = "POSTED"
    REVERSED = "REVERSED"


class OpenItemStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLEARED = "CLEARED"
