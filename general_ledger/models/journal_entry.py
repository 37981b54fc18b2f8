"""
Journal entry and journal entry line models.

A journal entry is one double-entry accounting transaction:
a header plus at least two lines whose debits equal their
credits. The entry has a state machine governing its
lifecycle; once POSTED its lines are frozen and corrections
happen only through a paired REVERSAL entry.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    String, Text, Date, DateTime, Integer, Numeric, Boolean, ForeignKey,
    UniqueConstraint, Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from general_ledger.models.base import Base, utcnow
from general_ledger.models.enums import (
    JournalEntryStatus,
    JournalEntryType,
    SourceModule,
    SubledgerType,
)


# Valid state transitions, the source of truth for the posting state machine
VALID_TRANSITIONS: dict[JournalEntryStatus, set[JournalEntryStatus]] = {
    JournalEntryStatus.DRAFT: {
        JournalEntryStatus.PENDING_APPROVAL,
        JournalEntryStatus.VOID,
    },
    JournalEntryStatus.PENDING_APPROVAL: {
        JournalEntryStatus.APPROVED,
        JournalEntryStatus.REJECTED,
        JournalEntryStatus.DRAFT,  # recalled or expired
        JournalEntryStatus.VOID,
    },
    JournalEntryStatus.APPROVED: {
        JournalEntryStatus.POSTED,
        JournalEntryStatus.VOID,
    },
    JournalEntryStatus.REJECTED: {
        JournalEntryStatus.PENDING_APPROVAL,
        JournalEntryStatus.VOID,
    },
    JournalEntryStatus.POSTED: {JournalEntryStatus.REVERSED},
    JournalEntryStatus.REVERSED: set(),  # Terminal
    JournalEntryStatus.VOID: set(),  # Terminal
}

EDITABLE_STATUSES = frozenset({
    JournalEntryStatus.DRAFT,
    JournalEntryStatus.REJECTED,
})

FROZEN_STATUSES = frozenset({
    JournalEntryStatus.POSTED,
    JournalEntryStatus.REVERSED,
})


class JournalEntry(Base):
    __tablename__ = "journal_entries"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "entry_number", name="uq_journal_entry_number"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True
    )
    sub_scope_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True
    )
    entry_number: Mapped[str] = mapped_column(String(20), nullable=False)
    period_id: Mapped[int] = mapped_column(
        ForeignKey("financial_periods.id"), nullable=False, index=True
    )
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    entry_type: Mapped[JournalEntryType] = mapped_column(
        SAEnum(JournalEntryType, name="journal_entry_type_enum"),
        nullable=False,
        default=JournalEntryType.NORMAL,
    )
    source_module: Mapped[SourceModule] = mapped_column(
        SAEnum(SourceModule, name="source_module_enum"),
        nullable=False,
        default=SourceModule.MANUAL,
    )
    source_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    source_reference: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(
        Numeric(19, 8), nullable=False, default=Decimal("1")
    )
    total_debit: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    total_credit: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    total_debit_base: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    total_credit_base: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )

    status: Mapped[JournalEntryStatus] = mapped_column(
        SAEnum(
            JournalEntryStatus,
            name="journal_entry_status_enum",
            create_constraint=True,
        ),
        nullable=False,
        default=JournalEntryStatus.DRAFT,
        index=True,
    )
    # Optimistic lock, bumped by SQLAlchemy on every UPDATE
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    reversal_of_id: Mapped[int | None] = mapped_column(
        ForeignKey("journal_entries.id"), nullable=True
    )
    reversed_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("journal_entries.id"), nullable=True
    )

    # Workflow stamps
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime)
    submitted_by: Mapped[str | None] = mapped_column(String(64))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime)
    approved_by: Mapped[str | None] = mapped_column(String(64))
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime)
    rejected_by: Mapped[str | None] = mapped_column(String(64))
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    posted_at: Mapped[datetime | None] = mapped_column(DateTime)
    posted_by: Mapped[str | None] = mapped_column(String(64))
    voided_at: Mapped[datetime | None] = mapped_column(DateTime)
    voided_by: Mapped[str | None] = mapped_column(String(64))
    void_reason: Mapped[str | None] = mapped_column(Text)
    reversed_at: Mapped[datetime | None] = mapped_column(DateTime)
    reversed_by: Mapped[str | None] = mapped_column(String(64))
    reversal_reason: Mapped[str | None] = mapped_column(Text)

    created_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_by: Mapped[str | None] = mapped_column(String(64))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    lines: Mapped[list["JournalEntryLine"]] = relationship(
        back_populates="journal_entry",
        cascade="all, delete-orphan",
        order_by="JournalEntryLine.line_number",
    )

    __mapper_args__ = {"version_id_col": version}

    def can_transition_to(self, new_status: JournalEntryStatus) -> bool:
        """Check if a state transition is valid."""
        return new_status in VALID_TRANSITIONS.get(self.status, set())

    @property
    def is_editable(self) -> bool:
        return self.status in EDITABLE_STATUSES

    @property
    def base_amount(self) -> Decimal:
        """Amount routed through approval thresholds."""
        return max(self.total_debit_base, self.total_credit_base)

    def __repr__(self) -> str:
        return f"<JournalEntry {self.entry_number} ({self.status.value})>"


class JournalEntryLine(Base):
    """
    One debit or credit leg of a journal entry.

    Exactly one of debit_amount and credit_amount is positive.
    Base amounts are computed from the entry (or line override)
    rate unless the entry was imported with pre-computed values.
    """

    __tablename__ = "journal_entry_lines"
    __table_args__ = (
        UniqueConstraint(
            "journal_entry_id", "line_number", name="uq_journal_entry_line"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    journal_entry_id: Mapped[int] = mapped_column(
        ForeignKey("journal_entries.id"), nullable=False, index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("ledger_accounts.id"), nullable=False, index=True
    )
    description: Mapped[str | None] = mapped_column(String(500))
    debit_amount: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    credit_amount: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    debit_amount_base: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    credit_amount_base: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(19, 8))

    subledger_type: Mapped[SubledgerType] = mapped_column(
        SAEnum(SubledgerType, name="subledger_type_enum"),
        nullable=False,
        default=SubledgerType.NONE,
    )
    subledger_reference: Mapped[str | None] = mapped_column(String(100))
    tax_code: Mapped[str | None] = mapped_column(String(20))
    tax_amount: Mapped[Decimal | None] = mapped_column(Numeric(19, 4))
    dimension1: Mapped[str | None] = mapped_column(String(50))
    dimension2: Mapped[str | None] = mapped_column(String(50))
    dimension3: Mapped[str | None] = mapped_column(String(50))
    dimension4: Mapped[str | None] = mapped_column(String(50))
    is_intercompany: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    intercompany_sub_scope_id: Mapped[str | None] = mapped_column(String(64))

    journal_entry: Mapped["JournalEntry"] = relationship(
        back_populates="lines"
    )

    def __repr__(self) -> str:
        side = "DR" if self.debit_amount > 0 else "CR"
        amount = self.debit_amount if side == "DR" else self.credit_amount
        return f"<JournalEntryLine #{self.line_number} {side} {amount}>"
