"""
Foreign exchange models: rates, open items and revaluation batches.

Amounts on OpenItem are signed: a receivable is positive, a
payable negative. Revaluation deltas keep that sign, so a
positive gain_loss_amount is always a gain.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    String, Date, DateTime, Integer, Numeric, ForeignKey, JSON,
    UniqueConstraint, Index, Enum as SAEnum, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from general_ledger.models.base import Base, utcnow
from general_ledger.models.enums import (
    ExchangeRateType,
    FxRevaluationMethod,
    FxGainLossStatus,
    FxBatchStatus,
    OpenItemStatus,
)


class ExchangeRate(Base):
    __tablename__ = "exchange_rates"
    __table_args__ = (
        Index(
            "ix_exchange_rate_lookup",
            "tenant_id", "from_currency", "to_currency",
            "rate_type", "effective_date",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    from_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    to_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(19, 8), nullable=False)
    rate_type: Mapped[ExchangeRateType] = mapped_column(
        SAEnum(ExchangeRateType, name="exchange_rate_type_enum"),
        nullable=False,
        default=ExchangeRateType.SPOT,
    )
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    source: Mapped[str | None] = mapped_column(String(50))
    created_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<ExchangeRate {self.from_currency}/{self.to_currency} "
            f"{self.rate} {self.rate_type.value} @ {self.effective_date}>"
        )


class OpenItem(Base):
    """An unsettled foreign-currency balance tracked for revaluation."""

    __tablename__ = "open_items"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "document_number", name="uq_open_item_document"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True
    )
    sub_scope_id: Mapped[str | None] = mapped_column(String(64))
    account_id: Mapped[int] = mapped_column(
        ForeignKey("ledger_accounts.id"), nullable=False, index=True
    )
    document_type: Mapped[str | None] = mapped_column(String(50))
    document_number: Mapped[str] = mapped_column(String(100), nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(19, 4), nullable=False)
    remaining_amount: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False
    )
    booked_rate: Mapped[Decimal] = mapped_column(
        Numeric(19, 8), nullable=False
    )
    amount_base: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False
    )
    remaining_amount_base: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False
    )
    document_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[OpenItemStatus] = mapped_column(
        SAEnum(OpenItemStatus, name="open_item_status_enum"),
        nullable=False,
        default=OpenItemStatus.OPEN,
    )
    settled_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<OpenItem {self.document_number} "
            f"{self.remaining_amount} {self.currency_code} ({self.status.value})>"
        )


class FxRevaluationBatch(Base):
    """
    One posted revaluation run.

    scope_key encodes sub-scope, currencies and accounts so the
    unique index rejects a second POSTED batch for the same
    (scope, date, method). A batch whose journal entry was voided
    or reversed is marked REVERSED and no longer counts.
    """

    __tablename__ = "fx_revaluation_batches"
    __table_args__ = (
        Index(
            "uq_fx_revaluation_batch_scope",
            "tenant_id", "scope_key", "revaluation_date", "method",
            unique=True,
            sqlite_where=text("status = 'POSTED'"),
            postgresql_where=text("status = 'POSTED'"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True
    )
    sub_scope_id: Mapped[str | None] = mapped_column(String(64))
    batch_number: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(String(255))
    revaluation_date: Mapped[date] = mapped_column(Date, nullable=False)
    period_id: Mapped[int] = mapped_column(
        ForeignKey("financial_periods.id"), nullable=False
    )
    method: Mapped[FxRevaluationMethod] = mapped_column(
        SAEnum(FxRevaluationMethod, name="fx_revaluation_method_enum"),
        nullable=False,
    )
    scope_key: Mapped[str] = mapped_column(String(500), nullable=False)
    currency_codes: Mapped[list] = mapped_column(
        JSON, nullable=False, default=list
    )
    account_ids: Mapped[list] = mapped_column(
        JSON, nullable=False, default=list
    )
    total_gain_amount: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    total_loss_amount: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    net_gain_loss_amount: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    entry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[FxBatchStatus] = mapped_column(
        SAEnum(FxBatchStatus, name="fx_batch_status_enum"),
        nullable=False,
        default=FxBatchStatus.DRAFT,
    )
    journal_entry_id: Mapped[int | None] = mapped_column(
        ForeignKey("journal_entries.id")
    )
    gain_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("ledger_accounts.id")
    )
    loss_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("ledger_accounts.id")
    )
    created_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    posted_at: Mapped[datetime | None] = mapped_column(DateTime)
    posted_by: Mapped[str | None] = mapped_column(String(64))

    entries: Mapped[list["FxRevaluationEntry"]] = relationship(
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="FxRevaluationEntry.id",
    )


class FxRevaluationEntry(Base):
    """Original vs revalued base amount for one position."""

    __tablename__ = "fx_revaluation_entries"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True
    )
    sub_scope_id: Mapped[str | None] = mapped_column(String(64))
    batch_id: Mapped[int | None] = mapped_column(
        ForeignKey("fx_revaluation_batches.id"), index=True
    )
    account_id: Mapped[int] = mapped_column(
        ForeignKey("ledger_accounts.id"), nullable=False
    )
    open_item_id: Mapped[int | None] = mapped_column(
        ForeignKey("open_items.id"), index=True
    )
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    original_amount: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False
    )
    original_amount_base: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False
    )
    original_rate: Mapped[Decimal] = mapped_column(
        Numeric(19, 8), nullable=False
    )
    revaluation_date: Mapped[date] = mapped_column(Date, nullable=False)
    revaluation_rate: Mapped[Decimal] = mapped_column(
        Numeric(19, 8), nullable=False
    )
    revalued_amount_base: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False
    )
    gain_loss_amount: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False
    )
    status: Mapped[FxGainLossStatus] = mapped_column(
        SAEnum(FxGainLossStatus, name="fx_gain_loss_status_enum"),
        nullable=False,
        default=FxGainLossStatus.UNREALIZED,
    )
    journal_entry_id: Mapped[int | None] = mapped_column(
        ForeignKey("journal_entries.id")
    )
    created_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    reversed_at: Mapped[datetime | None] = mapped_column(DateTime)
    reversed_by: Mapped[str | None] = mapped_column(String(64))

    batch: Mapped["FxRevaluationBatch | None"] = relationship(
        back_populates="entries"
    )
