"""
Financial period and per-period account rollups.

A period is open for posting only while its status is OPEN
and the entry date falls inside [start_date, end_date].
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    String, Date, DateTime, Integer, Numeric, ForeignKey,
    UniqueConstraint, Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from general_ledger.models.base import Base, utcnow
from general_ledger.models.enums import PeriodStatus


class FinancialPeriod(Base):
    __tablename__ = "financial_periods"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "fiscal_year", "fiscal_period",
            name="uq_financial_period",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True
    )
    sub_scope_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    fiscal_period: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[PeriodStatus] = mapped_column(
        SAEnum(PeriodStatus, name="period_status_enum"),
        nullable=False,
        default=PeriodStatus.OPEN,
    )
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    closed_by: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    def contains(self, on: date) -> bool:
        return self.start_date <= on <= self.end_date

    def __repr__(self) -> str:
        return f"<FinancialPeriod {self.name} ({self.status.value})>"


class PeriodAccountBalance(Base):
    """
    Posted debit/credit totals for one account in one period.

    Incremented on every post (and by the mirrored amounts of a
    reversal). Never decremented.
    """

    __tablename__ = "period_account_balances"
    __table_args__ = (
        UniqueConstraint(
            "period_id", "account_id", name="uq_period_account_balance"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True
    )
    sub_scope_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    period_id: Mapped[int] = mapped_column(
        ForeignKey("financial_periods.id"), nullable=False, index=True
    )
    account_id: Mapped[int] = mapped_column(
        ForeignKey("ledger_accounts.id"), nullable=False, index=True
    )
    debit_total: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    credit_total: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    debit_total_base: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    credit_total_base: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False, default=Decimal("0")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
