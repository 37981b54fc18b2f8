"""
Ledger account model (chart of accounts).

Journal entry lines post against these accounts. The engine
only needs to resolve an account by id or code and check that
it is active; maintaining the chart itself happens elsewhere.
"""

from datetime import datetime

from sqlalchemy import (
    String, Boolean, DateTime, UniqueConstraint,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from general_ledger.models.base import Base, utcnow
from general_ledger.models.enums import AccountType


class LedgerAccount(Base):
    """
    A single account in a tenant's chart of accounts.

    Once referenced by a posted line, an account is never
    deleted, only deactivated via is_active=False.
    """

    __tablename__ = "ledger_accounts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_ledger_account_code"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True
    )
    sub_scope_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    account_type: Mapped[AccountType] = mapped_column(
        SAEnum(AccountType, name="account_type_enum"),
        nullable=False,
    )
    currency: Mapped[str | None] = mapped_column(
        String(3), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return f"<LedgerAccount {self.code} ({self.account_type.value})>"
