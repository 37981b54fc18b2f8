"""Per-tenant general ledger settings."""

from datetime import datetime

from sqlalchemy import String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from general_ledger.models.base import Base, utcnow


class GLConfiguration(Base):
    """
    Overrides for one tenant (and optional sub-scope).

    When no row exists the settings defaults apply.
    """

    __tablename__ = "gl_configurations"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "sub_scope_id", name="uq_gl_configuration_scope"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True
    )
    sub_scope_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    base_currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="USD"
    )
    auto_post_on_approval: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    fx_unrealized_gain_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("ledger_accounts.id"), nullable=True
    )
    fx_unrealized_loss_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("ledger_accounts.id"), nullable=True
    )
    fx_realized_gain_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("ledger_accounts.id"), nullable=True
    )
    fx_realized_loss_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("ledger_accounts.id"), nullable=True
    )
    updated_by: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
