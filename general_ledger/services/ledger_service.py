"""
Ledger setup service: accounts, periods, rollups and
per-tenant configuration.

The engine treats the chart of accounts and the fiscal
calendar as external; this service offers the minimum needed
to set them up, plus the posted-total rollups that posting
increments.
"""

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from general_ledger.config import get_settings
from general_ledger.exceptions import ConflictError, NotFoundError, StateError
from general_ledger.logging_config import get_logger
from general_ledger.models.enums import AuditAction, PeriodStatus
from general_ledger.models.financial_period import (
    FinancialPeriod,
    PeriodAccountBalance,
)
from general_ledger.models.gl_configuration import GLConfiguration
from general_ledger.models.ledger_account import LedgerAccount
from general_ledger.money import normalize_currency
from general_ledger.schemas.ledger import (
    GLConfigurationUpdate,
    LedgerAccountCreate,
    PeriodCreate,
)
from general_ledger.services.audit_service import AuditService
from general_ledger.services.context import RequestContext
from general_ledger.services.directory import PeriodService

logger = get_logger("services.ledger")


@dataclass(frozen=True)
class EffectiveConfiguration:
    """Tenant configuration with settings defaults filled in."""
    base_currency: str
    auto_post_on_approval: bool
    fx_unrealized_gain_account_id: int | None = None
    fx_unrealized_loss_account_id: int | None = None
    fx_realized_gain_account_id: int | None = None
    fx_realized_loss_account_id: int | None = None


class LedgerService:
    """
    The service takes a database session as a constructor
    argument. The caller controls the transaction boundary.
    """

    def __init__(self, db: Session, audit: AuditService | None = None):
        self.db = db
        self.audit = audit or AuditService(db)
        self.periods = PeriodService(db)

    # --- Accounts ---

    def create_account(
        self, ctx: RequestContext, request: LedgerAccountCreate
    ) -> LedgerAccount:
        """
        Create a new ledger account.

        Raises ConflictError if the code already exists for the tenant.
        """
        existing = self.db.execute(
            select(LedgerAccount).where(
                LedgerAccount.tenant_id == ctx.tenant_id,
                LedgerAccount.code == request.code,
            )
        ).scalar_one_or_none()
        if existing:
            raise ConflictError(
                f"Account with code '{request.code}' already exists"
            )

        account = LedgerAccount(
            tenant_id=ctx.tenant_id,
            sub_scope_id=ctx.sub_scope_id,
            code=request.code,
            name=request.name,
            account_type=request.account_type,
            currency=normalize_currency(request.currency) if request.currency else None,
        )
        self.db.add(account)
        self.db.flush()
        self.audit.record(
            ctx, "LedgerAccount", account.id, AuditAction.CREATE,
            new_values={
                "code": account.code,
                "name": account.name,
                "account_type": account.account_type.value,
            },
        )
        return account

    def get_account(self, ctx: RequestContext, account_id: int) -> LedgerAccount:
        account = self.db.get(LedgerAccount, account_id)
        if account is None or account.tenant_id != ctx.tenant_id:
            raise NotFoundError("LedgerAccount", account_id)
        return account

    def get_account_balances(
        self, ctx: RequestContext, account_id: int
    ) -> list[PeriodAccountBalance]:
        """Posted rollups for an account, one row per period."""
        self.get_account(ctx, account_id)
        return list(
            self.db.execute(
                select(PeriodAccountBalance)
                .where(
                    PeriodAccountBalance.tenant_id == ctx.tenant_id,
                    PeriodAccountBalance.account_id == account_id,
                )
                .order_by(PeriodAccountBalance.period_id)
            ).scalars().all()
        )

    # --- Periods ---

    def create_period(
        self, ctx: RequestContext, request: PeriodCreate
    ) -> FinancialPeriod:
        duplicate = self.db.execute(
            select(FinancialPeriod).where(
                FinancialPeriod.tenant_id == ctx.tenant_id,
                FinancialPeriod.fiscal_year == request.fiscal_year,
                FinancialPeriod.fiscal_period == request.fiscal_period,
            )
        ).scalar_one_or_none()
        if duplicate:
            raise ConflictError(
                f"Period {request.fiscal_year}-{request.fiscal_period:02d} "
                f"already exists"
            )

        period = self.periods.create_period(
            ctx.tenant_id,
            request.name,
            request.fiscal_year,
            request.fiscal_period,
            request.start_date,
            request.end_date,
            status=request.status,
            sub_scope_id=ctx.sub_scope_id,
        )
        self.audit.record(
            ctx, "FinancialPeriod", period.id, AuditAction.CREATE,
            new_values={
                "name": period.name,
                "start_date": period.start_date.isoformat(),
                "end_date": period.end_date.isoformat(),
                "status": period.status.value,
            },
        )
        return period

    def get_period(self, ctx: RequestContext, period_id: int) -> FinancialPeriod:
        period = self.periods.get_period(ctx.tenant_id, period_id)
        if period is None:
            raise NotFoundError("FinancialPeriod", period_id)
        return period

    def close_period(self, ctx: RequestContext, period_id: int) -> FinancialPeriod:
        period = self.get_period(ctx, period_id)
        if period.status == PeriodStatus.CLOSED:
            raise StateError(
                f"Period {period.name} is already closed",
                current_status=period.status.value,
                requested=PeriodStatus.CLOSED.value,
            )
        previous = period.status.value
        self.periods.close_period(period, ctx.actor_id)
        self.audit.record(
            ctx, "FinancialPeriod", period.id, AuditAction.CLOSE,
            previous_values={"status": previous},
            new_values={"status": period.status.value},
        )
        logger.info(
            "period_closed",
            extra={"period_id": period.id, "period_name": period.name},
        )
        return period

    # --- Configuration ---

    def get_configuration(self, ctx: RequestContext) -> GLConfiguration | None:
        """Sub-scope row first, then the tenant-wide row."""
        rows = self.db.execute(
            select(GLConfiguration).where(
                GLConfiguration.tenant_id == ctx.tenant_id
            )
        ).scalars().all()
        by_scope = {row.sub_scope_id: row for row in rows}
        if ctx.sub_scope_id is not None and ctx.sub_scope_id in by_scope:
            return by_scope[ctx.sub_scope_id]
        return by_scope.get(None)

    def effective_configuration(self, ctx: RequestContext) -> EffectiveConfiguration:
        settings = get_settings()
        row = self.get_configuration(ctx)
        if row is None:
            return EffectiveConfiguration(
                base_currency=normalize_currency(settings.BASE_CURRENCY),
                auto_post_on_approval=settings.AUTO_POST_ON_APPROVAL,
            )
        return EffectiveConfiguration(
            base_currency=row.base_currency,
            auto_post_on_approval=row.auto_post_on_approval,
            fx_unrealized_gain_account_id=row.fx_unrealized_gain_account_id,
            fx_unrealized_loss_account_id=row.fx_unrealized_loss_account_id,
            fx_realized_gain_account_id=row.fx_realized_gain_account_id,
            fx_realized_loss_account_id=row.fx_realized_loss_account_id,
        )

    def update_configuration(
        self, ctx: RequestContext, request: GLConfigurationUpdate
    ) -> GLConfiguration:
        """Create or update the configuration row for ctx's scope."""
        settings = get_settings()
        row = self.db.execute(
            select(GLConfiguration).where(
                GLConfiguration.tenant_id == ctx.tenant_id,
                GLConfiguration.sub_scope_id.is_(None)
                if ctx.sub_scope_id is None
                else GLConfiguration.sub_scope_id == ctx.sub_scope_id,
            )
        ).scalar_one_or_none()

        previous = _configuration_snapshot(row) if row else None
        if row is None:
            row = GLConfiguration(
                tenant_id=ctx.tenant_id,
                sub_scope_id=ctx.sub_scope_id,
                base_currency=normalize_currency(settings.BASE_CURRENCY),
                auto_post_on_approval=settings.AUTO_POST_ON_APPROVAL,
            )
            self.db.add(row)

        changes = request.model_dump(exclude_unset=True)
        for key, value in changes.items():
            if key.endswith("_account_id") and value is not None:
                self.get_account(ctx, value)
            if key == "base_currency" and value is not None:
                value = normalize_currency(value)
            if value is None and key in ("base_currency", "auto_post_on_approval"):
                continue
            setattr(row, key, value)
        row.updated_by = ctx.actor_id
        self.db.flush()

        self.audit.record(
            ctx, "GLConfiguration", row.id, AuditAction.CONFIGURE,
            previous_values=previous,
            new_values=_configuration_snapshot(row),
        )
        return row


def _configuration_snapshot(row: GLConfiguration) -> dict:
    return {
        "base_currency": row.base_currency,
        "auto_post_on_approval": row.auto_post_on_approval,
        "fx_unrealized_gain_account_id": row.fx_unrealized_gain_account_id,
        "fx_unrealized_loss_account_id": row.fx_unrealized_loss_account_id,
        "fx_realized_gain_account_id": row.fx_realized_gain_account_id,
        "fx_realized_loss_account_id": row.fx_realized_loss_account_id,
    }
