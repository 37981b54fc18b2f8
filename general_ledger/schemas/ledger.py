"""
Pydantic schemas for chart-of-accounts, period and
configuration operations.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from general_ledger.models.enums import AccountType, PeriodStatus


# --- Request Schemas ---

class LedgerAccountCreate(BaseModel):
    """Request to create a new ledger account."""
    code: str = Field(min_length=1, max_length=20)
    name: str = Field(min_length=1, max_length=100)
    account_type: AccountType
    currency: str | None = Field(default=None, min_length=3, max_length=3)


class PeriodCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    fiscal_year: int = Field(ge=1900, le=9999)
    fiscal_period: int = Field(ge=1, le=13)
    start_date: date
    end_date: date
    status: PeriodStatus = PeriodStatus.OPEN

    @model_validator(mode="after")
    def end_after_start(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not precede start_date")
        return self


class GLConfigurationUpdate(BaseModel):
    base_currency: str | None = Field(default=None, min_length=3, max_length=3)
    auto_post_on_approval: bool | None = None
    fx_unrealized_gain_account_id: int | None = None
    fx_unrealized_loss_account_id: int | None = None
    fx_realized_gain_account_id: int | None = None
    fx_realized_loss_account_id: int | None = None


# --- Response Schemas ---

class LedgerAccountResponse(BaseModel):
    """Ledger account in API responses."""
    id: int
    tenant_id: str
    code: str
    name: str
    account_type: AccountType
    currency: str | None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class PeriodResponse(BaseModel):
    id: int
    tenant_id: str
    name: str
    fiscal_year: int
    fiscal_period: int
    start_date: date
    end_date: date
    status: PeriodStatus
    closed_at: datetime | None
    closed_by: str | None

    model_config = {"from_attributes": True}


class PeriodBalanceResponse(BaseModel):
    """Posted totals for one account in one period."""
    period_id: int
    account_id: int
    debit_total: Decimal
    credit_total: Decimal
    debit_total_base: Decimal
    credit_total_base: Decimal

    model_config = {"from_attributes": True}


class GLConfigurationResponse(BaseModel):
    tenant_id: str
    sub_scope_id: str | None
    base_currency: str
    auto_post_on_approval: bool
    fx_unrealized_gain_account_id: int | None
    fx_unrealized_loss_account_id: int | None
    fx_realized_gain_account_id: int | None
    fx_realized_loss_account_id: int | None

    model_config = {"from_attributes": True}
