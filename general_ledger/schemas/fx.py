"""Pydantic schemas for exchange rates, open items and FX revaluation."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from general_ledger.models.enums import (
    ExchangeRateType,
    FxBatchStatus,
    FxGainLossStatus,
    FxRevaluationMethod,
    OpenItemStatus,
)
from general_ledger.schemas.approval import ApprovalRequestResponse
from general_ledger.schemas.journal_entry import JournalEntryResponse


# --- Request Schemas ---

class ExchangeRateCreate(BaseModel):
    from_currency: str = Field(min_length=3, max_length=3)
    to_currency: str = Field(min_length=3, max_length=3)
    rate: Decimal = Field(gt=0)
    rate_type: ExchangeRateType = ExchangeRateType.SPOT
    effective_date: date
    source: str | None = Field(default=None, max_length=50)


class OpenItemCreate(BaseModel):
    account_id: int | None = None
    account_code: str | None = None
    document_type: str | None = Field(default=None, max_length=50)
    document_number: str = Field(min_length=1, max_length=100)
    currency_code: str = Field(min_length=3, max_length=3)
    amount: Decimal
    booked_rate: Decimal = Field(gt=0)
    amount_base: Decimal | None = None
    document_date: date

    @field_validator("amount")
    @classmethod
    def amount_not_zero(cls, v: Decimal) -> Decimal:
        if v == 0:
            raise ValueError("amount must not be zero")
        return v


class FxScope(BaseModel):
    """Which open items a run covers; an empty list means all."""
    currency_codes: list[str] = Field(default_factory=list)
    account_ids: list[int] = Field(default_factory=list)


class FxRevaluationRequest(BaseModel):
    revaluation_date: date
    method: FxRevaluationMethod = FxRevaluationMethod.CLOSING_RATE
    scope: FxScope = Field(default_factory=FxScope)
    preview: bool = True
    gain_account_id: int | None = None
    loss_account_id: int | None = None
    description: str | None = Field(default=None, max_length=255)


class SettleOpenItemRequest(BaseModel):
    settlement_rate: Decimal = Field(gt=0)
    settlement_date: date


# --- Response Schemas ---

class ExchangeRateResponse(BaseModel):
    id: int
    from_currency: str
    to_currency: str
    rate: Decimal
    rate_type: ExchangeRateType
    effective_date: date
    source: str | None

    model_config = {"from_attributes": True}


class OpenItemResponse(BaseModel):
    id: int
    account_id: int
    document_type: str | None
    document_number: str
    currency_code: str
    amount: Decimal
    remaining_amount: Decimal
    booked_rate: Decimal
    amount_base: Decimal
    remaining_amount_base: Decimal
    document_date: date
    status: OpenItemStatus
    settled_at: datetime | None

    model_config = {"from_attributes": True}


class FxRevaluationLineResponse(BaseModel):
    account_id: int
    open_item_id: int | None
    currency_code: str
    original_amount: Decimal
    original_amount_base: Decimal
    original_rate: Decimal
    revaluation_rate: Decimal
    revalued_amount_base: Decimal
    gain_loss_amount: Decimal
    status: FxGainLossStatus

    model_config = {"from_attributes": True}


class FxRevaluationResponse(BaseModel):
    persisted: bool
    batch_id: int | None = None
    batch_number: str | None = None
    status: FxBatchStatus | None = None
    revaluation_date: date
    method: FxRevaluationMethod
    period_id: int
    total_gain_amount: Decimal
    total_loss_amount: Decimal
    net_gain_loss_amount: Decimal
    entry_count: int
    journal_entry: JournalEntryResponse | None = None
    approval_request: ApprovalRequestResponse | None = None
    lines: list[FxRevaluationLineResponse]


class SettlementResponse(BaseModel):
    open_item: OpenItemResponse
    realized_amount: Decimal
    unrealized_reversed: Decimal
    journal_entry: JournalEntryResponse | None = None
    approval_request: ApprovalRequestResponse | None = None
