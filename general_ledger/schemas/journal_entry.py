"""
Pydantic schemas for journal entries.

The request schemas deliberately leave line counts, sides and
balance to the JournalValidator so a caller gets the engine's
reason codes (TOO_FEW_LINES, UNBALANCED, ...) rather than a
generic schema error. Only shape and length checks live here.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from general_ledger.models.enums import (
    JournalEntryStatus,
    JournalEntryType,
    SourceModule,
    SubledgerType,
)


# --- Request Schemas ---

class JournalLineCreate(BaseModel):
    """One debit or credit leg. Give either account_id or account_code."""
    line_number: int | None = Field(default=None, ge=1)
    account_id: int | None = None
    account_code: str | None = Field(default=None, max_length=20)
    description: str | None = Field(default=None, max_length=500)
    debit_amount: Decimal = Decimal("0")
    credit_amount: Decimal = Decimal("0")
    # Only honored when the entry is imported with pre-computed history
    debit_amount_base: Decimal | None = None
    credit_amount_base: Decimal | None = None
    exchange_rate: Decimal | None = None
    subledger_type: SubledgerType = SubledgerType.NONE
    subledger_reference: str | None = Field(default=None, max_length=100)
    tax_code: str | None = Field(default=None, max_length=20)
    tax_amount: Decimal | None = None
    dimension1: str | None = Field(default=None, max_length=50)
    dimension2: str | None = Field(default=None, max_length=50)
    dimension3: str | None = Field(default=None, max_length=50)
    dimension4: str | None = Field(default=None, max_length=50)
    is_intercompany: bool = False
    intercompany_sub_scope_id: str | None = Field(default=None, max_length=64)


class JournalEntryCreate(BaseModel):
    """
    A proposed journal entry.

    period_id may be omitted; the open period covering
    entry_date is used. currency_code defaults to the tenant's
    base currency.
    """
    entry_date: date
    period_id: int | None = None
    entry_type: JournalEntryType = JournalEntryType.NORMAL
    source_module: SourceModule = SourceModule.MANUAL
    source_id: str | None = Field(default=None, max_length=64)
    source_reference: str | None = Field(default=None, max_length=100)
    description: str = Field(min_length=1, max_length=500)
    notes: str | None = None
    currency_code: str | None = Field(default=None, max_length=3)
    exchange_rate: Decimal = Decimal("1")
    imported: bool = False
    lines: list[JournalLineCreate]


class JournalEntryUpdate(JournalEntryCreate):
    expected_version: int | None = None


class SubmitRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=500)
    expected_version: int | None = None
    context: dict = Field(default_factory=dict)


class PostRequest(BaseModel):
    expected_version: int | None = None


class ReverseRequest(BaseModel):
    reversal_date: date
    reason: str = Field(min_length=1, max_length=1000)
    expected_version: int | None = None

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("reason is required")
        return v


class VoidRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)
    expected_version: int | None = None

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("reason is required")
        return v


# --- Response Schemas ---

class JournalLineResponse(BaseModel):
    id: int
    line_number: int
    account_id: int
    description: str | None
    debit_amount: Decimal
    credit_amount: Decimal
    debit_amount_base: Decimal
    credit_amount_base: Decimal
    exchange_rate: Decimal | None
    subledger_type: SubledgerType
    subledger_reference: str | None
    tax_code: str | None
    tax_amount: Decimal | None
    dimension1: str | None
    dimension2: str | None
    dimension3: str | None
    dimension4: str | None
    is_intercompany: bool
    intercompany_sub_scope_id: str | None

    model_config = {"from_attributes": True}


class JournalEntryResponse(BaseModel):
    id: int
    tenant_id: str
    sub_scope_id: str | None
    entry_number: str
    period_id: int
    entry_date: date
    entry_type: JournalEntryType
    source_module: SourceModule
    source_id: str | None
    source_reference: str | None
    description: str
    notes: str | None
    currency_code: str
    exchange_rate: Decimal
    total_debit: Decimal
    total_credit: Decimal
    total_debit_base: Decimal
    total_credit_base: Decimal
    status: JournalEntryStatus
    version: int
    reversal_of_id: int | None
    reversed_by_id: int | None
    submitted_at: datetime | None
    submitted_by: str | None
    approved_at: datetime | None
    approved_by: str | None
    rejected_at: datetime | None
    rejected_by: str | None
    rejection_reason: str | None
    posted_at: datetime | None
    posted_by: str | None
    voided_at: datetime | None
    voided_by: str | None
    void_reason: str | None
    reversed_at: datetime | None
    reversed_by: str | None
    reversal_reason: str | None
    created_by: str | None
    created_at: datetime
    updated_by: str | None
    updated_at: datetime
    lines: list[JournalLineResponse]

    model_config = {"from_attributes": True}


class JournalEntryPage(BaseModel):
    items: list[JournalEntryResponse]
    total: int
    page: int
    page_size: int
