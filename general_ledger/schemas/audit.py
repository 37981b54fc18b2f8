"""Pydantic schemas for audit trail queries."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from general_ledger.models.enums import AuditAction


class AuditSearchFilters(BaseModel):
    """Every filter is optional; an empty filter returns the whole trail."""
    entity_type: str | None = None
    entity_id: str | None = None
    action: AuditAction | None = None
    actor_id: str | None = None
    search: str | None = Field(default=None, max_length=200)
    date_from: datetime | None = None
    date_to: datetime | None = None
    order: Literal["asc", "desc"] = "desc"


class AuditTrailResponse(BaseModel):
    id: int
    tenant_id: str
    sub_scope_id: str | None
    entity_type: str
    entity_id: str
    action: AuditAction
    actor_id: str
    previous_values: dict[str, Any] | None
    new_values: dict[str, Any] | None
    reason: str | None
    description: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditPageResponse(BaseModel):
    items: list[AuditTrailResponse]
    total: int
    page: int
    page_size: int
