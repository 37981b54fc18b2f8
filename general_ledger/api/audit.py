"""
Audit trail endpoints. Read-only: rows are written by the
services in the same unit of work as the change they describe.
"""

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from general_ledger.api.deps import get_request_context
from general_ledger.models.base import get_db
from general_ledger.models.enums import AuditAction
from general_ledger.schemas.audit import (
    AuditPageResponse,
    AuditSearchFilters,
    AuditTrailResponse,
)
from general_ledger.services.audit_service import AuditService
from general_ledger.services.context import RequestContext

router = APIRouter(prefix="/audit", tags=["Audit"])


@router.get("", response_model=AuditPageResponse)
def search_audit_trail(
    entity_type: str | None = None,
    entity_id: str | None = None,
    action: AuditAction | None = None,
    actor_id: str | None = None,
    search: str | None = Query(default=None, max_length=200),
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    order: Literal["asc", "desc"] = "desc",
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """Search the trail, newest first unless order=asc."""
    filters = AuditSearchFilters(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        search=search,
        date_from=date_from,
        date_to=date_to,
        order=order,
    )
    result = AuditService(db).search(ctx, filters, page=page, page_size=page_size)
    return AuditPageResponse(
        items=[AuditTrailResponse.model_validate(row) for row in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
    )


@router.get("/{entity_type}/{entity_id}", response_model=list[AuditTrailResponse])
def get_entity_trail(
    entity_type: str,
    entity_id: str,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    return AuditService(db).get_entity_trail(ctx, entity_type, entity_id)
