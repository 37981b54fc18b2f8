"""
Foreign exchange endpoints: rates, open items, revaluation
runs and settlement.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from general_ledger.api.deps import (
    commit,
    get_posting_service,
    http_error,
    require_actor,
)
from general_ledger.exceptions import LedgerError
from general_ledger.models.base import get_db
from general_ledger.schemas.approval import ApprovalRequestResponse
from general_ledger.schemas.journal_entry import JournalEntryResponse
from general_ledger.schemas.fx import (
    ExchangeRateCreate,
    ExchangeRateResponse,
    FxRevaluationLineResponse,
    FxRevaluationRequest,
    FxRevaluationResponse,
    OpenItemCreate,
    OpenItemResponse,
    SettleOpenItemRequest,
    SettlementResponse,
)
from general_ledger.services.context import RequestContext
from general_ledger.services.directory import (
    NotificationChannel,
    get_notification_channel,
)
from general_ledger.services.fx_revaluation_service import (
    FxRevaluationResult,
    FxRevaluationService,
)
from general_ledger.services.posting_service import PostingService

router = APIRouter(prefix="/fx", tags=["FX"])


def _validated(schema, obj):
    return schema.model_validate(obj) if obj is not None else None


def _revaluation_response(result: FxRevaluationResult) -> FxRevaluationResponse:
    batch = result.batch
    return FxRevaluationResponse(
        persisted=result.persisted,
        batch_id=batch.id if batch else None,
        batch_number=batch.batch_number if batch else None,
        status=batch.status if batch else None,
        revaluation_date=result.revaluation_date,
        method=result.method,
        period_id=result.period_id,
        total_gain_amount=result.total_gain_amount,
        total_loss_amount=result.total_loss_amount,
        net_gain_loss_amount=result.net_gain_loss_amount,
        entry_count=result.entry_count,
        journal_entry=_validated(JournalEntryResponse, result.journal_entry),
        approval_request=_validated(ApprovalRequestResponse, result.approval_request),
        lines=[FxRevaluationLineResponse.model_validate(line) for line in result.lines],
    )


@router.post("/rates", response_model=ExchangeRateResponse, status_code=201)
def record_exchange_rate(
    request: ExchangeRateCreate,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    posting: PostingService = Depends(get_posting_service),
):
    service = FxRevaluationService(db, posting=posting)
    try:
        rate = service.record_exchange_rate(ctx, request)
        commit(db)
        return rate
    except LedgerError as e:
        db.rollback()
        raise http_error(e)


@router.post("/open-items", response_model=OpenItemResponse, status_code=201)
def create_open_item(
    request: OpenItemCreate,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    posting: PostingService = Depends(get_posting_service),
):
    service = FxRevaluationService(db, posting=posting)
    try:
        item = service.create_open_item(ctx, request)
        commit(db)
        return item
    except LedgerError as e:
        db.rollback()
        raise http_error(e)


@router.post("/revaluations", response_model=FxRevaluationResponse)
def run_fx_revaluation(
    request: FxRevaluationRequest,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    posting: PostingService = Depends(get_posting_service),
    channel: NotificationChannel = Depends(get_notification_channel),
):
    """
    Preview (the default) or post an FX revaluation run.

    A preview writes nothing. A post persists the batch and
    submits its adjustment entry for approval.
    """
    service = FxRevaluationService(db, posting=posting)
    try:
        result = service.run_fx_revaluation(
            ctx,
            request.scope,
            request.revaluation_date,
            method=request.method,
            preview=request.preview,
            gain_account_id=request.gain_account_id,
            loss_account_id=request.loss_account_id,
            description=request.description,
        )
        if result.persisted:
            commit(db, service.posting.outbox, channel)
        else:
            db.rollback()
        return _revaluation_response(result)
    except LedgerError as e:
        db.rollback()
        service.posting.outbox.discard()
        raise http_error(e)


@router.post("/open-items/{open_item_id}/settle", response_model=SettlementResponse)
def settle_open_item(
    open_item_id: int,
    request: SettleOpenItemRequest,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    posting: PostingService = Depends(get_posting_service),
    channel: NotificationChannel = Depends(get_notification_channel),
):
    """Clear an open item and book the realized FX difference."""
    service = FxRevaluationService(db, posting=posting)
    try:
        result = service.settle_open_item(
            ctx, open_item_id, request.settlement_rate, request.settlement_date
        )
        commit(db, service.posting.outbox, channel)
        return SettlementResponse(
            open_item=OpenItemResponse.model_validate(result.open_item),
            realized_amount=result.realized_amount,
            unrealized_reversed=result.unrealized_reversed,
            journal_entry=_validated(JournalEntryResponse, result.journal_entry),
            approval_request=_validated(ApprovalRequestResponse, result.approval_request),
        )
    except LedgerError as e:
        db.rollback()
        service.posting.outbox.discard()
        raise http_error(e)
