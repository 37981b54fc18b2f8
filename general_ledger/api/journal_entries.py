"""
Journal entry endpoints.

Creation and edits go through the JournalService; every
lifecycle transition goes through the PostingService. Each
mutating call is one unit of work: commit on success,
rollback on any LedgerError.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from general_ledger.api.deps import (
    commit,
    get_posting_service,
    get_request_context,
    http_error,
    require_actor,
)
from general_ledger.exceptions import LedgerError
from general_ledger.models.base import get_db
from general_ledger.models.enums import JournalEntryStatus
from general_ledger.schemas.approval import ApprovalRequestResponse
from general_ledger.schemas.journal_entry import (
    JournalEntryCreate,
    JournalEntryPage,
    JournalEntryResponse,
    JournalEntryUpdate,
    PostRequest,
    ReverseRequest,
    SubmitRequest,
    VoidRequest,
)
from general_ledger.services.context import RequestContext
from general_ledger.services.directory import (
    NotificationChannel,
    get_notification_channel,
)
from general_ledger.services.journal_service import JournalService
from general_ledger.services.posting_service import PostingService

router = APIRouter(prefix="/journal-entries", tags=["Journal Entries"])


@router.post("", response_model=JournalEntryResponse, status_code=201)
def create_journal_entry(
    request: JournalEntryCreate,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
):
    """
    Validate and store a new DRAFT entry.

    Returns 422 with every issue of the first failing
    validation stage; nothing is persisted in that case.
    """
    service = JournalService(db)
    try:
        entry = service.create_journal_entry(ctx, request)
        commit(db)
        return entry
    except LedgerError as e:
        db.rollback()
        raise http_error(e)


@router.get("", response_model=JournalEntryPage)
def list_journal_entries(
    status: JournalEntryStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    items, total = JournalService(db).list_journal_entries(
        ctx, status=status, date_from=date_from, date_to=date_to,
        page=page, page_size=page_size,
    )
    return JournalEntryPage(
        items=[JournalEntryResponse.model_validate(e) for e in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{entry_id}", response_model=JournalEntryResponse)
def get_journal_entry(
    entry_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    try:
        return JournalService(db).get_journal_entry(ctx, entry_id)
    except LedgerError as e:
        raise http_error(e)


@router.put("/{entry_id}", response_model=JournalEntryResponse)
def update_journal_entry(
    entry_id: int,
    request: JournalEntryUpdate,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
):
    """Replace a DRAFT or REJECTED entry's header and lines."""
    service = JournalService(db)
    try:
        entry = service.update_journal_entry(
            ctx, entry_id, request, expected_version=request.expected_version
        )
        commit(db)
        return entry
    except LedgerError as e:
        db.rollback()
        raise http_error(e)


@router.post("/{entry_id}/submit", response_model=ApprovalRequestResponse)
def submit_journal_entry(
    entry_id: int,
    request: SubmitRequest,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    service: PostingService = Depends(get_posting_service),
    channel: NotificationChannel = Depends(get_notification_channel),
):
    """
    Send the entry for approval.

    The returned request may already be APPROVED when no
    approval step applies, in which case the entry has moved
    on to APPROVED (and POSTED when auto-post is on).
    """
    try:
        approval = service.submit(
            ctx, entry_id,
            notes=request.notes,
            expected_version=request.expected_version,
            context=request.context,
        )
        commit(db, service.outbox, channel)
        return approval
    except LedgerError as e:
        db.rollback()
        service.outbox.discard()
        raise http_error(e)


@router.post("/{entry_id}/post", response_model=JournalEntryResponse)
def post_journal_entry(
    entry_id: int,
    request: PostRequest,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    service: PostingService = Depends(get_posting_service),
):
    try:
        entry = service.post(ctx, entry_id, expected_version=request.expected_version)
        commit(db)
        return entry
    except LedgerError as e:
        db.rollback()
        raise http_error(e)


@router.post(
    "/{entry_id}/reverse",
    response_model=JournalEntryResponse,
    status_code=201,
)
def reverse_journal_entry(
    entry_id: int,
    request: ReverseRequest,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    service: PostingService = Depends(get_posting_service),
):
    """Reverse a POSTED entry. Returns the new REVERSAL entry."""
    try:
        reversal = service.reverse(
            ctx, entry_id,
            reversal_date=request.reversal_date,
            reason=request.reason,
            expected_version=request.expected_version,
        )
        commit(db)
        return reversal
    except LedgerError as e:
        db.rollback()
        raise http_error(e)


@router.post("/{entry_id}/void", response_model=JournalEntryResponse)
def void_journal_entry(
    entry_id: int,
    request: VoidRequest,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    service: PostingService = Depends(get_posting_service),
):
    try:
        entry = service.void(
            ctx, entry_id, reason=request.reason,
            expected_version=request.expected_version,
        )
        commit(db)
        return entry
    except LedgerError as e:
        db.rollback()
        raise http_error(e)
