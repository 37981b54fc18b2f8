"""
Approval workflow endpoints.

Decisions on journal entry requests go through the
PostingService so the entry follows its request; the
ApprovalEngine handles configuration and queries.
Notifications are delivered only after the commit.
"""

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
from general_ledger.models.enums import ApprovalStatus
from general_ledger.schemas.approval import (
    ApprovalHistoryResponse,
    ApprovalRequestPage,
    ApprovalRequestResponse,
    ApprovalSummaryResponse,
    ApprovalWorkflowCreate,
    ApprovalWorkflowResponse,
    ApproveRequest,
    CommentRequest,
    DelegateRequest,
    RecallRequest,
    RejectRequest,
    SweepRequest,
    SweepResponse,
)
from general_ledger.services.approval_engine import ApprovalEngine
from general_ledger.services.context import RequestContext
from general_ledger.services.directory import (
    NotificationChannel,
    get_notification_channel,
)
from general_ledger.services.posting_service import PostingService

router = APIRouter(prefix="/approvals", tags=["Approvals"])


# --- Workflows ---

@router.post("/workflows", response_model=ApprovalWorkflowResponse, status_code=201)
def create_workflow(
    request: ApprovalWorkflowCreate,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
):
    engine = ApprovalEngine(db)
    try:
        workflow = engine.create_workflow(ctx, request)
        commit(db)
        return workflow
    except LedgerError as e:
        db.rollback()
        raise http_error(e)


@router.get("/workflows/{workflow_id}", response_model=ApprovalWorkflowResponse)
def get_workflow(
    workflow_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    try:
        return ApprovalEngine(db).get_workflow(ctx, workflow_id)
    except LedgerError as e:
        raise http_error(e)


# --- Requests ---

@router.get("/requests", response_model=ApprovalRequestPage)
def list_requests(
    status: ApprovalStatus | None = None,
    document_type: str | None = None,
    pending_for: str | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """
    List requests, newest first.

    pending_for=<user> returns the requests waiting on that
    user's decision at their current step.
    """
    items, total = ApprovalEngine(db).list_requests(
        ctx, status=status, document_type=document_type,
        pending_for=pending_for, page=page, page_size=page_size,
    )
    return ApprovalRequestPage(
        items=[ApprovalRequestResponse.model_validate(r) for r in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/requests/{request_id}", response_model=ApprovalRequestResponse)
def get_request(
    request_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    try:
        return ApprovalEngine(db).get_request(ctx, request_id)
    except LedgerError as e:
        raise http_error(e)


@router.get(
    "/requests/{request_id}/history",
    response_model=list[ApprovalHistoryResponse],
)
def get_request_history(
    request_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    try:
        return ApprovalEngine(db).get_history(ctx, request_id)
    except LedgerError as e:
        raise http_error(e)


@router.post("/requests/{request_id}/approve", response_model=ApprovalRequestResponse)
def approve_request(
    request_id: int,
    request: ApproveRequest,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    service: PostingService = Depends(get_posting_service),
    channel: NotificationChannel = Depends(get_notification_channel),
):
    try:
        approval = service.approve(
            ctx, request_id,
            notes=request.notes,
            step_order=request.step_order,
            expected_version=request.expected_version,
        )
        commit(db, service.outbox, channel)
        return approval
    except LedgerError as e:
        db.rollback()
        service.outbox.discard()
        raise http_error(e)


@router.post("/requests/{request_id}/reject", response_model=ApprovalRequestResponse)
def reject_request(
    request_id: int,
    request: RejectRequest,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    service: PostingService = Depends(get_posting_service),
    channel: NotificationChannel = Depends(get_notification_channel),
):
    """Reject; a journal entry returns to an editable REJECTED state."""
    try:
        approval = service.reject(
            ctx, request_id, reason=request.reason,
            expected_version=request.expected_version,
        )
        commit(db, service.outbox, channel)
        return approval
    except LedgerError as e:
        db.rollback()
        service.outbox.discard()
        raise http_error(e)


@router.post("/requests/{request_id}/delegate", response_model=ApprovalRequestResponse)
def delegate_request(
    request_id: int,
    request: DelegateRequest,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    service: PostingService = Depends(get_posting_service),
    channel: NotificationChannel = Depends(get_notification_channel),
):
    try:
        approval = service.delegate(
            ctx, request_id,
            delegate_to=request.delegate_to,
            reason=request.reason,
            expected_version=request.expected_version,
        )
        commit(db, service.outbox, channel)
        return approval
    except LedgerError as e:
        db.rollback()
        service.outbox.discard()
        raise http_error(e)


@router.post("/requests/{request_id}/recall", response_model=ApprovalRequestResponse)
def recall_request(
    request_id: int,
    request: RecallRequest,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    service: PostingService = Depends(get_posting_service),
):
    """Submitter withdraws the request; the entry goes back to DRAFT."""
    try:
        approval = service.recall(
            ctx, request_id, reason=request.reason,
            expected_version=request.expected_version,
        )
        commit(db)
        return approval
    except LedgerError as e:
        db.rollback()
        raise http_error(e)


@router.post("/requests/{request_id}/comment", response_model=ApprovalRequestResponse)
def comment_on_request(
    request_id: int,
    request: CommentRequest,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    service: PostingService = Depends(get_posting_service),
):
    try:
        approval = service.comment(ctx, request_id, request.comments)
        commit(db)
        return approval
    except LedgerError as e:
        db.rollback()
        raise http_error(e)


# --- Scheduling and dashboards ---

@router.post("/sweep", response_model=SweepResponse)
def sweep_requests(
    request: SweepRequest,
    db: Session = Depends(get_db),
    service: PostingService = Depends(get_posting_service),
    channel: NotificationChannel = Depends(get_notification_channel),
):
    """
    Expire and escalate overdue requests across all tenants.

    Meant for a scheduler; running it twice with the same
    clock changes nothing the second time.
    """
    try:
        result = service.sweep_approvals(request.now)
        commit(db, service.outbox, channel)
    except LedgerError as e:
        db.rollback()
        service.outbox.discard()
        raise http_error(e)
    return SweepResponse(
        expired=[r.id for r in result.expired],
        escalated=[r.id for r in result.escalated],
        auto_approved=[r.id for r in result.auto_approved],
        auto_rejected=[r.id for r in result.auto_rejected],
        notified=[r.id for r in result.notified],
    )


@router.get("/summary", response_model=ApprovalSummaryResponse)
def approval_summary(
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    return ApprovalSummaryResponse(**ApprovalEngine(db).summary(ctx))
