"""
Shared API dependencies: tenant context, error translation and
the commit-then-notify step every mutating endpoint ends with.
"""

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from general_ledger.exceptions import (
    ConflictError,
    ImmutabilityError,
    LedgerError,
    NotFoundError,
    PermissionDeniedError,
    StateError,
    ValidationError,
)
from general_ledger.models.base import get_db
from general_ledger.services.approval_engine import ApprovalEngine
from general_ledger.services.context import RequestContext
from general_ledger.services.directory import (
    IdentityResolver,
    NotificationChannel,
    NotificationOutbox,
    get_identity_resolver,
    get_notification_channel,
)
from general_ledger.services.posting_service import PostingService

_STATUS_CODES = {
    ValidationError: 422,
    ConflictError: 409,
    NotFoundError: 404,
    PermissionDeniedError: 403,
    StateError: 409,
    ImmutabilityError: 409,
}


def get_request_context(
    x_tenant_id: str = Header(alias="X-Tenant-Id", min_length=1),
    x_sub_scope_id: str | None = Header(default=None, alias="X-Sub-Scope-Id"),
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
) -> RequestContext:
    if x_actor_id:
        return RequestContext(x_tenant_id, x_sub_scope_id, x_actor_id)
    return RequestContext(x_tenant_id, x_sub_scope_id)


def require_actor(
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
    ctx: RequestContext = Depends(get_request_context),
) -> RequestContext:
    """Mutations must say who is acting."""
    if not x_actor_id:
        raise HTTPException(
            status_code=400,
            detail={
                "code": "MISSING_ACTOR",
                "message": "X-Actor-Id header is required",
                "details": {},
            },
        )
    return ctx


def http_error(error: LedgerError) -> HTTPException:
    status_code = 400
    for error_type, code in _STATUS_CODES.items():
        if isinstance(error, error_type):
            status_code = code
            break
    return HTTPException(status_code=status_code, detail=error.to_dict())


def commit(
    db: Session,
    outbox: NotificationOutbox | None = None,
    channel: NotificationChannel | None = None,
) -> None:
    """Commit the unit of work, then deliver queued notifications."""
    db.commit()
    if outbox is not None:
        outbox.flush(channel or get_notification_channel())


def get_posting_service(
    db: Session = Depends(get_db),
    identity: IdentityResolver = Depends(get_identity_resolver),
) -> PostingService:
    """Posting service for one request, sharing the request's session."""
    return PostingService(db, engine=ApprovalEngine(db, identity=identity))
