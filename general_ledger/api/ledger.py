"""
Ledger setup endpoints: accounts, periods, rollups and
per-tenant configuration.

The API layer is thin. It handles HTTP concerns (status codes,
response formatting) and delegates all business logic to the
LedgerService.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from general_ledger.api.deps import (
    commit,
    get_request_context,
    http_error,
    require_actor,
)
from general_ledger.exceptions import LedgerError
from general_ledger.models.base import get_db
from general_ledger.schemas.ledger import (
    GLConfigurationResponse,
    GLConfigurationUpdate,
    LedgerAccountCreate,
    LedgerAccountResponse,
    PeriodBalanceResponse,
    PeriodCreate,
    PeriodResponse,
)
from general_ledger.services.context import RequestContext
from general_ledger.services.ledger_service import LedgerService

router = APIRouter(prefix="/ledger", tags=["Ledger"])


@router.post("/accounts", response_model=LedgerAccountResponse, status_code=201)
def create_ledger_account(
    request: LedgerAccountCreate,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
):
    """
    Create a new ledger account.

    Every account must exist before a journal line can use it.
    """
    service = LedgerService(db)
    try:
        account = service.create_account(ctx, request)
        commit(db)
        return account
    except LedgerError as e:
        db.rollback()
        raise http_error(e)


@router.get("/accounts/{account_id}", response_model=LedgerAccountResponse)
def get_ledger_account(
    account_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    try:
        return LedgerService(db).get_account(ctx, account_id)
    except LedgerError as e:
        raise http_error(e)


@router.get(
    "/accounts/{account_id}/balances",
    response_model=list[PeriodBalanceResponse],
)
def get_account_balances(
    account_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """Posted debit and credit totals for the account, one row per period."""
    try:
        return LedgerService(db).get_account_balances(ctx, account_id)
    except LedgerError as e:
        raise http_error(e)


@router.post("/periods", response_model=PeriodResponse, status_code=201)
def create_period(
    request: PeriodCreate,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
):
    service = LedgerService(db)
    try:
        period = service.create_period(ctx, request)
        commit(db)
        return period
    except LedgerError as e:
        db.rollback()
        raise http_error(e)


@router.post("/periods/{period_id}/close", response_model=PeriodResponse)
def close_period(
    period_id: int,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
):
    """Close a period. Entries dated in it can no longer post."""
    service = LedgerService(db)
    try:
        period = service.close_period(ctx, period_id)
        commit(db)
        return period
    except LedgerError as e:
        db.rollback()
        raise http_error(e)


@router.put("/configuration", response_model=GLConfigurationResponse)
def update_configuration(
    request: GLConfigurationUpdate,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
):
    service = LedgerService(db)
    try:
        row = service.update_configuration(ctx, request)
        commit(db)
        return row
    except LedgerError as e:
        db.rollback()
        raise http_error(e)
