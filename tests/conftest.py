"""
Shared test fixtures.

Sets up an isolated SQLite database so tests never touch the
real one. Tables are created before each test and dropped
after it, so no test data persists between tests.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from general_ledger.main import app
from general_ledger.models import Base
from general_ledger.models.base import get_db
from general_ledger.models.enums import AccountType, ApprovalRuleType, PeriodStatus
from general_ledger.schemas.approval import ApprovalStepCreate, ApprovalWorkflowCreate
from general_ledger.schemas.journal_entry import JournalEntryCreate, JournalLineCreate
from general_ledger.schemas.ledger import (
    GLConfigurationUpdate,
    LedgerAccountCreate,
    PeriodCreate,
)
from general_ledger.services.approval_engine import ApprovalEngine
from general_ledger.services.audit_service import AuditService
from general_ledger.services.context import RequestContext
from general_ledger.services.directory import (
    NotificationOutbox,
    StaticIdentityResolver,
    get_identity_resolver,
    get_notification_channel,
)
from general_ledger.services.fx_revaluation_service import FxRevaluationService
from general_ledger.services.ledger_service import LedgerService
from general_ledger.services.posting_service import (
    JOURNAL_ENTRY_DOCUMENT,
    PostingService,
)


TEST_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)

TestSessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)

TENANT = "acme"


@pytest.fixture(autouse=True)
def setup_database():
    """
    Create all tables before each test, drop them after.

    autouse=True means every test gets this automatically.
    """
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    """Provide a database session for direct service testing."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


class RecordingChannel:
    """Notification channel that keeps what it was sent."""

    def __init__(self):
        self.sent: list[tuple[str, dict]] = []

    def send(self, event: str, payload: dict) -> None:
        self.sent.append((event, payload))


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def client(db_session, channel, identity):
    """
    Provide a test client with the test database.

    get_db is overridden so the app uses the test session, and
    notifications go to the recording channel. Identity facts come
    from the same static directory the service tests use.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_channel] = lambda: channel
    app.dependency_overrides[get_identity_resolver] = lambda: identity
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def ctx():
    """The accountant preparing entries."""
    return RequestContext(tenant_id=TENANT, actor_id="alice")


@pytest.fixture
def identity():
    return StaticIdentityResolver(
        roles={
            "carol": ["controller"],
            "dave": ["controller", "cfo"],
            "erin": ["cfo"],
        },
        managers={"alice": "bob"},
    )


@pytest.fixture
def outbox():
    return NotificationOutbox()


@pytest.fixture
def ledger(db_session, ctx):
    """
    A small chart of accounts, January and February 2026
    periods, and FX gain/loss accounts configured.
    """
    service = LedgerService(db_session)

    def account(code, name, account_type, currency=None):
        return service.create_account(ctx, LedgerAccountCreate(
            code=code, name=name, account_type=account_type, currency=currency,
        ))

    accounts = SimpleNamespace(
        cash=account("1000", "Cash", AccountType.ASSET),
        receivables=account("1200", "Receivables EUR", AccountType.ASSET, "EUR"),
        payables=account("2100", "Payables EUR", AccountType.LIABILITY, "EUR"),
        revenue=account("4000", "Revenue", AccountType.REVENUE),
        expense=account("5000", "Expenses", AccountType.EXPENSE),
        fx_unrealized_gain=account("7100", "Unrealized FX gain", AccountType.REVENUE),
        fx_unrealized_loss=account("7200", "Unrealized FX loss", AccountType.EXPENSE),
        fx_realized_gain=account("7300", "Realized FX gain", AccountType.REVENUE),
        fx_realized_loss=account("7400", "Realized FX loss", AccountType.EXPENSE),
    )
    january = service.create_period(ctx, PeriodCreate(
        name="Jan 2026", fiscal_year=2026, fiscal_period=1,
        start_date=date(2026, 1, 1), end_date=date(2026, 1, 31),
    ))
    february = service.create_period(ctx, PeriodCreate(
        name="Feb 2026", fiscal_year=2026, fiscal_period=2,
        start_date=date(2026, 2, 1), end_date=date(2026, 2, 28),
    ))
    december = service.create_period(ctx, PeriodCreate(
        name="Dec 2025", fiscal_year=2025, fiscal_period=12,
        start_date=date(2025, 12, 1), end_date=date(2025, 12, 31),
        status=PeriodStatus.CLOSED,
    ))
    service.update_configuration(ctx, GLConfigurationUpdate(
        base_currency="USD",
        auto_post_on_approval=True,
        fx_unrealized_gain_account_id=accounts.fx_unrealized_gain.id,
        fx_unrealized_loss_account_id=accounts.fx_unrealized_loss.id,
        fx_realized_gain_account_id=accounts.fx_realized_gain.id,
        fx_realized_loss_account_id=accounts.fx_realized_loss.id,
    ))
    db_session.commit()
    return SimpleNamespace(
        accounts=accounts,
        january=january,
        february=february,
        closed=december,
        service=service,
    )


class FrozenClock:
    """A clock the tests move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 1, 15, 9, 0))


@pytest.fixture
def audit(db_session):
    return AuditService(db_session)


@pytest.fixture
def approvals(db_session, audit, identity, outbox, clock):
    """The approval engine, wired to the static identity and frozen clock."""
    return ApprovalEngine(
        db_session, audit=audit, identity=identity, outbox=outbox, clock=clock,
    )


@pytest.fixture
def posting(db_session, audit, approvals, ledger):
    return PostingService(db_session, engine=approvals, audit=audit)


@pytest.fixture
def journal(posting):
    return posting.journal


@pytest.fixture
def fx(db_session, audit, posting):
    return FxRevaluationService(db_session, posting=posting, audit=audit)


@pytest.fixture
def make_entry(journal, ctx, ledger):
    """
    Factory for a balanced two-line DRAFT entry: debit cash,
    credit revenue.
    """
    def _make(
        amount="500.00",
        entry_date=date(2026, 1, 15),
        description="Consulting income",
        as_ctx=None,
        **kwargs,
    ):
        a = ledger.accounts
        draft = JournalEntryCreate(
            entry_date=entry_date,
            description=description,
            lines=[
                JournalLineCreate(account_id=a.cash.id, debit_amount=Decimal(amount)),
                JournalLineCreate(account_id=a.revenue.id, credit_amount=Decimal(amount)),
            ],
            **kwargs,
        )
        return journal.create_journal_entry(as_ctx or ctx, draft)

    return _make


@pytest.fixture
def make_workflow(approvals, ctx):
    """Factory for a journal-entry workflow from plain step dicts."""
    def _make(steps, rule_type=ApprovalRuleType.SEQUENTIAL, code="JE-APPROVAL", **kwargs):
        return approvals.create_workflow(ctx, ApprovalWorkflowCreate(
            code=code,
            name=kwargs.pop("name", "Journal entry approval"),
            document_type=JOURNAL_ENTRY_DOCUMENT,
            rule_type=rule_type,
            steps=[ApprovalStepCreate(**step) for step in steps],
            **kwargs,
        ))

    return _make
