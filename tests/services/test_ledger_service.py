"""
Tests for the LedgerService.

Tests cover:
- Account creation, uniqueness and tenant isolation
- Period creation, closing and the posting-open check
- Configuration defaults and sub-scope overrides
"""

from datetime import date

import pytest

from general_ledger.exceptions import ConflictError, NotFoundError, StateError
from general_ledger.models.enums import AccountType, AuditAction, PeriodStatus
from general_ledger.schemas.ledger import (
    GLConfigurationUpdate,
    LedgerAccountCreate,
    PeriodCreate,
)
from general_ledger.services.audit_service import AuditService
from general_ledger.services.context import RequestContext
from general_ledger.services.ledger_service import LedgerService


# --- Helper to reduce repetition ---

def make_account(service, ctx, code, name, account_type, currency=None):
    """Create a ledger account and return it."""
    return service.create_account(ctx, LedgerAccountCreate(
        code=code,
        name=name,
        account_type=account_type,
        currency=currency,
    ))


def actions_for(db_session, ctx, entity_type, entity_id):
    trail = AuditService(db_session).get_entity_trail(ctx, entity_type, entity_id)
    return [row.action for row in trail]


# --- Account Tests ---

class TestAccounts:

    def test_create_account_succeeds(self, db_session, ctx):
        service = LedgerService(db_session)
        account = make_account(
            service, ctx, "1000", "Cash", AccountType.ASSET, currency="eur"
        )
        db_session.commit()

        assert account.id is not None
        assert account.tenant_id == "acme"
        assert account.currency == "EUR"
        assert account.is_active is True
        assert actions_for(db_session, ctx, "LedgerAccount", account.id) == [
            AuditAction.CREATE,
        ]

    def test_duplicate_code_rejected(self, db_session, ctx):
        service = LedgerService(db_session)
        make_account(service, ctx, "1000", "Cash", AccountType.ASSET)
        db_session.commit()

        with pytest.raises(ConflictError, match="already exists"):
            make_account(service, ctx, "1000", "Cash Again", AccountType.ASSET)

    def test_same_code_in_another_tenant_allowed(self, db_session, ctx):
        service = LedgerService(db_session)
        make_account(service, ctx, "1000", "Cash", AccountType.ASSET)
        other = make_account(
            service, RequestContext("globex", actor_id="zoe"),
            "1000", "Cash", AccountType.ASSET,
        )
        assert other.tenant_id == "globex"

    def test_other_tenant_cannot_read(self, db_session, ledger):
        with pytest.raises(NotFoundError):
            ledger.service.get_account(
                RequestContext("globex"), ledger.accounts.cash.id
            )

    def test_new_account_has_no_balances(self, db_session, ctx, ledger):
        assert ledger.service.get_account_balances(ctx, ledger.accounts.cash.id) == []


# --- Period Tests ---

class TestPeriods:

    def test_duplicate_period_rejected(self, db_session, ctx, ledger):
        with pytest.raises(ConflictError):
            ledger.service.create_period(ctx, PeriodCreate(
                name="January again", fiscal_year=2026, fiscal_period=1,
                start_date=date(2026, 1, 1), end_date=date(2026, 1, 31),
            ))

    def test_close_period(self, db_session, ctx, ledger):
        period = ledger.service.close_period(ctx, ledger.february.id)

        assert period.status == PeriodStatus.CLOSED
        assert period.closed_by == "alice"
        assert period.closed_at is not None
        assert actions_for(db_session, ctx, "FinancialPeriod", period.id) == [
            AuditAction.CREATE, AuditAction.CLOSE,
        ]

    def test_closing_twice_is_a_state_error(self, db_session, ctx, ledger):
        with pytest.raises(StateError) as exc:
            ledger.service.close_period(ctx, ledger.closed.id)
        assert exc.value.details["current_status"] == "CLOSED"

    def test_open_for_posting(self, db_session, ctx, ledger):
        periods = ledger.service.periods

        assert periods.is_open_for_posting("acme", ledger.january.id, date(2026, 1, 15))
        assert not periods.is_open_for_posting("acme", ledger.january.id, date(2026, 2, 1))
        assert not periods.is_open_for_posting("acme", ledger.closed.id, date(2025, 12, 15))
        assert not periods.is_open_for_posting("globex", ledger.january.id, date(2026, 1, 15))

    def test_find_open_period_skips_closed(self, db_session, ctx, ledger):
        periods = ledger.service.periods

        assert periods.find_open_period("acme", date(2026, 2, 14)).id == ledger.february.id
        assert periods.find_open_period("acme", date(2025, 12, 31)) is None
        assert periods.find_period("acme", date(2025, 12, 31)).id == ledger.closed.id


# --- Configuration Tests ---

class TestConfiguration:

    def test_defaults_without_a_row(self, db_session):
        service = LedgerService(db_session)
        config = service.effective_configuration(RequestContext("globex"))

        assert config.base_currency == "USD"
        assert config.auto_post_on_approval is True
        assert config.fx_realized_gain_account_id is None

    def test_sub_scope_row_overrides_tenant_row(self, db_session, ctx, ledger):
        europe = RequestContext("acme", sub_scope_id="eu", actor_id="alice")
        ledger.service.update_configuration(
            europe, GLConfigurationUpdate(base_currency="eur")
        )

        assert ledger.service.effective_configuration(europe).base_currency == "EUR"
        assert ledger.service.effective_configuration(ctx).base_currency == "USD"

    def test_update_records_previous_values(self, db_session, ctx, ledger):
        row = ledger.service.update_configuration(
            ctx, GLConfigurationUpdate(auto_post_on_approval=False)
        )

        trail = AuditService(db_session).get_entity_trail(ctx, "GLConfiguration", row.id)
        assert [r.action for r in trail] == [AuditAction.CONFIGURE, AuditAction.CONFIGURE]
        assert trail[-1].previous_values["auto_post_on_approval"] is True
        assert trail[-1].new_values["auto_post_on_approval"] is False
        assert row.fx_unrealized_gain_account_id == ledger.accounts.fx_unrealized_gain.id

    def test_unknown_account_rejected(self, db_session, ctx, ledger):
        with pytest.raises(NotFoundError):
            ledger.service.update_configuration(
                ctx, GLConfigurationUpdate(fx_realized_loss_account_id=9999)
            )
