"""
Tests for the JournalValidator.

Tests cover:
- Structural rules (line counts, sides, duplicates, rates)
- Referential rules (accounts, periods)
- Balance in document and base currency
- Imported base amounts
- Semantic rules (intercompany, subledger references)
- Stage ordering: only the first failing stage is reported
"""

from datetime import date
from decimal import Decimal

import pytest

from general_ledger.exceptions import ValidationError
from general_ledger.models.enums import SubledgerType
from general_ledger.money import RoundingPolicy
from general_ledger.schemas.journal_entry import JournalEntryCreate, JournalLineCreate
from general_ledger.services.directory import (
    AccountDirectory,
    PeriodService,
    SubledgerDirectory,
)
from general_ledger.services.journal_validator import JournalValidator

TENANT = "acme"


@pytest.fixture
def validator(db_session, ledger):
    return JournalValidator(
        accounts=AccountDirectory(db_session),
        periods=PeriodService(db_session),
        subledgers=SubledgerDirectory(db_session),
        policy=RoundingPolicy(),
        max_lines=5,
    )


def line(account, debit="0", credit="0", **kwargs):
    return JournalLineCreate(
        account_id=account.id,
        debit_amount=Decimal(debit),
        credit_amount=Decimal(credit),
        **kwargs,
    )


def draft(lines, **kwargs):
    kwargs.setdefault("entry_date", date(2026, 1, 15))
    kwargs.setdefault("description", "Test entry")
    return JournalEntryCreate(lines=lines, **kwargs)


def reasons_of(validator, entry, base="USD"):
    with pytest.raises(ValidationError) as exc:
        validator.validate(TENANT, entry, base)
    return exc.value.reasons


class TestStructure:

    def test_single_line_rejected(self, validator, ledger):
        a = ledger.accounts
        assert reasons_of(validator, draft([line(a.cash, debit="10")])) == ["TOO_FEW_LINES"]

    def test_too_many_lines_rejected(self, validator, ledger):
        a = ledger.accounts
        lines = [line(a.cash, debit="1") for _ in range(5)] + [line(a.revenue, credit="5")]
        assert "TOO_MANY_LINES" in reasons_of(validator, draft(lines))

    def test_every_bad_line_reported(self, validator, ledger):
        a = ledger.accounts
        entry = draft([
            line(a.cash, debit="10", credit="10"),
            line(a.revenue),
            line(a.expense, debit="-5"),
        ])
        assert reasons_of(validator, entry) == [
            "BOTH_SIDES_NONZERO", "NO_AMOUNT", "NEGATIVE_AMOUNT",
        ]

    def test_duplicate_line_numbers(self, validator, ledger):
        a = ledger.accounts
        entry = draft([
            line(a.cash, debit="10", line_number=1),
            line(a.revenue, credit="10", line_number=1),
        ])
        assert reasons_of(validator, entry) == ["DUPLICATE_LINE_NUMBER"]

    def test_invalid_currency(self, validator, ledger):
        a = ledger.accounts
        entry = draft(
            [line(a.cash, debit="10"), line(a.revenue, credit="10")],
            currency_code="EU",
        )
        assert reasons_of(validator, entry) == ["INVALID_CURRENCY"]

    def test_base_currency_needs_rate_of_one(self, validator, ledger):
        a = ledger.accounts
        entry = draft(
            [line(a.cash, debit="10"), line(a.revenue, credit="10")],
            currency_code="USD",
            exchange_rate=Decimal("1.2"),
        )
        assert reasons_of(validator, entry) == ["INVALID_EXCHANGE_RATE"]

    def test_structure_fails_before_references(self, validator, ledger):
        entry = draft([
            JournalLineCreate(account_code="NOPE", debit_amount=Decimal("10")),
        ])
        assert reasons_of(validator, entry) == ["TOO_FEW_LINES"]


class TestReferences:

    def test_unknown_account_by_code(self, validator, ledger):
        a = ledger.accounts
        entry = draft([
            JournalLineCreate(account_code="9999", debit_amount=Decimal("10")),
            line(a.revenue, credit="10"),
        ])
        with pytest.raises(ValidationError) as exc:
            validator.validate(TENANT, entry, "USD")
        issue = exc.value.issues[0]
        assert issue.reason == "UNKNOWN_ACCOUNT"
        assert issue.line_number == 1

    def test_account_from_other_tenant_is_unknown(self, validator, ledger):
        a = ledger.accounts
        entry = draft([line(a.cash, debit="10"), line(a.revenue, credit="10")])
        with pytest.raises(ValidationError) as exc:
            validator.validate("other-tenant", entry, "USD")
        assert set(exc.value.reasons) == {"UNKNOWN_ACCOUNT", "UNKNOWN_PERIOD"}

    def test_inactive_account(self, validator, ledger, db_session):
        a = ledger.accounts
        a.expense.is_active = False
        db_session.flush()
        entry = draft([line(a.expense, debit="10"), line(a.revenue, credit="10")])
        assert reasons_of(validator, entry) == ["INACTIVE_ACCOUNT"]

    def test_closed_period(self, validator, ledger):
        a = ledger.accounts
        entry = draft(
            [line(a.cash, debit="10"), line(a.revenue, credit="10")],
            entry_date=date(2025, 12, 20),
        )
        assert reasons_of(validator, entry) == ["CLOSED_PERIOD"]

    def test_no_period_for_date(self, validator, ledger):
        a = ledger.accounts
        entry = draft(
            [line(a.cash, debit="10"), line(a.revenue, credit="10")],
            entry_date=date(2030, 1, 1),
        )
        assert reasons_of(validator, entry) == ["UNKNOWN_PERIOD"]

    def test_date_outside_explicit_period(self, validator, ledger):
        a = ledger.accounts
        entry = draft(
            [line(a.cash, debit="10"), line(a.revenue, credit="10")],
            period_id=ledger.january.id,
            entry_date=date(2026, 2, 3),
        )
        assert reasons_of(validator, entry) == ["CLOSED_PERIOD"]

    def test_period_resolved_from_date(self, validator, ledger):
        a = ledger.accounts
        entry = draft(
            [line(a.cash, debit="10"), line(a.revenue, credit="10")],
            entry_date=date(2026, 2, 10),
        )
        result = validator.validate(TENANT, entry, "USD")
        assert result.period.id == ledger.february.id


class TestBalance:

    def test_unbalanced_rejected_with_totals(self, validator, ledger):
        a = ledger.accounts
        entry = draft([line(a.cash, debit="700"), line(a.revenue, credit="650")])
        with pytest.raises(ValidationError) as exc:
            validator.validate(TENANT, entry, "USD")
        assert exc.value.reason == "UNBALANCED"
        assert "700.00" in exc.value.message
        assert "650.00" in exc.value.message

    def test_difference_below_tolerance_accepted(self, validator, ledger):
        a = ledger.accounts
        entry = draft([line(a.cash, debit="100.004"), line(a.revenue, credit="100")])
        result = validator.validate(TENANT, entry, "USD")
        assert result.total_debit == Decimal("100.004")

    def test_foreign_currency_base_amounts_computed(self, validator, ledger):
        a = ledger.accounts
        entry = draft(
            [line(a.receivables, debit="1000"), line(a.revenue, credit="1000")],
            currency_code="EUR",
            exchange_rate=Decimal("1.05"),
        )
        result = validator.validate(TENANT, entry, "USD")
        assert result.currency_code == "EUR"
        assert result.total_debit_base == Decimal("1050.00")
        assert result.total_credit_base == Decimal("1050.00")

    def test_line_rates_can_unbalance_base(self, validator, ledger):
        a = ledger.accounts
        entry = draft(
            [
                line(a.receivables, debit="1000", exchange_rate=Decimal("1.05")),
                line(a.revenue, credit="1000", exchange_rate=Decimal("1.10")),
            ],
            currency_code="EUR",
            exchange_rate=Decimal("1.05"),
        )
        assert reasons_of(validator, entry) == ["UNBALANCED_BASE"]

    def test_imported_base_amounts_kept(self, validator, ledger):
        a = ledger.accounts
        entry = draft(
            [
                line(a.receivables, debit="1000", debit_amount_base=Decimal("1049.99")),
                line(a.revenue, credit="1000", credit_amount_base=Decimal("1049.99")),
            ],
            currency_code="EUR",
            exchange_rate=Decimal("1.05"),
            imported=True,
        )
        result = validator.validate(TENANT, entry, "USD")
        assert result.total_debit_base == Decimal("1049.99")

    def test_base_amounts_ignored_unless_imported(self, validator, ledger):
        a = ledger.accounts
        entry = draft(
            [
                line(a.receivables, debit="1000", debit_amount_base=Decimal("1.00")),
                line(a.revenue, credit="1000", credit_amount_base=Decimal("1.00")),
            ],
            currency_code="EUR",
            exchange_rate=Decimal("1.05"),
        )
        result = validator.validate(TENANT, entry, "USD")
        assert result.total_debit_base == Decimal("1050.00")


class TestSemantics:

    def test_intercompany_needs_counterparty(self, validator, ledger):
        a = ledger.accounts
        entry = draft([
            line(a.cash, debit="10", is_intercompany=True),
            line(a.revenue, credit="10"),
        ])
        assert reasons_of(validator, entry) == ["MISSING_INTERCOMPANY_COUNTERPARTY"]

    def test_receivable_reference_must_exist(self, validator, ledger):
        a = ledger.accounts
        entry = draft([
            line(a.cash, debit="10",
                 subledger_type=SubledgerType.ACCOUNTS_RECEIVABLE,
                 subledger_reference="INV-404"),
            line(a.revenue, credit="10"),
        ])
        assert reasons_of(validator, entry) == ["UNRESOLVED_SUBLEDGER_REFERENCE"]

    def test_other_subledgers_accept_any_reference(self, validator, ledger):
        a = ledger.accounts
        entry = draft([
            line(a.cash, debit="10",
                 subledger_type=SubledgerType.BANK, subledger_reference="STMT-7"),
            line(a.revenue, credit="10"),
        ])
        validator.validate(TENANT, entry, "USD")

    def test_validation_has_no_side_effects(self, validator, ledger, db_session):
        a = ledger.accounts
        entry = draft([line(a.cash, debit="10"), line(a.revenue, credit="10")])
        validator.validate(TENANT, entry, "USD")
        assert not db_session.new
        assert not db_session.dirty
