"""
Tests for the JournalService.

Tests cover:
- Creating DRAFT entries with computed totals and numbering
- Rejected drafts leave nothing behind
- Editing drafts, with optimistic locking
- Tenant isolation and listing
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from general_ledger.exceptions import (
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from general_ledger.models.audit_trail import AuditTrail
from general_ledger.models.enums import AuditAction, JournalEntryStatus
from general_ledger.models.journal_entry import JournalEntry
from general_ledger.schemas.journal_entry import JournalEntryCreate, JournalLineCreate
from general_ledger.services.context import RequestContext


def two_lines(ledger, debit, credit):
    a = ledger.accounts
    return [
        JournalLineCreate(account_id=a.cash.id, debit_amount=Decimal(debit)),
        JournalLineCreate(account_id=a.revenue.id, credit_amount=Decimal(credit)),
    ]


class TestCreateJournalEntry:

    def test_creates_draft_with_totals(self, make_entry):
        entry = make_entry("1250.00")

        assert entry.status == JournalEntryStatus.DRAFT
        assert entry.entry_number == "JE-000001"
        assert entry.total_debit == Decimal("1250.00")
        assert entry.total_credit == Decimal("1250.00")
        assert entry.total_debit_base == Decimal("1250.00")
        assert entry.currency_code == "USD"
        assert [line.line_number for line in entry.lines] == [1, 2]

    def test_numbers_are_sequential_per_tenant(self, make_entry, ledger):
        first = make_entry()
        second = make_entry()
        assert (first.entry_number, second.entry_number) == ("JE-000001", "JE-000002")

    def test_period_resolved_from_entry_date(self, make_entry, ledger):
        entry = make_entry(entry_date=date(2026, 2, 14))
        assert entry.period_id == ledger.february.id

    def test_creation_is_audited(self, make_entry, db_session):
        entry = make_entry()
        rows = db_session.execute(
            select(AuditTrail).where(
                AuditTrail.entity_type == "JournalEntry",
                AuditTrail.entity_id == str(entry.id),
            )
        ).scalars().all()
        assert [r.action for r in rows] == [AuditAction.CREATE]
        assert rows[0].actor_id == "alice"
        assert rows[0].new_values["entry_number"] == "JE-000001"

    def test_unbalanced_entry_persists_nothing(self, journal, ctx, ledger, db_session):
        draft = JournalEntryCreate(
            entry_date=date(2026, 1, 15),
            description="Office supplies",
            lines=two_lines(ledger, "700", "650"),
        )
        with pytest.raises(ValidationError) as exc:
            journal.create_journal_entry(ctx, draft)

        assert exc.value.reason == "UNBALANCED"
        assert exc.value.message == "Total debits (700.00) must equal total credits (650.00)"
        count = db_session.execute(
            select(func.count()).select_from(JournalEntry)
        ).scalar_one()
        assert count == 0

    def test_closed_period_refused(self, make_entry):
        with pytest.raises(ValidationError) as exc:
            make_entry(entry_date=date(2025, 12, 31))
        assert exc.value.reason == "CLOSED_PERIOD"

    def test_number_taken_concurrently_is_a_conflict(self, journal, make_entry, monkeypatch):
        existing = make_entry()
        # Another request committed the same number first
        monkeypatch.setattr(
            journal, "_next_entry_number", lambda tenant_id: existing.entry_number
        )

        with pytest.raises(ConflictError, match="retry") as exc:
            make_entry()
        assert exc.value.details["entry_number"] == "JE-000001"

    def test_sub_scope_recorded(self, make_entry):
        entry = make_entry(as_ctx=RequestContext("acme", "emea", "alice"))
        assert entry.sub_scope_id == "emea"


class TestUpdateJournalEntry:

    def test_replaces_lines_and_bumps_version(self, journal, make_entry, ctx, ledger):
        entry = make_entry("100.00")
        version = entry.version

        updated = journal.update_journal_entry(
            ctx, entry.id,
            JournalEntryCreate(
                entry_date=date(2026, 1, 20),
                description="Corrected amount",
                lines=two_lines(ledger, "120.00", "120.00"),
            ),
            expected_version=version,
        )

        assert updated.total_debit == Decimal("120.00")
        assert updated.description == "Corrected amount"
        assert len(updated.lines) == 2
        assert updated.version > version

    def test_stale_version_conflicts(self, journal, make_entry, ctx, ledger):
        entry = make_entry()
        with pytest.raises(ConflictError):
            journal.update_journal_entry(
                ctx, entry.id,
                JournalEntryCreate(
                    entry_date=date(2026, 1, 20),
                    description="Late edit",
                    lines=two_lines(ledger, "10", "10"),
                ),
                expected_version=entry.version + 5,
            )

    def test_invalid_update_keeps_original(self, journal, make_entry, ctx, ledger):
        entry = make_entry("100.00")
        with pytest.raises(ValidationError):
            journal.update_journal_entry(
                ctx, entry.id,
                JournalEntryCreate(
                    entry_date=date(2026, 1, 20),
                    description="Broken",
                    lines=two_lines(ledger, "100", "90"),
                ),
            )
        assert entry.total_debit == Decimal("100.00")
        assert entry.description == "Consulting income"

    def test_posted_entry_cannot_be_edited(self, journal, posting, make_entry, ctx, ledger):
        entry = make_entry()
        posting.submit(ctx, entry.id)
        assert entry.status == JournalEntryStatus.POSTED

        with pytest.raises(StateError):
            journal.update_journal_entry(
                ctx, entry.id,
                JournalEntryCreate(
                    entry_date=date(2026, 1, 20),
                    description="Too late",
                    lines=two_lines(ledger, "10", "10"),
                ),
            )


class TestQueries:

    def test_other_tenant_cannot_read(self, journal, make_entry):
        entry = make_entry()
        with pytest.raises(NotFoundError):
            journal.get_journal_entry(RequestContext("globex", actor_id="zed"), entry.id)

    def test_list_filters_by_status(self, journal, posting, make_entry, ctx):
        draft = make_entry()
        posted = make_entry()
        posting.submit(ctx, posted.id)

        items, total = journal.list_journal_entries(ctx, status=JournalEntryStatus.DRAFT)

        assert total == 1
        assert [e.id for e in items] == [draft.id]

    def test_list_paginates(self, journal, make_entry, ctx):
        for _ in range(3):
            make_entry()
        items, total = journal.list_journal_entries(ctx, page=2, page_size=2)
        assert total == 3
        assert len(items) == 1
