"""
Tests for the PostingService.

Tests cover:
- Submission with and without applicable approval steps
- Approve / reject / recall mirrored onto the entry
- Manual post when auto-post is off
- Reversal as a structural mirror, with rollups
- Void, optimistic locking and immutability of posted entries
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from general_ledger.exceptions import (
    ConflictError,
    ImmutabilityError,
    PermissionDeniedError,
    StateError,
    ValidationError,
)
from general_ledger.models.approval import ApprovalRequest
from general_ledger.models.audit_trail import AuditTrail
from general_ledger.models.enums import (
    ApprovalAction,
    ApprovalRuleType,
    ApprovalStatus,
    AuditAction,
    JournalEntryStatus,
    JournalEntryType,
    PeriodStatus,
    SubledgerType,
)
from general_ledger.models.financial_period import PeriodAccountBalance
from general_ledger.schemas.fx import OpenItemCreate
from general_ledger.schemas.journal_entry import JournalEntryCreate, JournalLineCreate
from general_ledger.schemas.ledger import GLConfigurationUpdate
from general_ledger.services.context import RequestContext


def entry_trail(db_session, entry):
    return [
        row.action for row in db_session.execute(
            select(AuditTrail)
            .where(
                AuditTrail.entity_type == "JournalEntry",
                AuditTrail.entity_id == str(entry.id),
            )
            .order_by(AuditTrail.id)
        ).scalars()
    ]


def balance_of(db_session, period, account):
    return db_session.execute(
        select(PeriodAccountBalance).where(
            PeriodAccountBalance.period_id == period.id,
            PeriodAccountBalance.account_id == account.id,
        )
    ).scalar_one_or_none()


def as_user(user_id):
    return RequestContext("acme", actor_id=user_id)


class TestSubmit:

    def test_small_entry_skips_approval_and_posts(
        self, posting, make_entry, make_workflow, ctx, db_session, approvals
    ):
        make_workflow(
            [{"step_order": 1, "name": "Controller", "approver_user_ids": ["carol"],
              "min_amount": Decimal("1000")}],
            rule_type=ApprovalRuleType.ANY,
        )
        entry = make_entry("500.00")

        request = posting.submit(ctx, entry.id)

        assert request.status == ApprovalStatus.APPROVED
        assert request.current_step_order == 0
        assert entry.status == JournalEntryStatus.POSTED
        history = approvals.get_history(ctx, request.id)
        assert [h.action for h in history] == [ApprovalAction.SKIP]
        assert entry_trail(db_session, entry) == [
            AuditAction.CREATE, AuditAction.SUBMIT, AuditAction.APPROVE, AuditAction.POST,
        ]

    def test_entry_above_threshold_waits(self, posting, make_entry, make_workflow, ctx, outbox):
        make_workflow(
            [{"step_order": 1, "name": "Controller", "approver_user_ids": ["carol"],
              "min_amount": Decimal("1000")}],
        )
        entry = make_entry("5000.00")

        request = posting.submit(ctx, entry.id, notes="Quarter-end accrual")

        assert request.status == ApprovalStatus.PENDING
        assert request.current_step_order == 1
        assert request.approvers_for(1) == ["carol"]
        assert entry.status == JournalEntryStatus.PENDING_APPROVAL
        assert entry.submitted_by == "alice"
        assert [event for event, _ in outbox.pending] == ["approval_required"]

    def test_cannot_submit_twice(self, posting, make_entry, make_workflow, ctx):
        make_workflow([{"step_order": 1, "name": "Controller", "approver_user_ids": ["carol"]}])
        entry = make_entry()
        posting.submit(ctx, entry.id)

        with pytest.raises(StateError) as exc:
            posting.submit(ctx, entry.id)
        assert exc.value.current_status == "PENDING_APPROVAL"

    def test_stale_version_refused(self, posting, make_entry, ctx):
        entry = make_entry()
        with pytest.raises(ConflictError):
            posting.submit(ctx, entry.id, expected_version=entry.version + 1)
        assert entry.status == JournalEntryStatus.DRAFT

    def test_submit_revalidates_against_closed_period(
        self, posting, make_entry, ctx, ledger, db_session
    ):
        entry = make_entry()
        ledger.january.status = PeriodStatus.CLOSED
        db_session.flush()

        with pytest.raises(ValidationError) as exc:
            posting.submit(ctx, entry.id)
        assert exc.value.reason == "CLOSED_PERIOD"


class TestApprovalOutcomes:

    def test_threshold_approval_posts_and_late_approver_conflicts(
        self, posting, journal, make_workflow, make_entry, db_session
    ):
        u1 = as_user("u1")
        make_workflow(
            [{"step_order": 1, "name": "Large entries", "approver_user_ids": ["u1", "u2"],
              "min_amount": Decimal("10000")}],
            rule_type=ApprovalRuleType.THRESHOLD,
        )
        entry = make_entry("15000.00", as_ctx=u1)
        request = posting.submit(u1, entry.id)
        assert request.status == ApprovalStatus.PENDING

        request = posting.approve(u1, request.id, notes="Looks right")

        assert request.status == ApprovalStatus.APPROVED
        assert entry.status == JournalEntryStatus.POSTED
        assert entry.approved_by == "u1"

        audit_rows_before = len(db_session.execute(select(AuditTrail)).scalars().all())
        with pytest.raises(ConflictError):
            posting.approve(as_user("u2"), request.id)
        assert len(db_session.execute(select(AuditTrail)).scalars().all()) == audit_rows_before

    def test_reject_then_resubmit_starts_new_request(
        self, posting, make_workflow, make_entry, ctx, approvals, db_session
    ):
        make_workflow([
            {"step_order": 1, "name": "Manager", "approver_type": "MANAGER"},
            {"step_order": 2, "name": "Controller", "approver_user_ids": ["carol"]},
        ])
        entry = make_entry()
        first = posting.submit(ctx, entry.id)
        posting.approve(as_user("bob"), first.id)
        assert first.current_step_order == 2

        posting.reject(as_user("carol"), first.id, reason="missing support")

        assert first.status == ApprovalStatus.REJECTED
        assert entry.status == JournalEntryStatus.REJECTED
        assert entry.rejection_reason == "missing support"
        assert entry.is_editable

        second = posting.submit(ctx, entry.id)

        assert second.id != first.id
        assert second.current_step_order == 1
        assert second.step_approvals == {}
        assert first.status == ApprovalStatus.REJECTED
        assert [h.action for h in approvals.get_history(ctx, first.id)] == [
            ApprovalAction.SUBMIT, ApprovalAction.APPROVE, ApprovalAction.REJECT,
        ]

    def test_reject_requires_reason(self, posting, make_workflow, make_entry, ctx):
        make_workflow([{"step_order": 1, "name": "Controller", "approver_user_ids": ["carol"]}])
        request = posting.submit(ctx, make_entry().id)

        with pytest.raises(ValidationError) as exc:
            posting.reject(as_user("carol"), request.id, reason="  ")
        assert exc.value.reason == "MISSING_REASON"

    def test_recall_returns_entry_to_draft(self, posting, make_workflow, make_entry, ctx, db_session):
        make_workflow([{"step_order": 1, "name": "Controller", "approver_user_ids": ["carol"]}])
        entry = make_entry()
        request = posting.submit(ctx, entry.id)

        posting.recall(ctx, request.id, reason="Wrong account")

        assert request.status == ApprovalStatus.RECALLED
        assert entry.status == JournalEntryStatus.DRAFT
        assert entry_trail(db_session, entry)[-1] == AuditAction.RECALL

    def test_only_submitter_recalls(self, posting, make_workflow, make_entry, ctx):
        make_workflow([{"step_order": 1, "name": "Controller", "approver_user_ids": ["carol"]}])
        request = posting.submit(ctx, make_entry().id)
        with pytest.raises(PermissionDeniedError):
            posting.recall(as_user("carol"), request.id)


class TestManualPost:

    @pytest.fixture
    def manual(self, ledger, ctx, db_session):
        ledger.service.update_configuration(
            ctx, GLConfigurationUpdate(auto_post_on_approval=False)
        )
        db_session.flush()

    def test_approved_entry_waits_for_post(self, manual, posting, make_entry, ctx, db_session):
        entry = make_entry()
        posting.submit(ctx, entry.id)
        assert entry.status == JournalEntryStatus.APPROVED

        posting.post(ctx, entry.id, expected_version=entry.version)

        assert entry.status == JournalEntryStatus.POSTED
        assert entry.posted_by == "alice"
        assert entry_trail(db_session, entry)[-2:] == [AuditAction.APPROVE, AuditAction.POST]

    def test_draft_cannot_be_posted(self, posting, make_entry, ctx):
        entry = make_entry()
        with pytest.raises(StateError):
            posting.post(ctx, entry.id)

    def test_post_refused_once_period_closes(
        self, manual, posting, make_entry, ctx, ledger, db_session
    ):
        entry = make_entry()
        posting.submit(ctx, entry.id)
        ledger.service.close_period(ctx, ledger.january.id)

        with pytest.raises(ValidationError) as exc:
            posting.post(ctx, entry.id)
        assert exc.value.reason == "CLOSED_PERIOD"
        assert entry.status == JournalEntryStatus.APPROVED


class TestRollups:

    def test_posting_increments_period_balances(self, posting, make_entry, ctx, ledger, db_session):
        posting.submit(ctx, make_entry("500.00").id)
        posting.submit(ctx, make_entry("250.00").id)

        cash = balance_of(db_session, ledger.january, ledger.accounts.cash)
        revenue = balance_of(db_session, ledger.january, ledger.accounts.revenue)
        assert cash.debit_total == Decimal("750.00")
        assert cash.credit_total == Decimal("0")
        assert revenue.credit_total_base == Decimal("750.00")


class TestReverse:

    def test_reversal_mirrors_lines(self, posting, make_entry, ctx, ledger, db_session):
        original = make_entry("500.00")
        posting.submit(ctx, original.id)

        reversal = posting.reverse(
            ctx, original.id, reversal_date=date(2026, 2, 1), reason="Booked twice"
        )

        assert reversal.status == JournalEntryStatus.POSTED
        assert reversal.entry_type == JournalEntryType.REVERSAL
        assert reversal.reversal_of_id == original.id
        assert reversal.period_id == ledger.february.id
        assert original.status == JournalEntryStatus.REVERSED
        assert original.reversed_by_id == reversal.id
        assert original.reversal_reason == "Booked twice"
        for before, after in zip(original.lines, reversal.lines):
            assert after.account_id == before.account_id
            assert after.debit_amount == before.credit_amount
            assert after.credit_amount == before.debit_amount
            assert after.debit_amount_base == before.credit_amount_base

        cash = balance_of(db_session, ledger.february, ledger.accounts.cash)
        assert cash.credit_total == Decimal("500.00")
        assert entry_trail(db_session, original)[-1] == AuditAction.REVERSE
        assert entry_trail(db_session, reversal) == [AuditAction.CREATE, AuditAction.POST]

    def test_settled_receivable_can_still_be_reversed(self, posting, journal, fx, ctx, ledger):
        a = ledger.accounts
        item = fx.create_open_item(ctx, OpenItemCreate(
            account_id=a.receivables.id,
            document_number="INV-1001",
            currency_code="EUR",
            amount=Decimal("100.00"),
            booked_rate=Decimal("1"),
            document_date=date(2026, 1, 10),
        ))
        original = journal.create_journal_entry(ctx, JournalEntryCreate(
            entry_date=date(2026, 1, 20),
            description="Customer receipt",
            lines=[
                JournalLineCreate(account_id=a.cash.id, debit_amount=Decimal("100")),
                JournalLineCreate(
                    account_id=a.receivables.id, credit_amount=Decimal("100"),
                    subledger_type=SubledgerType.ACCOUNTS_RECEIVABLE,
                    subledger_reference="INV-1001",
                ),
            ],
        ))
        posting.submit(ctx, original.id)
        fx.settle_open_item(ctx, item.id, Decimal("1"), date(2026, 1, 25))

        reversal = posting.reverse(ctx, original.id, date(2026, 2, 1), "Receipt misapplied")

        assert reversal.status == JournalEntryStatus.POSTED
        assert reversal.lines[1].subledger_reference == "INV-1001"
        assert reversal.lines[1].debit_amount == Decimal("100.00")

    def test_deactivated_account_can_still_be_reversed(
        self, posting, make_entry, ctx, ledger, db_session
    ):
        original = make_entry()
        posting.submit(ctx, original.id)
        ledger.accounts.revenue.is_active = False
        db_session.flush()

        with pytest.raises(ValidationError) as exc:
            make_entry()
        assert exc.value.reason == "INACTIVE_ACCOUNT"

        reversal = posting.reverse(ctx, original.id, date(2026, 2, 1), "Wrong customer")
        assert reversal.status == JournalEntryStatus.POSTED

    def test_reversing_twice_refused(self, posting, make_entry, ctx):
        original = make_entry()
        posting.submit(ctx, original.id)
        posting.reverse(ctx, original.id, date(2026, 1, 31), "Duplicate")

        with pytest.raises(StateError):
            posting.reverse(ctx, original.id, date(2026, 1, 31), "Again")

    def test_draft_cannot_be_reversed(self, posting, make_entry, ctx):
        with pytest.raises(StateError):
            posting.reverse(ctx, make_entry().id, date(2026, 1, 31), "Nope")

    def test_reason_required(self, posting, make_entry, ctx):
        entry = make_entry()
        posting.submit(ctx, entry.id)
        with pytest.raises(ValidationError) as exc:
            posting.reverse(ctx, entry.id, date(2026, 1, 31), "")
        assert exc.value.reason == "MISSING_REASON"

    def test_reversal_into_closed_period_refused(self, posting, make_entry, ctx):
        entry = make_entry()
        posting.submit(ctx, entry.id)
        with pytest.raises(ValidationError) as exc:
            posting.reverse(ctx, entry.id, date(2025, 12, 31), "Backdated")
        assert exc.value.reason == "CLOSED_PERIOD"
        assert entry.status == JournalEntryStatus.POSTED


class TestVoid:

    def test_void_withdraws_open_request(self, posting, make_workflow, make_entry, ctx, db_session):
        make_workflow([{"step_order": 1, "name": "Controller", "approver_user_ids": ["carol"]}])
        entry = make_entry()
        request = posting.submit(ctx, entry.id)

        posting.void(ctx, entry.id, reason="Raised in error")

        assert entry.status == JournalEntryStatus.VOID
        assert entry.void_reason == "Raised in error"
        assert request.status == ApprovalStatus.RECALLED

    def test_posted_entry_cannot_be_voided(self, posting, make_entry, ctx):
        entry = make_entry()
        posting.submit(ctx, entry.id)
        with pytest.raises(StateError):
            posting.void(ctx, entry.id, reason="Too late")


class TestImmutability:

    def test_posted_line_cannot_change(self, posting, make_entry, ctx, db_session):
        entry = make_entry()
        posting.submit(ctx, entry.id)
        db_session.commit()

        entry.lines[0].debit_amount = Decimal("999.00")
        with pytest.raises(ImmutabilityError):
            db_session.flush()

    def test_posted_header_cannot_change(self, posting, make_entry, ctx, db_session):
        entry = make_entry()
        posting.submit(ctx, entry.id)
        db_session.commit()

        entry.description = "Rewritten history"
        with pytest.raises(ImmutabilityError):
            db_session.flush()

    def test_terminal_request_cannot_change(self, posting, make_entry, ctx, db_session):
        request = posting.submit(ctx, make_entry().id)
        db_session.commit()

        request.status = ApprovalStatus.PENDING
        with pytest.raises(ImmutabilityError):
            db_session.flush()


class TestSweep:

    def test_expired_request_returns_entry_to_draft(
        self, posting, make_workflow, make_entry, ctx, clock, db_session
    ):
        make_workflow(
            [{"step_order": 1, "name": "Controller", "approver_user_ids": ["carol"]}],
            expiry_hours=24,
        )
        entry = make_entry()
        request = posting.submit(ctx, entry.id)

        result = posting.sweep_approvals(clock.advance(hours=25))

        assert [r.id for r in result.expired] == [request.id]
        assert request.status == ApprovalStatus.EXPIRED
        assert entry.status == JournalEntryStatus.DRAFT
        assert entry_trail(db_session, entry)[-1] == AuditAction.EXPIRE

    def test_auto_approve_escalation_posts(
        self, posting, make_workflow, make_entry, ctx, clock
    ):
        make_workflow([{
            "step_order": 1, "name": "Controller", "approver_user_ids": ["carol"],
            "escalation_hours": 4, "escalation_action": "AUTO_APPROVE",
        }])
        entry = make_entry()
        request = posting.submit(ctx, entry.id)

        result = posting.sweep_approvals(clock.advance(hours=5))

        assert [r.id for r in result.auto_approved] == [request.id]
        assert request.status == ApprovalStatus.APPROVED
        assert entry.status == JournalEntryStatus.POSTED
        assert entry.posted_by == "system"
