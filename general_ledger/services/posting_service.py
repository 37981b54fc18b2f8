"""
Posting state machine for journal entries.

Each operation:
1. Loads the entry (or approval request) for the caller's tenant
2. Checks the optimistic-lock version when one is supplied
3. Checks the requested transition against VALID_TRANSITIONS
4. Applies the change and writes one audit row per transition
5. Hands approval decisions to the ApprovalEngine and mirrors
   the request's outcome back onto the entry

APPROVED and POSTED are always two separate transitions. When
auto-post is enabled for the tenant, the post happens in the
same unit of work as the final approval. The caller controls
the commit.
"""

from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from general_ledger.exceptions import StateError, ValidationError
from general_ledger.logging_config import get_logger
from general_ledger.models.approval import ApprovalRequest
from general_ledger.models.base import utcnow
from general_ledger.models.enums import (
    ApprovalAction,
    ApprovalStatus,
    AuditAction,
    JournalEntryStatus,
    JournalEntryType,
    SourceModule,
)
from general_ledger.models.financial_period import PeriodAccountBalance
from general_ledger.models.journal_entry import JournalEntry
from general_ledger.money import ZERO
from general_ledger.schemas.journal_entry import (
    JournalEntryCreate,
    JournalLineCreate,
)
from general_ledger.services.approval_engine import (
    ActionPayload,
    ApprovalEngine,
    DocumentRef,
    SweepResult,
)
from general_ledger.services.audit_service import AuditService
from general_ledger.services.context import SYSTEM_ACTOR, RequestContext
from general_ledger.services.journal_service import (
    JournalService,
    check_version,
    flush_or_conflict,
    snapshot,
)
from general_ledger.services.ledger_service import LedgerService

logger = get_logger("services.posting")

JOURNAL_ENTRY_DOCUMENT = "JOURNAL_ENTRY"


class PostingService:

    def __init__(
        self,
        db: Session,
        engine: ApprovalEngine | None = None,
        journal: JournalService | None = None,
        audit: AuditService | None = None,
        ledger: LedgerService | None = None,
    ):
        self.db = db
        self.audit = audit or AuditService(db)
        self.ledger = ledger or LedgerService(db, self.audit)
        self.journal = journal or JournalService(db, audit=self.audit, ledger=self.ledger)
        self.engine = engine or ApprovalEngine(db, audit=self.audit)

    @property
    def outbox(self):
        return self.engine.outbox

    # --- Submission ---

    def submit(
        self,
        ctx: RequestContext,
        entry_id: int,
        notes: str | None = None,
        expected_version: int | None = None,
        context: dict | None = None,
    ) -> ApprovalRequest:
        """
        Send a DRAFT or REJECTED entry for approval.

        Re-validates the entry first. A zero-step workflow approves
        immediately, and with auto-post on the entry ends POSTED.
        """
        entry = self.journal.get_journal_entry(ctx, entry_id)
        check_version(entry, expected_version)
        self._require_transition(entry, JournalEntryStatus.PENDING_APPROVAL, "SUBMIT")
        self.journal.revalidate(ctx, entry)

        previous = entry.status
        entry.status = JournalEntryStatus.PENDING_APPROVAL
        entry.submitted_at = utcnow()
        entry.submitted_by = ctx.actor_id
        entry.updated_by = ctx.actor_id
        flush_or_conflict(self.db)
        self._audit_transition(ctx, entry, AuditAction.SUBMIT, previous, reason=notes)

        base_currency = self.ledger.effective_configuration(ctx).base_currency
        request = self.engine.create_request(
            ctx,
            DocumentRef(
                document_type=JOURNAL_ENTRY_DOCUMENT,
                document_id=str(entry.id),
                amount=entry.base_amount,
                currency=base_currency,
                document_number=entry.entry_number,
            ),
            submitter=ctx.actor_id,
            notes=notes,
            context=context,
        )
        self._sync_entry(ctx, request)
        return request

    # --- Approval decisions ---

    def approve(
        self,
        ctx: RequestContext,
        request_id: int,
        notes: str | None = None,
        step_order: int | None = None,
        expected_version: int | None = None,
    ) -> ApprovalRequest:
        request = self.engine.act(
            ctx, request_id, ApprovalAction.APPROVE,
            ActionPayload(notes=notes, step_order=step_order,
                          expected_version=expected_version),
        )
        self._sync_entry(ctx, request)
        return request

    def reject(
        self,
        ctx: RequestContext,
        request_id: int,
        reason: str,
        expected_version: int | None = None,
    ) -> ApprovalRequest:
        """Reject the request; the entry goes back to an editable REJECTED."""
        request = self.engine.act(
            ctx, request_id, ApprovalAction.REJECT,
            ActionPayload(reason=reason, expected_version=expected_version),
        )
        self._sync_entry(ctx, request, reason=reason)
        return request

    def recall(
        self,
        ctx: RequestContext,
        request_id: int,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> ApprovalRequest:
        request = self.engine.act(
            ctx, request_id, ApprovalAction.RECALL,
            ActionPayload(reason=reason, expected_version=expected_version),
        )
        self._sync_entry(ctx, request, reason=reason)
        return request

    def delegate(
        self,
        ctx: RequestContext,
        request_id: int,
        delegate_to: str,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> ApprovalRequest:
        return self.engine.act(
            ctx, request_id, ApprovalAction.DELEGATE,
            ActionPayload(delegate_to=delegate_to, reason=reason,
                          expected_version=expected_version),
        )

    def comment(self, ctx: RequestContext, request_id: int, comments: str) -> ApprovalRequest:
        return self.engine.act(
            ctx, request_id, ApprovalAction.COMMENT, ActionPayload(notes=comments)
        )

    # --- Posting ---

    def post(
        self, ctx: RequestContext, entry_id: int, expected_version: int | None = None
    ) -> JournalEntry:
        entry = self.journal.get_journal_entry(ctx, entry_id)
        check_version(entry, expected_version)
        self._require_transition(entry, JournalEntryStatus.POSTED, "POST")
        return self._post(ctx, entry)

    def reverse(
        self,
        ctx: RequestContext,
        entry_id: int,
        reversal_date: date,
        reason: str,
        expected_version: int | None = None,
    ) -> JournalEntry:
        """
        Reverse a POSTED entry with a mirrored REVERSAL entry.

        The reversal swaps every line's debit and credit (document
        and base amounts), is posted directly without a new approval
        and points back through reversal_of_id. Returns the reversal.
        """
        if not reason or not reason.strip():
            raise ValidationError.single(
                "MISSING_REASON", "A reason is required to reverse", field="reason"
            )
        entry = self.journal.get_journal_entry(ctx, entry_id)
        check_version(entry, expected_version)
        self._require_transition(entry, JournalEntryStatus.REVERSED, "REVERSE")
        if entry.reversed_by_id is not None:
            raise StateError(
                f"Journal entry {entry.entry_number} is already reversed",
                current_status=entry.status.value,
                requested="REVERSE",
            )

        draft = JournalEntryCreate(
            entry_date=reversal_date,
            entry_type=JournalEntryType.REVERSAL,
            source_module=SourceModule.REVERSAL,
            source_id=str(entry.id),
            source_reference=entry.entry_number,
            description=f"Reversal of {entry.entry_number}: {reason}"[:500],
            currency_code=entry.currency_code,
            exchange_rate=entry.exchange_rate,
            imported=True,
            lines=[
                JournalLineCreate(
                    line_number=line.line_number,
                    account_id=line.account_id,
                    description=line.description,
                    debit_amount=line.credit_amount,
                    credit_amount=line.debit_amount,
                    debit_amount_base=line.credit_amount_base,
                    credit_amount_base=line.debit_amount_base,
                    exchange_rate=line.exchange_rate,
                    subledger_type=line.subledger_type,
                    subledger_reference=line.subledger_reference,
                    tax_code=line.tax_code,
                    tax_amount=line.tax_amount,
                    dimension1=line.dimension1,
                    dimension2=line.dimension2,
                    dimension3=line.dimension3,
                    dimension4=line.dimension4,
                    is_intercompany=line.is_intercompany,
                    intercompany_sub_scope_id=line.intercompany_sub_scope_id,
                )
                for line in entry.lines
            ],
        )
        reversal = self.journal.create_journal_entry(ctx, draft, mirror=True)
        reversal.reversal_of_id = entry.id

        # Reversals skip approval: DRAFT goes straight to POSTED
        now = utcnow()
        reversal.status = JournalEntryStatus.POSTED
        reversal.approved_at = now
        reversal.approved_by = ctx.actor_id
        reversal.posted_at = now
        reversal.posted_by = ctx.actor_id
        self._apply_rollups(reversal)
        flush_or_conflict(self.db)
        self._audit_transition(
            ctx, reversal, AuditAction.POST, JournalEntryStatus.DRAFT, reason=reason
        )

        previous = entry.status
        entry.status = JournalEntryStatus.REVERSED
        entry.reversed_by_id = reversal.id
        entry.reversed_at = now
        entry.reversed_by = ctx.actor_id
        entry.reversal_reason = reason
        entry.updated_by = ctx.actor_id
        flush_or_conflict(self.db)
        self._audit_transition(ctx, entry, AuditAction.REVERSE, previous, reason=reason)

        logger.info(
            "journal_entry_reversed",
            extra={
                "entry_id": entry.id,
                "reversal_id": reversal.id,
                "actor_id": ctx.actor_id,
            },
        )
        return reversal

    def void(
        self,
        ctx: RequestContext,
        entry_id: int,
        reason: str,
        expected_version: int | None = None,
    ) -> JournalEntry:
        """Void an entry that never posted, withdrawing any open approval."""
        if not reason or not reason.strip():
            raise ValidationError.single(
                "MISSING_REASON", "A reason is required to void", field="reason"
            )
        entry = self.journal.get_journal_entry(ctx, entry_id)
        check_version(entry, expected_version)
        self._require_transition(entry, JournalEntryStatus.VOID, "VOID")

        open_request = self.engine.get_open_request(
            ctx, JOURNAL_ENTRY_DOCUMENT, entry.id
        )
        if open_request is not None:
            self.engine.cancel(ctx, open_request, reason)

        previous = entry.status
        entry.status = JournalEntryStatus.VOID
        entry.voided_at = utcnow()
        entry.voided_by = ctx.actor_id
        entry.void_reason = reason
        entry.updated_by = ctx.actor_id
        flush_or_conflict(self.db)
        self._audit_transition(ctx, entry, AuditAction.VOID, previous, reason=reason)
        return entry

    # --- Scheduled sweep ---

    def sweep_approvals(self, now: datetime | None = None) -> SweepResult:
        """Run the engine sweep and mirror finished requests onto their entries."""
        result = self.engine.sweep(now)
        for request in result.completed:
            ctx = RequestContext(request.tenant_id, request.sub_scope_id, SYSTEM_ACTOR)
            self._sync_entry(ctx, request)
        return result

    # --- Internals ---

    def _post(self, ctx: RequestContext, entry: JournalEntry) -> JournalEntry:
        # Accounts and the period may have changed since submission
        self.journal.revalidate(ctx, entry)

        previous = entry.status
        entry.status = JournalEntryStatus.POSTED
        entry.posted_at = utcnow()
        entry.posted_by = ctx.actor_id
        entry.updated_by = ctx.actor_id
        self._apply_rollups(entry)
        flush_or_conflict(self.db)
        self._audit_transition(ctx, entry, AuditAction.POST, previous)

        logger.info(
            "journal_entry_posted",
            extra={
                "entry_id": entry.id,
                "entry_number": entry.entry_number,
                "actor_id": ctx.actor_id,
                "total_debit_base": entry.total_debit_base,
            },
        )
        return entry

    def _apply_rollups(self, entry: JournalEntry) -> None:
        balances: dict[int, PeriodAccountBalance] = {}
        for line in entry.lines:
            balance = balances.get(line.account_id)
            if balance is None:
                balance = self.db.execute(
                    select(PeriodAccountBalance).where(
                        PeriodAccountBalance.period_id == entry.period_id,
                        PeriodAccountBalance.account_id == line.account_id,
                    )
                ).scalar_one_or_none()
            if balance is None:
                balance = PeriodAccountBalance(
                    tenant_id=entry.tenant_id,
                    sub_scope_id=entry.sub_scope_id,
                    period_id=entry.period_id,
                    account_id=line.account_id,
                    debit_total=ZERO,
                    credit_total=ZERO,
                    debit_total_base=ZERO,
                    credit_total_base=ZERO,
                )
                self.db.add(balance)
            balances[line.account_id] = balance
            balance.debit_total += line.debit_amount
            balance.credit_total += line.credit_amount
            balance.debit_total_base += line.debit_amount_base
            balance.credit_total_base += line.credit_amount_base

    def _sync_entry(
        self, ctx: RequestContext, request: ApprovalRequest, reason: str | None = None
    ) -> None:
        """Mirror a finished approval request onto its journal entry."""
        if request.document_type != JOURNAL_ENTRY_DOCUMENT or request.is_open:
            return
        entry = self.db.get(JournalEntry, int(request.document_id))
        if entry is None or entry.status != JournalEntryStatus.PENDING_APPROVAL:
            return

        previous = entry.status
        status = request.status
        if status == ApprovalStatus.APPROVED:
            entry.status = JournalEntryStatus.APPROVED
            entry.approved_at = request.completed_at
            entry.approved_by = request.completed_by
            action = AuditAction.APPROVE
        elif status == ApprovalStatus.REJECTED:
            entry.status = JournalEntryStatus.REJECTED
            entry.rejected_at = request.completed_at
            entry.rejected_by = request.completed_by
            entry.rejection_reason = reason
            action = AuditAction.REJECT
        elif status == ApprovalStatus.EXPIRED:
            entry.status = JournalEntryStatus.DRAFT
            action = AuditAction.EXPIRE
        else:
            entry.status = JournalEntryStatus.DRAFT
            action = AuditAction.RECALL
        entry.updated_by = ctx.actor_id
        flush_or_conflict(self.db)
        self._audit_transition(ctx, entry, action, previous, reason=reason)

        if entry.status != JournalEntryStatus.APPROVED:
            return
        if not self.ledger.effective_configuration(ctx).auto_post_on_approval:
            return
        if not self.journal.validator.periods.is_open_for_posting(
            entry.tenant_id, entry.period_id, entry.entry_date
        ):
            logger.warning(
                "auto_post_skipped_period_not_open",
                extra={"entry_id": entry.id, "period_id": entry.period_id},
            )
            return
        self._post(ctx, entry)

    def _require_transition(
        self, entry: JournalEntry, new_status: JournalEntryStatus, requested: str
    ) -> None:
        if not entry.can_transition_to(new_status):
            raise StateError(
                f"Cannot {requested.lower()} journal entry {entry.entry_number} "
                f"in status {entry.status.value}",
                current_status=entry.status.value,
                requested=requested,
            )

    def _audit_transition(
        self,
        ctx: RequestContext,
        entry: JournalEntry,
        action: AuditAction,
        previous_status: JournalEntryStatus,
        reason: str | None = None,
    ) -> None:
        new_values = {"status": entry.status.value, "version": entry.version}
        if action == AuditAction.POST:
            new_values = snapshot(entry)
        self.audit.record(
            ctx, "JournalEntry", entry.id, action,
            previous_values={"status": previous_status.value},
            new_values=new_values,
            reason=reason,
        )
        logger.info(
            "journal_entry_transition",
            extra={
                "entry_id": entry.id,
                "actor_id": ctx.actor_id,
                "from_status": previous_status.value,
                "to_status": entry.status.value,
            },
        )
