"""
Journal entry service.

Creates and edits journal entries while they are still drafts.
Every write goes through the JournalValidator first: when
validation fails nothing is added to the session. Lifecycle
transitions (submit, post, reverse, void) live in the
PostingService.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from general_ledger.config import get_settings
from general_ledger.exceptions import ConflictError, NotFoundError, StateError
from general_ledger.logging_config import get_logger
from general_ledger.models.enums import AuditAction, JournalEntryStatus
from general_ledger.models.journal_entry import JournalEntry, JournalEntryLine
from general_ledger.money import get_rounding_policy
from general_ledger.schemas.journal_entry import (
    JournalEntryCreate,
    JournalLineCreate,
)
from general_ledger.services.audit_service import AuditService
from general_ledger.services.context import RequestContext
from general_ledger.services.directory import (
    AccountDirectory,
    PeriodService,
    SubledgerDirectory,
)
from general_ledger.services.journal_validator import (
    JournalValidator,
    ValidatedEntry,
)
from general_ledger.services.ledger_service import LedgerService

logger = get_logger("services.journal")

MAX_PAGE_SIZE = 100


def _str(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


def snapshot(entry: JournalEntry) -> dict:
    """JSON-safe view of an entry, used for audit before/after values."""
    return {
        "entry_number": entry.entry_number,
        "status": entry.status.value,
        "version": entry.version,
        "period_id": entry.period_id,
        "entry_date": _str(entry.entry_date),
        "entry_type": entry.entry_type.value,
        "source_module": entry.source_module.value,
        "description": entry.description,
        "currency_code": entry.currency_code,
        "exchange_rate": _str(entry.exchange_rate),
        "total_debit": _str(entry.total_debit),
        "total_credit": _str(entry.total_credit),
        "total_debit_base": _str(entry.total_debit_base),
        "total_credit_base": _str(entry.total_credit_base),
        "reversal_of_id": entry.reversal_of_id,
        "reversed_by_id": entry.reversed_by_id,
        "lines": [
            {
                "line_number": line.line_number,
                "account_id": line.account_id,
                "debit_amount": _str(line.debit_amount),
                "credit_amount": _str(line.credit_amount),
                "debit_amount_base": _str(line.debit_amount_base),
                "credit_amount_base": _str(line.credit_amount_base),
            }
            for line in entry.lines
        ],
    }


def check_version(entry: JournalEntry, expected_version: int | None) -> None:
    """Optimistic concurrency: refuse to act on a stale read."""
    if expected_version is not None and entry.version != expected_version:
        raise ConflictError(
            f"Journal entry {entry.entry_number} has changed "
            f"(version {entry.version}, expected {expected_version}); "
            f"refetch and retry",
            {"current_version": entry.version, "expected_version": expected_version},
        )


def flush_or_conflict(db: Session) -> None:
    """Flush, turning a concurrent-update detection into ConflictError."""
    try:
        db.flush()
    except StaleDataError as e:
        raise ConflictError(
            "The record was modified by another request; refetch and retry"
        ) from e


def draft_from_entry(entry: JournalEntry) -> JournalEntryCreate:
    """Rebuild a draft from a stored entry, keeping its base amounts."""
    return JournalEntryCreate(
        entry_date=entry.entry_date,
        period_id=entry.period_id,
        entry_type=entry.entry_type,
        source_module=entry.source_module,
        source_id=entry.source_id,
        source_reference=entry.source_reference,
        description=entry.description,
        notes=entry.notes,
        currency_code=entry.currency_code,
        exchange_rate=entry.exchange_rate,
        imported=True,
        lines=[
            JournalLineCreate(
                line_number=line.line_number,
                account_id=line.account_id,
                description=line.description,
                debit_amount=line.debit_amount,
                credit_amount=line.credit_amount,
                debit_amount_base=line.debit_amount_base,
                credit_amount_base=line.credit_amount_base,
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


class JournalService:

    def __init__(
        self,
        db: Session,
        validator: JournalValidator | None = None,
        audit: AuditService | None = None,
        ledger: LedgerService | None = None,
    ):
        self.db = db
        self.audit = audit or AuditService(db)
        self.ledger = ledger or LedgerService(db, self.audit)
        self.validator = validator or JournalValidator(
            accounts=AccountDirectory(db),
            periods=PeriodService(db),
            subledgers=SubledgerDirectory(db),
            policy=get_rounding_policy(),
            max_lines=get_settings().MAX_LINES_PER_ENTRY,
        )

    def validate(
        self, ctx: RequestContext, draft: JournalEntryCreate, mirror: bool = False
    ) -> ValidatedEntry:
        base_currency = self.ledger.effective_configuration(ctx).base_currency
        return self.validator.validate(ctx.tenant_id, draft, base_currency, mirror=mirror)

    def revalidate(self, ctx: RequestContext, entry: JournalEntry) -> ValidatedEntry:
        """Re-run validation against an entry as currently stored."""
        return self.validate(ctx, draft_from_entry(entry))

    def create_journal_entry(
        self, ctx: RequestContext, draft: JournalEntryCreate, mirror: bool = False
    ) -> JournalEntry:
        """
        Validate and persist a new DRAFT entry.

        Raises ValidationError (nothing persisted) when the draft
        breaks a structural, referential, arithmetic or semantic rule,
        and ConflictError when a concurrent create took the same
        entry number. mirror=True is for reversals of posted entries.
        """
        validated = self.validate(ctx, draft, mirror=mirror)

        entry = JournalEntry(
            tenant_id=ctx.tenant_id,
            sub_scope_id=ctx.sub_scope_id,
            entry_number=self._next_entry_number(ctx.tenant_id),
            status=JournalEntryStatus.DRAFT,
            created_by=ctx.actor_id,
            updated_by=ctx.actor_id,
        )
        self._apply(entry, draft, validated)
        self.db.add(entry)
        try:
            self.db.flush()
        except IntegrityError as e:
            raise ConflictError(
                f"Entry number {entry.entry_number} was taken by a concurrent "
                f"request; retry",
                {"entry_number": entry.entry_number},
            ) from e

        self.audit.record(
            ctx, "JournalEntry", entry.id, AuditAction.CREATE,
            new_values=snapshot(entry),
            description=entry.description,
        )
        logger.info(
            "journal_entry_created",
            extra={
                "entry_id": entry.id,
                "entry_number": entry.entry_number,
                "total_debit": entry.total_debit,
            },
        )
        return entry

    def update_journal_entry(
        self,
        ctx: RequestContext,
        entry_id: int,
        draft: JournalEntryCreate,
        expected_version: int | None = None,
    ) -> JournalEntry:
        """Replace an editable entry's header and lines after re-validation."""
        entry = self.get_journal_entry(ctx, entry_id)
        check_version(entry, expected_version)
        if not entry.is_editable:
            raise StateError(
                f"Journal entry {entry.entry_number} cannot be edited in "
                f"status {entry.status.value}",
                current_status=entry.status.value,
                requested="UPDATE",
            )

        validated = self.validate(ctx, draft)
        before = snapshot(entry)

        # Old lines go first so the (entry, line_number) constraint holds
        entry.lines.clear()
        flush_or_conflict(self.db)
        self._apply(entry, draft, validated)
        entry.updated_by = ctx.actor_id
        flush_or_conflict(self.db)

        self.audit.record(
            ctx, "JournalEntry", entry.id, AuditAction.UPDATE,
            previous_values=before,
            new_values=snapshot(entry),
        )
        return entry

    def get_journal_entry(self, ctx: RequestContext, entry_id: int) -> JournalEntry:
        entry = self.db.get(JournalEntry, entry_id)
        if entry is None or entry.tenant_id != ctx.tenant_id:
            raise NotFoundError("JournalEntry", entry_id)
        return entry

    def list_journal_entries(
        self,
        ctx: RequestContext,
        status: JournalEntryStatus | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[JournalEntry], int]:
        """Entries for the tenant, newest first."""
        page = max(page, 1)
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)

        conditions = [JournalEntry.tenant_id == ctx.tenant_id]
        if ctx.sub_scope_id is not None:
            conditions.append(JournalEntry.sub_scope_id == ctx.sub_scope_id)
        if status is not None:
            conditions.append(JournalEntry.status == status)
        if date_from is not None:
            conditions.append(JournalEntry.entry_date >= date_from)
        if date_to is not None:
            conditions.append(JournalEntry.entry_date <= date_to)

        total = self.db.execute(
            select(func.count()).select_from(JournalEntry).where(*conditions)
        ).scalar_one()
        items = self.db.execute(
            select(JournalEntry)
            .where(*conditions)
            .order_by(JournalEntry.entry_date.desc(), JournalEntry.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).scalars().all()
        return list(items), total

    # --- Internals ---

    def _next_entry_number(self, tenant_id: str) -> str:
        count = self.db.execute(
            select(func.count()).select_from(JournalEntry).where(
                JournalEntry.tenant_id == tenant_id
            )
        ).scalar_one()
        return f"JE-{count + 1:06d}"

    @staticmethod
    def _apply(
        entry: JournalEntry, draft: JournalEntryCreate, validated: ValidatedEntry
    ) -> None:
        entry.period_id = validated.period.id
        entry.entry_date = draft.entry_date
        entry.entry_type = draft.entry_type
        entry.source_module = draft.source_module
        entry.source_id = draft.source_id
        entry.source_reference = draft.source_reference
        entry.description = draft.description
        entry.notes = draft.notes
        entry.currency_code = validated.currency_code
        entry.exchange_rate = validated.exchange_rate
        entry.total_debit = validated.total_debit
        entry.total_credit = validated.total_credit
        entry.total_debit_base = validated.total_debit_base
        entry.total_credit_base = validated.total_credit_base
        entry.lines = [
            JournalEntryLine(
                line_number=line.line_number,
                account_id=line.account.id,
                description=line.source.description,
                debit_amount=line.debit_amount,
                credit_amount=line.credit_amount,
                debit_amount_base=line.debit_amount_base,
                credit_amount_base=line.credit_amount_base,
                exchange_rate=line.source.exchange_rate,
                subledger_type=line.source.subledger_type,
                subledger_reference=line.source.subledger_reference,
                tax_code=line.source.tax_code,
                tax_amount=line.source.tax_amount,
                dimension1=line.source.dimension1,
                dimension2=line.source.dimension2,
                dimension3=line.source.dimension3,
                dimension4=line.source.dimension4,
                is_intercompany=line.source.is_intercompany,
                intercompany_sub_scope_id=line.source.intercompany_sub_scope_id,
            )
            for line in validated.lines
        ]
