"""
FX revaluation service.

Revalues open foreign-currency items to a current rate and
books the unrealized difference, and settles items by booking
the realized difference.

For one open item:

    delta = quantize(remaining_amount * rate) - remaining_amount_base
            - unrealized gain/loss already booked for the item

Amounts are signed (payables negative), so a positive delta is
always a gain. Items with |delta| under the rounding tolerance
do not qualify. Revaluations whose journal entry ended VOID or
REVERSED are not on the ledger and do not count as booked.

A preview run computes the batch and writes nothing; identical
inputs give identical results. A posted run persists the batch
and drafts one base-currency ADJUSTMENT entry which goes through
the normal submit path.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from general_ledger.exceptions import (
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from general_ledger.logging_config import get_logger
from general_ledger.models.approval import ApprovalRequest
from general_ledger.models.base import utcnow
from general_ledger.models.enums import (
    BALANCE_SHEET_TYPES,
    AuditAction,
    ExchangeRateType,
    FxBatchStatus,
    FxGainLossStatus,
    FxRevaluationMethod,
    JournalEntryStatus,
    JournalEntryType,
    OpenItemStatus,
    SourceModule,
)
from general_ledger.models.fx import (
    ExchangeRate,
    FxRevaluationBatch,
    FxRevaluationEntry,
    OpenItem,
)
from general_ledger.models.journal_entry import JournalEntry
from general_ledger.models.ledger_account import LedgerAccount
from general_ledger.money import (
    ZERO,
    Money,
    RoundingPolicy,
    get_rounding_policy,
    normalize_currency,
    validate_rate,
)
from general_ledger.schemas.fx import ExchangeRateCreate, FxScope, OpenItemCreate
from general_ledger.schemas.journal_entry import JournalEntryCreate, JournalLineCreate
from general_ledger.services.audit_service import AuditService
from general_ledger.services.context import RequestContext
from general_ledger.services.posting_service import PostingService

logger = get_logger("services.fx_revaluation")

RATE_QUANTUM = Decimal("0.00000001")

# Journal entry statuses whose revaluation amounts are not on the ledger
UNBOOKED_ENTRY_STATUSES = (JournalEntryStatus.VOID, JournalEntryStatus.REVERSED)

# Rate type used by each revaluation method
METHOD_RATE_TYPES = {
    FxRevaluationMethod.OPEN_ITEM: ExchangeRateType.CLOSING,
    FxRevaluationMethod.CLOSING_RATE: ExchangeRateType.CLOSING,
    FxRevaluationMethod.BALANCE_SHEET: ExchangeRateType.CLOSING,
    FxRevaluationMethod.AVERAGE_RATE: ExchangeRateType.AVERAGE,
}


@dataclass(frozen=True)
class RevaluationLine:
    account_id: int
    open_item_id: int | None
    currency_code: str
    original_amount: Decimal
    original_amount_base: Decimal
    original_rate: Decimal
    revaluation_rate: Decimal
    revalued_amount_base: Decimal
    gain_loss_amount: Decimal
    status: FxGainLossStatus = FxGainLossStatus.UNREALIZED


@dataclass
class FxRevaluationResult:
    revaluation_date: date
    method: FxRevaluationMethod
    period_id: int
    lines: list[RevaluationLine] = field(default_factory=list)
    persisted: bool = False
    batch: FxRevaluationBatch | None = None
    journal_entry: JournalEntry | None = None
    approval_request: ApprovalRequest | None = None

    @property
    def total_gain_amount(self) -> Decimal:
        return sum((l.gain_loss_amount for l in self.lines if l.gain_loss_amount > 0), ZERO)

    @property
    def total_loss_amount(self) -> Decimal:
        return sum((-l.gain_loss_amount for l in self.lines if l.gain_loss_amount < 0), ZERO)

    @property
    def net_gain_loss_amount(self) -> Decimal:
        return self.total_gain_amount - self.total_loss_amount

    @property
    def entry_count(self) -> int:
        return len(self.lines)


@dataclass
class SettlementResult:
    open_item: OpenItem
    realized_amount: Decimal
    unrealized_reversed: Decimal
    journal_entry: JournalEntry | None = None
    approval_request: ApprovalRequest | None = None


def scope_key(sub_scope_id: str | None, scope: FxScope) -> str:
    """Stable text key for (sub-scope, currencies, accounts)."""
    currencies = ",".join(sorted({c.upper() for c in scope.currency_codes})) or "*"
    accounts = ",".join(str(a) for a in sorted(set(scope.account_ids))) or "*"
    return f"{sub_scope_id or '*'}|{currencies}|{accounts}"


class FxRevaluationService:

    def __init__(
        self,
        db: Session,
        posting: PostingService | None = None,
        audit: AuditService | None = None,
        policy: RoundingPolicy | None = None,
    ):
        self.db = db
        self.audit = audit or AuditService(db)
        self.posting = posting or PostingService(db, audit=self.audit)
        self.policy = policy or get_rounding_policy()

    @property
    def ledger(self):
        return self.posting.ledger

    @property
    def journal(self):
        return self.posting.journal

    # --- Exchange rates ---

    def record_exchange_rate(
        self, ctx: RequestContext, request: ExchangeRateCreate
    ) -> ExchangeRate:
        from_currency = normalize_currency(request.from_currency)
        to_currency = normalize_currency(request.to_currency)
        if from_currency == to_currency:
            raise ValidationError.single(
                "INVALID_CURRENCY",
                "A rate needs two different currencies",
                field="to_currency",
            )
        rate = ExchangeRate(
            tenant_id=ctx.tenant_id,
            from_currency=from_currency,
            to_currency=to_currency,
            rate=validate_rate(request.rate, field="rate"),
            rate_type=request.rate_type,
            effective_date=request.effective_date,
            source=request.source,
            created_by=ctx.actor_id,
        )
        self.db.add(rate)
        self.db.flush()
        self.audit.record(
            ctx, "ExchangeRate", rate.id, AuditAction.CREATE,
            new_values={
                "pair": f"{from_currency}/{to_currency}",
                "rate": str(rate.rate),
                "rate_type": rate.rate_type.value,
                "effective_date": rate.effective_date.isoformat(),
            },
        )
        return rate

    def get_rate(
        self,
        ctx: RequestContext,
        from_currency: str,
        to_currency: str,
        as_of: date,
        rate_type: ExchangeRateType = ExchangeRateType.SPOT,
    ) -> Decimal:
        """
        Latest rate effective on or before as_of.

        CLOSING falls back to SPOT. An inverse quote is used
        when only the opposite pair is on file.
        """
        from_currency = normalize_currency(from_currency)
        to_currency = normalize_currency(to_currency)
        if from_currency == to_currency:
            return Decimal("1")

        types = [rate_type]
        if rate_type == ExchangeRateType.CLOSING:
            types.append(ExchangeRateType.SPOT)
        for candidate in types:
            direct = self._latest_rate(ctx, from_currency, to_currency, as_of, candidate)
            if direct is not None:
                return direct
            inverse = self._latest_rate(ctx, to_currency, from_currency, as_of, candidate)
            if inverse is not None:
                return (Decimal("1") / inverse).quantize(RATE_QUANTUM)

        raise ValidationError.single(
            "EXCHANGE_RATE_NOT_FOUND",
            f"No {rate_type.value} rate for {from_currency}/{to_currency} "
            f"on or before {as_of.isoformat()}",
            field="currency_code",
        )

    def _latest_rate(self, ctx, from_currency, to_currency, as_of, rate_type):
        return self.db.execute(
            select(ExchangeRate.rate)
            .where(
                ExchangeRate.tenant_id == ctx.tenant_id,
                ExchangeRate.from_currency == from_currency,
                ExchangeRate.to_currency == to_currency,
                ExchangeRate.rate_type == rate_type,
                ExchangeRate.effective_date <= as_of,
            )
            .order_by(ExchangeRate.effective_date.desc(), ExchangeRate.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    # --- Open items ---

    def create_open_item(self, ctx: RequestContext, request: OpenItemCreate) -> OpenItem:
        account = self.journal.validator.accounts.resolve_account(
            ctx.tenant_id,
            request.account_id if request.account_id is not None else request.account_code,
        )
        if account is None:
            raise ValidationError.single(
                "UNKNOWN_ACCOUNT",
                f"Account {request.account_id or request.account_code!r} not found",
                field="account_id",
            )
        duplicate = self.db.execute(
            select(OpenItem.id).where(
                OpenItem.tenant_id == ctx.tenant_id,
                OpenItem.document_number == request.document_number,
            )
        ).scalar_one_or_none()
        if duplicate is not None:
            raise ConflictError(
                f"Open item for document {request.document_number} already exists"
            )

        booked_rate = validate_rate(request.booked_rate, field="booked_rate")
        amount = self.policy.quantize(request.amount)
        amount_base = (
            self.policy.quantize(request.amount_base)
            if request.amount_base is not None
            else self.policy.apply_rate(amount, booked_rate)
        )
        item = OpenItem(
            tenant_id=ctx.tenant_id,
            sub_scope_id=ctx.sub_scope_id,
            account_id=account.id,
            document_type=request.document_type,
            document_number=request.document_number,
            currency_code=normalize_currency(request.currency_code),
            amount=amount,
            remaining_amount=amount,
            booked_rate=booked_rate,
            amount_base=amount_base,
            remaining_amount_base=amount_base,
            document_date=request.document_date,
            status=OpenItemStatus.OPEN,
        )
        self.db.add(item)
        self.db.flush()
        self.audit.record(
            ctx, "OpenItem", item.id, AuditAction.CREATE,
            new_values={
                "document_number": item.document_number,
                "currency_code": item.currency_code,
                "amount": str(item.amount),
                "amount_base": str(item.amount_base),
            },
        )
        return item

    def get_open_item(self, ctx: RequestContext, open_item_id: int) -> OpenItem:
        item = self.db.get(OpenItem, open_item_id)
        if item is None or item.tenant_id != ctx.tenant_id:
            raise NotFoundError("OpenItem", open_item_id)
        return item

    # --- Revaluation ---

    def run_fx_revaluation(
        self,
        ctx: RequestContext,
        scope: FxScope,
        revaluation_date: date,
        method: FxRevaluationMethod = FxRevaluationMethod.CLOSING_RATE,
        preview: bool = True,
        gain_account_id: int | None = None,
        loss_account_id: int | None = None,
        description: str | None = None,
    ) -> FxRevaluationResult:
        """
        Revalue open items in scope as of revaluation_date.

        Raises ValidationError(CLOSED_PERIOD) before computing
        anything when no open period covers the date, and
        ConflictError when posting a scope/date/method that
        already has a posted batch.
        """
        period = self.journal.validator.periods.find_open_period(
            ctx.tenant_id, revaluation_date
        )
        if period is None:
            raise ValidationError.single(
                "CLOSED_PERIOD",
                f"No open period covers {revaluation_date.isoformat()}",
                field="revaluation_date",
            )

        base_currency = self.ledger.effective_configuration(ctx).base_currency
        result = FxRevaluationResult(
            revaluation_date=revaluation_date, method=method, period_id=period.id
        )
        result.lines = self._compute_lines(
            ctx, scope, revaluation_date, method, base_currency
        )

        key = scope_key(ctx.sub_scope_id, scope)
        if not preview:
            existing = self.db.execute(
                select(FxRevaluationBatch).where(
                    FxRevaluationBatch.tenant_id == ctx.tenant_id,
                    FxRevaluationBatch.scope_key == key,
                    FxRevaluationBatch.revaluation_date == revaluation_date,
                    FxRevaluationBatch.method == method,
                    FxRevaluationBatch.status == FxBatchStatus.POSTED,
                )
            ).scalar_one_or_none()
            if existing is not None and self._batch_is_live(existing):
                raise ConflictError(
                    f"FX revaluation {existing.batch_number} already posted for this "
                    f"scope, date and method",
                    {"batch_id": existing.id},
                )
            if existing is not None:
                self._release_batch(ctx, existing)

        if preview or not result.lines:
            logger.info(
                "fx_revaluation_computed",
                extra={
                    "preview": preview,
                    "method": method.value,
                    "entry_count": result.entry_count,
                    "net_gain_loss": result.net_gain_loss_amount,
                },
            )
            return result

        config = self.ledger.effective_configuration(ctx)
        gain_account = self._require_account(
            ctx, gain_account_id or config.fx_unrealized_gain_account_id,
            "gain_account_id",
        )
        loss_account = self._require_account(
            ctx, loss_account_id or config.fx_unrealized_loss_account_id,
            "loss_account_id",
        )

        batch = FxRevaluationBatch(
            tenant_id=ctx.tenant_id,
            sub_scope_id=ctx.sub_scope_id,
            batch_number=self._next_batch_number(ctx.tenant_id, revaluation_date),
            description=description,
            revaluation_date=revaluation_date,
            period_id=period.id,
            method=method,
            scope_key=key,
            currency_codes=sorted({c.upper() for c in scope.currency_codes}),
            account_ids=sorted(set(scope.account_ids)),
            total_gain_amount=result.total_gain_amount,
            total_loss_amount=result.total_loss_amount,
            net_gain_loss_amount=result.net_gain_loss_amount,
            entry_count=result.entry_count,
            status=FxBatchStatus.POSTED,
            gain_account_id=gain_account.id,
            loss_account_id=loss_account.id,
            created_by=ctx.actor_id,
            posted_at=utcnow(),
            posted_by=ctx.actor_id,
        )
        batch.entries = [
            FxRevaluationEntry(
                tenant_id=ctx.tenant_id,
                sub_scope_id=ctx.sub_scope_id,
                account_id=line.account_id,
                open_item_id=line.open_item_id,
                currency_code=line.currency_code,
                original_amount=line.original_amount,
                original_amount_base=line.original_amount_base,
                original_rate=line.original_rate,
                revaluation_date=revaluation_date,
                revaluation_rate=line.revaluation_rate,
                revalued_amount_base=line.revalued_amount_base,
                gain_loss_amount=line.gain_loss_amount,
                status=FxGainLossStatus.UNREALIZED,
                created_by=ctx.actor_id,
            )
            for line in result.lines
        ]
        self.db.add(batch)
        self.db.flush()

        draft = JournalEntryCreate(
            entry_date=revaluation_date,
            period_id=period.id,
            entry_type=JournalEntryType.ADJUSTMENT,
            source_module=SourceModule.FX_REVALUATION,
            source_id=str(batch.id),
            source_reference=batch.batch_number,
            description=description or f"FX revaluation {batch.batch_number}",
            currency_code=base_currency,
            lines=self._revaluation_lines(result.lines, gain_account, loss_account),
        )
        entry = self.journal.create_journal_entry(ctx, draft)
        request = self.posting.submit(ctx, entry.id, notes=draft.description)

        batch.journal_entry_id = entry.id
        for revaluation_entry in batch.entries:
            revaluation_entry.journal_entry_id = entry.id
        self.db.flush()

        self.audit.record(
            ctx, "FxRevaluationBatch", batch.id, AuditAction.FX_REVALUATION_POSTED,
            new_values={
                "batch_number": batch.batch_number,
                "method": method.value,
                "revaluation_date": revaluation_date.isoformat(),
                "entry_count": batch.entry_count,
                "net_gain_loss_amount": str(batch.net_gain_loss_amount),
                "journal_entry_id": entry.id,
            },
        )
        logger.info(
            "fx_revaluation_posted",
            extra={
                "batch_id": batch.id,
                "entry_id": entry.id,
                "net_gain_loss": batch.net_gain_loss_amount,
            },
        )

        result.persisted = True
        result.batch = batch
        result.journal_entry = entry
        result.approval_request = request
        return result

    def _compute_lines(
        self, ctx, scope, revaluation_date, method, base_currency
    ) -> list[RevaluationLine]:
        items = self._open_items(ctx, scope, base_currency)
        rate_type = METHOD_RATE_TYPES[method]
        rates: dict[str, Decimal] = {}

        def rate_for(currency: str) -> Decimal:
            if currency not in rates:
                rates[currency] = self.get_rate(
                    ctx, currency, base_currency, revaluation_date, rate_type
                )
            return rates[currency]

        if method == FxRevaluationMethod.BALANCE_SHEET:
            positions: dict[tuple[int, str], list[Decimal]] = defaultdict(
                lambda: [ZERO, ZERO]
            )
            account_ids = {item.account_id for item in items}
            accounts = {
                a.id: a for a in self.db.execute(
                    select(LedgerAccount).where(LedgerAccount.id.in_(account_ids))
                ).scalars()
            } if account_ids else {}
            for item in items:
                if accounts[item.account_id].account_type not in BALANCE_SHEET_TYPES:
                    continue
                position = positions[(item.account_id, item.currency_code)]
                position[0] += item.remaining_amount
                position[1] += item.remaining_amount_base
            candidates = [
                (account_id, None, currency, amount, amount_base)
                for (account_id, currency), (amount, amount_base) in sorted(positions.items())
            ]
        else:
            candidates = [
                (item.account_id, item.id, item.currency_code,
                 item.remaining_amount, item.remaining_amount_base)
                for item in items
            ]

        carried = self._carried_unrealized(ctx)
        lines = []
        for account_id, item_id, currency, amount, amount_base in candidates:
            if amount == ZERO:
                continue
            rate = rate_for(currency)
            revalued = Money(amount, currency).convert(
                rate, base_currency, self.policy
            ).amount
            # Only the change since the last unrealized revaluation is booked
            key = (item_id,) if item_id is not None else (account_id, currency)
            delta = revalued - amount_base - carried.get(key, ZERO)
            if self.policy.is_negligible(delta):
                continue
            lines.append(RevaluationLine(
                account_id=account_id,
                open_item_id=item_id,
                currency_code=currency,
                original_amount=amount,
                original_amount_base=amount_base,
                original_rate=(amount_base / amount).quantize(RATE_QUANTUM),
                revaluation_rate=rate,
                revalued_amount_base=revalued,
                gain_loss_amount=delta,
            ))
        return lines

    def _carried_unrealized(self, ctx) -> dict[tuple, Decimal]:
        """
        Unrealized gain/loss already booked, keyed by (open_item_id,)
        for item lines and (account_id, currency) for positions.
        """
        carried: dict[tuple, Decimal] = defaultdict(lambda: ZERO)
        for row in self._live_unrealized(ctx):
            if row.open_item_id is not None:
                carried[(row.open_item_id,)] += row.gain_loss_amount
            else:
                carried[(row.account_id, row.currency_code)] += row.gain_loss_amount
        return carried

    def _live_unrealized(self, ctx, *conditions) -> list[FxRevaluationEntry]:
        """UNREALIZED rows whose journal entry was not voided or reversed."""
        return list(
            self.db.execute(
                select(FxRevaluationEntry)
                .join(JournalEntry, FxRevaluationEntry.journal_entry_id == JournalEntry.id)
                .where(
                    FxRevaluationEntry.tenant_id == ctx.tenant_id,
                    FxRevaluationEntry.status == FxGainLossStatus.UNREALIZED,
                    JournalEntry.status.not_in(UNBOOKED_ENTRY_STATUSES),
                    *conditions,
                )
                .order_by(FxRevaluationEntry.id)
            ).scalars().all()
        )

    def _batch_is_live(self, batch: FxRevaluationBatch) -> bool:
        entry = (
            self.db.get(JournalEntry, batch.journal_entry_id)
            if batch.journal_entry_id is not None else None
        )
        return entry is None or entry.status not in UNBOOKED_ENTRY_STATUSES

    def _release_batch(self, ctx, batch: FxRevaluationBatch) -> None:
        """Retire a batch whose entry never reached, or left, the ledger."""
        now = utcnow()
        batch.status = FxBatchStatus.REVERSED
        for entry in batch.entries:
            if entry.status == FxGainLossStatus.UNREALIZED:
                entry.status = FxGainLossStatus.REVERSED
                entry.reversed_at = now
                entry.reversed_by = ctx.actor_id
        self.db.flush()
        logger.info(
            "fx_revaluation_released",
            extra={"batch_id": batch.id, "entry_id": batch.journal_entry_id},
        )

    def _open_items(self, ctx, scope: FxScope, base_currency: str) -> list[OpenItem]:
        conditions = [
            OpenItem.tenant_id == ctx.tenant_id,
            OpenItem.status == OpenItemStatus.OPEN,
            OpenItem.currency_code != base_currency,
        ]
        if ctx.sub_scope_id is not None:
            conditions.append(OpenItem.sub_scope_id == ctx.sub_scope_id)
        if scope.currency_codes:
            conditions.append(
                OpenItem.currency_code.in_([c.upper() for c in scope.currency_codes])
            )
        if scope.account_ids:
            conditions.append(OpenItem.account_id.in_(scope.account_ids))
        return list(
            self.db.execute(
                select(OpenItem).where(*conditions).order_by(OpenItem.id)
            ).scalars().all()
        )

    @staticmethod
    def _revaluation_lines(
        lines: list[RevaluationLine],
        gain_account: LedgerAccount,
        loss_account: LedgerAccount,
    ) -> list[JournalLineCreate]:
        """
        Net each account's delta into one line, then book total
        gains to the gain account and total losses to the loss
        account.
        """
        net_by_account: dict[int, Decimal] = defaultdict(lambda: ZERO)
        gains = losses = ZERO
        for line in lines:
            net_by_account[line.account_id] += line.gain_loss_amount
            if line.gain_loss_amount > 0:
                gains += line.gain_loss_amount
            else:
                losses -= line.gain_loss_amount

        postings = []
        for account_id, net in sorted(net_by_account.items()):
            if net > 0:
                postings.append(JournalLineCreate(
                    account_id=account_id, debit_amount=net,
                    description="FX revaluation adjustment",
                ))
            elif net < 0:
                postings.append(JournalLineCreate(
                    account_id=account_id, credit_amount=-net,
                    description="FX revaluation adjustment",
                ))
        if gains > 0:
            postings.append(JournalLineCreate(
                account_id=gain_account.id, credit_amount=gains,
                description="Unrealized FX gain",
            ))
        if losses > 0:
            postings.append(JournalLineCreate(
                account_id=loss_account.id, debit_amount=losses,
                description="Unrealized FX loss",
            ))
        for number, posting in enumerate(postings, start=1):
            posting.line_number = number
        return postings

    # --- Settlement ---

    def settle_open_item(
        self,
        ctx: RequestContext,
        open_item_id: int,
        settlement_rate,
        settlement_date: date,
    ) -> SettlementResult:
        """
        Clear an open item at settlement_rate.

        The realized difference is measured against the booked
        base amount. Unrealized revaluations of the item are
        marked REVERSED and taken back out in the same entry.
        """
        item = self.get_open_item(ctx, open_item_id)
        if item.status == OpenItemStatus.CLEARED:
            raise StateError(
                f"Open item {item.document_number} is already settled",
                current_status=item.status.value,
                requested="SETTLE",
            )
        rate = validate_rate(settlement_rate, field="settlement_rate")
        period = self.journal.validator.periods.find_open_period(
            ctx.tenant_id, settlement_date
        )
        if period is None:
            raise ValidationError.single(
                "CLOSED_PERIOD",
                f"No open period covers {settlement_date.isoformat()}",
                field="settlement_date",
            )

        config = self.ledger.effective_configuration(ctx)
        settled_base = Money(item.remaining_amount, item.currency_code).convert(
            rate, config.base_currency, self.policy
        ).amount
        realized = settled_base - item.remaining_amount_base
        unrealized_entries = self._live_unrealized(
            ctx, FxRevaluationEntry.open_item_id == item.id
        )
        unrealized = sum((e.gain_loss_amount for e in unrealized_entries), ZERO)

        postings = []
        adjustment = realized - unrealized
        if adjustment > 0:
            postings.append(JournalLineCreate(
                account_id=item.account_id, debit_amount=adjustment,
                description=f"Settlement of {item.document_number}",
            ))
        elif adjustment < 0:
            postings.append(JournalLineCreate(
                account_id=item.account_id, credit_amount=-adjustment,
                description=f"Settlement of {item.document_number}",
            ))
        if unrealized > 0:
            account = self._require_account(
                ctx, config.fx_unrealized_gain_account_id, "fx_unrealized_gain_account_id"
            )
            postings.append(JournalLineCreate(
                account_id=account.id, debit_amount=unrealized,
                description="Reverse unrealized FX gain",
            ))
        elif unrealized < 0:
            account = self._require_account(
                ctx, config.fx_unrealized_loss_account_id, "fx_unrealized_loss_account_id"
            )
            postings.append(JournalLineCreate(
                account_id=account.id, credit_amount=-unrealized,
                description="Reverse unrealized FX loss",
            ))
        if realized > 0:
            account = self._require_account(
                ctx, config.fx_realized_gain_account_id, "fx_realized_gain_account_id"
            )
            postings.append(JournalLineCreate(
                account_id=account.id, credit_amount=realized,
                description="Realized FX gain",
            ))
        elif realized < 0:
            account = self._require_account(
                ctx, config.fx_realized_loss_account_id, "fx_realized_loss_account_id"
            )
            postings.append(JournalLineCreate(
                account_id=account.id, debit_amount=-realized,
                description="Realized FX loss",
            ))

        now = utcnow()
        before = {
            "status": item.status.value,
            "remaining_amount": str(item.remaining_amount),
            "remaining_amount_base": str(item.remaining_amount_base),
        }
        for entry in unrealized_entries:
            entry.status = FxGainLossStatus.REVERSED
            entry.reversed_at = now
            entry.reversed_by = ctx.actor_id

        realized_entry = FxRevaluationEntry(
            tenant_id=ctx.tenant_id,
            sub_scope_id=item.sub_scope_id,
            account_id=item.account_id,
            open_item_id=item.id,
            currency_code=item.currency_code,
            original_amount=item.remaining_amount,
            original_amount_base=item.remaining_amount_base,
            original_rate=item.booked_rate,
            revaluation_date=settlement_date,
            revaluation_rate=rate,
            revalued_amount_base=settled_base,
            gain_loss_amount=realized,
            status=FxGainLossStatus.REALIZED,
            created_by=ctx.actor_id,
        )
        self.db.add(realized_entry)

        item.remaining_amount = ZERO
        item.remaining_amount_base = ZERO
        item.status = OpenItemStatus.CLEARED
        item.settled_at = now
        self.db.flush()

        result = SettlementResult(
            open_item=item, realized_amount=realized, unrealized_reversed=unrealized
        )
        if postings:
            for number, posting in enumerate(postings, start=1):
                posting.line_number = number
            draft = JournalEntryCreate(
                entry_date=settlement_date,
                period_id=period.id,
                entry_type=JournalEntryType.ADJUSTMENT,
                source_module=SourceModule.FX_REVALUATION,
                source_id=str(item.id),
                source_reference=item.document_number,
                description=f"FX settlement of {item.document_number}",
                currency_code=config.base_currency,
                lines=postings,
            )
            result.journal_entry = self.journal.create_journal_entry(ctx, draft)
            result.approval_request = self.posting.submit(ctx, result.journal_entry.id)
            realized_entry.journal_entry_id = result.journal_entry.id
            self.db.flush()

        self.audit.record(
            ctx, "OpenItem", item.id, AuditAction.FX_SETTLED,
            previous_values=before,
            new_values={
                "status": item.status.value,
                "settlement_rate": str(rate),
                "realized_amount": str(realized),
                "unrealized_reversed": str(unrealized),
                "journal_entry_id": result.journal_entry.id if result.journal_entry else None,
            },
        )
        logger.info(
            "open_item_settled",
            extra={
                "open_item_id": item.id,
                "realized": realized,
                "unrealized_reversed": unrealized,
            },
        )
        return result

    # --- Internals ---

    def _require_account(self, ctx, account_id: int | None, field_name: str) -> LedgerAccount:
        account = (
            self.journal.validator.accounts.resolve_account(ctx.tenant_id, account_id)
            if account_id is not None else None
        )
        if account is None:
            raise ValidationError.single(
                "UNKNOWN_ACCOUNT",
                f"No FX gain/loss account configured for {field_name}",
                field=field_name,
            )
        return account

    def _next_batch_number(self, tenant_id: str, on: date) -> str:
        count = self.db.execute(
            select(func.count()).select_from(FxRevaluationBatch).where(
                FxRevaluationBatch.tenant_id == tenant_id
            )
        ).scalar_one()
        return f"FXR-{on:%Y%m%d}-{count + 1:04d}"
