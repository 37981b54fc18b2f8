"""
Journal entry validation.

Validation runs in four stages and stops at the first stage
that finds a problem, reporting every issue of that stage:

1. structural   line count bounds, one positive side per line,
                no negative amounts, unique line numbers,
                currency and rate shape
2. referential  accounts resolvable and active, period open
                for posting and containing the entry date
3. arithmetic   debits equal credits in document currency and,
                when the document is in a foreign currency, in
                base currency recomputed line by line
4. semantic     intercompany counterparty, subledger references

validate() has no side effects. On success it returns the
computed totals and per-line base amounts for storage.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from general_ledger.exceptions import ValidationError, ValidationIssue
from general_ledger.logging_config import get_logger
from general_ledger.models.enums import PeriodStatus, SubledgerType
from general_ledger.models.financial_period import FinancialPeriod
from general_ledger.models.ledger_account import LedgerAccount
from general_ledger.money import (
    MAX_RATE,
    MIN_RATE,
    ZERO,
    RoundingPolicy,
    to_decimal,
)
from general_ledger.schemas.journal_entry import JournalEntryCreate, JournalLineCreate
from general_ledger.services.directory import (
    AccountDirectory,
    PeriodService,
    SubledgerDirectory,
)

logger = get_logger("services.journal_validator")

ONE = Decimal("1")


@dataclass
class ValidatedLine:
    line_number: int
    account: LedgerAccount
    source: JournalLineCreate
    debit_amount: Decimal
    credit_amount: Decimal
    debit_amount_base: Decimal
    credit_amount_base: Decimal


@dataclass
class ValidatedEntry:
    period: FinancialPeriod
    currency_code: str
    exchange_rate: Decimal
    lines: list[ValidatedLine] = field(default_factory=list)
    total_debit: Decimal = ZERO
    total_credit: Decimal = ZERO
    total_debit_base: Decimal = ZERO
    total_credit_base: Decimal = ZERO


def _is_valid_rate(value: Decimal) -> bool:
    return MIN_RATE < value < MAX_RATE


class JournalValidator:

    def __init__(
        self,
        accounts: AccountDirectory,
        periods: PeriodService,
        subledgers: SubledgerDirectory,
        policy: RoundingPolicy,
        max_lines: int = 100,
    ):
        self.accounts = accounts
        self.periods = periods
        self.subledgers = subledgers
        self.policy = policy
        self.max_lines = max_lines

    def validate(
        self,
        tenant_id: str,
        draft: JournalEntryCreate,
        base_currency: str,
        mirror: bool = False,
    ) -> ValidatedEntry:
        """
        Run the four stages in order, raising on the first that fails.

        mirror=True validates the reversal of an already posted
        entry: accounts may since have been deactivated and subledger
        documents settled, so the active-account and subledger checks
        are skipped.
        """
        currency, rate = self._check_structure(draft, base_currency)
        accounts, period = self._check_references(tenant_id, draft, mirror)
        result = self._check_arithmetic(draft, currency, rate, base_currency, accounts, period)
        self._check_semantics(tenant_id, draft, mirror)
        return result

    # --- Stage 1 ---

    def _check_structure(self, draft: JournalEntryCreate, base_currency: str):
        issues: list[ValidationIssue] = []
        count = len(draft.lines)
        if count < 2:
            issues.append(ValidationIssue(
                "TOO_FEW_LINES",
                f"A journal entry needs at least 2 lines, got {count}",
                field="lines",
            ))
        elif count > self.max_lines:
            issues.append(ValidationIssue(
                "TOO_MANY_LINES",
                f"A journal entry may have at most {self.max_lines} lines, got {count}",
                field="lines",
            ))

        seen: set[int] = set()
        for number, line in self._numbered(draft):
            if number in seen:
                issues.append(ValidationIssue(
                    "DUPLICATE_LINE_NUMBER",
                    f"Line number {number} is used more than once",
                    line_number=number,
                    field="line_number",
                ))
            seen.add(number)

            debit = to_decimal(line.debit_amount)
            credit = to_decimal(line.credit_amount)
            if debit < 0 or credit < 0:
                issues.append(ValidationIssue(
                    "NEGATIVE_AMOUNT",
                    f"Line {number}: amounts must not be negative",
                    line_number=number,
                ))
            elif debit > 0 and credit > 0:
                issues.append(ValidationIssue(
                    "BOTH_SIDES_NONZERO",
                    f"Line {number}: a line cannot have both a debit and a credit",
                    line_number=number,
                ))
            elif debit == 0 and credit == 0:
                issues.append(ValidationIssue(
                    "NO_AMOUNT",
                    f"Line {number}: a line must have a debit or a credit amount",
                    line_number=number,
                ))

            if line.exchange_rate is not None and not _is_valid_rate(
                to_decimal(line.exchange_rate)
            ):
                issues.append(ValidationIssue(
                    "INVALID_EXCHANGE_RATE",
                    f"Line {number}: exchange rate {line.exchange_rate} is out of range",
                    line_number=number,
                    field="exchange_rate",
                ))

        currency = (draft.currency_code or base_currency).strip().upper()
        if len(currency) != 3 or not currency.isascii() or not currency.isalpha():
            issues.append(ValidationIssue(
                "INVALID_CURRENCY",
                f"Invalid currency code: {draft.currency_code!r}",
                field="currency_code",
            ))

        rate = to_decimal(draft.exchange_rate)
        if not _is_valid_rate(rate):
            issues.append(ValidationIssue(
                "INVALID_EXCHANGE_RATE",
                f"Exchange rate {rate} is out of range",
                field="exchange_rate",
            ))
        elif currency == base_currency and rate != ONE:
            issues.append(ValidationIssue(
                "INVALID_EXCHANGE_RATE",
                f"Exchange rate must be 1 for base currency {base_currency}, got {rate}",
                field="exchange_rate",
            ))

        self._raise_if(issues, "structural")
        return currency, rate

    # --- Stage 2 ---

    def _check_references(
        self, tenant_id: str, draft: JournalEntryCreate, mirror: bool = False
    ):
        issues: list[ValidationIssue] = []
        accounts: dict[int, LedgerAccount] = {}

        for number, line in self._numbered(draft):
            ref = line.account_id if line.account_id is not None else line.account_code
            account = self.accounts.resolve_account(tenant_id, ref)
            if account is None:
                issues.append(ValidationIssue(
                    "UNKNOWN_ACCOUNT",
                    f"Line {number}: account {ref!r} not found",
                    line_number=number,
                    field="account_id",
                ))
            elif not account.is_active and not mirror:
                issues.append(ValidationIssue(
                    "INACTIVE_ACCOUNT",
                    f"Line {number}: account {account.code} is not active",
                    line_number=number,
                    field="account_id",
                ))
            else:
                accounts[number] = account

        period, issue = self._resolve_period(tenant_id, draft.period_id, draft.entry_date)
        if issue is not None:
            issues.append(issue)

        self._raise_if(issues, "referential")
        return accounts, period

    def _resolve_period(self, tenant_id: str, period_id: int | None, entry_date: date):
        if period_id is None:
            period = self.periods.find_open_period(tenant_id, entry_date)
            if period is not None:
                return period, None
            covering = self.periods.find_period(tenant_id, entry_date)
            if covering is None:
                return None, ValidationIssue(
                    "UNKNOWN_PERIOD",
                    f"No financial period covers {entry_date.isoformat()}",
                    field="period_id",
                )
            return None, ValidationIssue(
                "CLOSED_PERIOD",
                f"Period {covering.name} is {covering.status.value} and "
                f"not open for posting",
                field="period_id",
            )

        period = self.periods.get_period(tenant_id, period_id)
        if period is None:
            return None, ValidationIssue(
                "UNKNOWN_PERIOD",
                f"Period {period_id} not found",
                field="period_id",
            )
        if not self.periods.is_open_for_posting(tenant_id, period_id, entry_date):
            if period.status == PeriodStatus.OPEN:
                message = (
                    f"Entry date {entry_date.isoformat()} is outside "
                    f"period {period.name}"
                )
            else:
                message = (
                    f"Period {period.name} is {period.status.value} and "
                    f"not open for posting"
                )
            return None, ValidationIssue("CLOSED_PERIOD", message, field="period_id")
        return period, None

    # --- Stage 3 ---

    def _check_arithmetic(
        self, draft, currency, rate, base_currency, accounts, period
    ) -> ValidatedEntry:
        policy = self.policy
        issues: list[ValidationIssue] = []
        result = ValidatedEntry(period=period, currency_code=currency, exchange_rate=rate)

        for number, line in self._numbered(draft):
            debit = to_decimal(line.debit_amount)
            credit = to_decimal(line.credit_amount)
            if currency == base_currency:
                debit_base, credit_base = policy.quantize(debit), policy.quantize(credit)
            elif draft.imported and (
                line.debit_amount_base is not None or line.credit_amount_base is not None
            ):
                debit_base = to_decimal(line.debit_amount_base)
                credit_base = to_decimal(line.credit_amount_base)
            else:
                line_rate = to_decimal(line.exchange_rate) if line.exchange_rate else rate
                debit_base = policy.apply_rate(debit, line_rate)
                credit_base = policy.apply_rate(credit, line_rate)

            result.lines.append(ValidatedLine(
                line_number=number,
                account=accounts[number],
                source=line,
                debit_amount=debit,
                credit_amount=credit,
                debit_amount_base=debit_base,
                credit_amount_base=credit_base,
            ))
            result.total_debit += debit
            result.total_credit += credit
            result.total_debit_base += debit_base
            result.total_credit_base += credit_base

        if not policy.is_balanced(result.total_debit, result.total_credit):
            issues.append(ValidationIssue(
                "UNBALANCED",
                f"Total debits ({policy.format(result.total_debit)}) must equal "
                f"total credits ({policy.format(result.total_credit)})",
            ))
        elif not policy.is_balanced(result.total_debit_base, result.total_credit_base):
            issues.append(ValidationIssue(
                "UNBALANCED_BASE",
                f"Base currency debits ({policy.format(result.total_debit_base)}) "
                f"must equal base currency credits "
                f"({policy.format(result.total_credit_base)})",
            ))

        self._raise_if(issues, "arithmetic")
        return result

    # --- Stage 4 ---

    def _check_semantics(
        self, tenant_id: str, draft: JournalEntryCreate, mirror: bool = False
    ) -> None:
        issues: list[ValidationIssue] = []
        for number, line in self._numbered(draft):
            if line.is_intercompany and not line.intercompany_sub_scope_id:
                issues.append(ValidationIssue(
                    "MISSING_INTERCOMPANY_COUNTERPARTY",
                    f"Line {number}: intercompany lines need a counterparty sub-scope",
                    line_number=number,
                    field="intercompany_sub_scope_id",
                ))
            if mirror or line.subledger_type == SubledgerType.NONE:
                continue
            if not self.subledgers.resolve(
                tenant_id, line.subledger_type, line.subledger_reference
            ):
                issues.append(ValidationIssue(
                    "UNRESOLVED_SUBLEDGER_REFERENCE",
                    f"Line {number}: {line.subledger_type.value} reference "
                    f"{line.subledger_reference!r} could not be resolved",
                    line_number=number,
                    field="subledger_reference",
                ))
        self._raise_if(issues, "semantic")

    # --- Helpers ---

    @staticmethod
    def _numbered(draft: JournalEntryCreate):
        for index, line in enumerate(draft.lines, start=1):
            yield (line.line_number or index), line

    @staticmethod
    def _raise_if(issues: list[ValidationIssue], stage: str) -> None:
        if issues:
            logger.debug(
                "journal_entry_rejected",
                extra={"stage": stage, "reasons": [i.reason for i in issues]},
            )
            raise ValidationError(issues)
