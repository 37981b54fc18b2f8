"""
Amount and currency primitives.

Amounts are always Decimal, never float. Rounding and the
"balanced enough" tolerance come from one RoundingPolicy,
built from settings and injected wherever amounts are
compared or converted (journal validation, FX revaluation).
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from general_ledger.config import get_settings
from general_ledger.exceptions import ValidationError


ZERO = Decimal("0")

# Exchange rates outside this band are almost certainly data entry errors
MIN_RATE = Decimal("0.0000001")
MAX_RATE = Decimal("100000000")


def to_decimal(value) -> Decimal:
    """Convert int/str/Decimal (or float, via its repr) to Decimal."""
    if isinstance(value, Decimal):
        return value
    if value is None:
        return ZERO
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid amount: {value!r}") from e


def normalize_currency(code: str | None) -> str:
    """Return an upper-case ISO 4217 style code or raise ValidationError."""
    candidate = (code or "").strip().upper()
    if len(candidate) != 3 or not candidate.isascii() or not candidate.isalpha():
        raise ValidationError.single(
            "INVALID_CURRENCY",
            f"Invalid currency code: {code!r}",
            field="currency_code",
        )
    return candidate


def validate_rate(rate, field: str = "exchange_rate") -> Decimal:
    """Check a rate is positive and within sane bounds."""
    value = to_decimal(rate)
    if value <= MIN_RATE or value >= MAX_RATE:
        raise ValidationError.single(
            "INVALID_EXCHANGE_RATE",
            f"Exchange rate {value} is outside the allowed range",
            field=field,
        )
    return value


@dataclass(frozen=True)
class RoundingPolicy:
    """
    Single source of truth for amount precision.

    ``tolerance`` is the absolute difference below which two
    totals count as equal.
    """
    tolerance: Decimal = Decimal("0.01")
    decimal_places: int = 2
    rounding: str = ROUND_HALF_UP

    @property
    def quantum(self) -> Decimal:
        return Decimal(1).scaleb(-self.decimal_places)

    def quantize(self, amount) -> Decimal:
        return to_decimal(amount).quantize(self.quantum, rounding=self.rounding)

    def apply_rate(self, amount, rate) -> Decimal:
        """Convert a document-currency amount to base currency."""
        return self.quantize(to_decimal(amount) * to_decimal(rate))

    def is_balanced(self, left, right) -> bool:
        return abs(to_decimal(left) - to_decimal(right)) < self.tolerance

    def is_negligible(self, amount) -> bool:
        return abs(to_decimal(amount)) < self.tolerance

    def format(self, amount) -> str:
        return f"{self.quantize(amount):.{self.decimal_places}f}"


def get_rounding_policy() -> RoundingPolicy:
    """Build the policy from settings."""
    settings = get_settings()
    return RoundingPolicy(
        tolerance=settings.BALANCE_TOLERANCE,
        decimal_places=settings.AMOUNT_DECIMAL_PLACES,
    )


@dataclass(frozen=True)
class Money:
    """
    A Decimal amount paired with its currency.

    Arithmetic refuses to mix currencies; use convert() to
    move between them.
    """
    amount: Decimal
    currency: str

    def __post_init__(self):
        object.__setattr__(self, "amount", to_decimal(self.amount))
        object.__setattr__(self, "currency", normalize_currency(self.currency))

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(ZERO, currency)

    def _check_currency(self, other: "Money") -> None:
        if other.currency != self.currency:
            raise ValueError(
                f"Cannot combine {self.currency} and {other.currency} amounts"
            )

    def __add__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> "Money":
        return Money(-self.amount, self.currency)

    @property
    def is_zero(self) -> bool:
        return self.amount == ZERO

    def round(self, policy: RoundingPolicy) -> "Money":
        return Money(policy.quantize(self.amount), self.currency)

    def convert(self, rate, to_currency: str, policy: RoundingPolicy) -> "Money":
        if normalize_currency(to_currency) == self.currency:
            return self.round(policy)
        return Money(policy.apply_rate(self.amount, validate_rate(rate)), to_currency)

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"
