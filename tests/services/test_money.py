"""
Tests for the amount and currency primitives.
"""

from decimal import Decimal

import pytest

from general_ledger.exceptions import ValidationError
from general_ledger.money import (
    Money,
    RoundingPolicy,
    normalize_currency,
    to_decimal,
    validate_rate,
)


class TestToDecimal:

    def test_float_goes_through_its_repr(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_none_is_zero(self):
        assert to_decimal(None) == Decimal("0")

    def test_garbage_rejected(self):
        with pytest.raises(ValueError, match="Invalid amount"):
            to_decimal("twelve")


class TestCurrency:

    def test_lower_case_normalized(self):
        assert normalize_currency(" eur ") == "EUR"

    @pytest.mark.parametrize("code", ["EU", "EURO", "E1R", "", None])
    def test_invalid_codes_rejected(self, code):
        with pytest.raises(ValidationError) as exc:
            normalize_currency(code)
        assert exc.value.reason == "INVALID_CURRENCY"


class TestRates:

    def test_reasonable_rate_accepted(self):
        assert validate_rate("1.0850") == Decimal("1.0850")

    @pytest.mark.parametrize("rate", ["0", "-1", "0.00000001", "100000000"])
    def test_out_of_band_rate_rejected(self, rate):
        with pytest.raises(ValidationError) as exc:
            validate_rate(rate)
        assert exc.value.reason == "INVALID_EXCHANGE_RATE"


class TestRoundingPolicy:

    def test_half_up(self):
        policy = RoundingPolicy()
        assert policy.quantize(Decimal("1.005")) == Decimal("1.01")
        assert policy.quantize(Decimal("-1.005")) == Decimal("-1.01")

    def test_apply_rate_rounds_once(self):
        policy = RoundingPolicy()
        assert policy.apply_rate(Decimal("1000"), Decimal("1.10")) == Decimal("1100.00")
        assert policy.apply_rate(Decimal("333.33"), Decimal("1.0851")) == Decimal("361.70")

    def test_tolerance_is_strict(self):
        policy = RoundingPolicy(tolerance=Decimal("0.01"))
        assert policy.is_balanced(Decimal("100.00"), Decimal("100.009"))
        assert not policy.is_balanced(Decimal("100.00"), Decimal("100.01"))

    def test_format_pads_to_precision(self):
        assert RoundingPolicy().format(Decimal("700")) == "700.00"


class TestMoney:

    def test_same_currency_addition(self):
        total = Money(Decimal("10.50"), "usd") + Money(Decimal("4.50"), "USD")
        assert total == Money(Decimal("15.00"), "USD")

    def test_subtraction_and_negation(self):
        difference = Money(Decimal("10"), "USD") - Money(Decimal("12.5"), "USD")
        assert difference == Money(Decimal("-2.5"), "USD")
        assert -difference == Money(Decimal("2.5"), "USD")
        assert (difference + -difference).is_zero
        assert Money.zero("eur").currency == "EUR"

    def test_mixed_currency_refused(self):
        with pytest.raises(ValueError, match="Cannot combine"):
            Money(Decimal("1"), "USD") + Money(Decimal("1"), "EUR")

    def test_convert(self):
        policy = RoundingPolicy()
        converted = Money(Decimal("1000"), "EUR").convert(Decimal("1.05"), "USD", policy)
        assert converted == Money(Decimal("1050.00"), "USD")

    def test_convert_to_same_currency_only_rounds(self):
        policy = RoundingPolicy()
        converted = Money(Decimal("10.005"), "USD").convert(Decimal("2"), "USD", policy)
        assert converted.amount == Decimal("10.01")
