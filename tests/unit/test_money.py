"""
Unit tests for integer minor-unit arithmetic.

Verifies:
- Half-up rounding (ties away from zero)
- Inclusive tax extraction
- Rejection of non-integer amounts
"""

from decimal import Decimal

import pytest

from market_kernel.domain.money import (
    apply_rate,
    divide_round,
    ensure_minor_units,
    extract_inclusive_tax,
    round_half_up,
    to_rate,
)
from market_kernel.exceptions import ValidationError


class TestRoundHalfUp:
    """Tests for round_half_up."""

    def test_tie_rounds_up(self):
        assert round_half_up(Decimal("2.5")) == 3

    def test_below_tie_rounds_down(self):
        assert round_half_up(Decimal("2.4999")) == 2

    def test_negative_tie_rounds_away_from_zero(self):
        assert round_half_up(Decimal("-2.5")) == -3

    def test_returns_int(self):
        assert isinstance(round_half_up(Decimal("7")), int)


class TestApplyRate:

    def test_commission_on_net(self):
        """40% of 833 is 333.2, rounded to 333."""
        assert apply_rate(833, Decimal("0.40")) == 333

    def test_zero_rate(self):
        assert apply_rate(12345, Decimal("0")) == 0

    def test_full_rate(self):
        assert apply_rate(12345, Decimal("1")) == 12345


class TestExtractInclusiveTax:

    def test_uk_twenty_percent(self):
        """1000 * 0.2 / 1.2 = 166.67 -> 167."""
        assert extract_inclusive_tax(1000, Decimal("0.20")) == 167

    def test_german_nineteen_percent(self):
        """1000 * 0.19 / 1.19 = 159.66 -> 160."""
        assert extract_inclusive_tax(1000, Decimal("0.19")) == 160

    def test_zero_rate_is_zero(self):
        assert extract_inclusive_tax(1000, Decimal("0")) == 0

    def test_one_minor_unit(self):
        assert extract_inclusive_tax(1, Decimal("0.20")) == 0


class TestDivideRound:

    def test_annual_to_monthly(self):
        """9999 / 12 = 833.25 -> 833."""
        assert divide_round(9999, 12) == 833

    def test_tie(self):
        assert divide_round(18, 12) == 2


class TestToRate:

    def test_string(self):
        assert to_rate("0.20") == Decimal("0.20")

    def test_float_goes_through_str(self):
        assert to_rate(0.2) == Decimal("0.2")

    def test_decimal_passthrough(self):
        rate = Decimal("0.7")
        assert to_rate(rate) is rate


class TestEnsureMinorUnits:

    def test_accepts_int(self):
        assert ensure_minor_units("amount", 100) == 100

    @pytest.mark.parametrize("value", [10.5, Decimal("10"), "10", True, None])
    def test_rejects_non_int(self, value):
        with pytest.raises(ValidationError) as exc_info:
            ensure_minor_units("amount", value)
        assert exc_info.value.field == "amount"
