"""
Integer minor-unit arithmetic.

Every amount in the system is an ``int`` in the currency's minor unit.  Rates
are ``Decimal``.  The only place a fractional value is turned back into an
amount is ``apply_rate``/``divide_round``, which round half-up so repeated
runs are deterministic.
"""

from decimal import ROUND_HALF_UP, Decimal

from market_kernel.exceptions import ValidationError

_ONE = Decimal("1")


def round_half_up(value: Decimal) -> int:
    """Round a Decimal to the nearest integer, ties away from zero."""
    return int(value.quantize(_ONE, rounding=ROUND_HALF_UP))


def apply_rate(amount: int, rate: Decimal) -> int:
    """``round(amount * rate)`` in minor units."""
    return round_half_up(Decimal(amount) * rate)


def extract_inclusive_tax(gross: int, rate: Decimal) -> int:
    """Tax contained in a tax-inclusive amount: ``round(gross * rate / (1 + rate))``."""
    if rate == 0:
        return 0
    return round_half_up(Decimal(gross) * rate / (_ONE + rate))


def divide_round(amount: int, divisor: int) -> int:
    """``round(amount / divisor)`` in minor units."""
    return round_half_up(Decimal(amount) / Decimal(divisor))


def to_rate(value: object) -> Decimal:
    """Coerce a config value (str, int, Decimal) to a Decimal rate.

    Floats are converted through ``str`` so ``0.2`` becomes ``Decimal('0.2')``.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def ensure_minor_units(field: str, value: object) -> int:
    """Reject anything that is not an integer amount (bool and float included)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, value, "amounts must be integer minor units")
    return value
