"""Currency -- supported ISO 4217 codes, minor-unit precision and display."""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar

from market_kernel.exceptions import UnsupportedCurrencyError


@dataclass(frozen=True)
class CurrencyInfo:
    """Information about a single supported currency."""

    code: str
    decimal_places: int
    name: str
    symbol: str

    @property
    def minor_per_major(self) -> int:
        """Minor units in one major unit (100 for pence per pound)."""
        return 10 ** self.decimal_places


class CurrencyRegistry:
    """Registry of the currencies the marketplace settles in."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        "GBP": CurrencyInfo("GBP", 2, "Pound Sterling", "£"),
        "USD": CurrencyInfo("USD", 2, "US Dollar", "$"),
        "EUR": CurrencyInfo("EUR", 2, "Euro", "€"),
        "PKR": CurrencyInfo("PKR", 2, "Pakistani Rupee", "Rs"),
    }

    @classmethod
    def is_supported(cls, code: str) -> bool:
        return code in cls._CURRENCIES

    @classmethod
    def get(cls, code: str) -> CurrencyInfo:
        """
        Look up a currency.

        Raises:
            UnsupportedCurrencyError: if ``code`` is not registered.
        """
        info = cls._CURRENCIES.get((code or "").upper())
        if info is None:
            raise UnsupportedCurrencyError(code)
        return info

    @classmethod
    def all_codes(cls) -> frozenset[str]:
        return frozenset(cls._CURRENCIES)


def normalize_currency(code: str) -> str:
    """Upper-case and validate a currency code."""
    return CurrencyRegistry.get(code).code


def format_minor_units(amount: int, currency: str) -> str:
    """Render an integer minor-unit amount for display, e.g. ``£10.00``."""
    info = CurrencyRegistry.get(currency)
    major = Decimal(amount) / info.minor_per_major
    sign = "-" if amount < 0 else ""
    return f"{sign}{info.symbol}{abs(major):,.{info.decimal_places}f}"
