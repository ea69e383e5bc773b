"""
RateConfig schema.

Frozen dataclasses describing everything a money computation reads from
configuration: seller tiers, VAT settings, small-ticket transaction fees,
minimum payouts and invoice identity.  A RateConfig is a value: services
receive it as an argument, never look it up through a global, and cannot
mutate it.  Maps are stored as tuples of ``(key, value)`` pairs for that
reason and exposed through lookup methods.

Amounts are integer minor units.  Rates are Decimal fractions
(``Decimal("0.20")`` is 20%).

Validation happens in ``__post_init__`` and raises ``ValueError``; the rate
store translates that into ``RateConfigInvalidError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

UK_COUNTRIES: frozenset[str] = frozenset({"GB", "UK"})

EU_COUNTRIES: frozenset[str] = frozenset({
    "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR",
    "DE", "GR", "HU", "IE", "IT", "LV", "LT", "LU", "MT", "NL",
    "PL", "PT", "RO", "SK", "SI", "ES", "SE",
})

_ZERO = Decimal("0")
_ONE = Decimal("1")


class PricingType(str, Enum):
    """Whether list prices already contain VAT."""

    INCLUSIVE = "inclusive"  # VAT extracted from the price
    EXCLUSIVE = "exclusive"  # VAT added on top of the price


def _check_rate(name: str, value: Decimal) -> None:
    if not isinstance(value, Decimal):
        raise ValueError(f"{name} must be a Decimal, got {type(value).__name__}")
    if value < _ZERO or value > _ONE:
        raise ValueError(f"{name} must be between 0 and 1, got {value}")


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TierDefinition:
    """
    One seller royalty tier.

    ``min_net_sales`` is inclusive, ``max_net_sales`` exclusive; ``None``
    means open-ended.  Both are minor units of the config's tier currency.
    The platform keeps ``1 - royalty_rate``.
    """

    name: str
    royalty_rate: Decimal
    min_net_sales: int
    max_net_sales: int | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("tier name cannot be empty")
        _check_rate(f"tier {self.name} royalty_rate", self.royalty_rate)
        if self.min_net_sales < 0:
            raise ValueError(f"tier {self.name} min_net_sales cannot be negative")
        if self.max_net_sales is not None and self.max_net_sales <= self.min_net_sales:
            raise ValueError(
                f"tier {self.name} max_net_sales must exceed min_net_sales"
            )

    @property
    def platform_fee_rate(self) -> Decimal:
        return _ONE - self.royalty_rate

    def contains(self, net_sales: int) -> bool:
        if net_sales < self.min_net_sales:
            return False
        return self.max_net_sales is None or net_sales < self.max_net_sales


# ---------------------------------------------------------------------------
# VAT
# ---------------------------------------------------------------------------

DEFAULT_COUNTRY_RATES: tuple[tuple[str, Decimal], ...] = (
    ("AT", Decimal("0.20")), ("BE", Decimal("0.21")), ("BG", Decimal("0.20")),
    ("CY", Decimal("0.19")), ("CZ", Decimal("0.21")), ("DE", Decimal("0.19")),
    ("DK", Decimal("0.25")), ("EE", Decimal("0.20")), ("ES", Decimal("0.21")),
    ("FI", Decimal("0.24")), ("FR", Decimal("0.20")), ("GR", Decimal("0.24")),
    ("HR", Decimal("0.25")), ("HU", Decimal("0.27")), ("IE", Decimal("0.23")),
    ("IT", Decimal("0.22")), ("LT", Decimal("0.21")), ("LU", Decimal("0.17")),
    ("LV", Decimal("0.21")), ("MT", Decimal("0.18")), ("NL", Decimal("0.21")),
    ("PL", Decimal("0.23")), ("PT", Decimal("0.23")), ("RO", Decimal("0.19")),
    ("SE", Decimal("0.25")), ("SI", Decimal("0.22")), ("SK", Decimal("0.20")),
)


@dataclass(frozen=True)
class VatSettings:
    """
    VAT collection settings.

    ``applicable_jurisdictions`` holds region tokens (``UK``, ``EU``) or
    literal ISO country codes.  ``country_rates`` overrides the default rate
    per country; anything not listed falls back to ``default_rate``.
    """

    enabled: bool = True
    default_rate: Decimal = Decimal("0.20")
    pricing_type: PricingType = PricingType.INCLUSIVE
    applicable_jurisdictions: tuple[str, ...] = ("UK", "EU")
    country_rates: tuple[tuple[str, Decimal], ...] = DEFAULT_COUNTRY_RATES
    reverse_charge_enabled: bool = True
    domestic_country: str = "GB"

    def __post_init__(self) -> None:
        _check_rate("vat default_rate", self.default_rate)
        codes = [code for code, _ in self.country_rates]
        if len(codes) != len(set(codes)):
            raise ValueError("vat country_rates contains duplicate countries")
        for code, rate in self.country_rates:
            _check_rate(f"vat rate for {code}", rate)
        if not isinstance(self.pricing_type, PricingType):
            raise ValueError(f"unknown pricing_type {self.pricing_type!r}")

    def is_applicable_country(self, country_code: str | None) -> bool:
        code = (country_code or "").upper()
        for token in self.applicable_jurisdictions:
            if token == "UK" and code in UK_COUNTRIES:
                return True
            if token == "EU" and code in EU_COUNTRIES:
                return True
            if token == code:
                return True
        return False

    def is_domestic(self, country_code: str | None) -> bool:
        code = (country_code or "").upper()
        if self.domestic_country in UK_COUNTRIES:
            return code in UK_COUNTRIES
        return code == self.domestic_country

    def rate_for_country(self, country_code: str | None) -> Decimal:
        code = (country_code or "").upper()
        if self.is_domestic(code):
            return self.default_rate
        for candidate, rate in self.country_rates:
            if candidate == code:
                return rate
        return self.default_rate


# ---------------------------------------------------------------------------
# Fees, payouts, invoices
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransactionFeeRule:
    """Fixed fee charged on tickets strictly below ``threshold_minor_units``."""

    currency: str
    fee_minor_units: int
    threshold_minor_units: int

    def __post_init__(self) -> None:
        if self.fee_minor_units < 0:
            raise ValueError(f"fee for {self.currency} cannot be negative")
        if self.threshold_minor_units < 0:
            raise ValueError(f"fee threshold for {self.currency} cannot be negative")


@dataclass(frozen=True)
class InvoiceSettings:
    """Platform identity and numbering for tax invoices."""

    auto_generate: bool = True
    send_to_email: bool = True
    company_name: str = "Marketplace Platform Ltd"
    company_address: str = ""
    vat_number: str = ""
    invoice_prefix: str = "INV"
    first_invoice_number: int = 1001
    support_email: str = "support@example.com"

    def __post_init__(self) -> None:
        if not self.invoice_prefix or not self.invoice_prefix.strip():
            raise ValueError("invoice_prefix cannot be empty")
        if self.first_invoice_number < 1:
            raise ValueError("first_invoice_number must be positive")


# ---------------------------------------------------------------------------
# RateConfig
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateConfig:
    """
    The complete, immutable rate configuration.

    Tiers must be ordered by ``min_net_sales`` (strictly increasing) and
    must not overlap; only the last tier may be open-ended.
    """

    tiers: tuple[TierDefinition, ...]
    vat: VatSettings = field(default_factory=VatSettings)
    transaction_fees: tuple[TransactionFeeRule, ...] = ()
    minimum_payouts: tuple[tuple[str, int], ...] = ()
    invoice: InvoiceSettings = field(default_factory=InvoiceSettings)
    tier_currency: str = "GBP"
    tier_conversion_rates: tuple[tuple[str, Decimal], ...] = ()
    tier_window_months: int = 12
    recompute_interval_hours: int = 24

    def __post_init__(self) -> None:
        if not self.tiers:
            raise ValueError("at least one tier is required")
        for lower, upper in zip(self.tiers, self.tiers[1:]):
            if upper.min_net_sales <= lower.min_net_sales:
                raise ValueError(
                    f"tier thresholds must be strictly increasing: "
                    f"{lower.name} -> {upper.name}"
                )
            if lower.max_net_sales is None:
                raise ValueError(f"only the last tier may be open-ended ({lower.name})")
            if lower.max_net_sales > upper.min_net_sales:
                raise ValueError(f"tiers {lower.name} and {upper.name} overlap")
        names = [t.name for t in self.tiers]
        if len(names) != len(set(names)):
            raise ValueError("tier names must be unique")
        fee_currencies = [r.currency for r in self.transaction_fees]
        if len(fee_currencies) != len(set(fee_currencies)):
            raise ValueError("duplicate transaction fee rule currency")
        for currency, amount in self.minimum_payouts:
            if amount < 0:
                raise ValueError(f"minimum payout for {currency} cannot be negative")
        for currency, rate in self.tier_conversion_rates:
            if rate <= _ZERO:
                raise ValueError(f"tier conversion rate for {currency} must be positive")
        if self.tier_window_months < 1:
            raise ValueError("tier_window_months must be at least 1")
        if self.recompute_interval_hours < 1:
            raise ValueError("recompute_interval_hours must be at least 1")

    # -- tiers --------------------------------------------------------------

    def lowest_tier(self) -> TierDefinition:
        return self.tiers[0]

    def tier_named(self, name: str) -> TierDefinition | None:
        for tier in self.tiers:
            if tier.name == name:
                return tier
        return None

    def resolve_tier(self, net_sales: int) -> TierDefinition:
        """
        Tier for a rolling net-sales figure.

        Walks from the highest tier down so that a figure sitting exactly on
        a boundary lands in the higher tier.  A figure falling into a gap
        between tiers keeps the tier below it.
        """
        for tier in reversed(self.tiers):
            if tier.contains(net_sales):
                return tier
        for tier in reversed(self.tiers):
            if net_sales >= tier.min_net_sales:
                return tier
        return self.lowest_tier()

    def conversion_rate_to_tier_currency(self, currency: str) -> Decimal | None:
        if currency == self.tier_currency:
            return _ONE
        for candidate, rate in self.tier_conversion_rates:
            if candidate == currency:
                return rate
        return None

    # -- fees and payouts ---------------------------------------------------

    def transaction_fee_for(self, currency: str, gross_minor_units: int) -> int:
        for rule in self.transaction_fees:
            if rule.currency == currency:
                if gross_minor_units < rule.threshold_minor_units:
                    return rule.fee_minor_units
                return 0
        return 0

    def minimum_payout_for(self, currency: str) -> int | None:
        for candidate, amount in self.minimum_payouts:
            if candidate == currency:
                return amount
        return None

    def is_payout_eligible(self, balance_minor_units: int, currency: str) -> bool:
        """A balance is payable once it reaches the currency's minimum payout."""
        minimum = self.minimum_payout_for(currency)
        if minimum is None:
            return balance_minor_units > 0
        return balance_minor_units >= minimum
