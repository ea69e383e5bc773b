"""
Documented safe defaults.

These values are what reads fall back to when no rate configuration has
been published or the stored one is unreadable.  Settlement never uses
them implicitly: it fails closed instead.  ``sets/default.yaml`` carries the
same values in file form.
"""

from decimal import Decimal

from market_config.schema import (
    InvoiceSettings,
    RateConfig,
    TierDefinition,
    TransactionFeeRule,
    VatSettings,
)

DEFAULT_TIERS: tuple[TierDefinition, ...] = (
    TierDefinition(
        name="Bronze",
        royalty_rate=Decimal("0.60"),
        min_net_sales=0,
        max_net_sales=100_000,
        description="Starting tier for new sellers",
    ),
    TierDefinition(
        name="Silver",
        royalty_rate=Decimal("0.70"),
        min_net_sales=100_000,
        max_net_sales=600_000,
        description="1,000.00+ in trailing net sales",
    ),
    TierDefinition(
        name="Gold",
        royalty_rate=Decimal("0.80"),
        min_net_sales=600_000,
        max_net_sales=None,
        description="Top tier for high-volume sellers",
    ),
)

DEFAULT_TRANSACTION_FEES: tuple[TransactionFeeRule, ...] = (
    TransactionFeeRule("EUR", fee_minor_units=20, threshold_minor_units=300),
    TransactionFeeRule("GBP", fee_minor_units=20, threshold_minor_units=300),
    TransactionFeeRule("USD", fee_minor_units=20, threshold_minor_units=300),
)

DEFAULT_MINIMUM_PAYOUTS: tuple[tuple[str, int], ...] = (
    ("EUR", 6000),
    ("GBP", 5000),
    ("USD", 6500),
)


def default_rate_config() -> RateConfig:
    """Build the default RateConfig."""
    return RateConfig(
        tiers=DEFAULT_TIERS,
        vat=VatSettings(),
        transaction_fees=DEFAULT_TRANSACTION_FEES,
        minimum_payouts=DEFAULT_MINIMUM_PAYOUTS,
        invoice=InvoiceSettings(),
        tier_currency="GBP",
        tier_conversion_rates=(
            ("EUR", Decimal("0.85")),
            ("USD", Decimal("0.79")),
        ),
    )
