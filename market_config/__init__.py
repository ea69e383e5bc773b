"""
Rate configuration: schema, YAML loader and shipped defaults.

The public entry points are ``RateConfig`` (the frozen value every
computation receives), ``default_rate_config()`` and the loader functions.
Persistence and versioning live in ``market_modules.rates``.
"""

from market_config.defaults import default_rate_config
from market_config.loader import (
    compute_checksum,
    load_rate_config,
    parse_rate_config,
    rate_config_to_dict,
)
from market_config.schema import (
    InvoiceSettings,
    PricingType,
    RateConfig,
    TierDefinition,
    TransactionFeeRule,
    VatSettings,
)

__all__ = [
    "InvoiceSettings",
    "PricingType",
    "RateConfig",
    "TierDefinition",
    "TransactionFeeRule",
    "VatSettings",
    "compute_checksum",
    "default_rate_config",
    "load_rate_config",
    "parse_rate_config",
    "rate_config_to_dict",
]
