"""
Tier Engine - Evaluate a seller's royalty tier from rolling net sales.

Pure functions: the caller supplies the net-sales figure (already in the
config's tier currency) and the RateConfig.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from market_config.schema import RateConfig, TierDefinition
from market_kernel.domain.currency import CurrencyRegistry
from market_kernel.domain.money import round_half_up


class TierTransition(str, Enum):
    """How a re-evaluation moved the seller."""

    UPGRADED = "upgraded"
    DOWNGRADED = "downgraded"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class TierEvaluation:
    """Result of evaluating one seller against the tier table."""

    tier: TierDefinition
    previous_tier_name: str | None
    transition: TierTransition
    net_sales: int

    @property
    def changed(self) -> bool:
        return self.transition is not TierTransition.UNCHANGED


def subtract_months(as_of: datetime, months: int) -> datetime:
    """Calendar-aware ``as_of - months``; the day is clamped to the month's end."""
    total = as_of.year * 12 + (as_of.month - 1) - months
    year, month0 = divmod(total, 12)
    month = month0 + 1
    day = min(as_of.day, calendar.monthrange(year, month)[1])
    return as_of.replace(year=year, month=month, day=day)


def rolling_window_start(as_of: datetime, config: RateConfig) -> datetime:
    """Start of the trailing tier window ending at ``as_of``."""
    return subtract_months(as_of, config.tier_window_months)


def convert_to_tier_currency(
    amount_minor_units: int,
    currency: str,
    config: RateConfig,
) -> int | None:
    """
    Convert an amount into the tier currency's minor units.

    Returns None when the config has no conversion rate for ``currency``.
    """
    rate = config.conversion_rate_to_tier_currency(currency)
    if rate is None:
        return None
    if currency == config.tier_currency:
        return amount_minor_units
    source = CurrencyRegistry.get(currency)
    target = CurrencyRegistry.get(config.tier_currency)
    scale = Decimal(target.minor_per_major) / Decimal(source.minor_per_major)
    return round_half_up(Decimal(amount_minor_units) * rate * scale)


class TierEvaluator:
    """Decide a seller's tier and classify the move from the stored tier."""

    def evaluate(
        self,
        current_tier_name: str | None,
        net_sales: int,
        config: RateConfig,
    ) -> TierEvaluation:
        tier = config.resolve_tier(net_sales)
        if current_tier_name is None or current_tier_name == tier.name:
            transition = TierTransition.UNCHANGED
        else:
            order = [t.name for t in config.tiers]
            # A stored tier no longer in the table ranks below everything.
            old_index = order.index(current_tier_name) if current_tier_name in order else -1
            new_index = order.index(tier.name)
            transition = (
                TierTransition.UPGRADED if new_index > old_index else TierTransition.DOWNGRADED
            )
        return TierEvaluation(
            tier=tier,
            previous_tier_name=current_tier_name,
            transition=transition,
            net_sales=net_sales,
        )
