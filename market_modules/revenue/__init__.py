"""Revenue reporting across marketplace, subscription and ad streams."""

from market_modules.revenue.config import RevenueConfig
from market_modules.revenue.models import (
    Audience,
    BillingPeriod,
    BreakdownEntity,
    DateRange,
    Granularity,
    RevenueStream,
)
from market_modules.revenue.service import RevenueAggregator

__all__ = [
    "Audience",
    "BillingPeriod",
    "BreakdownEntity",
    "DateRange",
    "Granularity",
    "RevenueAggregator",
    "RevenueConfig",
    "RevenueStream",
]
