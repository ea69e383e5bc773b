"""Seller tier tracking: rolling net sales, tier state and recomputation."""

from market_modules.tiers.models import (
    RecomputeError,
    RecomputeSummary,
    SellerTierState,
    TierHistoryEntry,
    TierRate,
)
from market_modules.tiers.service import SellerTierTracker

__all__ = [
    "RecomputeError",
    "RecomputeSummary",
    "SellerTierState",
    "SellerTierTracker",
    "TierHistoryEntry",
    "TierRate",
]
