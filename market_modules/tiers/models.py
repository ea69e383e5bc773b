"""Seller tier DTOs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class TierHistoryEntry:
    """One tier the seller held, from ``achieved_at`` onwards."""

    tier: str
    royalty_rate: Decimal
    achieved_at: datetime
    net_sales_at_change: int
    previous_tier: str | None = None


@dataclass(frozen=True)
class SellerTierState:
    """
    A seller's tier and the figures it was decided from.

    All sales figures are minor units of ``tier_currency``.
    """

    seller_id: UUID
    current_tier: str
    current_royalty_rate: Decimal
    tier_currency: str
    rolling_net_sales_12mo: int = 0
    rolling_sale_count_12mo: int = 0
    lifetime_net_sales: int = 0
    lifetime_earnings: int = 0
    lifetime_sale_count: int = 0
    last_recomputed_at: datetime | None = None
    next_recompute_due: datetime | None = None
    history: tuple[TierHistoryEntry, ...] = ()


@dataclass(frozen=True)
class TierRate:
    """What settlement needs: the tier name and rate to snapshot."""

    seller_id: UUID
    tier: str
    royalty_rate: Decimal
    created: bool = False


@dataclass(frozen=True)
class RecomputeError:
    seller_id: str
    error_code: str
    error_message: str


@dataclass(frozen=True)
class RecomputeSummary:
    """Outcome of a tier recomputation run.  Per-seller failures are counted, not raised."""

    recalculated: int
    upgraded: int
    downgraded: int
    unchanged: int
    errors: int
    error_details: tuple[RecomputeError, ...] = ()
    job_id: UUID | None = None
    duration_ms: int = 0
