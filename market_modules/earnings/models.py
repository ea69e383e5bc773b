"""
Seller earnings DTOs.

All amounts are integer minor units of the stated currency.  Balances are
never mixed across currencies.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class CurrencyBalance:
    """
    What the platform owes a seller in one currency.

    ``earned`` is the seller share of every resource sale.  ``adjustments``
    is the sum of the seller-side movements written by refunds and
    disputes, so it is zero or negative unless a dispute was released.
    """

    currency: str
    earned: int
    adjustments: int
    minimum_payout: int | None
    payout_eligible: bool

    @property
    def available(self) -> int:
        return self.earned + self.adjustments


@dataclass(frozen=True)
class SaleCounts:
    """Completed sales: all time, this calendar month and the one before."""

    total: int
    this_month: int
    last_month: int


@dataclass(frozen=True)
class MonthlyEarnings:
    """One calendar month of completed sales.  ``key`` is ``YYYY-MM``."""

    key: str
    start: datetime
    sale_count: int = 0
    earnings: tuple[tuple[str, int], ...] = ()  # (currency, minor units), sorted

    def earnings_in(self, currency: str) -> int:
        return dict(self.earnings).get(currency, 0)


@dataclass(frozen=True)
class SellerSale:
    settlement_id: UUID
    gateway_transaction_id: str
    currency: str
    gross: int
    seller_earnings: int
    royalty_rate: Decimal
    tier: str | None
    buyer_id: UUID | None
    occurred_at: datetime


@dataclass(frozen=True)
class TierProgress:
    """
    Where the seller sits on the tier ladder.

    Sales figures are minor units of ``tier_currency``.  ``next_tier`` and
    ``progress_percent`` are None at the top tier.
    """

    current_tier: str
    royalty_rate: Decimal
    tier_currency: str
    rolling_net_sales: int
    next_tier: str | None = None
    next_tier_rate: Decimal | None = None
    next_tier_threshold: int | None = None
    progress_percent: Decimal | None = None


@dataclass(frozen=True)
class EarningsDashboard:
    seller_id: UUID
    as_of: datetime
    balances: tuple[CurrencyBalance, ...]
    sales: SaleCounts
    monthly: tuple[MonthlyEarnings, ...]
    recent_sales: tuple[SellerSale, ...]
    tier: TierProgress | None = None

    def balance_for(self, currency: str) -> CurrencyBalance | None:
        for balance in self.balances:
            if balance.currency == currency:
                return balance
        return None
