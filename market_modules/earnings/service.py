"""
Seller earnings (``market_modules.earnings.service``).

The seller-facing side of settlement: what a seller has earned, what is
still owed after refunds and disputes, how sales are trending and how far
the seller is from the next royalty tier.

Balance
-------
Per currency, the seller share of every resource-sale settlement plus the
seller-side deltas of its adjustments.  A refund or dispute hold takes the
earnings back out; a dispute released in the seller's favour puts them
back.  Payout eligibility is decided by the active rate configuration.

Sales
-----
Counts, the monthly series and the recent list only cover settlements that
are currently ``completed``.  Months are UTC calendar months.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from market_config.schema import RateConfig
from market_engines.tiers import subtract_months
from market_kernel.domain.clock import Clock, SystemClock, as_utc
from market_kernel.exceptions import UnknownSellerError, ValidationError
from market_kernel.logging_config import LogContext, get_logger
from market_modules.earnings.models import (
    CurrencyBalance,
    EarningsDashboard,
    MonthlyEarnings,
    SaleCounts,
    SellerSale,
    TierProgress,
)
from market_modules.parties.directory import PartyDirectory, SqlPartyDirectory
from market_modules.parties.models import PartyRole
from market_modules.rates.service import RateConfigStore
from market_modules.revenue.models import Granularity
from market_modules.revenue.ranges import bucket_key, next_month, start_of_month
from market_modules.settlement.models import SettlementStatus, SourceType
from market_modules.settlement.orm import SettlementAdjustmentModel, SettlementModel
from market_modules.tiers.service import SellerTierTracker

logger = get_logger("modules.earnings.service")

_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")

DEFAULT_MONTHS = 6
DEFAULT_RECENT_LIMIT = 10
MAX_RECENT_LIMIT = 100


class SellerEarnings:
    """
    Earnings reads for one seller at a time.

    Contract:
        Pure reads.  Tier state is read as stored; a seller who has never
        sold has no tier progress rather than a freshly created state.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        party_directory: PartyDirectory | None = None,
        rate_store: RateConfigStore | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._parties = party_directory or SqlPartyDirectory(session)
        self._rates = rate_store or RateConfigStore(session, self._clock)
        self._tiers = SellerTierTracker(session, self._clock)

    def _completed_sales(self, seller_id: UUID) -> list:
        return [
            SettlementModel.seller_id == seller_id,
            SettlementModel.source_type == SourceType.RESOURCE_SALE.value,
            SettlementModel.status == SettlementStatus.COMPLETED.value,
        ]

    # =========================================================================
    # Balance
    # =========================================================================

    def balances(self, seller_id: UUID, config: RateConfig | None = None) -> tuple[CurrencyBalance, ...]:
        """
        One balance per currency the seller has sold in or that has a
        configured minimum payout, sorted by currency code.
        """
        config = config or self._rates.current().config
        earned = {
            currency: int(total)
            for currency, total in self._session.execute(
                select(SettlementModel.currency, func.sum(SettlementModel.seller_earnings))
                .where(
                    SettlementModel.seller_id == seller_id,
                    SettlementModel.source_type == SourceType.RESOURCE_SALE.value,
                )
                .group_by(SettlementModel.currency)
            ).all()
        }
        adjusted = {
            currency: int(total)
            for currency, total in self._session.execute(
                select(SettlementAdjustmentModel.currency, func.sum(SettlementAdjustmentModel.earnings_delta))
                .join(SettlementModel, SettlementModel.id == SettlementAdjustmentModel.settlement_id)
                .where(
                    SettlementModel.seller_id == seller_id,
                    SettlementModel.source_type == SourceType.RESOURCE_SALE.value,
                )
                .group_by(SettlementAdjustmentModel.currency)
            ).all()
        }

        currencies = set(earned) | set(adjusted) | {c for c, _ in config.minimum_payouts}
        result = []
        for currency in sorted(currencies):
            available = earned.get(currency, 0) + adjusted.get(currency, 0)
            result.append(CurrencyBalance(
                currency=currency,
                earned=earned.get(currency, 0),
                adjustments=adjusted.get(currency, 0),
                minimum_payout=config.minimum_payout_for(currency),
                payout_eligible=config.is_payout_eligible(available, currency),
            ))
        return tuple(result)

    def balance(self, seller_id: UUID, currency: str) -> CurrencyBalance:
        """The balance in ``currency``; zero when the seller never sold in it."""
        config = self._rates.current().config
        for entry in self.balances(seller_id, config):
            if entry.currency == currency:
                return entry
        return CurrencyBalance(
            currency=currency,
            earned=0,
            adjustments=0,
            minimum_payout=config.minimum_payout_for(currency),
            payout_eligible=config.is_payout_eligible(0, currency),
        )

    # =========================================================================
    # Sales
    # =========================================================================

    def sale_counts(self, seller_id: UUID) -> SaleCounts:
        this_month = start_of_month(self._clock.now())
        last_month = subtract_months(this_month, 1)
        counted = select(func.count(SettlementModel.id)).where(*self._completed_sales(seller_id))
        return SaleCounts(
            total=self._session.execute(counted).scalar_one(),
            this_month=self._session.execute(
                counted.where(SettlementModel.occurred_at >= this_month)
            ).scalar_one(),
            last_month=self._session.execute(
                counted.where(
                    SettlementModel.occurred_at >= last_month,
                    SettlementModel.occurred_at < this_month,
                )
            ).scalar_one(),
        )

    def monthly_earnings(self, seller_id: UUID, months: int = DEFAULT_MONTHS) -> tuple[MonthlyEarnings, ...]:
        """
        The last ``months`` calendar months, current month included, oldest
        first.  Months without sales are present with zeros.

        Raises:
            ValidationError: months < 1.
        """
        if months < 1:
            raise ValidationError("months", months, "must be >= 1")
        current = start_of_month(self._clock.now())
        starts = [subtract_months(current, back) for back in range(months - 1, -1, -1)]

        rows = self._session.execute(
            select(SettlementModel.occurred_at, SettlementModel.currency, SettlementModel.seller_earnings)
            .where(
                *self._completed_sales(seller_id),
                SettlementModel.occurred_at >= starts[0],
                SettlementModel.occurred_at < next_month(current),
            )
        ).all()

        counts: dict[str, int] = defaultdict(int)
        earnings: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        for occurred_at, currency, amount in rows:
            key = bucket_key(occurred_at, Granularity.MONTH)
            counts[key] += 1
            earnings[key][currency] += amount

        points = []
        for start in starts:
            key = bucket_key(start, Granularity.MONTH)
            points.append(MonthlyEarnings(
                key=key,
                start=start,
                sale_count=counts.get(key, 0),
                earnings=tuple(sorted(earnings[key].items())) if key in earnings else (),
            ))
        return tuple(points)

    def recent_sales(self, seller_id: UUID, limit: int = DEFAULT_RECENT_LIMIT) -> tuple[SellerSale, ...]:
        """Newest completed sales first.  ``limit`` is capped."""
        limit = max(1, min(limit, MAX_RECENT_LIMIT))
        rows = self._session.execute(
            select(SettlementModel)
            .where(*self._completed_sales(seller_id))
            .order_by(SettlementModel.occurred_at.desc(), SettlementModel.gateway_transaction_id)
            .limit(limit)
        ).scalars().all()
        return tuple(
            SellerSale(
                settlement_id=row.id,
                gateway_transaction_id=row.gateway_transaction_id,
                currency=row.currency,
                gross=row.gross_amount,
                seller_earnings=row.seller_earnings,
                royalty_rate=row.royalty_rate_snapshot,
                tier=row.tier_snapshot,
                buyer_id=row.buyer_id,
                occurred_at=as_utc(row.occurred_at),
            )
            for row in rows
        )

    # =========================================================================
    # Tier
    # =========================================================================

    def tier_progress(self, seller_id: UUID, config: RateConfig | None = None) -> TierProgress | None:
        state = self._tiers.get_state(seller_id)
        if state is None:
            return None
        config = config or self._rates.current().config

        current = config.tier_named(state.current_tier)
        if current is not None:
            position = config.tiers.index(current)
            upcoming = config.tiers[position + 1] if position + 1 < len(config.tiers) else None
        else:
            # Tier renamed or removed since the last recompute.
            upcoming = next(
                (t for t in config.tiers if t.min_net_sales > state.rolling_net_sales_12mo), None,
            )
        if upcoming is None:
            return TierProgress(
                current_tier=state.current_tier,
                royalty_rate=state.current_royalty_rate,
                tier_currency=state.tier_currency,
                rolling_net_sales=state.rolling_net_sales_12mo,
            )

        progress = Decimal(state.rolling_net_sales_12mo) * _HUNDRED / Decimal(upcoming.min_net_sales)
        return TierProgress(
            current_tier=state.current_tier,
            royalty_rate=state.current_royalty_rate,
            tier_currency=state.tier_currency,
            rolling_net_sales=state.rolling_net_sales_12mo,
            next_tier=upcoming.name,
            next_tier_rate=upcoming.royalty_rate,
            next_tier_threshold=upcoming.min_net_sales,
            progress_percent=min(progress, _HUNDRED).quantize(_CENT, rounding=ROUND_HALF_UP),
        )

    # =========================================================================
    # Dashboard
    # =========================================================================

    def dashboard(self, seller_id: UUID) -> EarningsDashboard:
        """
        Everything the seller earnings page shows, read at one clock time.

        Raises:
            UnknownSellerError: ``seller_id`` is not a registered seller.
        """
        with LogContext.bind(seller_id=str(seller_id)):
            party = self._parties.get(seller_id)
            if party is None or party.role is not PartyRole.SELLER:
                raise UnknownSellerError(str(seller_id))

            config = self._rates.current().config
            dashboard = EarningsDashboard(
                seller_id=seller_id,
                as_of=self._clock.now(),
                balances=self.balances(seller_id, config),
                sales=self.sale_counts(seller_id),
                monthly=self.monthly_earnings(seller_id),
                recent_sales=self.recent_sales(seller_id),
                tier=self.tier_progress(seller_id, config),
            )
            logger.info(
                "seller_earnings_read",
                extra={
                    "total_sales": dashboard.sales.total,
                    "payable_currencies": [b.currency for b in dashboard.balances if b.payout_eligible],
                },
            )
            return dashboard
