"""
Revenue Aggregator (``market_modules.revenue.service``).

Read-only reporting across the three revenue streams:

    marketplace    platform commission on completed resource-sale settlements
    subscriptions  price paid on subscriptions, split by plan audience
    ads            amount paid on active ad placements

Settlements for subscription or ad payments are not read here; those
streams come from their own ledgers, so nothing is counted twice.

Overview and time series are built from the same chunked scan, so the
buckets of a series always add up to the overview total for the same range.
A scan that passes its deadline stops between chunks and reports
``truncated=True`` with the range it actually covered.
"""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from market_kernel.domain.clock import Clock, SystemClock, as_utc
from market_kernel.domain.money import round_half_up
from market_kernel.exceptions import ValidationError
from market_kernel.logging_config import get_logger
from market_modules.parties.directory import PartyDirectory, SqlPartyDirectory
from market_modules.revenue.config import RevenueConfig
from market_modules.revenue.models import (
    RECURRING_SUBSCRIPTION_STATUSES,
    REVENUE_SUBSCRIPTION_STATUSES,
    TERMINAL_SUBSCRIPTION_STATUSES,
    AdStatus,
    Audience,
    BillingPeriod,
    BreakdownEntity,
    BreakdownPage,
    BreakdownRow,
    ChurnSnapshot,
    DateRange,
    Granularity,
    MrrSnapshot,
    RecentTransaction,
    RevenueOverview,
    RevenueStream,
    StreamTotal,
    TimeSeries,
    TimeSeriesPoint,
)
from market_modules.revenue.orm import AdPaymentModel, SubscriptionModel, SubscriptionPlanModel
from market_modules.revenue.ranges import (
    bucket_key,
    bucket_starts,
    choose_granularity,
    chunk_range,
    next_month,
    resolve_range,
    start_of_month,
)
from market_modules.settlement.models import SettlementStatus, SourceType
from market_modules.settlement.orm import SettlementModel

logger = get_logger("modules.revenue.service")

_TWELVE = Decimal("12")
_CENT = Decimal("0.01")


@dataclass(frozen=True)
class _Entry:
    """One revenue-bearing row."""

    stream: RevenueStream
    occurred_at: datetime
    amount: int
    audience: Audience | None = None


@dataclass(frozen=True)
class _Scan:
    entries: tuple[_Entry, ...]
    truncated: bool
    covered: DateRange | None


class RevenueAggregator:
    """
    Revenue reports for the admin dashboards.

    Contract:
        Pure reads: nothing is written and no locks are taken, so reports
        run alongside settlement writes and see committed data as of the
        moment each query runs.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: RevenueConfig | None = None,
        party_directory: PartyDirectory | None = None,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or RevenueConfig.with_defaults()
        self._parties = party_directory or SqlPartyDirectory(session)
        self._timer = timer

    @property
    def currency(self) -> str:
        return self._config.reporting_currency

    def resolve_range(
        self,
        preset: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> DateRange:
        """Raises InvalidDateRangeError for an unknown preset or start > end."""
        return resolve_range(self._clock.now(), preset=preset, start=start, end=end)

    # =========================================================================
    # Scanning
    # =========================================================================

    def _bounds(self, column, lo: datetime, hi: datetime, last: bool) -> list:
        return [column >= lo, column <= hi if last else column < hi]

    def _chunk_entries(
        self,
        lo: datetime,
        hi: datetime,
        last: bool,
        streams: frozenset[RevenueStream],
    ) -> list[_Entry]:
        entries: list[_Entry] = []

        if RevenueStream.MARKETPLACE in streams:
            rows = self._session.execute(
                select(SettlementModel.occurred_at, SettlementModel.platform_commission)
                .where(
                    SettlementModel.source_type == SourceType.RESOURCE_SALE.value,
                    SettlementModel.status == SettlementStatus.COMPLETED.value,
                    SettlementModel.currency == self.currency,
                    *self._bounds(SettlementModel.occurred_at, lo, hi, last),
                )
            ).all()
            entries.extend(
                _Entry(RevenueStream.MARKETPLACE, as_utc(ts), amount) for ts, amount in rows
            )

        if RevenueStream.SUBSCRIPTIONS in streams:
            rows = self._session.execute(
                select(
                    SubscriptionModel.started_at,
                    SubscriptionModel.price_paid_minor_units,
                    SubscriptionPlanModel.audience,
                )
                .join(SubscriptionPlanModel, SubscriptionModel.plan_id == SubscriptionPlanModel.id)
                .where(
                    SubscriptionModel.status.in_([s.value for s in REVENUE_SUBSCRIPTION_STATUSES]),
                    SubscriptionModel.currency == self.currency,
                    *self._bounds(SubscriptionModel.started_at, lo, hi, last),
                )
            ).all()
            entries.extend(
                _Entry(RevenueStream.SUBSCRIPTIONS, as_utc(ts), amount, Audience(audience))
                for ts, amount, audience in rows
            )

        if RevenueStream.ADS in streams:
            rows = self._session.execute(
                select(AdPaymentModel.paid_at, AdPaymentModel.paid_amount_minor_units)
                .where(
                    AdPaymentModel.status == AdStatus.ACTIVE.value,
                    AdPaymentModel.currency == self.currency,
                    *self._bounds(AdPaymentModel.paid_at, lo, hi, last),
                )
            ).all()
            entries.extend(_Entry(RevenueStream.ADS, as_utc(ts), amount) for ts, amount in rows)

        return entries

    def _scan(self, date_range: DateRange, streams: Iterable[RevenueStream] | None) -> _Scan:
        wanted = frozenset(streams) if streams else frozenset(RevenueStream)
        timeout = self._config.timeout_seconds
        deadline = self._timer() + timeout if timeout is not None else None

        entries: list[_Entry] = []
        covered_end: datetime | None = None
        chunks = chunk_range(date_range, self._config.scan_chunk_days)
        for index, (lo, hi, last) in enumerate(chunks):
            # The first chunk always runs so a slow store still returns something.
            if index > 0 and deadline is not None and self._timer() > deadline:
                logger.warning(
                    "revenue_scan_truncated",
                    extra={
                        "requested_start": date_range.start,
                        "requested_end": date_range.end,
                        "covered_end": covered_end,
                        "chunks_done": index,
                        "chunks_total": len(chunks),
                    },
                )
                return _Scan(
                    entries=tuple(entries),
                    truncated=True,
                    covered=DateRange(start=date_range.start, end=covered_end),
                )
            entries.extend(self._chunk_entries(lo, hi, last, wanted))
            covered_end = hi if last else hi - timedelta(microseconds=1)

        return _Scan(entries=tuple(entries), truncated=False, covered=date_range)

    # =========================================================================
    # Overview / time series
    # =========================================================================

    def overview(
        self,
        date_range: DateRange,
        streams: Iterable[RevenueStream] | None = None,
    ) -> RevenueOverview:
        """Per-stream revenue and counts; subscriptions split by audience."""
        t0 = time.monotonic()
        scan = self._scan(date_range, streams)

        marketplace = [0, 0]
        ads = [0, 0]
        by_audience: dict[Audience, list[int]] = {a: [0, 0] for a in Audience}
        for entry in scan.entries:
            if entry.stream is RevenueStream.MARKETPLACE:
                bucket = marketplace
            elif entry.stream is RevenueStream.ADS:
                bucket = ads
            else:
                bucket = by_audience[entry.audience]
            bucket[0] += entry.amount
            bucket[1] += 1

        result = RevenueOverview(
            range=date_range,
            currency=self.currency,
            marketplace=StreamTotal(*marketplace),
            subscriptions_by_audience=tuple(
                (audience, StreamTotal(*by_audience[audience])) for audience in Audience
            ),
            ads=StreamTotal(*ads),
            truncated=scan.truncated,
            covered=scan.covered,
        )
        logger.info(
            "revenue_overview_computed",
            extra={
                "total": result.total,
                "count": result.total_count,
                "truncated": result.truncated,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return result

    def time_series(
        self,
        date_range: DateRange,
        granularity: Granularity | None = None,
        streams: Iterable[RevenueStream] | None = None,
    ) -> TimeSeries:
        """
        Zero-filled buckets, one per UTC day or month in the covered range.

        Granularity defaults to months when the range is longer than the
        configured threshold.
        """
        granularity = granularity or choose_granularity(
            date_range, self._config.month_granularity_threshold_days,
        )
        scan = self._scan(date_range, streams)

        sums: dict[str, dict[RevenueStream, int]] = defaultdict(lambda: defaultdict(int))
        for entry in scan.entries:
            sums[bucket_key(entry.occurred_at, granularity)][entry.stream] += entry.amount

        points = []
        for start in bucket_starts(scan.covered, granularity):
            key = bucket_key(start, granularity)
            bucket = sums.get(key, {})
            points.append(TimeSeriesPoint(
                key=key,
                start=start,
                marketplace=bucket.get(RevenueStream.MARKETPLACE, 0),
                subscriptions=bucket.get(RevenueStream.SUBSCRIPTIONS, 0),
                ads=bucket.get(RevenueStream.ADS, 0),
            ))

        return TimeSeries(
            range=date_range,
            granularity=granularity,
            currency=self.currency,
            points=tuple(points),
            truncated=scan.truncated,
            covered=scan.covered,
        )

    # =========================================================================
    # Subscription metrics
    # =========================================================================

    def mrr(self) -> MrrSnapshot:
        """
        Monthly recurring revenue from active and trialing subscriptions
        that are not set to cancel.

        Annual plans count one twelfth of their price, lifetime plans
        nothing.  The sum is rounded once, at the end.
        """
        now = self._clock.now()
        rows = self._session.execute(
            select(SubscriptionPlanModel.billing_period, SubscriptionPlanModel.price_minor_units)
            .join(SubscriptionModel, SubscriptionModel.plan_id == SubscriptionPlanModel.id)
            .where(
                SubscriptionModel.status.in_([s.value for s in RECURRING_SUBSCRIPTION_STATUSES]),
                SubscriptionModel.cancel_at_period_end.is_(False),
                SubscriptionModel.started_at <= now,
                SubscriptionPlanModel.currency == self.currency,
            )
        ).all()

        total = Decimal("0")
        for period, price in rows:
            period = BillingPeriod(period)
            if period is BillingPeriod.MONTHLY:
                total += Decimal(price)
            elif period is BillingPeriod.ANNUAL:
                total += Decimal(price) / _TWELVE

        return MrrSnapshot(
            currency=self.currency,
            mrr_minor_units=round_half_up(total),
            active_subscribers=len(rows),
            as_of=now,
        )

    def churn(self, month_start: datetime | None = None) -> ChurnSnapshot:
        """
        Churn for the calendar month containing ``month_start`` (default:
        the current month).

        Denominator: subscriptions live at month start.  That is, started
        before it, not cancelled before it, paid period not over before it,
        and not sitting in a terminal status unless the cancellation
        happened on or after month start.  Numerator: those of them
        cancelled during the month.  Zero when the denominator is zero.
        """
        start = start_of_month(month_start or self._clock.now())
        end = next_month(start)

        existed = [
            SubscriptionModel.started_at < start,
            or_(SubscriptionModel.cancelled_at.is_(None), SubscriptionModel.cancelled_at >= start),
            or_(
                SubscriptionModel.current_period_end.is_(None),
                SubscriptionModel.current_period_end >= start,
            ),
            or_(
                SubscriptionModel.status.not_in([s.value for s in TERMINAL_SUBSCRIPTION_STATUSES]),
                SubscriptionModel.cancelled_at >= start,
            ),
        ]
        start_count = self._session.execute(
            select(func.count(SubscriptionModel.id)).where(*existed)
        ).scalar_one()
        churned_count = self._session.execute(
            select(func.count(SubscriptionModel.id)).where(
                *existed,
                SubscriptionModel.cancelled_at >= start,
                SubscriptionModel.cancelled_at < end,
            )
        ).scalar_one()

        if start_count:
            rate = (Decimal(churned_count) * 100 / Decimal(start_count)).quantize(
                _CENT, rounding=ROUND_HALF_UP,
            )
        else:
            rate = Decimal("0.00")
        return ChurnSnapshot(
            month_start=start,
            start_count=start_count,
            churned_count=churned_count,
            churn_rate=rate,
        )

    # =========================================================================
    # Breakdown
    # =========================================================================

    def breakdown(
        self,
        entity_type: BreakdownEntity,
        date_range: DateRange,
        page: int = 1,
        limit: int | None = None,
    ) -> BreakdownPage:
        """
        Revenue per seller or per school, largest first, one page at a time.

        Raises:
            ValidationError: page < 1 or limit outside 1..max_page_size.
        """
        limit = limit if limit is not None else self._config.default_page_size
        if page < 1:
            raise ValidationError("page", page, "must be >= 1")
        if not 1 <= limit <= self._config.max_page_size:
            raise ValidationError(
                "limit", limit, f"must be between 1 and {self._config.max_page_size}"
            )

        if entity_type is BreakdownEntity.SELLER:
            totals = self._seller_totals(date_range)
        else:
            totals = self._school_totals(date_range)

        ordered = sorted(totals.items(), key=lambda kv: (-kv[1]["revenue"], str(kv[0])))
        window = ordered[(page - 1) * limit: page * limit]
        parties = self._parties.get_many(entity_id for entity_id, _ in window)

        rows = []
        for entity_id, figures in window:
            party = parties.get(entity_id)
            rows.append(BreakdownRow(
                entity_id=entity_id,
                name=party.display_name if party else "Unknown",
                email=party.email if party else None,
                revenue=figures["revenue"],
                count=figures["count"],
                components=tuple(
                    (name, value) for name, value in figures.items()
                    if name not in ("revenue", "count")
                ),
            ))

        return BreakdownPage(
            entity_type=entity_type,
            range=date_range,
            currency=self.currency,
            rows=tuple(rows),
            page=page,
            limit=limit,
            total=len(ordered),
            grand_total=sum(figures["revenue"] for _, figures in ordered),
        )

    def _seller_totals(self, date_range: DateRange) -> dict[UUID, dict[str, int]]:
        rows = self._session.execute(
            select(
                SettlementModel.seller_id,
                func.count(SettlementModel.id),
                func.sum(SettlementModel.gross_amount),
                func.sum(SettlementModel.platform_commission),
                func.sum(SettlementModel.seller_earnings),
            )
            .where(
                SettlementModel.source_type == SourceType.RESOURCE_SALE.value,
                SettlementModel.status == SettlementStatus.COMPLETED.value,
                SettlementModel.currency == self.currency,
                SettlementModel.occurred_at >= date_range.start,
                SettlementModel.occurred_at <= date_range.end,
            )
            .group_by(SettlementModel.seller_id)
        ).all()
        return {
            seller_id: {
                "revenue": int(earnings),
                "count": int(count),
                "gross": int(gross),
                "commission": int(commission),
                "earnings": int(earnings),
            }
            for seller_id, count, gross, commission, earnings in rows
        }

    def _school_totals(self, date_range: DateRange) -> dict[UUID, dict[str, int]]:
        totals: dict[UUID, dict[str, int]] = defaultdict(
            lambda: {"revenue": 0, "count": 0, "subscriptions": 0, "ads": 0}
        )
        subscription_rows = self._session.execute(
            select(
                SubscriptionModel.subscriber_id,
                func.count(SubscriptionModel.id),
                func.sum(SubscriptionModel.price_paid_minor_units),
            )
            .join(SubscriptionPlanModel, SubscriptionModel.plan_id == SubscriptionPlanModel.id)
            .where(
                SubscriptionPlanModel.audience == Audience.SCHOOL.value,
                SubscriptionModel.status.in_([s.value for s in REVENUE_SUBSCRIPTION_STATUSES]),
                SubscriptionModel.currency == self.currency,
                SubscriptionModel.started_at >= date_range.start,
                SubscriptionModel.started_at <= date_range.end,
            )
            .group_by(SubscriptionModel.subscriber_id)
        ).all()
        for school_id, count, amount in subscription_rows:
            entry = totals[school_id]
            entry["subscriptions"] += int(amount)
            entry["revenue"] += int(amount)
            entry["count"] += int(count)

        ad_rows = self._session.execute(
            select(
                AdPaymentModel.school_id,
                func.count(AdPaymentModel.id),
                func.sum(AdPaymentModel.paid_amount_minor_units),
            )
            .where(
                AdPaymentModel.status == AdStatus.ACTIVE.value,
                AdPaymentModel.currency == self.currency,
                AdPaymentModel.paid_at >= date_range.start,
                AdPaymentModel.paid_at <= date_range.end,
            )
            .group_by(AdPaymentModel.school_id)
        ).all()
        for school_id, count, amount in ad_rows:
            entry = totals[school_id]
            entry["ads"] += int(amount)
            entry["revenue"] += int(amount)
            entry["count"] += int(count)
        return dict(totals)

    # =========================================================================
    # Recent transactions
    # =========================================================================

    def recent_transactions(
        self,
        limit: int = 20,
        stream: RevenueStream | None = None,
    ) -> list[RecentTransaction]:
        """Latest payments across streams, newest first.  ``limit`` is capped."""
        limit = max(1, min(limit, self._config.recent_transactions_limit))
        transactions: list[RecentTransaction] = []

        if stream in (None, RevenueStream.MARKETPLACE):
            rows = self._session.execute(
                select(SettlementModel)
                .where(
                    SettlementModel.source_type == SourceType.RESOURCE_SALE.value,
                    SettlementModel.status == SettlementStatus.COMPLETED.value,
                )
                .order_by(SettlementModel.occurred_at.desc())
                .limit(limit)
            ).scalars().all()
            transactions.extend(
                RecentTransaction(
                    stream=RevenueStream.MARKETPLACE,
                    amount_minor_units=row.platform_commission,
                    currency=row.currency,
                    occurred_at=as_utc(row.occurred_at),
                    status=row.status,
                    description=f"Resource sale {row.gateway_transaction_id}",
                    source_id=row.buyer_id,
                )
                for row in rows
            )

        if stream in (None, RevenueStream.SUBSCRIPTIONS):
            rows = self._session.execute(
                select(SubscriptionModel)
                .where(SubscriptionModel.price_paid_minor_units > 0)
                .order_by(SubscriptionModel.started_at.desc())
                .limit(limit)
            ).scalars().all()
            transactions.extend(
                RecentTransaction(
                    stream=RevenueStream.SUBSCRIPTIONS,
                    amount_minor_units=row.price_paid_minor_units,
                    currency=row.currency,
                    occurred_at=as_utc(row.started_at),
                    status=row.status,
                    description=f"{row.plan.name} - {row.plan.audience}",
                    source_id=row.subscriber_id,
                )
                for row in rows
            )

        if stream in (None, RevenueStream.ADS):
            rows = self._session.execute(
                select(AdPaymentModel)
                .where(AdPaymentModel.paid_at.is_not(None))
                .order_by(AdPaymentModel.paid_at.desc())
                .limit(limit)
            ).scalars().all()
            transactions.extend(
                RecentTransaction(
                    stream=RevenueStream.ADS,
                    amount_minor_units=row.paid_amount_minor_units,
                    currency=row.currency,
                    occurred_at=as_utc(row.paid_at),
                    status=row.status,
                    description=row.tier_name,
                    source_id=row.school_id,
                )
                for row in rows
            )

        transactions.sort(key=lambda t: t.occurred_at, reverse=True)
        return transactions[:limit]
