"""
Revenue report DTOs.

Every report is computed on demand and never stored.  All money figures are
integer minor units of the report's ``currency``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from market_kernel.exceptions import InvalidDateRangeError


class RevenueStream(str, Enum):
    """Platform revenue streams.  Each payment belongs to exactly one."""

    MARKETPLACE = "marketplace"  # Commission on resource sales
    SUBSCRIPTIONS = "subscriptions"
    ADS = "ads"


class Audience(str, Enum):
    """Who a subscription plan is sold to."""

    TEACHER = "teacher"
    SCHOOL = "school"
    RECRUITER = "recruiter"
    SUPPLIER = "supplier"


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"
    LIFETIME = "lifetime"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIAL = "trial"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# Subscriptions that count as revenue when started in a range.
REVENUE_SUBSCRIPTION_STATUSES = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIAL,
    SubscriptionStatus.PAST_DUE,
)

# Subscriptions that contribute to MRR (when not set to cancel).
RECURRING_SUBSCRIPTION_STATUSES = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIAL,
)

# Subscriptions that are over.
TERMINAL_SUBSCRIPTION_STATUSES = (
    SubscriptionStatus.CANCELLED,
    SubscriptionStatus.EXPIRED,
)


class AdStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class Granularity(str, Enum):
    DAY = "day"
    MONTH = "month"


class BreakdownEntity(str, Enum):
    SELLER = "seller"
    SCHOOL = "school"


@dataclass(frozen=True)
class DateRange:
    """Closed UTC interval ``[start, end]``."""

    start: datetime
    end: datetime
    preset: str | None = None

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise InvalidDateRangeError((self.start, self.end), "datetimes must be timezone-aware")
        if self.start > self.end:
            raise InvalidDateRangeError((self.start, self.end), "start is after end")

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    @property
    def days(self) -> int:
        return (self.end - self.start).days


@dataclass(frozen=True)
class StreamTotal:
    revenue: int = 0
    count: int = 0


@dataclass(frozen=True)
class RevenueOverview:
    """Per-stream totals for a range."""

    range: DateRange
    currency: str
    marketplace: StreamTotal
    subscriptions_by_audience: tuple[tuple[Audience, StreamTotal], ...]
    ads: StreamTotal
    truncated: bool = False
    covered: DateRange | None = None

    @property
    def subscriptions(self) -> StreamTotal:
        totals = [t for _, t in self.subscriptions_by_audience]
        return StreamTotal(
            revenue=sum(t.revenue for t in totals),
            count=sum(t.count for t in totals),
        )

    def subscriptions_for(self, audience: Audience) -> StreamTotal:
        return dict(self.subscriptions_by_audience).get(audience, StreamTotal())

    def stream(self, stream: RevenueStream) -> StreamTotal:
        if stream is RevenueStream.MARKETPLACE:
            return self.marketplace
        if stream is RevenueStream.SUBSCRIPTIONS:
            return self.subscriptions
        return self.ads

    @property
    def total(self) -> int:
        return self.marketplace.revenue + self.subscriptions.revenue + self.ads.revenue

    @property
    def total_count(self) -> int:
        return self.marketplace.count + self.subscriptions.count + self.ads.count

    def share_percent(self, stream: RevenueStream) -> Decimal:
        """Stream share of the total, two decimals; 0 when there is no revenue."""
        if self.total == 0:
            return Decimal("0.00")
        share = Decimal(self.stream(stream).revenue) * 100 / Decimal(self.total)
        return share.quantize(Decimal("0.01"))


@dataclass(frozen=True)
class TimeSeriesPoint:
    """One calendar bucket.  ``key`` is ``YYYY-MM-DD`` or ``YYYY-MM``."""

    key: str
    start: datetime
    marketplace: int = 0
    subscriptions: int = 0
    ads: int = 0

    @property
    def total(self) -> int:
        return self.marketplace + self.subscriptions + self.ads


@dataclass(frozen=True)
class TimeSeries:
    range: DateRange
    granularity: Granularity
    currency: str
    points: tuple[TimeSeriesPoint, ...]
    truncated: bool = False
    covered: DateRange | None = None

    @property
    def total(self) -> int:
        return sum(p.total for p in self.points)


@dataclass(frozen=True)
class MrrSnapshot:
    currency: str
    mrr_minor_units: int
    active_subscribers: int
    as_of: datetime


@dataclass(frozen=True)
class ChurnSnapshot:
    month_start: datetime
    start_count: int
    churned_count: int
    churn_rate: Decimal  # Percentage, two decimals


@dataclass(frozen=True)
class BreakdownRow:
    """
    One entity's revenue.

    ``revenue`` is the sort key: seller earnings for sellers, subscription
    plus ad spend for schools.  ``components`` names the parts.
    """

    entity_id: UUID
    name: str
    email: str | None
    revenue: int
    count: int
    components: tuple[tuple[str, int], ...] = ()

    def component(self, name: str) -> int:
        return dict(self.components).get(name, 0)


@dataclass(frozen=True)
class BreakdownPage:
    entity_type: BreakdownEntity
    range: DateRange
    currency: str
    rows: tuple[BreakdownRow, ...]
    page: int
    limit: int
    total: int
    grand_total: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.limit) if self.total else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


@dataclass(frozen=True)
class RecentTransaction:
    stream: RevenueStream
    amount_minor_units: int
    currency: str
    occurred_at: datetime
    status: str
    description: str
    source_id: UUID | None = None
