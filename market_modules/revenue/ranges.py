"""
Date range helpers for revenue reports.

Everything here works in UTC: bucket keys, bucket boundaries and range
edges are computed from UTC datetimes, so a sale at 23:30 UTC is never
reported on the following day.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from market_engines.tiers import subtract_months
from market_kernel.domain.clock import as_utc
from market_kernel.exceptions import InvalidDateRangeError
from market_modules.revenue.models import DateRange, Granularity

PRESETS: dict[str, tuple[str, int]] = {
    "7d": ("days", 7),
    "30d": ("days", 30),
    "90d": ("days", 90),
    "1y": ("months", 12),
}


def start_of_day(moment: datetime) -> datetime:
    return as_utc(moment).replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_month(moment: datetime) -> datetime:
    return start_of_day(moment).replace(day=1)


def next_month(moment: datetime) -> datetime:
    first = start_of_month(moment)
    if first.month == 12:
        return first.replace(year=first.year + 1, month=1)
    return first.replace(month=first.month + 1)


def resolve_preset(preset: str, now: datetime) -> DateRange:
    """
    Range from the start of the day ``preset`` ago up to ``now``.

    Raises:
        InvalidDateRangeError: for an unknown preset.
    """
    try:
        unit, amount = PRESETS[preset]
    except KeyError:
        raise InvalidDateRangeError(preset, f"unknown preset; expected one of {sorted(PRESETS)}") from None
    now = as_utc(now)
    if unit == "months":
        start = subtract_months(now, amount)
    else:
        start = now - timedelta(days=amount)
    return DateRange(start=start_of_day(start), end=now, preset=preset)


def explicit_range(start: datetime, end: datetime) -> DateRange:
    """A caller-supplied range; naive datetimes are read as UTC."""
    return DateRange(start=as_utc(start), end=as_utc(end))


def resolve_range(
    now: datetime,
    preset: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> DateRange:
    """Preset wins; otherwise explicit bounds, defaulting to the last 30 days."""
    if preset:
        return resolve_preset(preset, now)
    if start is None and end is None:
        return resolve_preset("30d", now)
    end = end or now
    start = start or start_of_day(as_utc(end) - timedelta(days=30))
    return explicit_range(start, end)


def choose_granularity(date_range: DateRange, threshold_days: int) -> Granularity:
    return Granularity.MONTH if date_range.days > threshold_days else Granularity.DAY


def bucket_start(moment: datetime, granularity: Granularity) -> datetime:
    if granularity is Granularity.MONTH:
        return start_of_month(moment)
    return start_of_day(moment)


def bucket_key(moment: datetime, granularity: Granularity) -> str:
    moment = as_utc(moment)
    if granularity is Granularity.MONTH:
        return moment.strftime("%Y-%m")
    return moment.strftime("%Y-%m-%d")


def bucket_starts(date_range: DateRange, granularity: Granularity) -> list[datetime]:
    """One start per calendar unit touched by the range, in order."""
    current = bucket_start(date_range.start, granularity)
    last = bucket_start(date_range.end, granularity)
    starts = []
    while current <= last:
        starts.append(current)
        if granularity is Granularity.MONTH:
            current = next_month(current)
        else:
            current = current + timedelta(days=1)
    return starts


def chunk_range(date_range: DateRange, days: int) -> list[tuple[datetime, datetime, bool]]:
    """
    Split a range into scan chunks ``(lo, hi, is_last)``.

    Chunks are half-open ``[lo, hi)`` except the last, which includes ``hi``
    so the range end stays inclusive.
    """
    step = timedelta(days=days)
    chunks = []
    lo = date_range.start
    while True:
        hi = lo + step
        if hi >= date_range.end:
            chunks.append((lo, date_range.end, True))
            return chunks
        chunks.append((lo, hi, False))
        lo = hi

