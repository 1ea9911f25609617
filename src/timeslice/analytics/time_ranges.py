"""Time range tokens and bucket boundaries.

A time range token (1d, 7d, 30d, 90d, 1y) resolves to an absolute
[start, end] window ending "now". Buckets always cover the full window and
are generated walking backward from "now", so the last bucket ends exactly
at the window end.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal

from timeslice.analytics.errors import InvalidRangeError

TimeRange = Literal["1d", "7d", "30d", "90d", "1y"]

RANGE_DAYS: dict[str, int] = {
    "1d": 1,
    "7d": 7,
    "30d": 30,
    "90d": 90,
    "1y": 365,
}

# Bucket width per range: 2-hour buckets for a day, daily up to a month,
# weekly beyond that.
BUCKET_HOURS: dict[str, int] = {
    "1d": 2,
    "7d": 24,
    "30d": 24,
    "90d": 24 * 7,
    "1y": 24 * 7,
}


@dataclass(frozen=True)
class Period:
    """One fixed-width bucket of a time range."""

    index: int
    start: datetime
    end: datetime
    width_hours: int

    @property
    def key(self) -> str:
        return f"period_{self.index}"

    @property
    def label(self) -> str:
        return format_period_label(self.end, self.width_hours)

    @property
    def date(self) -> str:
        """Bucket start as a calendar date, or a full timestamp for sub-day buckets."""
        if self.width_hours < 24:
            return self.start.isoformat()
        return self.start.date().isoformat()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_time_range(time_range: str) -> str:
    if time_range not in RANGE_DAYS:
        allowed = ", ".join(RANGE_DAYS)
        msg = f"Invalid time range '{time_range}'. Must be one of: {allowed}"
        raise InvalidRangeError(msg)
    return time_range


def validate_window(start: datetime, end: datetime) -> None:
    if end < start:
        msg = f"End date {end.isoformat()} precedes start date {start.isoformat()}"
        raise InvalidRangeError(msg)


def resolve_time_range(time_range: str, now: datetime | None = None) -> tuple[datetime, datetime]:
    """Resolve a token to an absolute (start, end) window ending at ``now``."""
    validate_time_range(time_range)
    end = now or utcnow()
    return end - timedelta(days=RANGE_DAYS[time_range]), end


def previous_window(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    """The immediately preceding window of equal length."""
    return start - (end - start), start


def bucket_count(time_range: str) -> int:
    validate_time_range(time_range)
    return math.ceil(RANGE_DAYS[time_range] * 24 / BUCKET_HOURS[time_range])


def generate_periods(time_range: str, now: datetime | None = None) -> list[Period]:
    """Zero-based, oldest-first buckets ending at ``now``."""
    end = now or utcnow()
    width_hours = BUCKET_HOURS[validate_time_range(time_range)]
    width = timedelta(hours=width_hours)
    total = bucket_count(time_range)

    periods = []
    for offset in range(total - 1, -1, -1):
        period_end = end - offset * width
        periods.append(
            Period(
                index=total - 1 - offset,
                start=period_end - width,
                end=period_end,
                width_hours=width_hours,
            )
        )
    return periods


def period_index(periods: list[Period], moment: datetime) -> int | None:
    """Index of the bucket containing ``moment`` (the final bucket includes its end)."""
    if not periods:
        return None
    first = periods[0]
    last = periods[-1]
    if moment < first.start or moment > last.end:
        return None
    if moment == last.end:
        return last.index
    width = first.end - first.start
    return int((moment - first.start) // width)


def format_period_label(moment: datetime, width_hours: int) -> str:
    """Human label: 'Oct 19, 2 PM' for sub-day buckets, 'Oct 19' daily, 'Week of Oct 19' weekly."""
    day = f"{moment:%b} {moment.day}"
    if width_hours < 24:
        hour = moment.hour % 12 or 12
        meridiem = "AM" if moment.hour < 12 else "PM"
        return f"{day}, {hour} {meridiem}"
    if width_hours == 24:
        return day
    return f"Week of {day}"
