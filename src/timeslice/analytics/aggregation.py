"""Generic time-bucketed aggregation.

Buckets timestamped records into the fixed-width periods of a time range,
reduces each bucket per metric to sum/count/average/min/max, and classifies
the trend of the bucket series with an ordinary least-squares slope.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from timeslice.analytics.metrics import round_half_up
from timeslice.analytics.records import BookingRecord, TaskRecord
from timeslice.analytics.time_ranges import Period, generate_periods, period_index

logger = structlog.get_logger()

TREND_SLOPE_THRESHOLD = 0.1
DEFAULT_OUTLIER_THRESHOLD = 2.0
TOP_SKILLS_LIMIT = 20
DEFAULT_METRICS = ("successRate", "rating", "earnings")

# Aliases a metric may appear under in heterogeneous records.
_METRIC_ALIASES: dict[str, tuple[str, ...]] = {
    "successRate": ("applicationSuccessRate", "successRate"),
    "rating": ("rating",),
    "earnings": ("creditsEarned", "agreedCredits", "earnings"),
    "completionRate": ("taskCompletionRate", "completionRate"),
    "responseTime": ("averageResponseTime", "responseTime"),
}


# ---------------------------------------------------------------------------
# Trend and outliers
# ---------------------------------------------------------------------------


def calculate_trend(values: Sequence[float]) -> dict[str, Any]:
    """Classify a series by its least-squares slope over the bucket index."""
    clean = [float(v) for v in values if v is not None and not math.isnan(v)]
    if len(clean) < 2:
        return {"direction": "stable", "strength": 0.0, "change": 0.0, "slope": 0.0}

    n = len(clean)
    sum_x = sum(range(n))
    sum_y = sum(clean)
    sum_xy = sum(i * v for i, v in enumerate(clean))
    sum_xx = sum(i * i for i in range(n))
    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x * sum_x)

    first, last = clean[0], clean[-1]
    change = (last - first) / first * 100 if first else 0.0

    if slope > TREND_SLOPE_THRESHOLD:
        direction = "increasing"
    elif slope < -TREND_SLOPE_THRESHOLD:
        direction = "decreasing"
    else:
        direction = "stable"

    return {
        "direction": direction,
        "strength": round(abs(slope), 2),
        "change": round(change, 2),
        "slope": round(slope, 2),
    }


def detect_outliers(values: Sequence[float], threshold: float = DEFAULT_OUTLIER_THRESHOLD) -> list[dict[str, Any]]:
    """Flag points whose z-score exceeds ``threshold``. Descriptive only; nothing is removed."""
    if len(values) < 2:
        return []
    mean = sum(values) / len(values)
    stddev = math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))
    if stddev == 0:
        return []
    outliers = []
    for index, value in enumerate(values):
        z_score = abs(value - mean) / stddev
        if z_score > threshold:
            outliers.append({"index": index, "value": value, "zScore": round(z_score, 2)})
    return outliers


# ---------------------------------------------------------------------------
# Bucketing
# ---------------------------------------------------------------------------


def has_metric(item: Mapping[str, Any], metric: str) -> bool:
    return any(item.get(key) is not None for key in _METRIC_ALIASES.get(metric, (metric,)))


def extract_metric_value(item: Mapping[str, Any], metric: str) -> float:
    for key in _METRIC_ALIASES.get(metric, (metric,)):
        value = item.get(key)
        if value:
            return float(value)
    return 0.0


def _as_datetime(value: Any) -> datetime | None:
    """Accept datetimes or ISO strings; naive values are taken as UTC."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def group_by_periods(
    items: Iterable[Any],
    periods: list[Period],
    moment_of: Callable[[Any], datetime | None],
) -> dict[int, list[Any]]:
    """Assign each item to the bucket containing its timestamp; out-of-range items are dropped."""
    grouped: dict[int, list[Any]] = {p.index: [] for p in periods}
    for item in items:
        moment = moment_of(item)
        if moment is None:
            continue
        index = period_index(periods, moment)
        if index is not None:
            grouped[index].append(item)
    return grouped


def _empty_point(period: Period) -> dict[str, Any]:
    return {"period": period.label, "date": period.end.isoformat(), "value": 0, "min": 0, "max": 0, "total": 0, "count": 0}


def aggregate_performance(
    data: Sequence[Mapping[str, Any]],
    time_range: str = "7d",
    metrics: Sequence[str] = DEFAULT_METRICS,
    now: datetime | None = None,
    date_field: str = "createdAt",
) -> dict[str, Any]:
    """Bucket ``data`` over ``time_range`` and summarize each metric per bucket.

    Every bucket of the range is present in the output; empty buckets are
    zero-filled.
    """
    periods = generate_periods(time_range, now)
    grouped = group_by_periods(data, periods, lambda item: _as_datetime(item.get(date_field)))

    series: dict[str, list[dict[str, Any]]] = {m: [] for m in metrics}
    summary: dict[str, dict[str, float]] = {}
    trends: dict[str, dict[str, Any]] = {}

    for metric in metrics:
        total = 0.0
        count = 0
        low = math.inf
        high = -math.inf
        for period in periods:
            values = [extract_metric_value(item, metric) for item in grouped[period.index] if has_metric(item, metric)]
            if not values:
                series[metric].append(_empty_point(period))
                continue
            bucket_total = sum(values)
            series[metric].append(
                {
                    "period": period.label,
                    "date": period.end.isoformat(),
                    "value": round(bucket_total / len(values), 2),
                    "min": min(values),
                    "max": max(values),
                    "total": bucket_total,
                    "count": len(values),
                }
            )
            total += bucket_total
            count += len(values)
            low = min(low, min(values))
            high = max(high, max(values))

        summary[metric] = {
            "total": total,
            "average": round(total / count, 2) if count else 0,
            "min": low if count else 0,
            "max": high if count else 0,
            "count": count,
        }
        trends[metric] = calculate_trend([point["value"] for point in series[metric]])

    logger.debug(
        "performance_data_aggregated",
        time_range=time_range,
        metrics_count=len(metrics),
        periods_count=len(periods),
        data_points=len(data),
    )
    return {
        "periods": [
            {"key": p.key, "label": p.label, "date": p.end.isoformat(), "start": p.start.isoformat(), "end": p.end.isoformat()}
            for p in periods
        ],
        "metrics": series,
        "summary": summary,
        "trends": trends,
    }


# ---------------------------------------------------------------------------
# Task and earnings rollups
# ---------------------------------------------------------------------------


def aggregate_by_category(tasks: Iterable[TaskRecord]) -> list[dict[str, Any]]:
    """Per-category task counts and credit totals, busiest category first."""
    categories: dict[str, dict[str, Any]] = {}
    for task in tasks:
        name = task.category or "Uncategorized"
        entry = categories.setdefault(
            name,
            {"name": name, "totalTasks": 0, "completedTasks": 0, "activeTasks": 0, "cancelledTasks": 0, "totalCredits": 0},
        )
        entry["totalTasks"] += 1
        entry["totalCredits"] += task.credits or 0
        if task.status == "completed":
            entry["completedTasks"] += 1
        elif task.status in ("assigned", "in-progress"):
            entry["activeTasks"] += 1
        elif task.status == "cancelled":
            entry["cancelledTasks"] += 1

    result = []
    for entry in categories.values():
        completion = round_half_up(entry["completedTasks"] / entry["totalTasks"] * 100)
        result.append(
            {
                **entry,
                "averageCredits": round_half_up(entry["totalCredits"] / entry["totalTasks"]),
                "successRate": completion,
                "completionRate": completion,
            }
        )
    return sorted(result, key=lambda c: c["totalTasks"], reverse=True)


def skill_growth_rate(skill: str, tasks: Iterable[TaskRecord], now: datetime) -> int:
    """Demand for ``skill`` in the last 30 days against the 30 days before."""
    recent_start = now - timedelta(days=30)
    older_start = now - timedelta(days=60)
    recent = older = 0
    for task in tasks:
        if skill not in task.skills_required:
            continue
        if task.created_at >= recent_start:
            recent += 1
        elif task.created_at >= older_start:
            older += 1
    if older == 0:
        return 100 if recent > 0 else 0
    return round_half_up((recent - older) / older * 100)


def aggregate_skills_demand(tasks: Sequence[TaskRecord], now: datetime) -> list[dict[str, Any]]:
    """Top skills by number of tasks requiring them."""
    skills: dict[str, dict[str, Any]] = {}
    for task in tasks:
        for name in task.skills_required or ("General",):
            entry = skills.setdefault(name, {"name": name, "demand": 0, "completedTasks": 0, "totalCredits": 0})
            entry["demand"] += 1
            entry["totalCredits"] += task.credits or 0
            if task.status == "completed":
                entry["completedTasks"] += 1

    total_demand = sum(s["demand"] for s in skills.values())
    result = [
        {
            **entry,
            "averageCredits": round_half_up(entry["totalCredits"] / entry["demand"]),
            "completionRate": round_half_up(entry["completedTasks"] / entry["demand"] * 100),
            "marketShare": round_half_up(entry["demand"] / total_demand * 100) if total_demand else 0,
            "growthRate": skill_growth_rate(entry["name"], tasks, now),
        }
        for entry in skills.values()
    ]
    result.sort(key=lambda s: s["demand"], reverse=True)
    return result[:TOP_SKILLS_LIMIT]


def generate_earnings_timeline(
    bookings: Iterable[BookingRecord],
    time_range: str = "30d",
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Earnings per bucket by completion time, with a running cumulative total."""
    periods = generate_periods(time_range, now)
    grouped = group_by_periods(bookings, periods, lambda b: b.completed_at)

    timeline = []
    cumulative = 0
    for period in periods:
        bucket = grouped[period.index]
        earnings = sum(b.agreed_credits or 0 for b in bucket)
        cumulative += earnings
        timeline.append(
            {
                "date": period.label,
                "fullDate": period.end.isoformat(),
                "earnings": earnings,
                "taskCount": len(bucket),
                "averageEarning": round_half_up(earnings / len(bucket)) if bucket else 0,
                "cumulativeEarnings": cumulative,
            }
        )
    return timeline
