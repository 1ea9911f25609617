"""Platform benchmarks and per-user percentile comparison."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from typing import Any

from timeslice.analytics.metrics import rate, round_half_up
from timeslice.analytics.repository import PlatformStats

COMPARISON_METRICS = ("successRate", "rating", "earnings", "activity")

# Which benchmark field each comparison metric is measured against.
_BENCHMARK_FIELD = {
    "successRate": "avgSuccessRate",
    "rating": "avgRating",
    "earnings": "avgTaskValue",
    "activity": "avgApplicationsPerUser",
}

# Which field of the user's metrics carries each comparison metric.
_USER_FIELD = {
    "successRate": "applicationSuccessRate",
    "rating": "rating",
    "earnings": "creditsEarned",
    "activity": "applicationsSubmitted",
}


def build_benchmarks(stats: PlatformStats) -> dict[str, Any]:
    return {
        "avgRating": round(stats.avg_rating, 2),
        "avgCompletedTasks": round(stats.avg_completed_tasks, 2),
        "avgSuccessRate": round_half_up(rate(stats.accepted_applications, stats.total_applications)),
        "avgTaskValue": round_half_up(stats.avg_booking_credits),
        "avgApplicationsPerUser": (
            round(stats.total_applications / stats.total_users, 2) if stats.total_users else 0
        ),
        "totalUsers": stats.total_users,
        "totalApplications": stats.total_applications,
        "totalBookings": stats.total_bookings,
    }


def calculate_percentile(value: float, population: Iterable[float]) -> int:
    """Share of the population strictly below ``value``, 0-100.

    Non-numeric and NaN entries are ignored. An empty population ranks
    everyone at the median.
    """
    values = [
        float(v)
        for v in population
        if isinstance(v, (int, float)) and not isinstance(v, bool) and not math.isnan(v)
    ]
    if not values:
        return 50
    below = sum(1 for v in values if v < value)
    return round_half_up(below / len(values) * 100)


def selected_metrics(metric: str) -> tuple[str, ...]:
    if metric == "all":
        return COMPARISON_METRICS
    if metric not in COMPARISON_METRICS:
        msg = f"Unknown comparison metric: {metric}"
        raise ValueError(msg)
    return (metric,)


def compare_metric(
    metric: str,
    user_metrics: Mapping[str, Any],
    benchmarks: Mapping[str, Any],
    population: Iterable[float],
) -> dict[str, Any]:
    """User value, platform average and percentile for one metric.

    The average is taken over the same per-user distribution the percentile
    ranks against; the benchmark figure is used when that distribution is
    empty.
    """
    values = list(population)
    user_value = float(user_metrics.get(_USER_FIELD[metric]) or 0)
    if values:
        platform_average = round(sum(values) / len(values), 2)
    else:
        platform_average = float(benchmarks.get(_BENCHMARK_FIELD[metric]) or 0)
    return {
        "user": user_value,
        "platformAverage": platform_average,
        "percentile": calculate_percentile(user_value, values),
        "difference": round(user_value - platform_average, 2),
    }


def comparative_summary(user_metrics: Mapping[str, Any], benchmarks: Mapping[str, Any]) -> dict[str, Any]:
    """User vs platform averages, as embedded in the analytics bundle."""
    success = user_metrics.get("applicationSuccessRate", 0)
    rating = user_metrics.get("rating", 0)
    return {
        "platformAverage": benchmarks,
        "userVsPlatform": {
            "successRate": {
                "user": success,
                "platform": benchmarks.get("avgSuccessRate", 0),
                "difference": success - benchmarks.get("avgSuccessRate", 0),
            },
            "rating": {
                "user": rating,
                "platform": benchmarks.get("avgRating", 0),
                "difference": round(rating - benchmarks.get("avgRating", 0), 2),
            },
            "completedTasks": {
                "user": user_metrics.get("completedTasks", 0),
                "platform": benchmarks.get("avgCompletedTasks", 0),
                "difference": round(
                    user_metrics.get("completedTasks", 0) - benchmarks.get("avgCompletedTasks", 0), 2,
                ),
            },
        },
    }
