"""Per-bucket activity timeline for one user.

Records for the whole window are fetched once and bucketed in memory.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from timeslice.analytics.aggregation import group_by_periods
from timeslice.analytics.metrics import PeriodRecords, rate, round_half_up, sum_credits
from timeslice.analytics.time_ranges import generate_periods


def build_timeline(records: PeriodRecords, time_range: str, now: datetime | None = None) -> list[dict[str, Any]]:
    """One point per bucket of ``time_range``, oldest first.

    Completed work and earnings are bucketed by completion time, tasks and
    applications by creation time.
    """
    user_id = records.user_id
    periods = generate_periods(time_range, now)

    completed_bookings = records.completed_helper_bookings
    reviewed = [b for b in records.completed_bookings if b.review_rating_for(user_id) is not None]

    tasks_by_bucket = group_by_periods(records.created_tasks, periods, lambda t: t.created_at)
    completed_tasks_by_bucket = group_by_periods(
        records.completed_helper_tasks, periods, lambda t: t.updated_at or t.created_at,
    )
    apps_by_bucket = group_by_periods(records.sent_applications, periods, lambda a: a.created_at)
    earnings_by_bucket = group_by_periods(completed_bookings, periods, lambda b: b.completed_at)
    reviews_by_bucket = group_by_periods(reviewed, periods, lambda b: b.completed_at)

    timeline = []
    for period in periods:
        apps = apps_by_bucket[period.index]
        accepted = [a for a in apps if a.status == "accepted"]
        earnings = sum_credits(earnings_by_bucket[period.index])
        ratings = [b.review_rating_for(user_id) for b in reviews_by_bucket[period.index]]
        timeline.append(
            {
                "date": period.date,
                "label": period.label,
                "completedTasks": len(completed_tasks_by_bucket[period.index]),
                "applications": len(apps),
                "earnings": earnings,
                "credits": earnings,
                "tasks": len(tasks_by_bucket[period.index]),
                "rating": round(sum(ratings) / len(ratings), 2) if ratings else 0,
                "successRate": round_half_up(rate(len(accepted), len(apps))),
            }
        )
    return timeline
