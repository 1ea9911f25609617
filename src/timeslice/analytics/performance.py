"""Performance scoring, response time, activity streaks and goals."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta
from typing import Any

from timeslice.analytics.aggregation import group_by_periods
from timeslice.analytics.metrics import PeriodRecords, calculate_change, rate, round_half_up, sum_credits
from timeslice.analytics.records import ApplicationRecord, MessageRecord, UserRecord
from timeslice.analytics.time_ranges import generate_periods

SCORE_WEIGHTS = {
    "rating": 0.3,
    "successRate": 0.25,
    "experience": 0.2,
    "consistency": 0.15,
    "activity": 0.1,
}

EXPERIENCE_TARGET_TASKS = 50
CONSISTENCY_TARGET_RATINGS = 20
ACTIVITY_TARGET_APPLICATIONS = 10

RATING_GOAL = 4.5
TASKS_GOAL = 50


def score_components(user: UserRecord, applications: Sequence[ApplicationRecord]) -> dict[str, float]:
    """Each component normalized to [0, 1]."""
    accepted = sum(1 for a in applications if a.status == "accepted")
    return {
        "rating": (user.rating or 0) / 5,
        "successRate": accepted / len(applications) if applications else 0.0,
        "experience": min((user.completed_tasks or 0) / EXPERIENCE_TARGET_TASKS, 1),
        "consistency": min((user.total_ratings or 0) / CONSISTENCY_TARGET_RATINGS, 1),
        "activity": min(len(applications) / ACTIVITY_TARGET_APPLICATIONS, 1),
    }


def performance_score(user: UserRecord, applications: Sequence[ApplicationRecord]) -> int:
    components = score_components(user, applications)
    return round_half_up(sum(components[name] * weight for name, weight in SCORE_WEIGHTS.items()) * 100)


def consistency_score(user: UserRecord) -> float:
    return min((user.total_ratings or 0) * (user.rating or 0) / 25, 100)


def average_response_time(user_id: str, messages: Iterable[MessageRecord]) -> float:
    """Mean hours between a message the user received and their next reply in the same chat.

    Only the first reply after a run of incoming messages counts, measured
    from the earliest unanswered incoming message. 0 when the user never
    replied.
    """
    by_chat: dict[str, list[MessageRecord]] = defaultdict(list)
    for message in messages:
        by_chat[message.chat_id].append(message)

    gaps: list[float] = []
    for chat_messages in by_chat.values():
        chat_messages.sort(key=lambda m: m.created_at)
        waiting_since: datetime | None = None
        for message in chat_messages:
            if message.sender_id != user_id:
                if waiting_since is None:
                    waiting_since = message.created_at
            elif waiting_since is not None:
                gaps.append((message.created_at - waiting_since).total_seconds() / 3600)
                waiting_since = None

    if not gaps:
        return 0.0
    return round(sum(gaps) / len(gaps), 2)


def growth_rate(current: PeriodRecords, previous: PeriodRecords) -> int:
    """Change in credits earned against the preceding window."""
    return calculate_change(
        sum_credits(current.completed_helper_bookings),
        sum_credits(previous.completed_helper_bookings),
    )


def performance_timeline(
    user: UserRecord,
    applications: Sequence[ApplicationRecord],
    time_range: str,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Score per bucket from that bucket's applications and the user's standing."""
    periods = generate_periods(time_range, now)
    grouped = group_by_periods(applications, periods, lambda a: a.created_at)
    return [
        {"date": period.date, "score": performance_score(user, grouped[period.index])}
        for period in periods
    ]


def activity_days(records: PeriodRecords, messages: Iterable[MessageRecord] = ()) -> set[date]:
    """UTC calendar days on which the user did anything."""
    user_id = records.user_id
    days = {t.created_at.date() for t in records.created_tasks}
    days.update(a.created_at.date() for a in records.sent_applications)
    days.update(b.created_at.date() for b in records.bookings)
    days.update(b.completed_at.date() for b in records.completed_helper_bookings if b.completed_at)
    days.update(m.created_at.date() for m in messages if m.sender_id == user_id)
    return days


def calculate_streaks(days: set[date], today: date) -> dict[str, Any]:
    """Current and longest runs of consecutive active days.

    The current streak is still alive if the last active day is today or
    yesterday.
    """
    if not days:
        return {"current": 0, "longest": 0, "type": "daily_activity"}

    ordered = sorted(days)
    longest = run = 1
    for previous, day in zip(ordered, ordered[1:]):
        run = run + 1 if day - previous == timedelta(days=1) else 1
        longest = max(longest, run)

    current = 0
    cursor = today if today in days else today - timedelta(days=1)
    while cursor in days:
        current += 1
        cursor -= timedelta(days=1)

    return {"current": current, "longest": longest, "type": "daily_activity"}


def goal_progress(user: UserRecord) -> list[dict[str, Any]]:
    rating = user.rating or 0
    completed = user.completed_tasks or 0
    return [
        {
            "id": "rating_goal",
            "title": "Achieve 4.5+ Rating",
            "current": rating,
            "target": RATING_GOAL,
            "progress": min(rating / RATING_GOAL * 100, 100),
        },
        {
            "id": "tasks_goal",
            "title": "Complete 50 Tasks",
            "current": completed,
            "target": TASKS_GOAL,
            "progress": min(completed / TASKS_GOAL * 100, 100),
        },
    ]


def build_performance(
    user: UserRecord,
    current: PeriodRecords,
    previous: PeriodRecords,
    messages: Sequence[MessageRecord],
    time_range: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    sent = current.sent_applications
    accepted = current.sent_with_status("accepted")
    return {
        "overallScore": performance_score(user, sent),
        "rating": user.rating or 0,
        "successRate": round(rate(len(accepted), len(sent)), 2),
        "responseTime": average_response_time(user.id, messages),
        "consistency": round(consistency_score(user), 2),
        "growth": growth_rate(current, previous),
        "timeline": performance_timeline(user, sent, time_range, now),
    }
