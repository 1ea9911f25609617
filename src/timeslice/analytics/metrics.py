"""Per-user period metrics.

Pure functions over already-fetched records: partition by role and status,
then reduce to counters and rates. Rates degrade to 0 on empty input and
never divide by zero.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from timeslice.analytics.records import (
    ACTIVE_BOOKING_STATUSES,
    IN_PROGRESS_TASK_STATUSES,
    ApplicationRecord,
    BookingRecord,
    TaskRecord,
    UserRecord,
)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives (matches dashboard display rounding)."""
    return int(math.floor(value + 0.5))


def calculate_change(current: float, previous: float | None) -> int:
    """Percentage change from ``previous`` to ``current``.

    A zero (or missing) previous value yields 100 when there is any current
    activity and 0 otherwise.
    """
    if not previous:
        return 100 if current > 0 else 0
    return round_half_up((current - previous) / previous * 100)


def rate(numerator: float, denominator: float) -> float:
    """numerator / denominator as a percentage, 0 when the denominator is 0."""
    if denominator <= 0:
        return 0.0
    return numerator / denominator * 100


def sum_credits(bookings: list[BookingRecord]) -> int:
    return sum(b.agreed_credits or 0 for b in bookings)


@dataclass
class PeriodRecords:
    """Records for one user and window, partitioned by role and status."""

    user_id: str
    tasks: list[TaskRecord] = field(default_factory=list)
    applications: list[ApplicationRecord] = field(default_factory=list)
    bookings: list[BookingRecord] = field(default_factory=list)

    # tasks
    @property
    def created_tasks(self) -> list[TaskRecord]:
        return [t for t in self.tasks if t.task_provider_id == self.user_id]

    @property
    def helper_tasks(self) -> list[TaskRecord]:
        return [t for t in self.tasks if t.selected_helper_id == self.user_id]

    @property
    def completed_helper_tasks(self) -> list[TaskRecord]:
        return [t for t in self.helper_tasks if t.status == "completed"]

    @property
    def in_progress_tasks(self) -> list[TaskRecord]:
        return [t for t in self.tasks if t.status in IN_PROGRESS_TASK_STATUSES]

    @property
    def open_tasks(self) -> list[TaskRecord]:
        return [t for t in self.tasks if t.status == "open"]

    # applications
    @property
    def sent_applications(self) -> list[ApplicationRecord]:
        return [a for a in self.applications if a.applicant_id == self.user_id]

    @property
    def received_applications(self) -> list[ApplicationRecord]:
        return [a for a in self.applications if a.task_provider_id == self.user_id]

    def sent_with_status(self, status: str) -> list[ApplicationRecord]:
        return [a for a in self.sent_applications if a.status == status]

    # bookings
    @property
    def helper_bookings(self) -> list[BookingRecord]:
        return [b for b in self.bookings if b.helper_id == self.user_id]

    @property
    def provider_bookings(self) -> list[BookingRecord]:
        return [b for b in self.bookings if b.task_provider_id == self.user_id]

    @property
    def completed_bookings(self) -> list[BookingRecord]:
        return [b for b in self.bookings if b.is_completed]

    @property
    def completed_helper_bookings(self) -> list[BookingRecord]:
        return [b for b in self.helper_bookings if b.is_completed]

    @property
    def completed_provider_bookings(self) -> list[BookingRecord]:
        return [b for b in self.provider_bookings if b.is_completed]

    @property
    def active_bookings(self) -> list[BookingRecord]:
        return [b for b in self.bookings if b.status in ACTIVE_BOOKING_STATUSES]

    def received_review_ratings(self) -> list[float]:
        ratings = (b.review_rating_for(self.user_id) for b in self.bookings)
        return [r for r in ratings if r is not None]


def compute_period_metrics(records: PeriodRecords) -> dict[str, float]:
    """Counters and rates for one window, without user standing or deltas."""
    sent = records.sent_applications
    accepted = records.sent_with_status("accepted")
    helper_tasks = records.helper_tasks
    completed_helper_tasks = records.completed_helper_tasks
    completed_bookings = records.completed_bookings

    earned = sum_credits(records.completed_helper_bookings)
    spent = sum_credits(records.completed_provider_bookings)
    reviews = records.received_review_ratings()

    return {
        "tasksCreated": len(records.created_tasks),
        "tasksCompleted": len(completed_helper_tasks),
        "applicationsSubmitted": len(sent),
        "applicationsReceived": len(records.received_applications),
        "applicationsAccepted": len(accepted),
        "pendingApplications": len(records.sent_with_status("pending")),
        "creditsEarned": earned,
        "creditsSpent": spent,
        "netCredits": earned - spent,
        "applicationSuccessRate": round_half_up(rate(len(accepted), len(sent))),
        "taskCompletionRate": round_half_up(rate(len(completed_helper_tasks), len(helper_tasks))),
        "averageTaskValue": round_half_up(earned / len(completed_bookings)) if completed_bookings else 0,
        "activeBookings": len(records.active_bookings),
        "successRate": rate(len(accepted), len(sent)),
        "reviewRating": sum(reviews) / len(reviews) if reviews else 0.0,
    }


def compute_basic_metrics(
    user: UserRecord,
    current: PeriodRecords,
    previous: PeriodRecords,
) -> dict[str, float]:
    """Full metrics bundle: user standing, period counters, and deltas vs the previous window."""
    now = compute_period_metrics(current)
    before = compute_period_metrics(previous)

    metrics: dict[str, float] = {
        "credits": user.credits,
        "rating": user.rating or 0,
        "totalRatings": user.total_ratings or 0,
        "completedTasks": user.completed_tasks or 0,
    }
    for key in (
        "tasksCreated",
        "tasksCompleted",
        "applicationsSubmitted",
        "applicationsReceived",
        "applicationsAccepted",
        "creditsEarned",
        "creditsSpent",
        "netCredits",
        "applicationSuccessRate",
        "taskCompletionRate",
        "averageTaskValue",
        "activeBookings",
        "pendingApplications",
    ):
        metrics[key] = now[key]

    metrics["creditsChange"] = calculate_change(now["creditsEarned"], before["creditsEarned"])
    metrics["ratingChange"] = calculate_change(user.rating or 0, before["reviewRating"])
    metrics["completedTasksChange"] = calculate_change(now["tasksCompleted"], before["tasksCompleted"])
    metrics["applicationsSubmittedChange"] = calculate_change(
        now["applicationsSubmitted"], before["applicationsSubmitted"],
    )
    metrics["successRateChange"] = calculate_change(now["successRate"], before["successRate"])
    return metrics
