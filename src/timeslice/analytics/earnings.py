"""Earnings breakdown over completed helper bookings."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from timeslice.analytics.records import BookingRecord, TaskRecord

UNCATEGORIZED_SKILL = "Other"


def build_earnings(bookings: Sequence[BookingRecord], tasks: Mapping[str, TaskRecord]) -> dict[str, Any]:
    """Total, average, per-skill sums and one transaction per booking.

    A booking whose task lists several skills counts its full amount toward
    each of them.
    """
    total = sum(b.agreed_credits or 0 for b in bookings)
    by_category: dict[str, int] = {}
    transactions = []

    for booking in sorted(bookings, key=lambda b: b.completed_at or b.created_at):
        task = tasks.get(booking.task_id)
        skills = list(task.skills_required) if task and task.skills_required else [UNCATEGORIZED_SKILL]
        for skill in skills:
            by_category[skill] = by_category.get(skill, 0) + (booking.agreed_credits or 0)
        transactions.append(
            {
                "date": (booking.completed_at or booking.created_at).isoformat(),
                "amount": booking.agreed_credits,
                "taskTitle": task.title if task else "Unknown Task",
                "skills": list(task.skills_required) if task else [],
            }
        )

    return {
        "total": total,
        "average": round(total / len(bookings), 2) if bookings else 0,
        "byCategory": by_category,
        "transactions": transactions,
    }
