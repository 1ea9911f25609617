"""Earnings breakdown."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from timeslice.analytics.earnings import build_earnings
from timeslice.analytics.records import BookingRecord, TaskRecord

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _booking(i: int, task_id: str, credits: int, hours_ago: int) -> BookingRecord:
    return BookingRecord(
        id=f"b{i}",
        task_id=task_id,
        helper_id="u1",
        task_provider_id="p1",
        agreed_credits=credits,
        created_at=NOW - timedelta(days=2),
        status="completed",
        completed_at=NOW - timedelta(hours=hours_ago),
    )


def test_breakdown_by_skill():
    tasks = {
        "t1": TaskRecord(id="t1", task_provider_id="p1", created_at=NOW, title="Logo", skills_required=("design", "art")),
        "t2": TaskRecord(id="t2", task_provider_id="p1", created_at=NOW, title="Fix bug", skills_required=("python",)),
    }
    bookings = [_booking(1, "t2", 20, 1), _booking(2, "t1", 40, 5), _booking(3, "gone", 15, 3)]
    earnings = build_earnings(bookings, tasks)

    assert earnings["total"] == 75
    assert earnings["average"] == 25.0
    assert earnings["byCategory"] == {"design": 40, "art": 40, "python": 20, "Other": 15}
    assert [t["taskTitle"] for t in earnings["transactions"]] == ["Logo", "Unknown Task", "Fix bug"]
    assert earnings["transactions"][1]["skills"] == []


def test_no_bookings():
    assert build_earnings([], {}) == {"total": 0, "average": 0, "byCategory": {}, "transactions": []}
