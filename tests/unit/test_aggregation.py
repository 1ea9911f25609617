"""Trend classification, outliers, bucketing and task rollups."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from timeslice.analytics.aggregation import (
    aggregate_by_category,
    aggregate_performance,
    aggregate_skills_demand,
    calculate_trend,
    detect_outliers,
    extract_metric_value,
    generate_earnings_timeline,
)
from timeslice.analytics.records import BookingRecord, TaskRecord

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _task(i: int, category: str | None = None, skills: tuple[str, ...] = (), status: str = "open",
          credits: int = 10, age: timedelta = timedelta(days=1)) -> TaskRecord:
    return TaskRecord(
        id=f"t{i}",
        task_provider_id="p1",
        created_at=NOW - age,
        status=status,
        credits=credits,
        category=category,
        skills_required=skills,
    )


class TestTrend:
    def test_increasing(self):
        trend = calculate_trend([1, 2, 3, 4])
        assert trend["direction"] == "increasing"
        assert trend["slope"] == 1.0
        assert trend["change"] == 300.0

    def test_decreasing(self):
        assert calculate_trend([8, 6, 4, 2])["direction"] == "decreasing"

    def test_flat_series_is_stable(self):
        trend = calculate_trend([5, 5, 5])
        assert trend["direction"] == "stable"
        assert trend["slope"] == 0.0

    def test_small_slope_is_stable(self):
        assert calculate_trend([1.0, 1.05, 1.1])["direction"] == "stable"

    def test_threshold_is_absolute(self):
        """A strictly rising rating series whose slope stays under 0.1 per bucket is stable."""
        trend = calculate_trend([4.1, 4.15, 4.2])
        assert trend["direction"] == "stable"
        assert trend["slope"] == 0.05

    def test_strictly_increasing_counts(self):
        for series in ([0, 1, 2], [3, 4, 6, 9], [10, 11, 12, 13, 14]):
            assert calculate_trend(series)["direction"] == "increasing"

    def test_single_value(self):
        assert calculate_trend([3])["direction"] == "stable"

    def test_change_from_zero_start(self):
        assert calculate_trend([0, 4])["change"] == 0.0


class TestOutliers:
    def test_flags_spike(self):
        outliers = detect_outliers([1] * 9 + [50])
        assert outliers == [{"index": 9, "value": 50, "zScore": 3.0}]

    def test_constant_series(self):
        assert detect_outliers([4, 4, 4]) == []

    def test_too_short(self):
        assert detect_outliers([10]) == []


class TestAggregatePerformance:
    def test_every_bucket_present(self):
        result = aggregate_performance([], "7d", now=NOW)
        assert len(result["periods"]) == 7
        for series in result["metrics"].values():
            assert len(series) == 7
            assert all(point["count"] == 0 for point in series)

    def test_bucket_summary(self):
        data = [
            {"createdAt": NOW - timedelta(hours=1), "earnings": 30, "rating": 4},
            {"createdAt": NOW - timedelta(hours=2), "earnings": 10, "rating": 5},
            {"createdAt": NOW - timedelta(days=3, hours=1), "earnings": 20},
            {"createdAt": NOW - timedelta(days=30), "earnings": 999},
        ]
        result = aggregate_performance(data, "7d", metrics=("earnings", "rating"), now=NOW)

        last = result["metrics"]["earnings"][-1]
        assert last["total"] == 40
        assert last["count"] == 2
        assert last["value"] == 20.0
        assert last["min"] == 10
        assert last["max"] == 30
        assert result["metrics"]["earnings"][3]["total"] == 20

        assert result["summary"]["earnings"]["total"] == 60
        assert result["summary"]["earnings"]["count"] == 3
        # only points carrying a rating count toward it
        assert result["summary"]["rating"]["count"] == 2
        assert result["summary"]["rating"]["average"] == 4.5

    def test_iso_string_dates(self):
        data = [{"createdAt": (NOW - timedelta(hours=1)).isoformat(), "successRate": 100}]
        result = aggregate_performance(data, "1d", metrics=("successRate",), now=NOW)
        assert result["metrics"]["successRate"][-1]["value"] == 100.0

    def test_metric_aliases(self):
        assert extract_metric_value({"applicationSuccessRate": 40}, "successRate") == 40.0
        assert extract_metric_value({"creditsEarned": 12}, "earnings") == 12.0
        assert extract_metric_value({}, "rating") == 0.0


class TestCategories:
    def test_uncategorized_default_and_ordering(self):
        tasks = [
            _task(1, "Design", status="completed", credits=30),
            _task(2, "Design", status="in-progress", credits=10),
            _task(3, None, status="cancelled"),
            _task(4, "Design", status="open", credits=20),
        ]
        categories = aggregate_by_category(tasks)
        assert [c["name"] for c in categories] == ["Design", "Uncategorized"]
        design = categories[0]
        assert design["totalTasks"] == 3
        assert design["completedTasks"] == 1
        assert design["activeTasks"] == 1
        assert design["totalCredits"] == 60
        assert design["averageCredits"] == 20
        assert design["completionRate"] == 33
        assert categories[1]["cancelledTasks"] == 1


class TestSkillsDemand:
    def test_demand_share_and_growth(self):
        tasks = [
            _task(1, skills=("python", "sql")),
            _task(2, skills=("python",), age=timedelta(days=10)),
            _task(3, skills=("python",), age=timedelta(days=40)),
            _task(4),
        ]
        skills = aggregate_skills_demand(tasks, NOW)
        assert skills[0]["name"] == "python"
        assert skills[0]["demand"] == 3
        assert skills[0]["marketShare"] == 60
        # two recent vs one older
        assert skills[0]["growthRate"] == 100
        names = {s["name"] for s in skills}
        assert names == {"python", "sql", "General"}

    def test_top_twenty(self):
        tasks = [_task(i, skills=(f"skill{i}",)) for i in range(25)]
        assert len(aggregate_skills_demand(tasks, NOW)) == 20


class TestEarningsTimeline:
    def test_cumulative(self):
        bookings = [
            BookingRecord(
                id=f"b{i}",
                task_id="t1",
                helper_id="u1",
                task_provider_id="p1",
                agreed_credits=credits,
                created_at=NOW - timedelta(days=10),
                status="completed",
                completed_at=NOW - age,
            )
            for i, (credits, age) in enumerate(
                [(10, timedelta(days=5, hours=1)), (30, timedelta(hours=3)), (20, timedelta(hours=4))]
            )
        ]
        timeline = generate_earnings_timeline(bookings, "7d", NOW)
        assert len(timeline) == 7
        assert timeline[1]["earnings"] == 10
        assert timeline[-1]["earnings"] == 50
        assert timeline[-1]["taskCount"] == 2
        assert timeline[-1]["averageEarning"] == 25
        assert timeline[-1]["cumulativeEarnings"] == 60
        assert timeline[0]["cumulativeEarnings"] == 0
