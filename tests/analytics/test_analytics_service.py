"""AnalyticsService against an in-memory repository."""

from __future__ import annotations

from datetime import timedelta

import pytest

from timeslice.analytics.cache import make_key
from timeslice.analytics.errors import InvalidRangeError, NotFoundError, UpstreamFetchError
from timeslice.analytics.records import ApplicationRecord, BookingRecord, TaskRecord
from timeslice.analytics.repository import PlatformStats
from timeslice.analytics.service import USER_ANALYTICS, preceding_window


def _seed_helper(repo, now, user_id: str = "u1", sent: int = 10, accepted: int = 4) -> None:
    """A helper with ``sent`` applications this week, ``accepted`` of them accepted."""
    repo.add_user(user_id, rating=4.6, total_ratings=12, completed_tasks=20, credits=300, created_at=now - timedelta(days=400))
    for i in range(sent):
        repo.applications.append(
            ApplicationRecord(
                id=f"{user_id}-a{i}",
                task_id=f"{user_id}-t{i}",
                applicant_id=user_id,
                task_provider_id="p1",
                created_at=now - timedelta(hours=6 * i + 1),
                status="accepted" if i < accepted else "pending",
            )
        )
    repo.tasks.append(
        TaskRecord(
            id=f"{user_id}-t0",
            task_provider_id="p1",
            selected_helper_id=user_id,
            created_at=now - timedelta(days=2),
            updated_at=now - timedelta(hours=3),
            status="completed",
            title="Translate brochure",
            skills_required=("translation",),
            credits=50,
        )
    )
    repo.bookings.append(
        BookingRecord(
            id=f"{user_id}-b0",
            task_id=f"{user_id}-t0",
            helper_id=user_id,
            task_provider_id="p1",
            agreed_credits=50,
            created_at=now - timedelta(days=2),
            status="completed",
            completed_at=now - timedelta(hours=3),
            task_provider_review={"rating": 5},
        )
    )


class TestUserAnalytics:
    @pytest.mark.asyncio
    async def test_bundle_shape(self, analytics, repo, now):
        _seed_helper(repo, now)
        bundle = await analytics.get_user_analytics("u1", "7d")

        assert bundle["userId"] == "u1"
        assert bundle["timeRange"] == "7d"
        assert bundle["period"]["endDate"] == now.isoformat()
        assert bundle["metrics"]["applicationsSubmitted"] == 10
        assert bundle["metrics"]["applicationSuccessRate"] == 40
        assert bundle["metrics"]["creditsEarned"] == 50
        assert len(bundle["timeline"]) == 7
        assert bundle["insights"] == []
        assert bundle["earnings"]["total"] == 50
        assert bundle["earnings"]["byCategory"] == {"translation": 50}
        assert len(bundle["earnings"]["timeline"]) == 7
        assert bundle["generatedAt"] == now.isoformat()
        assert "overallScore" in bundle["performance"]
        assert "userVsPlatform" in bundle["comparative"]

    @pytest.mark.asyncio
    async def test_detailed_includes_insights(self, analytics, repo, now):
        _seed_helper(repo, now)
        repo.stats = PlatformStats(total_applications=10, accepted_applications=8, avg_rating=4.0)
        bundle = await analytics.get_user_analytics("u1", "7d", detailed=True)
        titles = [i["title"] for i in bundle["insights"]]
        assert titles == ["Improve Application Success Rate", "Excellent Rating Performance"]

    @pytest.mark.asyncio
    async def test_cached_result_needs_no_fetches(self, analytics, repo, now):
        _seed_helper(repo, now)
        first = await analytics.get_user_analytics("u1", "7d")
        calls = repo.total_calls
        second = await analytics.get_user_analytics("u1", "7d")
        assert repo.total_calls == calls
        assert second == first

    @pytest.mark.asyncio
    async def test_detailed_is_cached_separately(self, analytics, repo, now):
        _seed_helper(repo, now)
        await analytics.get_user_analytics("u1", "7d")
        calls = repo.total_calls
        await analytics.get_user_analytics("u1", "7d", detailed=True)
        assert repo.total_calls > calls

    @pytest.mark.asyncio
    async def test_force_refresh_refetches(self, analytics, repo, now):
        _seed_helper(repo, now)
        await analytics.get_user_analytics("u1", "7d")
        calls = repo.calls["find_applications"]
        await analytics.get_user_analytics("u1", "7d", force_refresh=True)
        assert repo.calls["find_applications"] > calls

    @pytest.mark.asyncio
    async def test_previous_window_drives_changes(self, analytics, repo, now):
        _seed_helper(repo, now, sent=4, accepted=2)
        for i in range(2):
            repo.applications.append(
                ApplicationRecord(
                    id=f"old-{i}",
                    task_id="t-old",
                    applicant_id="u1",
                    task_provider_id="p1",
                    created_at=now - timedelta(days=8 + i),
                )
            )
        bundle = await analytics.get_user_analytics("u1", "7d")
        assert bundle["metrics"]["applicationsSubmitted"] == 4
        assert bundle["metrics"]["applicationsSubmittedChange"] == 100

    @pytest.mark.asyncio
    async def test_unknown_user(self, analytics):
        with pytest.raises(NotFoundError):
            await analytics.get_user_analytics("ghost", "7d")

    @pytest.mark.asyncio
    async def test_invalid_range(self, analytics, repo, now):
        _seed_helper(repo, now)
        with pytest.raises(InvalidRangeError):
            await analytics.get_user_analytics("u1", "2w")

    @pytest.mark.asyncio
    async def test_fetch_failure_fails_whole_computation(self, analytics, repo, cache, now):
        _seed_helper(repo, now)
        repo.fail_on = {"find_messages"}
        with pytest.raises(UpstreamFetchError, match="find_messages"):
            await analytics.get_user_analytics("u1", "7d")
        assert make_key(USER_ANALYTICS, "u1", "7d", {"detailed": False}) not in cache


class TestCacheManagement:
    @pytest.mark.asyncio
    async def test_recalculate_reflects_new_data(self, analytics, repo, now):
        _seed_helper(repo, now)
        before = await analytics.get_user_analytics("u1", "30d")
        repo.applications.append(
            ApplicationRecord(
                id="late", task_id="t-late", applicant_id="u1", task_provider_id="p1",
                created_at=now - timedelta(minutes=5), status="accepted",
            )
        )
        stale = await analytics.get_user_analytics("u1", "30d")
        assert stale["metrics"]["applicationsSubmitted"] == before["metrics"]["applicationsSubmitted"]

        fresh = await analytics.recalculate_user_analytics("u1", "30d")
        assert fresh["metrics"]["applicationsSubmitted"] == before["metrics"]["applicationsSubmitted"] + 1
        assert fresh["insights"] is not None

    @pytest.mark.asyncio
    async def test_clear_user_cache_leaves_other_users(self, analytics, repo, now):
        _seed_helper(repo, now, "u1")
        _seed_helper(repo, now, "u2")
        await analytics.get_user_analytics("u1", "7d")
        await analytics.get_user_analytics("u2", "7d")

        assert await analytics.clear_user_cache("u1") == 1

        calls = repo.total_calls
        await analytics.get_user_analytics("u2", "7d")
        assert repo.total_calls == calls
        await analytics.get_user_analytics("u1", "7d")
        assert repo.total_calls > calls

    @pytest.mark.asyncio
    async def test_clear_all(self, analytics, repo, cache, now):
        _seed_helper(repo, now)
        await analytics.get_user_analytics("u1", "7d")
        analytics.clear_all_cache()
        assert len(cache) == 0


class TestBenchmarksAndComparison:
    @pytest.mark.asyncio
    async def test_benchmarks_cached(self, analytics, repo):
        repo.stats = PlatformStats(avg_rating=3.9, total_users=4, total_applications=8, accepted_applications=2)
        first = await analytics.get_platform_benchmarks("7d")
        second = await analytics.get_platform_benchmarks("7d")
        assert first["avgSuccessRate"] == 25
        assert second is first
        assert repo.calls["platform_stats"] == 1

    @pytest.mark.asyncio
    async def test_comparison_single_metric(self, analytics, repo, now):
        _seed_helper(repo, now)
        repo.populations = {"successRate": [10.0, 20.0, 50.0, 80.0]}
        comparison = await analytics.get_user_comparison("u1", "7d", "successRate")
        assert list(comparison["comparisons"]) == ["successRate"]
        result = comparison["comparisons"]["successRate"]
        assert result["user"] == 40.0
        assert result["percentile"] == 50
        assert result["platformAverage"] == 40.0

    @pytest.mark.asyncio
    async def test_comparison_all_metrics(self, analytics, repo, now):
        _seed_helper(repo, now)
        comparison = await analytics.get_user_comparison("u1", "30d")
        assert set(comparison["comparisons"]) == {"successRate", "rating", "earnings", "activity"}
        assert repo.calls["population_values"] == 4

    @pytest.mark.asyncio
    async def test_insights(self, analytics, repo, now):
        _seed_helper(repo, now)
        repo.stats = PlatformStats(total_applications=10, accepted_applications=9)
        insights = await analytics.generate_user_insights("u1", "30d")
        assert insights[0]["type"] == "improvement"


class TestBasicMetrics:
    @pytest.mark.asyncio
    async def test_explicit_window(self, analytics, repo, now):
        _seed_helper(repo, now)
        metrics = await analytics.calculate_basic_metrics("u1", now - timedelta(days=1), now)
        assert metrics["applicationsSubmitted"] == 4

    @pytest.mark.asyncio
    async def test_reversed_window(self, analytics, repo, now):
        _seed_helper(repo, now)
        with pytest.raises(InvalidRangeError):
            await analytics.calculate_basic_metrics("u1", now, now - timedelta(days=1))

    def test_preceding_window_is_disjoint(self, now):
        start = now - timedelta(days=7)
        prev_start, prev_end = preceding_window(start, now)
        assert prev_start == now - timedelta(days=14)
        assert prev_end < start


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, analytics):
        health = await analytics.health()
        assert health["status"] == "healthy"
        assert health["checks"] == {"database": "healthy", "cache": "healthy"}

    @pytest.mark.asyncio
    async def test_database_down(self, analytics, repo):
        repo.fail_on = {"ping"}
        health = await analytics.health()
        assert health["status"] == "degraded"
        assert health["checks"]["database"] == "unhealthy"
