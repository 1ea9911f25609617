"""Analytics orchestration: fetch records, compute, cache.

One ``AnalyticsService`` is built per process in the application lifespan,
with its repository and cache injected. Independent reads inside one
computation run concurrently; the first failure fails the whole
computation.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import structlog

from timeslice.analytics.aggregation import generate_earnings_timeline
from timeslice.analytics.benchmarks import (
    build_benchmarks,
    compare_metric,
    comparative_summary,
    selected_metrics,
)
from timeslice.analytics.cache import AnalyticsCache, make_key
from timeslice.analytics.earnings import build_earnings
from timeslice.analytics.errors import NotFoundError, UpstreamFetchError
from timeslice.analytics.insights import generate_insights
from timeslice.analytics.metrics import PeriodRecords, compute_basic_metrics
from timeslice.analytics.performance import build_performance
from timeslice.analytics.records import UserRecord
from timeslice.analytics.repository import AnalyticsRepository
from timeslice.analytics.snapshots import SnapshotStore
from timeslice.analytics.time_ranges import (
    previous_window,
    resolve_time_range,
    utcnow,
    validate_time_range,
    validate_window,
)
from timeslice.analytics.timeline import build_timeline

logger = structlog.get_logger()

USER_ANALYTICS = "user_analytics"
PLATFORM_BENCHMARKS = "platform_benchmarks"
USER_COMPARISON = "user_comparison"


def preceding_window(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    """Window of equal length ending just before ``start``.

    Repository filters are closed on both ends, so the previous window stops
    one microsecond short of ``start`` to keep the two windows disjoint.
    """
    prev_start, prev_end = previous_window(start, end)
    return prev_start, prev_end - timedelta(microseconds=1)


class AnalyticsService:
    """Per-user analytics, benchmarks, insights and comparisons."""

    def __init__(
        self,
        repository: AnalyticsRepository,
        cache: AnalyticsCache,
        user_ttl: float = 300.0,
        benchmark_ttl: float | None = None,
        snapshot_store: SnapshotStore | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.cache = cache
        self.user_ttl = user_ttl
        self.benchmark_ttl = benchmark_ttl if benchmark_ttl is not None else user_ttl * 2
        self.snapshot_store = snapshot_store
        self.clock = clock

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def fetch_period(self, user_id: str, start: datetime, end: datetime) -> PeriodRecords:
        """Tasks, applications and bookings involving the user in [start, end]."""
        tasks, applications, bookings = await asyncio.gather(
            self.repository.find_tasks(user_id, start, end),
            self.repository.find_applications(user_id, start, end),
            self.repository.find_bookings(user_id, start, end),
        )
        return PeriodRecords(user_id, tasks, applications, bookings)

    async def require_user(self, user_id: str) -> UserRecord:
        user = await self.repository.find_user(user_id)
        if user is None:
            raise NotFoundError(user_id)
        return user

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    async def calculate_basic_metrics(self, user_id: str, start: datetime, end: datetime) -> dict[str, Any]:
        """Metrics for [start, end] with changes against the preceding window."""
        validate_window(start, end)
        prev_start, prev_end = preceding_window(start, end)
        user, current, previous = await asyncio.gather(
            self.require_user(user_id),
            self.fetch_period(user_id, start, end),
            self.fetch_period(user_id, prev_start, prev_end),
        )
        return compute_basic_metrics(user, current, previous)

    async def get_user_analytics(
        self,
        user_id: str,
        time_range: str = "7d",
        detailed: bool = False,
        force_refresh: bool = False,
    ) -> dict[str, Any]:
        """Full analytics bundle for one user and time range.

        Served from the cache unless ``force_refresh``; a fresh computation
        always repopulates the cache.
        """
        validate_time_range(time_range)
        key = make_key(USER_ANALYTICS, user_id, time_range, {"detailed": detailed})
        if not force_refresh:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("analytics_cache_hit", user_id=user_id, time_range=time_range)
                return cached

        started = time.perf_counter()
        now = self.clock()
        start, end = resolve_time_range(time_range, now)
        prev_start, prev_end = preceding_window(start, end)

        user, current, previous, messages, completed, benchmarks = await asyncio.gather(
            self.require_user(user_id),
            self.fetch_period(user_id, start, end),
            self.fetch_period(user_id, prev_start, prev_end),
            self.repository.find_messages(user_id, start, end),
            self.repository.find_completed_helper_bookings(user_id, start, end),
            self.get_platform_benchmarks(time_range),
        )
        earning_tasks = await self.repository.find_tasks_by_ids(b.task_id for b in completed)

        metrics = compute_basic_metrics(user, current, previous)
        timeline = build_timeline(current, time_range, now)
        bundle = {
            "userId": user_id,
            "timeRange": time_range,
            "period": {"startDate": start.isoformat(), "endDate": end.isoformat()},
            "metrics": metrics,
            "timeline": timeline,
            "performance": build_performance(user, current, previous, messages, time_range, now),
            "comparative": comparative_summary(metrics, benchmarks),
            "insights": generate_insights(metrics, timeline, benchmarks, time_range) if detailed else [],
            "earnings": {
                **build_earnings(completed, earning_tasks),
                "timeline": generate_earnings_timeline(completed, time_range, now),
            },
            "generatedAt": now.isoformat(),
        }

        self.cache.set(key, bundle, self.user_ttl)
        if self.snapshot_store is not None:
            await self.snapshot_store.save(bundle, benchmarks)

        logger.info(
            "analytics_calculated",
            user_id=user_id,
            time_range=time_range,
            metrics_count=len(metrics),
            timeline_points=len(timeline),
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return bundle

    async def get_platform_benchmarks(self, time_range: str = "7d") -> dict[str, Any]:
        validate_time_range(time_range)
        key = make_key(PLATFORM_BENCHMARKS, None, time_range)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        start, end = resolve_time_range(time_range, self.clock())
        benchmarks = build_benchmarks(await self.repository.platform_stats(start, end))
        self.cache.set(key, benchmarks, self.benchmark_ttl)
        logger.debug("platform_benchmarks_calculated", time_range=time_range, total_users=benchmarks["totalUsers"])
        return benchmarks

    async def generate_user_insights(self, user_id: str, time_range: str = "30d") -> list[dict[str, Any]]:
        analytics, benchmarks = await asyncio.gather(
            self.get_user_analytics(user_id, time_range),
            self.get_platform_benchmarks(time_range),
        )
        insights = generate_insights(analytics["metrics"], analytics["timeline"], benchmarks, time_range)
        logger.info(
            "user_insights_generated",
            user_id=user_id,
            insights_count=len(insights),
            action_required=sum(1 for i in insights if i["actionRequired"]),
        )
        return insights

    async def get_user_comparison(self, user_id: str, time_range: str = "30d", metric: str = "all") -> dict[str, Any]:
        """The user's standing on each selected metric against the platform."""
        metrics = selected_metrics(metric)
        key = make_key(USER_COMPARISON, user_id, time_range, {"metric": metric})
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        now = self.clock()
        start, end = resolve_time_range(time_range, now)
        analytics, benchmarks, *populations = await asyncio.gather(
            self.get_user_analytics(user_id, time_range),
            self.get_platform_benchmarks(time_range),
            *(self.repository.population_values(m, start, end) for m in metrics),
        )
        comparison = {
            "userId": user_id,
            "timeRange": time_range,
            "metric": metric,
            "comparisons": {
                name: compare_metric(name, analytics["metrics"], benchmarks, population)
                for name, population in zip(metrics, populations)
            },
            "benchmarks": benchmarks,
            "generatedAt": now.isoformat(),
        }
        self.cache.set(key, comparison, self.user_ttl)
        return comparison

    async def recalculate_user_analytics(self, user_id: str, time_range: str = "30d") -> dict[str, Any]:
        """Drop everything cached for the user and recompute from the store."""
        cleared = await self.clear_user_cache(user_id)
        bundle = await self.get_user_analytics(user_id, time_range, detailed=True, force_refresh=True)
        logger.info("analytics_recalculated", user_id=user_id, time_range=time_range, entries_cleared=cleared)
        return bundle

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    async def clear_user_cache(self, user_id: str) -> int:
        cleared = self.cache.invalidate_user(user_id)
        if self.snapshot_store is not None:
            await self.snapshot_store.invalidate_user(user_id)
        logger.debug("user_cache_cleared", user_id=user_id, keys_cleared=cleared)
        return cleared

    def clear_all_cache(self) -> None:
        self.cache.clear()
        logger.info("analytics_cache_cleared")

    async def health(self) -> dict[str, Any]:
        checks = {"database": "healthy", "cache": "healthy"}
        status = "healthy"
        started = time.perf_counter()
        try:
            await self.repository.ping()
        except UpstreamFetchError:
            checks["database"] = "unhealthy"
            status = "degraded"
        latency_ms = round((time.perf_counter() - started) * 1000, 1)
        return {
            "status": status,
            "service": "analytics",
            "timestamp": self.clock().isoformat(),
            "checks": checks,
            "databaseLatencyMs": latency_ms,
            "cache": self.cache.stats(),
        }
