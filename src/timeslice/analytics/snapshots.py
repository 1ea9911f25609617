"""Write-behind persistence of computed analytics bundles.

The in-process cache serves reads; snapshots are a durable record of what
was computed, used for the admin summary. Write failures are logged and
never fail the request that produced the bundle.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from timeslice.analytics.errors import UpstreamFetchError
from timeslice.analytics.time_ranges import RANGE_DAYS, utcnow
from timeslice.database import STORE_ERRORS
from timeslice.db.models import AnalyticsSnapshot, User

logger = structlog.get_logger()

PERIOD_TYPES = {"1d": "daily", "7d": "weekly", "30d": "monthly"}


def period_type_for(time_range: str) -> str:
    return PERIOD_TYPES.get(time_range, "custom")


class SnapshotStore:
    """Persists analytics bundles into ``analytics_snapshots``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], ttl_hours: int = 24) -> None:
        self._session_factory = session_factory
        self.ttl = timedelta(hours=ttl_hours)

    async def save(self, bundle: dict[str, Any], benchmarks: dict[str, Any] | None = None) -> None:
        now = utcnow()
        try:
            async with self._session_factory() as session:
                session.add(
                    AnalyticsSnapshot(
                        user_id=bundle["userId"],
                        period_type=period_type_for(bundle["timeRange"]),
                        time_range=bundle["timeRange"],
                        period_start=datetime.fromisoformat(bundle["period"]["startDate"]),
                        period_end=datetime.fromisoformat(bundle["period"]["endDate"]),
                        metrics=bundle["metrics"],
                        timeline=bundle["timeline"],
                        insights=bundle["insights"],
                        benchmarks=benchmarks or bundle["comparative"].get("platformAverage", {}),
                        cache_expires_at=now + self.ttl,
                        created_at=now,
                    )
                )
                await session.commit()
        except STORE_ERRORS:
            logger.warning("analytics_snapshot_save_failed", user_id=bundle.get("userId"), exc_info=True)

    async def invalidate_user(self, user_id: str) -> int:
        """Mark every live snapshot of ``user_id`` stale."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(AnalyticsSnapshot)
                    .where(AnalyticsSnapshot.user_id == user_id, AnalyticsSnapshot.cache_invalidated.is_(False))
                    .values(cache_invalidated=True, updated_at=utcnow())
                )
                await session.commit()
                return result.rowcount or 0
        except STORE_ERRORS:
            logger.warning("analytics_snapshot_invalidate_failed", user_id=user_id, exc_info=True)
            return 0

    async def prune_expired(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(AnalyticsSnapshot).where(AnalyticsSnapshot.cache_expires_at < now)
                )
                await session.commit()
        except STORE_ERRORS:
            logger.warning("analytics_snapshot_prune_failed", exc_info=True)
            return 0
        pruned = result.rowcount or 0
        if pruned:
            logger.info("analytics_snapshots_pruned", count=pruned)
        return pruned

    async def user_summary(
        self, time_range: str = "30d", limit: int = 50, now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Top users by earnings across live snapshots of ``time_range``."""
        now = now or utcnow()
        since = now - timedelta(days=RANGE_DAYS[time_range])
        metrics = AnalyticsSnapshot.metrics
        total_earnings = func.sum(metrics["creditsEarned"].as_float())
        stmt = (
            select(
                AnalyticsSnapshot.user_id,
                User.username,
                User.email,
                User.primary_role,
                func.sum(metrics["tasksCompleted"].as_integer()).label("total_tasks"),
                total_earnings.label("total_earnings"),
                func.avg(metrics["rating"].as_float()).label("avg_rating"),
                func.avg(metrics["applicationSuccessRate"].as_float()).label("avg_success_rate"),
                func.max(AnalyticsSnapshot.created_at).label("last_update"),
            )
            .join(User, User.id == AnalyticsSnapshot.user_id)
            .where(
                AnalyticsSnapshot.time_range == time_range,
                AnalyticsSnapshot.created_at >= since,
                AnalyticsSnapshot.cache_invalidated.is_(False),
            )
            .group_by(AnalyticsSnapshot.user_id, User.username, User.email, User.primary_role)
            .order_by(total_earnings.desc())
            .limit(limit)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except STORE_ERRORS as exc:
            raise UpstreamFetchError("snapshot_summary", exc) from exc

        return [
            {
                "userId": row.user_id,
                "username": row.username,
                "email": row.email,
                "primaryRole": row.primary_role,
                "totalTasks": int(row.total_tasks or 0),
                "totalEarnings": float(row.total_earnings or 0),
                "avgRating": round(float(row.avg_rating or 0), 2),
                "avgSuccessRate": round(float(row.avg_success_rate or 0), 2),
                "lastUpdate": row.last_update.isoformat() if row.last_update else None,
            }
            for row in rows
        ]
