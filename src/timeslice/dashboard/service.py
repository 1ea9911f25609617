"""Dashboard stats, activity feed, export and preferences.

Shares the analytics repository and cache. Dashboard stats are cached under
their own operation name, so clearing a user's analytics cache also clears
their dashboard.
"""

from __future__ import annotations

import asyncio
import csv
import io
import time
from datetime import datetime
from typing import Any

import structlog

from timeslice.analytics.aggregation import (
    aggregate_by_category,
    aggregate_performance,
    aggregate_skills_demand,
    detect_outliers,
)
from timeslice.analytics.cache import make_key
from timeslice.analytics.errors import UpstreamFetchError
from timeslice.analytics.metrics import compute_basic_metrics, round_half_up, sum_credits
from timeslice.analytics.performance import (
    activity_days,
    average_response_time,
    build_performance,
    calculate_streaks,
    goal_progress,
    performance_score,
)
from timeslice.analytics.records import MessageRecord, TaskRecord
from timeslice.analytics.service import AnalyticsService, preceding_window
from timeslice.analytics.time_ranges import resolve_time_range

logger = structlog.get_logger()

DASHBOARD_STATS = "dashboard_stats"
ACTIVITY_TYPES = ("task", "application", "booking", "message")
EXPORT_FORMATS = ("json", "csv")
CSV_HEADERS = ["Date", "Type", "Action", "Title", "Description"]
MESSAGE_ACTIVITY_LIMIT = 10

DEFAULT_PREFERENCES: dict[str, Any] = {
    "refreshInterval": 30000,
    "defaultTimeRange": "7d",
    "chartTypes": ["line"],
    "enableNotifications": True,
    "theme": "light",
}


def _excerpt(text: str, length: int) -> str:
    text = text or ""
    return text if len(text) <= length else text[:length] + "..."


def activities_to_csv(activities: list[dict[str, Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for activity in activities:
        writer.writerow(
            [
                datetime.fromisoformat(activity["createdAt"]).date().isoformat(),
                activity["type"],
                activity["action"],
                activity["title"],
                activity["description"],
            ]
        )
    return buffer.getvalue()


class DashboardService:
    """Per-user dashboard views built on the analytics engine."""

    def __init__(
        self,
        analytics: AnalyticsService,
        cache_ttl: float = 300.0,
        activity_max_items: int = 1000,
    ) -> None:
        self.analytics = analytics
        self.repository = analytics.repository
        self.cache = analytics.cache
        self.cache_ttl = cache_ttl
        self.activity_max_items = activity_max_items
        self._preferences: dict[str, dict[str, Any]] = {}

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def get_dashboard_stats(self, user_id: str, time_range: str = "7d") -> dict[str, Any]:
        key = make_key(DASHBOARD_STATS, user_id, time_range)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("dashboard_stats_cache_hit", user_id=user_id, time_range=time_range)
            return cached

        started = time.perf_counter()
        now = self.analytics.clock()
        start, end = resolve_time_range(time_range, now)
        prev_start, prev_end = preceding_window(start, end)

        user, current, previous, messages, chats = await asyncio.gather(
            self.analytics.require_user(user_id),
            self.analytics.fetch_period(user_id, start, end),
            self.analytics.fetch_period(user_id, prev_start, prev_end),
            self.repository.find_messages(user_id, start, end),
            self.repository.find_chats(user_id, start, end),
        )

        metrics = compute_basic_metrics(user, current, previous)
        earned = current.completed_helper_bookings
        spent = current.completed_provider_bookings
        sent_messages = [m for m in messages if m.sender_id == user_id]

        stats = {
            **metrics,
            "joinDate": user.created_at.isoformat() if user.created_at else None,
            "tasksInProgress": len(current.in_progress_tasks),
            "tasksOpen": len(current.open_tasks),
            "applicationsPending": metrics["pendingApplications"],
            "completedBookings": len(current.completed_bookings),
            "averageEarning": round_half_up(sum_credits(earned) / len(earned)) if earned else 0,
            "averageSpending": round_half_up(sum_credits(spent) / len(spent)) if spent else 0,
            "messagesSent": len(sent_messages),
            "messagesReceived": len(messages) - len(sent_messages),
            "totalChats": len(chats),
            "activeChats": sum(1 for c in chats if c.is_active),
            "responseTime": average_response_time(user_id, messages),
            "changes": {
                "creditsEarned": metrics["creditsChange"],
                "tasksCompleted": metrics["completedTasksChange"],
                "applicationsSubmitted": metrics["applicationsSubmittedChange"],
                "successRate": metrics["successRateChange"],
                "rating": metrics["ratingChange"],
            },
            "performanceScore": performance_score(user, current.sent_applications),
            "streaks": calculate_streaks(activity_days(current, messages), now.date()),
            "goals": goal_progress(user),
            "timeRange": time_range,
            "periodStart": start.isoformat(),
            "periodEnd": end.isoformat(),
            "generatedAt": now.isoformat(),
        }

        self.cache.set(key, stats, self.cache_ttl)
        logger.info(
            "dashboard_stats_calculated",
            user_id=user_id,
            time_range=time_range,
            tasks_created=stats["tasksCreated"],
            credits_earned=stats["creditsEarned"],
            performance_score=stats["performanceScore"],
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return stats

    async def get_performance_overview(self, user_id: str, time_range: str = "7d") -> dict[str, Any]:
        """Performance block plus bucketed per-metric series and task breakdowns."""
        now = self.analytics.clock()
        start, end = resolve_time_range(time_range, now)
        prev_start, prev_end = preceding_window(start, end)
        user, current, previous, messages = await asyncio.gather(
            self.analytics.require_user(user_id),
            self.analytics.fetch_period(user_id, start, end),
            self.analytics.fetch_period(user_id, prev_start, prev_end),
            self.repository.find_messages(user_id, start, end),
        )

        points = [
            {"createdAt": a.created_at, "successRate": 100 if a.status == "accepted" else 0}
            for a in current.sent_applications
        ]
        points.extend(
            {"createdAt": b.completed_at, "earnings": b.agreed_credits, "rating": b.review_rating_for(user_id)}
            for b in current.completed_helper_bookings
        )
        aggregated = aggregate_performance(points, time_range, now=now)
        earnings_series = [p["total"] for p in aggregated["metrics"]["earnings"]]

        return {
            "userId": user_id,
            "timeRange": time_range,
            "performance": build_performance(user, current, previous, messages, time_range, now),
            "aggregated": aggregated,
            "earningsOutliers": detect_outliers(earnings_series),
            "categories": aggregate_by_category(current.tasks),
            "skills": aggregate_skills_demand(current.tasks, now),
            "generatedAt": now.isoformat(),
        }

    # ------------------------------------------------------------------
    # Activity feed and export
    # ------------------------------------------------------------------

    async def get_user_activity(
        self,
        user_id: str,
        time_range: str = "7d",
        limit: int = 50,
        activity_type: str | None = None,
    ) -> list[dict[str, Any]]:
        """Task, application, booking and message events, newest first."""
        start, end = resolve_time_range(time_range, self.analytics.clock())
        records, messages = await asyncio.gather(
            self.analytics.fetch_period(user_id, start, end),
            self.repository.find_messages(user_id, start, end),
        )
        known = {t.id: t for t in records.tasks}
        missing = {a.task_id for a in records.applications} | {b.task_id for b in records.bookings}
        tasks: dict[str, TaskRecord] = {**await self.repository.find_tasks_by_ids(missing - known.keys()), **known}

        def task_title(task_id: str, default: str = "Unknown") -> str:
            task = tasks.get(task_id)
            return task.title if task else default

        activities: list[dict[str, Any]] = []
        for task in records.tasks:
            is_creator = task.task_provider_id == user_id
            activities.append(
                {
                    "id": f"task_{task.id}",
                    "type": "task",
                    "action": "created" if is_creator else "assigned",
                    "title": f"{'Created' if is_creator else 'Assigned to'} task: {task.title}",
                    "description": _excerpt(task.description, 100),
                    "createdAt": task.created_at.isoformat(),
                    "metadata": {"taskId": task.id, "status": task.status, "credits": task.credits, "isCreator": is_creator},
                }
            )
        for app in records.applications:
            is_applicant = app.applicant_id == user_id
            activities.append(
                {
                    "id": f"application_{app.id}",
                    "type": "application",
                    "action": "submitted" if is_applicant else "received",
                    "title": f"{'Applied for' if is_applicant else 'Received application for'} task: {task_title(app.task_id)}",
                    "description": _excerpt(app.message, 100),
                    "createdAt": app.created_at.isoformat(),
                    "metadata": {
                        "applicationId": app.id,
                        "status": app.status,
                        "credits": app.proposed_credits,
                        "isApplicant": is_applicant,
                    },
                }
            )
        for booking in records.bookings:
            activities.append(
                {
                    "id": f"booking_{booking.id}",
                    "type": "booking",
                    "action": "status_change",
                    "title": f"Booking {booking.status}: {task_title(booking.task_id, 'Unknown Task')}",
                    "description": f"Status changed to {booking.status}",
                    "createdAt": (booking.updated_at or booking.created_at).isoformat(),
                    "metadata": {
                        "bookingId": booking.id,
                        "status": booking.status,
                        "credits": booking.agreed_credits,
                        "isHelper": booking.helper_id == user_id,
                    },
                }
            )
        activities.extend(self._message_activities(user_id, messages))

        if activity_type:
            activities = [a for a in activities if a["type"] == activity_type]
        activities.sort(key=lambda a: a["createdAt"], reverse=True)
        feed = activities[: min(limit, self.activity_max_items)]
        logger.debug("activity_feed_generated", user_id=user_id, total=len(activities), returned=len(feed))
        return feed

    @staticmethod
    def _message_activities(user_id: str, messages: list[MessageRecord]) -> list[dict[str, Any]]:
        sent = sorted((m for m in messages if m.sender_id == user_id), key=lambda m: m.created_at, reverse=True)
        return [
            {
                "id": f"message_{m.id}",
                "type": "message",
                "action": "sent",
                "title": "Sent message",
                "description": _excerpt(m.content, 50),
                "createdAt": m.created_at.isoformat(),
                "metadata": {"messageId": m.id, "chatId": m.chat_id},
            }
            for m in sent[:MESSAGE_ACTIVITY_LIMIT]
        ]

    async def export_user_data(self, user_id: str, time_range: str = "30d", fmt: str = "json") -> dict[str, Any] | str:
        if fmt not in EXPORT_FORMATS:
            msg = f"Invalid export format '{fmt}'. Use json or csv."
            raise ValueError(msg)
        stats, activity = await asyncio.gather(
            self.get_dashboard_stats(user_id, time_range),
            self.get_user_activity(user_id, time_range, limit=self.activity_max_items),
        )
        logger.info("dashboard_data_exported", user_id=user_id, format=fmt, activities=len(activity))
        if fmt == "csv":
            return activities_to_csv(activity)
        return {
            "user": stats,
            "activity": activity,
            "exportedAt": self.analytics.clock().isoformat(),
            "timeRange": time_range,
            "format": fmt,
        }

    # ------------------------------------------------------------------
    # Preferences and batch updates
    # ------------------------------------------------------------------

    def get_preferences(self, user_id: str) -> dict[str, Any]:
        return {**DEFAULT_PREFERENCES, **self._preferences.get(user_id, {})}

    def update_preferences(self, user_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        changes = {k: v for k, v in updates.items() if v is not None}
        stored = self._preferences.setdefault(user_id, {})
        stored.update(changes)
        stored["updatedAt"] = self.analytics.clock().isoformat()
        logger.info("dashboard_preferences_updated", user_id=user_id, fields=sorted(changes))
        return self.get_preferences(user_id)

    async def process_batch_activities(self, user_id: str, activities: list[dict[str, Any]]) -> dict[str, Any]:
        results: dict[str, Any] = {"processed": 0, "failed": 0, "errors": []}
        for activity in activities:
            if not activity.get("type") or not activity.get("action"):
                results["failed"] += 1
                results["errors"].append({"activity": activity.get("id") or "unknown", "error": "Invalid activity structure"})
                continue
            logger.debug("activity_processed", user_id=user_id, type=activity["type"], action=activity["action"])
            results["processed"] += 1

        await self.invalidate_user_caches(user_id)
        logger.info("batch_activities_processed", user_id=user_id, processed=results["processed"], failed=results["failed"])
        return results

    async def invalidate_user_caches(self, user_id: str) -> int:
        return await self.analytics.clear_user_cache(user_id)

    async def refresh(self, user_id: str, force_recalculation: bool = False) -> dict[str, Any]:
        await self.invalidate_user_caches(user_id)
        if force_recalculation:
            await self.analytics.recalculate_user_analytics(user_id)
        return {
            "message": "Dashboard refresh initiated",
            "forceRecalculation": force_recalculation,
            "timestamp": self.analytics.clock().isoformat(),
        }

    async def health(self, user_id: str) -> dict[str, Any]:
        status = "healthy"
        checks = {"database": "healthy", "cache": "healthy", "user": "healthy"}
        started = time.perf_counter()
        try:
            user = await self.repository.find_user(user_id)
        except UpstreamFetchError:
            checks["database"] = "unhealthy"
            status = "unhealthy"
        else:
            if user is None:
                checks["user"] = "missing"
                status = "degraded"
        cache_stats = self.cache.stats()
        return {
            "status": status,
            "checks": checks,
            "metrics": {
                "cacheSize": cache_stats["size"],
                "cacheHitRate": cache_stats["hitRate"],
                "responseTime": round((time.perf_counter() - started) * 1000, 1),
            },
            "timestamp": self.analytics.clock().isoformat(),
        }
