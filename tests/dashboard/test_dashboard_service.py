"""DashboardService: stats, activity feed, export, preferences, batch updates."""

from __future__ import annotations

from datetime import timedelta

import pytest

from timeslice.analytics.cache import make_key
from timeslice.analytics.errors import NotFoundError
from timeslice.analytics.records import (
    ApplicationRecord,
    BookingRecord,
    ChatRecord,
    MessageRecord,
    TaskRecord,
)
from timeslice.dashboard.service import CSV_HEADERS, DASHBOARD_STATS, DEFAULT_PREFERENCES


@pytest.fixture
def marketplace(repo, now):
    """u1 creates one task, helps on another, applies, books and chats."""
    repo.add_user("u1", rating=4.0, total_ratings=4, completed_tasks=6, created_at=now - timedelta(days=90))
    repo.add_user("p1")
    repo.tasks.extend(
        [
            TaskRecord(
                id="t1", task_provider_id="u1", created_at=now - timedelta(days=1),
                title="Walk my dog", description="Two walks a day", status="open", credits=20,
            ),
            TaskRecord(
                id="t2", task_provider_id="p1", selected_helper_id="u1", created_at=now - timedelta(days=3),
                title="Paint fence", status="in-progress", credits=60,
            ),
        ]
    )
    repo.applications.append(
        ApplicationRecord(
            id="a1", task_id="t2", applicant_id="u1", task_provider_id="p1",
            created_at=now - timedelta(days=3, hours=1), status="accepted",
            message="I have painted many fences",
        )
    )
    repo.bookings.append(
        BookingRecord(
            id="b1", task_id="t2", helper_id="u1", task_provider_id="p1", agreed_credits=60,
            created_at=now - timedelta(days=2, hours=23), updated_at=now - timedelta(hours=4),
            status="completed", completed_at=now - timedelta(hours=4),
        )
    )
    repo.chats.append(ChatRecord(id="c1", created_at=now - timedelta(days=3), participants=("u1", "p1")))
    repo.messages.extend(
        [
            MessageRecord(id="m1", chat_id="c1", sender_id="p1", created_at=now - timedelta(days=2, hours=5),
                          content="When can you start?"),
            MessageRecord(id="m2", chat_id="c1", sender_id="u1", created_at=now - timedelta(days=2, hours=3),
                          content="Tomorrow morning works for me"),
        ]
    )
    return repo


class TestDashboardStats:
    @pytest.mark.asyncio
    async def test_stats(self, dashboard, marketplace):
        stats = await dashboard.get_dashboard_stats("u1", "7d")
        assert stats["tasksCreated"] == 1
        assert stats["tasksInProgress"] == 1
        assert stats["tasksOpen"] == 1
        assert stats["creditsEarned"] == 60
        assert stats["averageEarning"] == 60
        assert stats["averageSpending"] == 0
        assert stats["completedBookings"] == 1
        assert stats["messagesSent"] == 1
        assert stats["messagesReceived"] == 1
        assert stats["totalChats"] == 1
        assert stats["activeChats"] == 1
        assert stats["responseTime"] == 2.0
        assert stats["changes"]["creditsEarned"] == 100
        assert stats["streaks"]["type"] == "daily_activity"
        assert len(stats["goals"]) == 2
        assert stats["joinDate"] is not None
        assert stats["timeRange"] == "7d"

    @pytest.mark.asyncio
    async def test_stats_cached_until_invalidated(self, dashboard, marketplace):
        first = await dashboard.get_dashboard_stats("u1", "7d")
        calls = marketplace.total_calls
        assert await dashboard.get_dashboard_stats("u1", "7d") == first
        assert marketplace.total_calls == calls

        await dashboard.invalidate_user_caches("u1")
        await dashboard.get_dashboard_stats("u1", "7d")
        assert marketplace.total_calls > calls

    @pytest.mark.asyncio
    async def test_unknown_user(self, dashboard, marketplace):
        with pytest.raises(NotFoundError):
            await dashboard.get_dashboard_stats("ghost")


class TestActivityFeed:
    @pytest.mark.asyncio
    async def test_newest_first(self, dashboard, marketplace):
        feed = await dashboard.get_user_activity("u1", "7d")
        assert [a["id"] for a in feed] == [
            "booking_b1",
            "task_t1",
            "message_m2",
            "task_t2",
            "application_a1",
        ]

    @pytest.mark.asyncio
    async def test_titles(self, dashboard, marketplace):
        feed = {a["id"]: a for a in await dashboard.get_user_activity("u1", "7d")}
        assert feed["task_t1"]["title"] == "Created task: Walk my dog"
        assert feed["task_t2"]["title"] == "Assigned to task: Paint fence"
        assert feed["application_a1"]["title"] == "Applied for task: Paint fence"
        assert feed["booking_b1"]["title"] == "Booking completed: Paint fence"
        assert feed["message_m2"]["description"] == "Tomorrow morning works for me"

    @pytest.mark.asyncio
    async def test_type_filter_and_limit(self, dashboard, marketplace):
        tasks = await dashboard.get_user_activity("u1", "7d", activity_type="task")
        assert {a["type"] for a in tasks} == {"task"}
        assert len(await dashboard.get_user_activity("u1", "7d", limit=2)) == 2

    @pytest.mark.asyncio
    async def test_titles_for_tasks_outside_the_window(self, dashboard, repo, now):
        repo.add_user("u1")
        repo.tasks.append(TaskRecord(id="old", task_provider_id="p1", created_at=now - timedelta(days=60), title="Old job"))
        repo.applications.append(
            ApplicationRecord(
                id="a9", task_id="old", applicant_id="u1", task_provider_id="p1", created_at=now - timedelta(hours=2),
            )
        )
        feed = await dashboard.get_user_activity("u1", "7d")
        assert feed[0]["title"] == "Applied for task: Old job"


class TestExport:
    @pytest.mark.asyncio
    async def test_json(self, dashboard, marketplace):
        export = await dashboard.export_user_data("u1", "30d", "json")
        assert export["format"] == "json"
        assert export["user"]["creditsEarned"] == 60
        assert len(export["activity"]) == 5

    @pytest.mark.asyncio
    async def test_csv(self, dashboard, marketplace):
        export = await dashboard.export_user_data("u1", "30d", "csv")
        lines = export.strip().split("\n")
        assert lines[0] == ",".join(CSV_HEADERS)
        assert len(lines) == 6
        assert lines[1].startswith("2026-10-19,booking,status_change,")

    @pytest.mark.asyncio
    async def test_unknown_format(self, dashboard, marketplace):
        with pytest.raises(ValueError):
            await dashboard.export_user_data("u1", "30d", "xml")


class TestPerformanceOverview:
    @pytest.mark.asyncio
    async def test_overview(self, dashboard, marketplace):
        overview = await dashboard.get_performance_overview("u1", "7d")
        assert overview["performance"]["successRate"] == 100.0
        assert len(overview["aggregated"]["periods"]) == 7
        assert overview["aggregated"]["summary"]["earnings"]["total"] == 60
        assert {c["name"] for c in overview["categories"]} == {"Uncategorized"}
        assert overview["skills"][0]["name"] == "General"


class TestPreferencesAndBatch:
    def test_default_preferences(self, dashboard):
        assert dashboard.get_preferences("u1") == DEFAULT_PREFERENCES

    def test_partial_update(self, dashboard, now):
        updated = dashboard.update_preferences("u1", {"theme": "dark", "refreshInterval": None})
        assert updated["theme"] == "dark"
        assert updated["refreshInterval"] == DEFAULT_PREFERENCES["refreshInterval"]
        assert updated["updatedAt"] == now.isoformat()
        assert dashboard.get_preferences("u2") == DEFAULT_PREFERENCES

    @pytest.mark.asyncio
    async def test_batch(self, dashboard, marketplace):
        await dashboard.get_dashboard_stats("u1", "7d")
        result = await dashboard.process_batch_activities(
            "u1",
            [
                {"type": "task", "action": "viewed"},
                {"id": "x2", "type": "task"},
                {"type": "message", "action": "sent"},
            ],
        )
        assert result["processed"] == 2
        assert result["failed"] == 1
        assert result["errors"] == [{"activity": "x2", "error": "Invalid activity structure"}]
        assert make_key(DASHBOARD_STATS, "u1", "7d") not in dashboard.cache

    @pytest.mark.asyncio
    async def test_refresh(self, dashboard, marketplace):
        result = await dashboard.refresh("u1", force_recalculation=True)
        assert result["forceRecalculation"] is True
        assert result["message"] == "Dashboard refresh initiated"

    @pytest.mark.asyncio
    async def test_health(self, dashboard, marketplace):
        assert (await dashboard.health("u1"))["status"] == "healthy"
        assert (await dashboard.health("ghost"))["checks"]["user"] == "missing"
