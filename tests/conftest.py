"""Shared test fixtures."""

from __future__ import annotations

import os
from collections import Counter
from collections.abc import AsyncGenerator, Iterable
from datetime import datetime, timezone

os.environ.setdefault("TIMESLICE_JWT_SECRET", "test-secret-for-timeslice-analytics-0123456789")
os.environ.setdefault("TIMESLICE_ENVIRONMENT", "development")
os.environ.setdefault("TIMESLICE_LOG_FORMAT", "console")

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from timeslice.analytics.cache import AnalyticsCache
from timeslice.analytics.errors import UpstreamFetchError
from timeslice.analytics.records import (
    ApplicationRecord,
    BookingRecord,
    ChatRecord,
    MessageRecord,
    TaskRecord,
    UserRecord,
)
from timeslice.analytics.repository import PlatformStats
from timeslice.analytics.service import AnalyticsService
from timeslice.auth.jwt import create_access_token
from timeslice.config import get_settings
from timeslice.dashboard.service import DashboardService
from timeslice.main import create_app

get_settings.cache_clear()

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeRepository:
    """In-memory AnalyticsRepository with the same window filters as the SQL one.

    ``calls`` counts every read; operations named in ``fail_on`` raise
    UpstreamFetchError.
    """

    def __init__(self) -> None:
        self.users: dict[str, UserRecord] = {}
        self.tasks: list[TaskRecord] = []
        self.applications: list[ApplicationRecord] = []
        self.bookings: list[BookingRecord] = []
        self.chats: list[ChatRecord] = []
        self.messages: list[MessageRecord] = []
        self.stats = PlatformStats()
        self.populations: dict[str, list[float]] = {}
        self.fail_on: set[str] = set()
        self.calls: Counter[str] = Counter()

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    def add_user(self, user_id: str, **fields: object) -> UserRecord:
        user = UserRecord(id=user_id, username=fields.pop("username", user_id), **fields)  # type: ignore[arg-type]
        self.users[user_id] = user
        return user

    def _record(self, operation: str) -> None:
        self.calls[operation] += 1
        if operation in self.fail_on:
            raise UpstreamFetchError(operation, ConnectionError("record store unavailable"))

    async def find_user(self, user_id: str) -> UserRecord | None:
        self._record("find_user")
        return self.users.get(user_id)

    async def find_tasks(self, user_id: str, start: datetime, end: datetime) -> list[TaskRecord]:
        self._record("find_tasks")
        return [
            t
            for t in self.tasks
            if user_id in (t.task_provider_id, t.selected_helper_id) and start <= t.created_at <= end
        ]

    async def find_tasks_by_ids(self, task_ids: Iterable[str]) -> dict[str, TaskRecord]:
        self._record("find_tasks_by_ids")
        wanted = set(task_ids)
        return {t.id: t for t in self.tasks if t.id in wanted}

    async def find_applications(self, user_id: str, start: datetime, end: datetime) -> list[ApplicationRecord]:
        self._record("find_applications")
        return [
            a
            for a in self.applications
            if user_id in (a.applicant_id, a.task_provider_id) and start <= a.created_at <= end
        ]

    async def find_bookings(self, user_id: str, start: datetime, end: datetime) -> list[BookingRecord]:
        self._record("find_bookings")
        return [
            b
            for b in self.bookings
            if user_id in (b.helper_id, b.task_provider_id) and start <= b.created_at <= end
        ]

    async def find_completed_helper_bookings(
        self, user_id: str, start: datetime, end: datetime,
    ) -> list[BookingRecord]:
        self._record("find_completed_helper_bookings")
        return [
            b
            for b in self.bookings
            if b.helper_id == user_id and b.is_completed and b.completed_at and start <= b.completed_at <= end
        ]

    async def find_chats(self, user_id: str, start: datetime, end: datetime) -> list[ChatRecord]:
        self._record("find_chats")
        return [c for c in self.chats if user_id in c.participants and start <= c.created_at <= end]

    async def find_messages(self, user_id: str, start: datetime, end: datetime) -> list[MessageRecord]:
        self._record("find_messages")
        chat_ids = {c.id for c in self.chats if user_id in c.participants}
        return sorted(
            (m for m in self.messages if m.chat_id in chat_ids and start <= m.created_at <= end),
            key=lambda m: (m.chat_id, m.created_at),
        )

    async def platform_stats(self, start: datetime, end: datetime) -> PlatformStats:
        self._record("platform_stats")
        return self.stats

    async def population_values(self, metric: str, start: datetime, end: datetime) -> list[float]:
        self._record("population_values")
        return list(self.populations.get(metric, []))

    async def ping(self) -> None:
        self._record("ping")


def auth_headers(user_id: str, role: str = "user") -> dict[str, str]:
    """Authorization header carrying a freshly minted access token."""
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


@pytest.fixture
def repo() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def cache() -> AnalyticsCache:
    return AnalyticsCache(max_entries=100, default_ttl=300)


@pytest.fixture
def analytics(repo: FakeRepository, cache: AnalyticsCache) -> AnalyticsService:
    return AnalyticsService(repo, cache, user_ttl=300, clock=lambda: NOW)


@pytest.fixture
def dashboard(analytics: AnalyticsService) -> DashboardService:
    return DashboardService(analytics, cache_ttl=300, activity_max_items=100)


@pytest.fixture
def app(analytics: AnalyticsService, dashboard: DashboardService) -> FastAPI:
    """Application with in-memory services; the lifespan (database, Redis) is not run."""
    application = create_app()
    application.state.analytics_service = analytics
    application.state.dashboard_service = dashboard
    application.state.snapshot_store = None
    return application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def now() -> datetime:
    """The fixed 'now' every service fixture computes against."""
    return NOW


@pytest.fixture
def headers():
    """Build Authorization headers: ``headers("u1")`` or ``headers("a1", "admin")``."""
    return auth_headers
