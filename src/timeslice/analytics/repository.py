"""Record-fetch collaborators for the analytics engine.

``AnalyticsRepository`` is the read interface the engine depends on.
``SqlAnalyticsRepository`` implements it over the marketplace tables.
Every method opens its own session so the engine can await several reads
concurrently with ``asyncio.gather``. Database failures surface as
``UpstreamFetchError``.
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, TypeVar

import structlog
from sqlalchemy import and_, case, func, or_, select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from timeslice.analytics.errors import UpstreamFetchError
from timeslice.analytics.records import (
    ApplicationRecord,
    BookingRecord,
    ChatRecord,
    MessageRecord,
    TaskRecord,
    UserRecord,
)
from timeslice.database import STORE_ERRORS
from timeslice.db.models import Application, Booking, Chat, Message, Task, User

logger = structlog.get_logger()

T = TypeVar("T")

POPULATION_METRICS = ("successRate", "rating", "earnings", "activity")


@dataclass(frozen=True)
class PlatformStats:
    """Raw platform-wide aggregates for one window."""

    avg_rating: float = 0.0
    avg_completed_tasks: float = 0.0
    total_users: int = 0
    total_applications: int = 0
    accepted_applications: int = 0
    avg_booking_credits: float = 0.0
    total_bookings: int = 0


class AnalyticsRepository(Protocol):
    """Read-only queries the analytics engine needs."""

    async def find_user(self, user_id: str) -> UserRecord | None: ...

    async def find_tasks(self, user_id: str, start: datetime, end: datetime) -> list[TaskRecord]: ...

    async def find_tasks_by_ids(self, task_ids: Iterable[str]) -> dict[str, TaskRecord]: ...

    async def find_applications(self, user_id: str, start: datetime, end: datetime) -> list[ApplicationRecord]: ...

    async def find_bookings(self, user_id: str, start: datetime, end: datetime) -> list[BookingRecord]: ...

    async def find_completed_helper_bookings(
        self, user_id: str, start: datetime, end: datetime,
    ) -> list[BookingRecord]: ...

    async def find_chats(self, user_id: str, start: datetime, end: datetime) -> list[ChatRecord]: ...

    async def find_messages(self, user_id: str, start: datetime, end: datetime) -> list[MessageRecord]: ...

    async def platform_stats(self, start: datetime, end: datetime) -> PlatformStats: ...

    async def population_values(self, metric: str, start: datetime, end: datetime) -> list[float]: ...

    async def ping(self) -> None: ...


def _upstream(operation: str) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Translate record store failures into UpstreamFetchError."""

    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await fn(*args, **kwargs)
            except STORE_ERRORS as exc:
                logger.error("analytics_fetch_failed", operation=operation, error=str(exc))
                raise UpstreamFetchError(operation, exc) from exc

        return wrapper

    return decorator


# ---------------------------------------------------------------------------
# Row converters
# ---------------------------------------------------------------------------


def user_record(row: User) -> UserRecord:
    return UserRecord(
        id=row.id,
        username=row.username,
        role=row.role,
        primary_role=row.primary_role,
        credits=row.credits or 0,
        rating=float(row.rating or 0),
        total_ratings=row.total_ratings or 0,
        completed_tasks=row.completed_tasks or 0,
        created_at=row.created_at,
    )


def task_record(row: Task) -> TaskRecord:
    return TaskRecord(
        id=row.id,
        task_provider_id=row.task_provider_id,
        selected_helper_id=row.selected_helper_id,
        status=row.status,
        title=row.title,
        description=row.description or "",
        credits=row.credits or 0,
        category=row.category,
        skills_required=tuple(row.skills_required or ()),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def application_record(row: Application) -> ApplicationRecord:
    return ApplicationRecord(
        id=row.id,
        task_id=row.task_id,
        applicant_id=row.applicant_id,
        task_provider_id=row.task_provider_id,
        status=row.status,
        proposed_credits=row.proposed_credits or 0,
        message=row.message or "",
        created_at=row.created_at,
    )


def booking_record(row: Booking) -> BookingRecord:
    return BookingRecord(
        id=row.id,
        task_id=row.task_id,
        application_id=row.application_id,
        helper_id=row.helper_id,
        task_provider_id=row.task_provider_id,
        agreed_credits=row.agreed_credits or 0,
        status=row.status,
        helper_review=row.helper_review,
        task_provider_review=row.task_provider_review,
        started_at=row.started_at,
        completed_at=row.completed_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def chat_record(row: Chat) -> ChatRecord:
    return ChatRecord(
        id=row.id,
        task_id=row.task_id,
        participants=tuple(row.participants or ()),
        is_active=row.is_active,
        created_at=row.created_at,
    )


def message_record(row: Message) -> MessageRecord:
    return MessageRecord(
        id=row.id,
        chat_id=row.chat_id,
        sender_id=row.sender_id,
        content=row.content or "",
        read_by=tuple(r.get("user_id", "") for r in (row.read_by or ())),
        created_at=row.created_at,
    )


# ---------------------------------------------------------------------------
# SQL implementation
# ---------------------------------------------------------------------------


class SqlAnalyticsRepository:
    """AnalyticsRepository over the marketplace tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @_upstream("find_user")
    async def find_user(self, user_id: str) -> UserRecord | None:
        async with self._session_factory() as session:
            row = await session.get(User, user_id)
            return user_record(row) if row is not None else None

    @_upstream("find_tasks")
    async def find_tasks(self, user_id: str, start: datetime, end: datetime) -> list[TaskRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Task).where(
                    or_(Task.task_provider_id == user_id, Task.selected_helper_id == user_id),
                    Task.created_at >= start,
                    Task.created_at <= end,
                )
            )
            return [task_record(t) for t in result.scalars()]

    @_upstream("find_tasks_by_ids")
    async def find_tasks_by_ids(self, task_ids: Iterable[str]) -> dict[str, TaskRecord]:
        ids = list(set(task_ids))
        if not ids:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(select(Task).where(Task.id.in_(ids)))
            return {t.id: task_record(t) for t in result.scalars()}

    @_upstream("find_applications")
    async def find_applications(self, user_id: str, start: datetime, end: datetime) -> list[ApplicationRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Application).where(
                    or_(Application.applicant_id == user_id, Application.task_provider_id == user_id),
                    Application.created_at >= start,
                    Application.created_at <= end,
                )
            )
            return [application_record(a) for a in result.scalars()]

    @_upstream("find_bookings")
    async def find_bookings(self, user_id: str, start: datetime, end: datetime) -> list[BookingRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Booking).where(
                    or_(Booking.helper_id == user_id, Booking.task_provider_id == user_id),
                    Booking.created_at >= start,
                    Booking.created_at <= end,
                )
            )
            return [booking_record(b) for b in result.scalars()]

    @_upstream("find_completed_helper_bookings")
    async def find_completed_helper_bookings(
        self, user_id: str, start: datetime, end: datetime,
    ) -> list[BookingRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Booking).where(
                    Booking.helper_id == user_id,
                    Booking.status == "completed",
                    Booking.completed_at >= start,
                    Booking.completed_at <= end,
                )
            )
            return [booking_record(b) for b in result.scalars()]

    @_upstream("find_chats")
    async def find_chats(self, user_id: str, start: datetime, end: datetime) -> list[ChatRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Chat).where(
                    Chat.participants.contains([user_id]),
                    Chat.created_at >= start,
                    Chat.created_at <= end,
                )
            )
            return [chat_record(c) for c in result.scalars()]

    @_upstream("find_messages")
    async def find_messages(self, user_id: str, start: datetime, end: datetime) -> list[MessageRecord]:
        """Messages sent or received by the user (any chat they participate in)."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Message)
                .join(Chat, Chat.id == Message.chat_id)
                .where(
                    Chat.participants.contains([user_id]),
                    Message.created_at >= start,
                    Message.created_at <= end,
                )
                .order_by(Message.chat_id, Message.created_at)
            )
            return [message_record(m) for m in result.scalars()]

    @_upstream("platform_stats")
    async def platform_stats(self, start: datetime, end: datetime) -> PlatformStats:
        async with self._session_factory() as session:
            users = (
                await session.execute(
                    select(
                        func.avg(User.rating),
                        func.avg(User.completed_tasks),
                        func.count(User.id),
                    )
                )
            ).one()
            apps = (
                await session.execute(
                    select(
                        func.count(Application.id),
                        func.sum(case((Application.status == "accepted", 1), else_=0)),
                    ).where(Application.created_at >= start, Application.created_at <= end)
                )
            ).one()
            bookings = (
                await session.execute(
                    select(func.avg(Booking.agreed_credits), func.count(Booking.id)).where(
                        Booking.status == "completed",
                        Booking.completed_at >= start,
                        Booking.completed_at <= end,
                    )
                )
            ).one()

        return PlatformStats(
            avg_rating=float(users[0] or 0),
            avg_completed_tasks=float(users[1] or 0),
            total_users=int(users[2] or 0),
            total_applications=int(apps[0] or 0),
            accepted_applications=int(apps[1] or 0),
            avg_booking_credits=float(bookings[0] or 0),
            total_bookings=int(bookings[1] or 0),
        )

    @_upstream("population_values")
    async def population_values(self, metric: str, start: datetime, end: datetime) -> list[float]:
        """Per-user values of ``metric`` across the platform, for percentile ranking."""
        if metric not in POPULATION_METRICS:
            raise ValueError(f"Unknown population metric: {metric}")

        async with self._session_factory() as session:
            if metric == "rating":
                result = await session.execute(select(User.rating))
                return [float(r or 0) for (r,) in result]

            if metric == "earnings":
                result = await session.execute(
                    select(func.sum(Booking.agreed_credits))
                    .where(
                        and_(
                            Booking.status == "completed",
                            Booking.completed_at >= start,
                            Booking.completed_at <= end,
                        )
                    )
                    .group_by(Booking.helper_id)
                )
                return [float(v or 0) for (v,) in result]

            result = await session.execute(
                select(
                    func.count(Application.id),
                    func.sum(case((Application.status == "accepted", 1), else_=0)),
                )
                .where(Application.created_at >= start, Application.created_at <= end)
                .group_by(Application.applicant_id)
            )
            if metric == "activity":
                return [float(total) for total, _ in result]
            return [float(accepted or 0) / total * 100 for total, accepted in result if total]

    @_upstream("ping")
    async def ping(self) -> None:
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))
