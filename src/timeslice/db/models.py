"""ORM models for the marketplace tables read by the analytics service.

Marketplace rows (users, tasks, applications, bookings, chats, messages) are
written by the marketplace CRUD service; this service only reads them.
The analytics_snapshots table is the one table this service writes.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from timeslice.db.base import Base


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Marketplace user with running rating and credit aggregates."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), unique=True, nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, server_default="user")
    primary_role: Mapped[str] = mapped_column(String(16), nullable=False, server_default="both")
    credits: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    rating: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    total_ratings: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    completed_tasks: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Tasks and applications
# ---------------------------------------------------------------------------


class Task(Base):
    """A unit of work posted by a task provider."""

    __tablename__ = "tasks"
    __table_args__ = (
        Index("idx_tasks_provider_created", "task_provider_id", "created_at"),
        Index("idx_tasks_helper_created", "selected_helper_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    task_provider_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    selected_helper_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="open")
    credits: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    skills_required: Mapped[list[str]] = mapped_column(JSONB, nullable=False, server_default="[]")
    urgency: Mapped[str | None] = mapped_column(String(16), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Application(Base):
    """A helper's bid on a task."""

    __tablename__ = "applications"
    __table_args__ = (
        Index("idx_applications_applicant_created", "applicant_id", "created_at"),
        Index("idx_applications_provider_created", "task_provider_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    applicant_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    task_provider_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="pending")
    proposed_credits: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    message: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------


class Booking(Base):
    """Accepted-application contract between helper and provider."""

    __tablename__ = "bookings"
    __table_args__ = (
        Index("idx_bookings_helper_created", "helper_id", "created_at"),
        Index("idx_bookings_provider_created", "task_provider_id", "created_at"),
        Index("idx_bookings_status_completed", "status", "completed_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    application_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("applications.id", ondelete="CASCADE"), nullable=False,
    )
    helper_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    task_provider_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    agreed_credits: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="confirmed")
    helper_review: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    task_provider_review: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    reviewed_by: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False, server_default="[]")
    deliverables: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, server_default="{}")
    chat_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class Chat(Base):
    """Conversation between booking participants."""

    __tablename__ = "chats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    task_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)
    participants: Mapped[list[str]] = mapped_column(JSONB, nullable=False, server_default="[]")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Message(Base):
    """Single chat message with per-reader receipts."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_chat_created", "chat_id", "created_at"),
        Index("idx_messages_sender_created", "sender_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    chat_id: Mapped[str] = mapped_column(String(36), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    read_by: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False, server_default="[]")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Analytics snapshots (write-behind record of computed bundles)
# ---------------------------------------------------------------------------


class AnalyticsSnapshot(Base):
    """Persisted copy of a computed analytics bundle for one user and period."""

    __tablename__ = "analytics_snapshots"
    __table_args__ = (
        Index("idx_snapshots_user_type_start", "user_id", "period_type", "period_start"),
        Index("idx_snapshots_user_expires", "user_id", "cache_expires_at"),
        Index("idx_snapshots_invalidated_expires", "cache_invalidated", "cache_expires_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    period_type: Mapped[str] = mapped_column(String(16), nullable=False)
    time_range: Mapped[str] = mapped_column(String(8), nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    metrics: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, server_default="{}")
    timeline: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False, server_default="[]")
    insights: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False, server_default="[]")
    benchmarks: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, server_default="{}")
    cache_version: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")
    cache_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    cache_invalidated: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def is_stale(self, now: datetime) -> bool:
        """A snapshot is stale once invalidated or past its expiry."""
        return self.cache_invalidated or now > self.cache_expires_at
