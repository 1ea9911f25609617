"""Plain record types consumed by the aggregation engine.

The repository converts ORM rows into these so the engine stays a set of
pure functions over lists.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

ACTIVE_BOOKING_STATUSES = frozenset({"confirmed", "in-progress", "work-submitted"})
IN_PROGRESS_TASK_STATUSES = frozenset({"assigned", "in-progress"})


@dataclass(frozen=True)
class UserRecord:
    id: str
    username: str = ""
    role: str = "user"
    primary_role: str = "both"
    credits: int = 0
    rating: float = 0.0
    total_ratings: int = 0
    completed_tasks: int = 0
    created_at: datetime | None = None


@dataclass(frozen=True)
class TaskRecord:
    id: str
    task_provider_id: str
    created_at: datetime
    status: str = "open"
    selected_helper_id: str | None = None
    title: str = ""
    description: str = ""
    credits: int = 0
    category: str | None = None
    skills_required: tuple[str, ...] = ()
    updated_at: datetime | None = None


@dataclass(frozen=True)
class ApplicationRecord:
    id: str
    task_id: str
    applicant_id: str
    task_provider_id: str
    created_at: datetime
    status: str = "pending"
    proposed_credits: int = 0
    message: str = ""


@dataclass(frozen=True)
class BookingRecord:
    id: str
    task_id: str
    helper_id: str
    task_provider_id: str
    agreed_credits: int
    created_at: datetime
    status: str = "confirmed"
    application_id: str = ""
    helper_review: dict[str, Any] | None = None
    task_provider_review: dict[str, Any] | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    def review_rating_for(self, user_id: str) -> float | None:
        """Rating the given participant received on this booking, if reviewed.

        The provider reviews the helper (``task_provider_review``) and the
        helper reviews the provider (``helper_review``).
        """
        if user_id == self.helper_id:
            review = self.task_provider_review
        elif user_id == self.task_provider_id:
            review = self.helper_review
        else:
            return None
        if not review or review.get("rating") is None:
            return None
        return float(review["rating"])


@dataclass(frozen=True)
class ChatRecord:
    id: str
    created_at: datetime
    participants: tuple[str, ...] = ()
    task_id: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class MessageRecord:
    id: str
    chat_id: str
    sender_id: str
    created_at: datetime
    content: str = ""
    read_by: tuple[str, ...] = field(default_factory=tuple)
