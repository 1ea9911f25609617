"""Analytics error taxonomy.

All three propagate to the HTTP layer unmodified; the engine never retries.
"""

from __future__ import annotations


class AnalyticsError(Exception):
    """Base class for analytics failures."""


class NotFoundError(AnalyticsError):
    """The requested user does not exist."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class InvalidRangeError(AnalyticsError):
    """End date precedes start date, or the time range token is unsupported."""


class UpstreamFetchError(AnalyticsError):
    """A persistence query failed (store unavailable, bad query, ...)."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        detail = f"{operation} failed"
        if cause is not None:
            detail = f"{detail}: {cause}"
        super().__init__(detail)
        self.operation = operation
