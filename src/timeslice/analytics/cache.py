"""Process-local analytics cache.

Bounded LRU with lazy TTL expiry. Keys are structured
``CacheKey(operation, user_id, time_range, options_hash)`` tuples and a
``user_id -> keys`` index makes per-user invalidation touch only that
user's entries.

The cache never raises: any failure inside it is logged and treated as a
miss. It is not shared between processes.
"""

from __future__ import annotations

import hashlib
import json
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, NamedTuple

import structlog

logger = structlog.get_logger()


class CacheKey(NamedTuple):
    operation: str
    user_id: str | None
    time_range: str | None
    options_hash: str = ""


def hash_options(options: Mapping[str, Any] | None) -> str:
    """Stable short hash of an options mapping (order-independent)."""
    if not options:
        return ""
    encoded = json.dumps(dict(options), sort_keys=True, default=str)
    return hashlib.sha1(encoded.encode()).hexdigest()[:12]  # noqa: S324


def make_key(
    operation: str,
    user_id: str | None = None,
    time_range: str | None = None,
    options: Mapping[str, Any] | None = None,
) -> CacheKey:
    return CacheKey(operation, user_id, time_range, hash_options(options))


@dataclass
class _Entry:
    value: Any
    stored_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.stored_at >= self.ttl


class AnalyticsCache:
    """Bounded LRU cache with per-entry TTL and a per-user key index."""

    def __init__(
        self,
        max_entries: int = 1000,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            msg = "max_entries must be at least 1"
            raise ValueError(msg)
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: OrderedDict[CacheKey, _Entry] = OrderedDict()
        self._by_user: dict[str, set[CacheKey]] = {}
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: CacheKey) -> Any | None:
        """Return the cached value, or None on miss or expiry."""
        try:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if entry.expired(self._clock()):
                self._remove(key)
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return entry.value
        except Exception:
            logger.warning("analytics_cache_get_failed", operation=key.operation, exc_info=True)
            self.misses += 1
            return None

    def set(self, key: CacheKey, value: Any, ttl: float | None = None) -> None:
        try:
            if key in self._entries:
                self._remove(key)
            self._entries[key] = _Entry(value, self._clock(), self.default_ttl if ttl is None else ttl)
            if key.user_id is not None:
                self._by_user.setdefault(key.user_id, set()).add(key)
            while len(self._entries) > self.max_entries:
                oldest = next(iter(self._entries))
                self._remove(oldest)
                self.evictions += 1
        except Exception:
            logger.warning("analytics_cache_set_failed", operation=key.operation, exc_info=True)

    def invalidate_user(self, user_id: str) -> int:
        """Drop every entry belonging to ``user_id``. Returns the number removed."""
        try:
            keys = self._by_user.pop(user_id, set())
            for key in keys:
                self._entries.pop(key, None)
            return len(keys)
        except Exception:
            logger.warning("analytics_cache_invalidate_failed", user_id=user_id, exc_info=True)
            return 0

    def clear(self) -> None:
        self._entries.clear()
        self._by_user.clear()

    def stats(self) -> dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "size": len(self._entries),
            "maxEntries": self.max_entries,
            "users": len(self._by_user),
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hitRate": round(self.hits / lookups, 4) if lookups else 0.0,
        }

    def _remove(self, key: CacheKey) -> None:
        self._entries.pop(key, None)
        if key.user_id is not None:
            user_keys = self._by_user.get(key.user_id)
            if user_keys is not None:
                user_keys.discard(key)
                if not user_keys:
                    del self._by_user[key.user_id]
