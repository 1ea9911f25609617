"""Redis client shared by the rate limiter and the readiness probe.

Analytics results never go to Redis; they stay in the in-process cache.
Keys written by this service live under the ``timeslice:`` namespace.
"""

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from timeslice.config import Settings

logger = structlog.get_logger()

KEY_PREFIX = "timeslice"

_client: redis.Redis | None = None


def redis_key(*parts: object) -> str:
    """``redis_key("ratelimit", ip, window)`` -> ``timeslice:ratelimit:<ip>:<window>``."""
    return ":".join([KEY_PREFIX, *(str(p) for p in parts)])


async def init_redis(settings: Settings) -> redis.Redis:
    """Create the client; connections are opened lazily on first command."""
    global _client  # noqa: PLW0603
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        settings.redis_url,
        decode_responses=True,
        max_connections=settings.redis_max_connections,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
        socket_timeout=settings.redis_socket_timeout_seconds,
    )
    logger.info("redis_initialized", max_connections=settings.redis_max_connections)
    return _client


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    """The shared client; raises ``RuntimeError`` before ``init_redis``."""
    if _client is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _client


async def redis_status() -> str:
    """``"ok"`` when Redis answers a PING, otherwise ``"error: <reason>"``."""
    try:
        await get_redis().ping()
    except (RuntimeError, RedisError, OSError) as exc:
        return f"error: {exc}"
    return "ok"
