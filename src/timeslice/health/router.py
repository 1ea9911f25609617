"""Health, readiness, and version endpoints."""

from fastapi import APIRouter, Depends

from timeslice.analytics.service import AnalyticsService
from timeslice.config import get_settings
from timeslice.dependencies import get_analytics_service
from timeslice.redis_client import redis_status

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe: 200 while the process is alive."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    analytics: AnalyticsService = Depends(get_analytics_service),  # noqa: B008
) -> dict[str, object]:
    """Readiness probe: checks the record store, Redis, and the analytics cache."""
    checks: dict[str, object] = {}

    try:
        await analytics.repository.ping()
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    checks["redis"] = await redis_status()

    checks["cache"] = "ok"
    all_ok = all(v == "ok" for v in checks.values())
    return {
        "status": "ready" if all_ok else "degraded",
        "checks": checks,
        "cache": analytics.cache.stats(),
    }


@router.get("/version")
async def version() -> dict[str, str]:
    """Return API version and environment."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
