"""Analytics endpoints: per-user analytics, benchmarks, insights, comparison, cache control."""

import time
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request

from timeslice.analytics.schemas import USER_ID_MAX_LENGTH, ComparisonMetricParam, TimeRangeParam
from timeslice.analytics.service import AnalyticsService
from timeslice.analytics.snapshots import SnapshotStore
from timeslice.analytics.time_ranges import utcnow
from timeslice.auth.dependencies import CurrentUser, get_current_user, require_admin, require_self_or_admin
from timeslice.dependencies import get_analytics_service

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/analytics", tags=["Analytics"])

UserId = Annotated[str, Path(min_length=1, max_length=USER_ID_MAX_LENGTH)]


def _envelope(data: Any, **meta: Any) -> dict[str, Any]:
    return {"success": True, "data": data, "meta": {**meta, "generatedAt": utcnow().isoformat()}}


async def _user_analytics(
    analytics: AnalyticsService,
    user: CurrentUser,
    user_id: str,
    time_range: str,
    detailed: bool,
) -> dict[str, Any]:
    logger.info(
        "user_analytics_requested",
        user_id=user_id,
        time_range=time_range,
        detailed=detailed,
        requested_by=user.id,
    )
    started = time.perf_counter()
    bundle = await analytics.get_user_analytics(user_id, time_range, detailed=detailed)
    processing_ms = round((time.perf_counter() - started) * 1000, 1)
    return _envelope(
        bundle,
        userId=user_id,
        timeRange=time_range,
        detailed=detailed,
        processingTime=f"{processing_ms}ms",
    )


@router.get("/me")
async def my_analytics(
    time_range: TimeRangeParam = Query("7d", alias="timeRange"),
    detailed: bool = Query(False),
    user: CurrentUser = Depends(get_current_user),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> dict:
    """Analytics bundle for the caller."""
    return await _user_analytics(analytics, user, user.id, time_range, detailed)


@router.get("/user/{user_id}")
async def user_analytics(
    request: Request,
    user_id: UserId,
    time_range: TimeRangeParam = Query("7d", alias="timeRange"),
    detailed: bool = Query(False),
    user: CurrentUser = Depends(get_current_user),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> dict:
    """Analytics bundle for one user (self or admin)."""
    require_self_or_admin(user, user_id, request)
    return await _user_analytics(analytics, user, user_id, time_range, detailed)


@router.get("/benchmarks")
async def platform_benchmarks(
    time_range: TimeRangeParam = Query("7d", alias="timeRange"),
    user: CurrentUser = Depends(get_current_user),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> dict:
    """Platform-wide averages for the time range."""
    benchmarks = await analytics.get_platform_benchmarks(time_range)
    return _envelope(benchmarks, timeRange=time_range, type="platform_benchmarks")


@router.get("/insights/{user_id}")
async def user_insights(
    request: Request,
    user_id: UserId,
    time_range: TimeRangeParam = Query("30d", alias="timeRange"),
    user: CurrentUser = Depends(get_current_user),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> dict:
    require_self_or_admin(user, user_id, request, "Access denied. You can only view your own insights.")
    insights = await analytics.generate_user_insights(user_id, time_range)
    return _envelope(
        insights,
        userId=user_id,
        timeRange=time_range,
        count=len(insights),
        actionRequired=sum(1 for i in insights if i["actionRequired"]),
    )


@router.get("/compare/{user_id}")
async def user_comparison(
    request: Request,
    user_id: UserId,
    time_range: TimeRangeParam = Query("30d", alias="timeRange"),
    metric: ComparisonMetricParam = Query("all"),
    user: CurrentUser = Depends(get_current_user),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> dict:
    require_self_or_admin(user, user_id, request, "Access denied. You can only view your own comparison data.")
    comparison = await analytics.get_user_comparison(user_id, time_range, metric)
    return _envelope(comparison, userId=user_id, timeRange=time_range, metric=metric, type="user_comparison")


@router.post("/recalculate/{user_id}")
async def recalculate(
    request: Request,
    user_id: UserId,
    user: CurrentUser = Depends(get_current_user),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> dict:
    """Drop cached analytics for a user and recompute (admin only)."""
    require_admin(user, request, "unauthorized_analytics_recalculation")
    logger.info("analytics_recalculation_requested", user_id=user_id, requested_by=user.id)
    bundle = await analytics.recalculate_user_analytics(user_id)
    return {
        "success": True,
        "message": "Analytics recalculation completed",
        "data": bundle,
        "meta": {"userId": user_id, "requestedBy": user.id, "completedAt": utcnow().isoformat()},
    }


@router.get("/summary")
async def analytics_summary(
    request: Request,
    time_range: TimeRangeParam = Query("30d", alias="timeRange"),
    limit: int = Query(50, ge=1, le=500),
    user: CurrentUser = Depends(get_current_user),
) -> dict:
    """Top users by earnings from persisted snapshots (admin only)."""
    require_admin(user, request)
    snapshots: SnapshotStore | None = getattr(request.app.state, "snapshot_store", None)
    summary = await snapshots.user_summary(time_range, limit) if snapshots is not None else []
    return _envelope(summary, timeRange=time_range, limit=limit, type="analytics_summary", count=len(summary))


@router.delete("/cache")
async def clear_cache(
    request: Request,
    user_id: str | None = Query(None, alias="userId", max_length=USER_ID_MAX_LENGTH),
    user: CurrentUser = Depends(get_current_user),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> dict:
    """Clear one user's cache (self or admin) or the whole cache (admin)."""
    if user_id is None and not user.is_admin:
        raise HTTPException(status_code=403, detail="Access denied. Admin privileges required for global cache clear.")
    if user_id is not None:
        require_self_or_admin(user, user_id, request, "Access denied. You can only clear your own cache.")

    logger.info("analytics_cache_clear_requested", user_id=user_id or "all", requested_by=user.id)
    if user_id is not None:
        cleared = await analytics.clear_user_cache(user_id)
        message = "User cache cleared"
    else:
        cleared = len(analytics.cache)
        analytics.clear_all_cache()
        message = "All analytics cache cleared"

    return {
        "success": True,
        "message": message,
        "meta": {
            "userId": user_id or "all",
            "entriesCleared": cleared,
            "clearedBy": user.id,
            "clearedAt": utcnow().isoformat(),
        },
    }


@router.get("/health")
async def analytics_health(
    user: CurrentUser = Depends(get_current_user),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> dict:
    return await analytics.health()
