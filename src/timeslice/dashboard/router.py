"""Dashboard endpoints: stats, analytics, activity feed, export, preferences."""

import json

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from timeslice.analytics.schemas import ComparisonMetricParam, TimeRangeParam
from timeslice.analytics.service import AnalyticsService
from timeslice.analytics.time_ranges import utcnow
from timeslice.auth.dependencies import CurrentUser, get_current_user
from timeslice.dashboard.schemas import (
    ActivityTypeParam,
    BatchActivitiesRequest,
    BatchActivitiesResponse,
    ExportFormatParam,
    PreferencesUpdate,
    RefreshRequest,
)
from timeslice.dashboard.service import DashboardService
from timeslice.dependencies import get_analytics_service, get_dashboard_service

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/dashboard", tags=["Dashboard"])


@router.get("/stats")
async def dashboard_stats(
    time_range: TimeRangeParam = Query("7d", alias="timeRange"),
    user: CurrentUser = Depends(get_current_user),
    dashboard: DashboardService = Depends(get_dashboard_service),
) -> dict:
    """Dashboard statistics for the caller (cached per user and time range)."""
    logger.info("dashboard_stats_requested", user_id=user.id, time_range=time_range)
    return await dashboard.get_dashboard_stats(user.id, time_range)


@router.get("/analytics")
async def dashboard_analytics(
    time_range: TimeRangeParam = Query("7d", alias="timeRange"),
    detailed: bool = Query(False),
    user: CurrentUser = Depends(get_current_user),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> dict:
    """Analytics bundle plus platform benchmarks."""
    bundle = await analytics.get_user_analytics(user.id, time_range, detailed=detailed)
    benchmarks = await analytics.get_platform_benchmarks(time_range)
    return {**bundle, "benchmarks": benchmarks}


@router.get("/activity")
async def dashboard_activity(
    time_range: TimeRangeParam = Query("7d", alias="timeRange"),
    limit: int = Query(50, ge=1, le=1000),
    activity_type: ActivityTypeParam = Query("all", alias="type"),
    user: CurrentUser = Depends(get_current_user),
    dashboard: DashboardService = Depends(get_dashboard_service),
) -> list[dict]:
    """Recent activity, newest first."""
    return await dashboard.get_user_activity(
        user.id,
        time_range,
        limit=limit,
        activity_type=None if activity_type == "all" else activity_type,
    )


@router.get("/performance")
async def dashboard_performance(
    time_range: TimeRangeParam = Query("7d", alias="timeRange"),
    user: CurrentUser = Depends(get_current_user),
    dashboard: DashboardService = Depends(get_dashboard_service),
) -> dict:
    return await dashboard.get_performance_overview(user.id, time_range)


@router.post("/activity/batch")
async def batch_activities(
    body: BatchActivitiesRequest,
    user: CurrentUser = Depends(get_current_user),
    dashboard: DashboardService = Depends(get_dashboard_service),
) -> BatchActivitiesResponse:
    """Record a batch of client-side activities and invalidate the caller's caches."""
    logger.info("batch_activity_received", user_id=user.id, activities_count=len(body.activities))
    results = await dashboard.process_batch_activities(user.id, body.activities)
    return BatchActivitiesResponse(**results)


@router.get("/insights")
async def dashboard_insights(
    time_range: TimeRangeParam = Query("30d", alias="timeRange"),
    user: CurrentUser = Depends(get_current_user),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> list[dict]:
    return await analytics.generate_user_insights(user.id, time_range)


@router.get("/export")
async def dashboard_export(
    fmt: ExportFormatParam = Query("json", alias="format"),
    time_range: TimeRangeParam = Query("30d", alias="timeRange"),
    user: CurrentUser = Depends(get_current_user),
    dashboard: DashboardService = Depends(get_dashboard_service),
) -> Response:
    """Download the caller's dashboard data as JSON or CSV."""
    data = await dashboard.export_user_data(user.id, time_range, fmt)
    stamp = int(utcnow().timestamp() * 1000)
    filename = f"dashboard-{user.id}-{time_range}-{stamp}.{fmt}"
    if fmt == "csv":
        content, media_type = data, "text/csv"
    else:
        content, media_type = json.dumps(data), "application/json"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/compare")
async def dashboard_compare(
    time_range: TimeRangeParam = Query("30d", alias="timeRange"),
    metric: ComparisonMetricParam = Query("all"),
    user: CurrentUser = Depends(get_current_user),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> dict:
    return await analytics.get_user_comparison(user.id, time_range, metric)


@router.get("/preferences")
async def get_preferences(
    user: CurrentUser = Depends(get_current_user),
    dashboard: DashboardService = Depends(get_dashboard_service),
) -> dict:
    return dashboard.get_preferences(user.id)


@router.put("/preferences")
async def update_preferences(
    body: PreferencesUpdate,
    user: CurrentUser = Depends(get_current_user),
    dashboard: DashboardService = Depends(get_dashboard_service),
) -> dict:
    return dashboard.update_preferences(user.id, body.model_dump(exclude_none=True))


@router.get("/health")
async def dashboard_health(
    user: CurrentUser = Depends(get_current_user),
    dashboard: DashboardService = Depends(get_dashboard_service),
) -> dict:
    return await dashboard.health(user.id)


@router.post("/refresh")
async def refresh_dashboard(
    body: RefreshRequest | None = None,
    user: CurrentUser = Depends(get_current_user),
    dashboard: DashboardService = Depends(get_dashboard_service),
) -> dict:
    """Invalidate the caller's caches, optionally recomputing analytics right away."""
    force = body.forceRecalculation if body is not None else False
    logger.info("dashboard_refresh_requested", user_id=user.id, force_recalculation=force)
    return await dashboard.refresh(user.id, force)
