"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from timeslice.analytics.cache import AnalyticsCache
from timeslice.analytics.repository import SqlAnalyticsRepository
from timeslice.analytics.router import router as analytics_router
from timeslice.analytics.service import AnalyticsService
from timeslice.analytics.snapshots import SnapshotStore
from timeslice.config import Settings, get_settings
from timeslice.dashboard.router import router as dashboard_router
from timeslice.dashboard.service import DashboardService
from timeslice.database import close_db, get_session_factory, init_db
from timeslice.health.router import router as health_router
from timeslice.middleware import setup_middleware
from timeslice.redis_client import close_redis, init_redis

logger = structlog.get_logger()


def build_services(app: FastAPI, settings: Settings) -> None:
    """Construct the analytics and dashboard services and attach them to ``app.state``."""
    session_factory = get_session_factory()
    cache = AnalyticsCache(
        max_entries=settings.analytics_cache_max_entries,
        default_ttl=settings.analytics_cache_ttl_seconds,
    )
    snapshots = SnapshotStore(session_factory, settings.snapshot_ttl_hours) if settings.snapshot_enabled else None
    analytics = AnalyticsService(
        SqlAnalyticsRepository(session_factory),
        cache,
        user_ttl=settings.analytics_cache_ttl_seconds,
        benchmark_ttl=settings.benchmark_cache_ttl_seconds,
        snapshot_store=snapshots,
    )
    app.state.analytics_service = analytics
    app.state.snapshot_store = snapshots
    app.state.dashboard_service = DashboardService(
        analytics,
        cache_ttl=settings.dashboard_cache_ttl_seconds,
        activity_max_items=settings.activity_feed_max_items,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url, pool_size=settings.db_pool_size, max_overflow=settings.db_max_overflow)
    await init_redis(settings)
    build_services(app, settings)

    snapshots: SnapshotStore | None = app.state.snapshot_store
    if snapshots is not None:
        await snapshots.prune_expired()

    logger.info("timeslice_started", version=settings.app_version, environment=settings.environment)
    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="TimeSlice Analytics API",
        description="Analytics and dashboard backend for the TimeSlice task marketplace",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(analytics_router)
    app.include_router(dashboard_router)

    return app


app = create_app()
