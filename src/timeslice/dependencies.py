"""Shared FastAPI dependencies."""

from fastapi import Request

from timeslice.analytics.service import AnalyticsService
from timeslice.dashboard.service import DashboardService


def get_analytics_service(request: Request) -> AnalyticsService:
    """The process-wide analytics service built in the lifespan."""
    return request.app.state.analytics_service


def get_dashboard_service(request: Request) -> DashboardService:
    return request.app.state.dashboard_service
