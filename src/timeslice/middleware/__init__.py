"""Middleware registration."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from timeslice.config import Settings
from timeslice.middleware.error_handler import setup_error_handlers
from timeslice.middleware.logging import setup_logging
from timeslice.middleware.rate_limit import RateLimitMiddleware
from timeslice.middleware.request_context import RequestContextMiddleware


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Allow the dashboard frontend origins."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id", "X-Response-Time", "X-RateLimit-Remaining", "X-RateLimit-Limit"],
    )


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware in the correct order.

    Starlette executes middleware in reverse-add order (last added = outermost).
    CORS must be outermost so it wraps error responses from inner middleware (e.g. 429).
    """
    setup_logging(settings)
    setup_error_handlers(app, settings)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestContextMiddleware)
    setup_cors(app, settings)
