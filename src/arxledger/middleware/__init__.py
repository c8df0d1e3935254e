"""Middleware registration."""

from fastapi import FastAPI

from arxledger.config import Settings
from arxledger.middleware.cors import setup_cors
from arxledger.middleware.error_handler import setup_error_handlers
from arxledger.middleware.logging import setup_logging
from arxledger.middleware.rate_limit import (
    InMemoryRateLimitStore,
    RateLimitMiddleware,
    RateLimitStore,
    RedisRateLimitStore,
    limits_from_settings,
)
from arxledger.middleware.request_id import RequestIdMiddleware
from arxledger.redis_client import get_redis


def build_rate_limit_store(settings: Settings) -> RateLimitStore:
    """Counter store named by ``rate_limit_backend``."""
    if settings.rate_limit_backend == "redis":
        return RedisRateLimitStore(get_redis)
    return InMemoryRateLimitStore()


def setup_middleware(app: FastAPI, settings: Settings, rate_limit_store: RateLimitStore | None = None) -> None:
    """Register all middleware in the correct order.

    FastAPI/Starlette executes middleware in reverse-add order (last added = outermost).
    CORS must be outermost so it wraps error responses from inner middleware (e.g. 429).
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        store=rate_limit_store or build_rate_limit_store(settings),
        limits=limits_from_settings(settings),
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)  # added last, so outermost: wraps 429 responses
