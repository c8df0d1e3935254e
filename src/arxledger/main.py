"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from arxledger.arena.router import admin_router as arena_admin_router
from arxledger.arena.router import router as arena_router
from arxledger.config import get_settings
from arxledger.database import close_db, init_db
from arxledger.health.router import router as health_router
from arxledger.ledger.admin_router import router as ledger_admin_router
from arxledger.ledger.router import router as ledger_router
from arxledger.middleware import setup_middleware
from arxledger.middleware.rate_limit import RateLimitStore
from arxledger.redis_client import close_redis, init_redis


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.redis_url:
        await init_redis(settings.redis_url)

    yield

    await close_db()
    await close_redis()


def create_app(rate_limit_store: RateLimitStore | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="ARX-P Points Ledger",
        description="Points ledger, crediting and reconciliation engine",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings, rate_limit_store=rate_limit_store)
    app.include_router(health_router, tags=["Health"])
    app.include_router(ledger_router)
    app.include_router(ledger_admin_router)
    app.include_router(arena_router)
    app.include_router(arena_admin_router)

    return app


app = create_app()
