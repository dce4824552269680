"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from skillswap.bookings.router import router as bookings_router
from skillswap.bookings.service import BookingService
from skillswap.config import get_settings
from skillswap.credits.ledger import CreditLedger
from skillswap.credits.router import router as credits_router
from skillswap.database import close_db, create_schema, init_db
from skillswap.health.router import router as health_router
from skillswap.middleware import setup_middleware
from skillswap.redis_client import close_redis, init_redis
from skillswap.ws.hub import NotificationHub
from skillswap.ws.router import router as ws_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.auto_create_schema:
        await create_schema()
    await init_redis(settings.redis_url)

    hub = NotificationHub()
    ledger = CreditLedger(store_timeout=settings.store_timeout_seconds)
    app.state.hub = hub
    app.state.ledger = ledger
    app.state.bookings = BookingService(ledger, hub.notifier, settings=settings)
    logger.info("app_started", environment=settings.environment, version=settings.app_version)

    yield

    await hub.shutdown()
    await close_db()
    await close_redis()
    logger.info("app_stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="SkillSwap Core API",
        description="Realtime presence, notifications and credit-based session booking",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(bookings_router)
    app.include_router(credits_router)
    app.include_router(ws_router)

    return app


app = create_app()
