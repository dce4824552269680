"""arq worker for periodic booking maintenance.

Runs as a separate process:

* ``expire_pending_sessions`` cancels pending sessions nobody confirmed in time.
* ``complete_due_sessions`` completes confirmed sessions whose end has passed.

The notification hub lives in the API process, so transitions made here are
not pushed to browsers; clients pick them up on their next fetch.
"""

from __future__ import annotations

import structlog
from arq import cron
from arq.connections import RedisSettings

from skillswap.bookings.service import BookingService
from skillswap.config import get_settings
from skillswap.credits.ledger import CreditLedger
from skillswap.database import close_db, get_session_factory, init_db
from skillswap.middleware.logging import setup_logging

logger = structlog.get_logger()

# Every 5 minutes
_EVERY_FIVE_MINUTES = set(range(0, 60, 5))


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize the database and the booking service on worker startup."""
    settings = get_settings()
    setup_logging(settings, component="booking-worker")
    await init_db(settings.database_url)
    ledger = CreditLedger(store_timeout=settings.store_timeout_seconds)
    ctx["bookings"] = BookingService(ledger, settings=settings)
    logger.info("booking_worker_started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    await close_db()
    logger.info("booking_worker_stopped")


async def expire_pending_sessions(ctx: dict) -> int:  # type: ignore[type-arg]
    bookings: BookingService = ctx["bookings"]
    async with get_session_factory()() as db:
        return await bookings.expire_pending_sessions(db)


async def complete_due_sessions(ctx: dict) -> int:  # type: ignore[type-arg]
    bookings: BookingService = ctx["bookings"]
    async with get_session_factory()() as db:
        return await bookings.complete_due_sessions(db)


class BookingWorkerSettings:
    """arq worker settings for booking maintenance."""

    functions = [expire_pending_sessions, complete_due_sessions]
    cron_jobs = [
        cron(expire_pending_sessions, minute=_EVERY_FIVE_MINUTES, second=0),
        cron(complete_due_sessions, minute=_EVERY_FIVE_MINUTES, second=30),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 2
    job_timeout = 300
