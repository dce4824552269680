"""Middleware registration."""

from fastapi import FastAPI

from skillswap.config import Settings
from skillswap.middleware.cors import setup_cors
from skillswap.middleware.error_handler import setup_error_handlers
from skillswap.middleware.logging import setup_logging
from skillswap.middleware.rate_limit import RateLimitMiddleware
from skillswap.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register middleware; the last one added is outermost.

    CORS goes on last so its headers also reach 429 and error responses.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    if settings.rate_limit_enabled:
        app.add_middleware(
            RateLimitMiddleware,
            requests_per_window=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
