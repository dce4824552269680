"""Cross-origin policy for the browser client.

Browsers apply CORS to fetches only. A WebSocket upgrade carries an
``Origin`` header but is never preflighted, so ``/ws`` checks it against the
same allow-list through ``websocket_origin_allowed``.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from skillswap.config import Settings

# Close code sent to a socket opened from a page we do not serve
WS_FORBIDDEN_ORIGIN = 4003


def setup_cors(app: FastAPI, settings: Settings) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        # Session and credit routes are GET/POST only
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-Id"],
        expose_headers=["X-Request-Id", "X-RateLimit-Remaining", "X-RateLimit-Limit", "Retry-After"],
        max_age=settings.cors_max_age_seconds,
    )


def websocket_origin_allowed(origin: str | None, settings: Settings) -> bool:
    """Non-browser clients send no Origin and are let through; the token still gates them."""
    if origin is None:
        return True
    return "*" in settings.cors_origins or origin.rstrip("/") in settings.cors_origins
