"""Bounded retry with exponential backoff for transient persistence errors."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from skillswap.errors import TransientStoreError

logger = structlog.get_logger()

T = TypeVar("T")


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    backoff_seconds: float = 0.2,
    name: str = "operation",
) -> T:
    """Run ``operation`` and retry it while it raises ``TransientStoreError``.

    The operation must be safe to re-run from scratch (it reloads its state on
    every attempt). Other exceptions propagate immediately. After the last
    attempt the ``TransientStoreError`` is re-raised to the caller.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except TransientStoreError as exc:
            if attempt == attempts:
                logger.error("transient_retries_exhausted", operation=name, attempts=attempts, error=exc.message)
                raise
            wait = backoff_seconds * (2 ** (attempt - 1))
            logger.warning(
                "transient_store_error_retrying",
                operation=name,
                attempt=attempt,
                attempts=attempts,
                wait_seconds=wait,
                error=exc.message,
            )
            await asyncio.sleep(wait)
    raise AssertionError("unreachable")
