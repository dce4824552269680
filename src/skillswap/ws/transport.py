"""Outbound realtime transport.

The booking and messaging code only needs two verbs: deliver to one user's
connections, or deliver to everyone. Delivery is best effort: a failed or
slow socket is logged and skipped, never raised to the caller.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Any, Protocol

import structlog

from skillswap.ws.registry import ConnectionRecord, ConnectionRegistry

logger = structlog.get_logger()


class Transport(Protocol):
    async def send_to_user(self, user_id: int, event_name: str, payload: Any) -> int: ...  # noqa: ANN401

    async def send_to_all(
        self,
        event_name: str,
        payload: Any,  # noqa: ANN401
        *,
        exclude_user_id: int | None = None,
    ) -> int: ...


def _json_default(value: object) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def encode_frame(event_name: str, payload: Any) -> str:  # noqa: ANN401
    return json.dumps({"type": event_name, "payload": payload}, default=_json_default)


class WebSocketTransport:
    """Writes JSON text frames to the sockets held by a ``ConnectionRegistry``."""

    def __init__(self, registry: ConnectionRegistry, *, send_timeout: float = 2.0) -> None:
        self._registry = registry
        self._send_timeout = send_timeout

    async def send_to_user(self, user_id: int, event_name: str, payload: Any) -> int:  # noqa: ANN401
        """Send to every connection of one user. Returns the number delivered."""
        return await self._fan_out(self._registry.connections_for(user_id), event_name, payload)

    async def send_to_all(
        self,
        event_name: str,
        payload: Any,  # noqa: ANN401
        *,
        exclude_user_id: int | None = None,
    ) -> int:
        """Send to every registered connection, optionally skipping one user's."""
        return await self._fan_out(self._registry.all_connections(excluding=exclude_user_id), event_name, payload)

    async def _fan_out(self, records: list[ConnectionRecord], event_name: str, payload: Any) -> int:  # noqa: ANN401
        if not records:
            return 0
        frame = encode_frame(event_name, payload)
        results = await asyncio.gather(*(self._send(r, frame, event_name) for r in records))
        return sum(results)

    async def _send(self, record: ConnectionRecord, frame: str, event_name: str) -> bool:
        try:
            await asyncio.wait_for(record.socket.send_text(frame), self._send_timeout)
        except Exception as exc:
            # The socket's reader loop owns cleanup; here the frame is just dropped
            logger.warning(
                "ws_send_failed",
                connection_id=record.connection_id,
                user_id=record.user_id,
                event=event_name,
                error=type(exc).__name__,
            )
            return False
        record.messages_sent += 1
        return True
