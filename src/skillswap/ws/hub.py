"""Notification hub: the realtime layer wired together for one process.

The hub is created in the application lifespan and stored on ``app.state``;
it owns the connection registry and everything that delivers through it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog
from starlette.websockets import WebSocket

from skillswap.auth.jwt import Identity
from skillswap.ws.events import OnlineUsersList
from skillswap.ws.groups import GroupRouter
from skillswap.ws.notifier import Notifier
from skillswap.ws.presence import PresenceBroadcaster
from skillswap.ws.registry import ConnectionRegistry, utcnow
from skillswap.ws.transport import WebSocketTransport, encode_frame

logger = structlog.get_logger()


class NotificationHub:
    """Accepts sockets, tracks presence and routes events to users."""

    def __init__(self, *, send_timeout: float = 2.0, clock: Callable[[], datetime] = utcnow) -> None:
        self.registry = ConnectionRegistry(clock)
        self.transport = WebSocketTransport(self.registry, send_timeout=send_timeout)
        self.presence = PresenceBroadcaster(self.registry, self.transport)
        self.groups = GroupRouter(self.registry, self.transport)
        self.notifier = Notifier(self.groups)

    async def connect(self, websocket: WebSocket, conn_id: str, identity: Identity) -> None:
        """Accept the socket, register it, then send the caller the online list."""
        await websocket.accept()
        await self.registry.register(identity.user_id, conn_id, identity, websocket)
        await self.send_online_users(conn_id)

    async def send_online_users(self, conn_id: str) -> None:
        record = self.registry.get(conn_id)
        if record is None:
            return
        event = OnlineUsersList(tuple(self.presence.snapshot_for(record.user_id)))
        await record.socket.send_text(encode_frame(event.name, event.payload()))
        record.messages_sent += 1

    async def disconnect(self, conn_id: str) -> None:
        user_id = await self.registry.unregister(conn_id)
        if user_id is not None:
            logger.info("ws_disconnected", conn_id=conn_id, user_id=user_id)

    async def close_idle(self, max_idle_seconds: float) -> int:
        """Close and unregister connections that stopped sending heartbeats."""
        stale = self.registry.idle_connections(max_idle_seconds)
        for record in stale:
            logger.info("ws_idle_closed", conn_id=record.connection_id, user_id=record.user_id)
            try:
                await record.socket.close(code=1001)
            except Exception:
                logger.debug("ws_close_failed", conn_id=record.connection_id, exc_info=True)
            await self.registry.unregister(record.connection_id)
        return len(stale)

    async def shutdown(self) -> None:
        """Close every socket without emitting presence events."""
        records = self.registry.all_connections()
        results = await asyncio.gather(
            *(r.socket.close(code=1001) for r in records),
            return_exceptions=True,
        )
        failed = sum(1 for r in results if isinstance(r, BaseException))
        self.registry.clear()
        logger.info("ws_hub_shutdown", closed=len(records) - failed, failed=failed)

    def get_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = dict(self.registry.get_stats())
        stats["messages_sent"] = sum(r.messages_sent for r in self.registry.all_connections())
        return stats
