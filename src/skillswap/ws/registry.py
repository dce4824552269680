"""Connection registry: which users are online, over which sockets.

A user may hold several live connections (tabs, devices). Presence is
tracked per user: the first connection makes the user online and the last one
to go makes them offline. Listeners are told about those transitions while the
user's lock is still held, so one user's online/offline events are emitted in
the order they happened.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog

from skillswap.auth.jwt import Identity
from skillswap.locks import KeyedLock
from skillswap.ws.events import UserInfo

logger = structlog.get_logger()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PresenceListener(Protocol):
    async def on_user_online(self, info: UserInfo) -> None: ...

    async def on_user_offline(self, info: UserInfo) -> None: ...


@dataclass
class ConnectionRecord:
    """One live client connection."""

    user_id: int
    connection_id: str
    identity: Identity
    socket: Any
    connected_at: datetime
    last_seen: datetime
    messages_sent: int = 0
    last_activity: float = field(default_factory=time.monotonic)


class ConnectionRegistry:
    """In-memory map of user id -> live connections.

    Owned by the application's ``NotificationHub`` and torn down with it.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._connections: dict[str, ConnectionRecord] = {}  # connection_id -> record
        self._user_connections: dict[int, set[str]] = {}  # user_id -> {connection_ids}
        self._locks = KeyedLock()
        self._listeners: list[PresenceListener] = []

    def add_listener(self, listener: PresenceListener) -> None:
        self._listeners.append(listener)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def user_count(self) -> int:
        return len(self._user_connections)

    async def register(self, user_id: int, connection_id: str, identity: Identity, socket: Any) -> bool:  # noqa: ANN401
        """Add a connection. Returns True if this made the user online."""
        async with self._locks.hold(user_id):
            if connection_id in self._connections:
                msg = f"connection {connection_id} is already registered"
                raise ValueError(msg)
            now = self._clock()
            self._connections[connection_id] = ConnectionRecord(
                user_id=user_id,
                connection_id=connection_id,
                identity=identity,
                socket=socket,
                connected_at=now,
                last_seen=now,
            )
            conn_ids = self._user_connections.setdefault(user_id, set())
            became_online = not conn_ids
            conn_ids.add(connection_id)
            logger.info(
                "ws_registered",
                user_id=user_id,
                connection_id=connection_id,
                user_connections=len(conn_ids),
            )
            if became_online:
                info = self._user_info(user_id)
                for listener in self._listeners:
                    await self._notify(listener.on_user_online, info)
            return became_online

    async def unregister(self, connection_id: str) -> int | None:
        """Remove a connection. Returns its user id, or None if it was unknown."""
        record = self._connections.get(connection_id)
        if record is None:
            return None
        user_id = record.user_id
        async with self._locks.hold(user_id):
            record = self._connections.get(connection_id)
            if record is None:
                return None
            # Snapshot before removal so the offline event keeps first-connect time
            info = self._user_info(user_id)
            del self._connections[connection_id]
            conn_ids = self._user_connections.get(user_id, set())
            conn_ids.discard(connection_id)
            became_offline = not conn_ids
            if became_offline:
                self._user_connections.pop(user_id, None)
            logger.info(
                "ws_unregistered",
                user_id=user_id,
                connection_id=connection_id,
                user_connections=len(conn_ids),
            )
            if became_offline:
                for listener in self._listeners:
                    await self._notify(listener.on_user_offline, info)
        return user_id

    async def _notify(self, callback: Callable[[UserInfo], Any], info: UserInfo) -> None:
        try:
            await callback(info)
        except Exception:
            logger.warning("presence_listener_failed", user_id=info.user_id, exc_info=True)

    def touch(self, connection_id: str) -> bool:
        """Heartbeat: refresh ``last_seen`` for a connection."""
        record = self._connections.get(connection_id)
        if record is None:
            return False
        record.last_seen = self._clock()
        record.last_activity = time.monotonic()
        return True

    def is_online(self, user_id: int) -> bool:
        return bool(self._user_connections.get(user_id))

    def get(self, connection_id: str) -> ConnectionRecord | None:
        return self._connections.get(connection_id)

    def connections_for(self, user_id: int) -> list[ConnectionRecord]:
        return [
            self._connections[cid]
            for cid in list(self._user_connections.get(user_id, ()))
            if cid in self._connections
        ]

    def all_connections(self, *, excluding: int | None = None) -> list[ConnectionRecord]:
        return [r for r in list(self._connections.values()) if r.user_id != excluding]

    def list_online(self, *, excluding: int | None = None) -> list[UserInfo]:
        """Online users other than ``excluding``, oldest connection first."""
        users = [self._user_info(uid) for uid in list(self._user_connections) if uid != excluding]
        return sorted(users, key=lambda u: (u.connected_at, u.user_id))

    def idle_connections(self, max_idle_seconds: float) -> list[ConnectionRecord]:
        """Connections with no heartbeat for ``max_idle_seconds``."""
        cutoff = time.monotonic() - max_idle_seconds
        return [r for r in list(self._connections.values()) if r.last_activity < cutoff]

    def _user_info(self, user_id: int) -> UserInfo:
        records = self.connections_for(user_id)
        identity = records[0].identity
        return UserInfo(
            user_id=user_id,
            email=identity.email,
            first_name=identity.first_name,
            last_name=identity.last_name,
            connected_at=min(r.connected_at for r in records),
            last_seen=max(r.last_seen for r in records),
        )

    def clear(self) -> None:
        """Forget every connection without notifying listeners (shutdown)."""
        self._connections.clear()
        self._user_connections.clear()

    def get_stats(self) -> dict[str, int]:
        return {
            "total_connections": len(self._connections),
            "unique_users": len(self._user_connections),
        }
