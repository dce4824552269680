"""Presence broadcaster: tells everyone else when a user comes or goes.

Fan-out is O(connections) per transition, in process. This is the main
scalability bound of the hub; a shared bus across processes is out of scope.
"""

from __future__ import annotations

import structlog

from skillswap.ws.events import UserInfo, UserOffline, UserOnline
from skillswap.ws.registry import ConnectionRegistry
from skillswap.ws.transport import Transport

logger = structlog.get_logger()


class PresenceBroadcaster:
    """Registry listener that broadcasts ``UserOnline`` / ``UserOffline``."""

    def __init__(self, registry: ConnectionRegistry, transport: Transport) -> None:
        self._registry = registry
        self._transport = transport
        registry.add_listener(self)

    async def on_user_online(self, info: UserInfo) -> None:
        event = UserOnline(info)
        sent = await self._transport.send_to_all(event.name, event.payload(), exclude_user_id=info.user_id)
        logger.debug("presence_online_broadcast", user_id=info.user_id, recipients=sent)

    async def on_user_offline(self, info: UserInfo) -> None:
        event = UserOffline(info)
        sent = await self._transport.send_to_all(event.name, event.payload(), exclude_user_id=info.user_id)
        logger.debug("presence_offline_broadcast", user_id=info.user_id, recipients=sent)

    def snapshot_for(self, user_id: int) -> list[UserInfo]:
        """Who is online right now, excluding the caller."""
        return self._registry.list_online(excluding=user_id)
