"""Targeted delivery to a single user's connection group."""

from __future__ import annotations

import structlog

from skillswap.ws.events import NotificationEvent
from skillswap.ws.registry import ConnectionRegistry
from skillswap.ws.transport import Transport

logger = structlog.get_logger()


def group_name(user_id: int) -> str:
    return f"user:{user_id}"


class GroupRouter:
    """Routes events to the connections of one user only.

    Delivery is at most once with no persistence: when the target has no live
    connection the event is dropped and the client catches up by fetching
    state on its next connect.
    """

    def __init__(self, registry: ConnectionRegistry, transport: Transport) -> None:
        self._registry = registry
        self._transport = transport

    async def route(self, event: NotificationEvent, target_user_id: int) -> int:
        if not self._registry.is_online(target_user_id):
            logger.debug("group_route_dropped", group=group_name(target_user_id), event=event.name)
            return 0
        sent = await self._transport.send_to_user(target_user_id, event.name, event.payload())
        logger.debug("group_routed", group=group_name(target_user_id), event=event.name, recipients=sent)
        return sent
