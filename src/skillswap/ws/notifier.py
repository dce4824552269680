"""Targeted notifications for the messaging and booking layers.

Each helper builds one event and routes it to the user who should see it.
Delivery is fire-and-forget: the return value is the number of connections
written to, and zero when the recipient is offline.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from skillswap.ws.events import (
    ConversationUpdated,
    MessageRead,
    MessageReceived,
    NewNotification,
    SessionUpdated,
    UnreadCountUpdated,
)
from skillswap.ws.groups import GroupRouter


class Notifier:
    def __init__(self, groups: GroupRouter) -> None:
        self._groups = groups

    async def notify_message_received(self, message: Mapping[str, Any]) -> int:
        """Push a new message to its receiver (``message["receiverId"]``)."""
        return await self._groups.route(MessageReceived(message), int(message["receiverId"]))

    async def notify_conversation_updated(self, conversation: Mapping[str, Any], user_id: int) -> int:
        return await self._groups.route(ConversationUpdated(conversation), user_id)

    async def notify_message_read(self, message_id: int, read_at: datetime, sender_id: int) -> int:
        """Tell the original sender that their message was read."""
        return await self._groups.route(MessageRead(message_id, read_at), sender_id)

    async def notify_unread_count_updated(
        self,
        user_id: int,
        unread_messages: int,
        unread_notifications: int,
    ) -> int:
        return await self._groups.route(UnreadCountUpdated(unread_messages, unread_notifications), user_id)

    async def notify_new_notification(self, notification: Mapping[str, Any]) -> int:
        return await self._groups.route(NewNotification(notification), int(notification["userId"]))

    async def notify_session_updated(self, session: Mapping[str, Any], user_ids: Iterable[int]) -> int:
        event = SessionUpdated(session)
        sent = 0
        for user_id in dict.fromkeys(user_ids):
            sent += await self._groups.route(event, user_id)
        return sent
