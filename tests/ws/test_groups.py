"""Targeted delivery through GroupRouter and Notifier."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from conftest import ALICE, BOB
from skillswap.ws.events import MessageReceived
from skillswap.ws.hub import NotificationHub


def _make_ws() -> AsyncMock:
    ws = AsyncMock()
    ws.send_text = AsyncMock()
    return ws


def _last_frame(ws: AsyncMock) -> dict:
    return json.loads(ws.send_text.await_args.args[0])


@pytest.fixture
def hub() -> NotificationHub:
    return NotificationHub()


class TestRoute:
    @pytest.mark.asyncio
    async def test_route_reaches_every_connection_of_target_only(self, hub: NotificationHub) -> None:
        alice_1, alice_2, bob_ws = _make_ws(), _make_ws(), _make_ws()
        await hub.connect(alice_1, "alice-1", ALICE)
        await hub.connect(alice_2, "alice-2", ALICE)
        await hub.connect(bob_ws, "bob-1", BOB)
        bob_ws.send_text.reset_mock()

        sent = await hub.groups.route(MessageReceived({"id": 7, "receiverId": ALICE.user_id}), ALICE.user_id)

        assert sent == 2
        assert _last_frame(alice_1) == {"type": "MessageReceived", "payload": {"id": 7, "receiverId": 1}}
        assert _last_frame(alice_2)["type"] == "MessageReceived"
        bob_ws.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_offline_target_is_dropped(self, hub: NotificationHub) -> None:
        bob_ws = _make_ws()
        await hub.connect(bob_ws, "bob-1", BOB)
        bob_ws.send_text.reset_mock()

        sent = await hub.groups.route(MessageReceived({"id": 1}), ALICE.user_id)

        assert sent == 0
        bob_ws.send_text.assert_not_awaited()


class TestNotifier:
    @pytest.mark.asyncio
    async def test_message_received_goes_to_receiver(self, hub: NotificationHub) -> None:
        alice_ws = _make_ws()
        await hub.connect(alice_ws, "alice-1", ALICE)
        sent = await hub.notifier.notify_message_received({"id": 3, "senderId": 2, "receiverId": 1, "content": "hi"})
        assert sent == 1
        assert _last_frame(alice_ws)["payload"]["content"] == "hi"

    @pytest.mark.asyncio
    async def test_message_read_goes_to_sender(self, hub: NotificationHub) -> None:
        bob_ws = _make_ws()
        await hub.connect(bob_ws, "bob-1", BOB)
        read_at = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
        await hub.notifier.notify_message_read(3, read_at, sender_id=BOB.user_id)
        assert _last_frame(bob_ws) == {
            "type": "MessageRead",
            "payload": {"messageId": 3, "readAt": "2026-03-02T10:00:00+00:00"},
        }

    @pytest.mark.asyncio
    async def test_unread_counts_and_notifications(self, hub: NotificationHub) -> None:
        alice_ws = _make_ws()
        await hub.connect(alice_ws, "alice-1", ALICE)

        await hub.notifier.notify_unread_count_updated(ALICE.user_id, 4, 1)
        assert _last_frame(alice_ws) == {
            "type": "UnreadCountUpdated",
            "payload": {"unreadMessageCount": 4, "unreadNotificationCount": 1},
        }

        await hub.notifier.notify_new_notification({"id": 9, "userId": ALICE.user_id, "title": "Booked"})
        assert _last_frame(alice_ws)["type"] == "NewNotification"

        await hub.notifier.notify_conversation_updated({"id": 5, "unread": 0}, ALICE.user_id)
        assert _last_frame(alice_ws) == {"type": "ConversationUpdated", "payload": {"id": 5, "unread": 0}}

    @pytest.mark.asyncio
    async def test_session_updated_reaches_both_parties_once(self, hub: NotificationHub) -> None:
        alice_ws, bob_ws = _make_ws(), _make_ws()
        await hub.connect(alice_ws, "alice-1", ALICE)
        await hub.connect(bob_ws, "bob-1", BOB)

        sent = await hub.notifier.notify_session_updated({"id": "s1"}, [ALICE.user_id, BOB.user_id, ALICE.user_id])

        assert sent == 2
        assert _last_frame(alice_ws)["type"] == "SessionUpdated"
        assert _last_frame(bob_ws)["payload"] == {"id": "s1"}
