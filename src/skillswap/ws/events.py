"""Realtime notification events.

Each event is immutable and knows its wire name and payload. Clients receive
``{"type": <name>, "payload": <payload>}`` text frames. Payload keys are
camelCase to match the browser client.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, ClassVar


def _freeze(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(payload))


def _iso(value: datetime) -> str:
    return value.isoformat()


@dataclass(frozen=True)
class UserInfo:
    """Public presence info for one online user."""

    user_id: int
    email: str
    first_name: str
    last_name: str
    connected_at: datetime
    last_seen: datetime

    def to_payload(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "connectedAt": _iso(self.connected_at),
            "lastSeen": _iso(self.last_seen),
        }


class NotificationEvent:
    """Base class for every event pushed to browser clients."""

    name: ClassVar[str]

    def payload(self) -> Any:  # noqa: ANN401
        raise NotImplementedError

    def to_message(self) -> dict[str, Any]:
        return {"type": self.name, "payload": self.payload()}


# --- Targeted events (routed to one user's group) ---


@dataclass(frozen=True)
class MessageReceived(NotificationEvent):
    name: ClassVar[str] = "MessageReceived"
    message: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "message", _freeze(self.message))

    def payload(self) -> dict[str, Any]:
        return dict(self.message)


@dataclass(frozen=True)
class ConversationUpdated(NotificationEvent):
    name: ClassVar[str] = "ConversationUpdated"
    conversation: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "conversation", _freeze(self.conversation))

    def payload(self) -> dict[str, Any]:
        return dict(self.conversation)


@dataclass(frozen=True)
class MessageRead(NotificationEvent):
    name: ClassVar[str] = "MessageRead"
    message_id: int
    read_at: datetime

    def payload(self) -> dict[str, Any]:
        return {"messageId": self.message_id, "readAt": _iso(self.read_at)}


@dataclass(frozen=True)
class UnreadCountUpdated(NotificationEvent):
    name: ClassVar[str] = "UnreadCountUpdated"
    unread_messages: int
    unread_notifications: int

    def payload(self) -> dict[str, Any]:
        return {
            "unreadMessageCount": self.unread_messages,
            "unreadNotificationCount": self.unread_notifications,
        }


@dataclass(frozen=True)
class NewNotification(NotificationEvent):
    name: ClassVar[str] = "NewNotification"
    notification: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "notification", _freeze(self.notification))

    def payload(self) -> dict[str, Any]:
        return dict(self.notification)


@dataclass(frozen=True)
class SessionUpdated(NotificationEvent):
    name: ClassVar[str] = "SessionUpdated"
    session: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "session", _freeze(self.session))

    def payload(self) -> dict[str, Any]:
        return dict(self.session)


@dataclass(frozen=True)
class OnlineUsersList(NotificationEvent):
    name: ClassVar[str] = "OnlineUsersList"
    users: tuple[UserInfo, ...]

    def payload(self) -> list[dict[str, Any]]:
        return [u.to_payload() for u in self.users]


# --- Presence events (broadcast to everyone else) ---


@dataclass(frozen=True)
class UserOnline(NotificationEvent):
    name: ClassVar[str] = "UserOnline"
    user: UserInfo

    def payload(self) -> dict[str, Any]:
        return self.user.to_payload()


@dataclass(frozen=True)
class UserOffline(NotificationEvent):
    name: ClassVar[str] = "UserOffline"
    user: UserInfo
    disconnected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def payload(self) -> dict[str, Any]:
        return {**self.user.to_payload(), "disconnectedAt": _iso(self.disconnected_at)}
