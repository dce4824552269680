"""Session state machine.

State progression: pending -> confirmed -> completed, with cancelled
reachable from pending and confirmed. Completed and cancelled are terminal.
Transitions are validated before anything is written.
"""

from __future__ import annotations

from datetime import datetime

from skillswap.db.models import SessionStatus
from skillswap.errors import InvalidStateTransition, ValidationError

VALID_TRANSITIONS: dict[SessionStatus, list[SessionStatus]] = {
    SessionStatus.PENDING: [SessionStatus.CONFIRMED, SessionStatus.CANCELLED],
    SessionStatus.CONFIRMED: [SessionStatus.COMPLETED, SessionStatus.CANCELLED],
    SessionStatus.COMPLETED: [],
    SessionStatus.CANCELLED: [],
}

# States in which the time slot may still be moved
RESCHEDULABLE = frozenset({SessionStatus.PENDING, SessionStatus.CONFIRMED})


def validate_transition(current: SessionStatus, target: SessionStatus) -> None:
    """Raise InvalidStateTransition if ``current -> target`` is not allowed."""
    if target not in VALID_TRANSITIONS.get(current, []):
        raise InvalidStateTransition("session", current.value, target.value)


def validate_reschedulable(current: SessionStatus) -> None:
    if current not in RESCHEDULABLE:
        raise InvalidStateTransition("session", current.value, current.value)


def session_cost(scheduled_start: datetime, scheduled_end: datetime, credits_per_hour: int) -> int:
    """Credits charged for a session, rounded up to a whole credit.

    A 2-hour session at 10 credits/hour costs 20; 45 minutes at 10/hour
    costs 8.
    """
    seconds = int((scheduled_end - scheduled_start).total_seconds())
    if seconds <= 0:
        raise ValidationError("Session must end after it starts")
    if credits_per_hour < 0:
        raise ValidationError("Credits per hour cannot be negative", details={"credits_per_hour": credits_per_hour})
    return -(-seconds * credits_per_hour // 3600)
