"""Shared FastAPI dependencies.

Long-lived collaborators (hub, ledger, booking service) are built in the
application lifespan and kept on ``app.state``.
"""

from fastapi import Request

from skillswap.bookings.service import BookingService
from skillswap.credits.ledger import CreditLedger
from skillswap.database import get_session as _get_session
from skillswap.ws.hub import NotificationHub

get_db = _get_session


def get_hub(request: Request) -> NotificationHub:
    return request.app.state.hub


def get_ledger(request: Request) -> CreditLedger:
    return request.app.state.ledger


def get_booking_service(request: Request) -> BookingService:
    return request.app.state.bookings
