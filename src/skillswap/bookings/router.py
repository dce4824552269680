"""Session booking endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from skillswap.auth.dependencies import get_current_identity
from skillswap.auth.jwt import Identity
from skillswap.bookings.schemas import (
    CancelSessionRequest,
    CreateSessionRequest,
    RescheduleSessionRequest,
    SessionListResponse,
    SessionResponse,
)
from skillswap.bookings.service import BookingService
from skillswap.db.models import SessionStatus
from skillswap.dependencies import get_booking_service, get_db

router = APIRouter(prefix="/api/v1/sessions", tags=["Sessions"])


@router.post("", response_model=SessionResponse, status_code=201)
async def create_session(
    body: CreateSessionRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    bookings: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    """Book a session with a teacher. The caller is the student."""
    booking = await bookings.create_session(
        db,
        student_id=identity.user_id,
        teacher_id=body.teacher_id,
        skill_id=body.skill_id,
        scheduled_start=body.scheduled_start,
        scheduled_end=body.scheduled_end,
        credits_per_hour=body.credits_per_hour,
        notes=body.notes,
    )
    return SessionResponse.model_validate(booking)


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    status: SessionStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    bookings: BookingService = Depends(get_booking_service),
) -> SessionListResponse:
    sessions, total = await bookings.list_for_user(db, identity.user_id, status=status, limit=limit, offset=offset)
    return SessionListResponse(
        sessions=[SessionResponse.model_validate(s) for s in sessions],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    bookings: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    booking = await bookings.get_session_for(db, session_id, identity.user_id)
    return SessionResponse.model_validate(booking)


@router.post("/{session_id}/confirm", response_model=SessionResponse)
async def confirm_session(
    session_id: str,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    bookings: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    """Teacher accepts the booking; the cost is reserved from the student."""
    booking = await bookings.confirm_session(db, session_id, identity.user_id)
    return SessionResponse.model_validate(booking)


@router.post("/{session_id}/cancel", response_model=SessionResponse)
async def cancel_session(
    session_id: str,
    body: CancelSessionRequest | None = None,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    bookings: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    reason = body.reason if body else None
    booking = await bookings.cancel_session(db, session_id, identity.user_id, reason=reason)
    return SessionResponse.model_validate(booking)


@router.post("/{session_id}/complete", response_model=SessionResponse)
async def complete_session(
    session_id: str,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    bookings: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    """Teacher marks the session done; the reserved credits are transferred."""
    booking = await bookings.complete_session(db, session_id, identity.user_id)
    return SessionResponse.model_validate(booking)


@router.post("/{session_id}/reschedule", response_model=SessionResponse)
async def reschedule_session(
    session_id: str,
    body: RescheduleSessionRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    bookings: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    booking = await bookings.reschedule_session(
        db,
        session_id,
        identity.user_id,
        scheduled_start=body.scheduled_start,
        scheduled_end=body.scheduled_end,
    )
    return SessionResponse.model_validate(booking)
