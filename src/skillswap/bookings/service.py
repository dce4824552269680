"""Booking service: session lifecycle tied to the credit ledger.

Every transition follows the same shape: load the session, check the actor
and the transition, then inside ``CreditLedger.transaction()`` re-read the
row, re-check, apply the ledger side effect and the status change, and commit.
A failed attempt rolls back completely, so a ``TransientStoreError`` can be
retried from scratch and leaves the session in its prior state when retries
run out.

Participants are told about every change with a ``SessionUpdated`` event;
that push is best effort and never fails the request.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from skillswap.bookings.state_machine import session_cost, validate_reschedulable, validate_transition
from skillswap.config import Settings, get_settings
from skillswap.credits.ledger import CreditLedger
from skillswap.db.models import BookingSession, SessionStatus
from skillswap.errors import NotFound, SkillSwapError, Unauthorized, ValidationError
from skillswap.retry import retry_transient
from skillswap.ws.notifier import Notifier

logger = structlog.get_logger()

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_aware(name: str, value: datetime) -> None:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError(f"{name} must include a timezone", details={name: value.isoformat()})


def session_payload(booking: BookingSession) -> dict[str, Any]:
    """Client-facing view of a session, as pushed in ``SessionUpdated``."""
    return {
        "id": booking.id,
        "studentId": booking.student_id,
        "teacherId": booking.teacher_id,
        "skillId": booking.skill_id,
        "scheduledStart": booking.scheduled_start.isoformat(),
        "scheduledEnd": booking.scheduled_end.isoformat(),
        "creditsPerHour": booking.credits_per_hour,
        "status": booking.status.value,
        "reservationId": booking.reservation_id,
        "cancellationReason": booking.cancellation_reason,
        "updatedAt": booking.updated_at.isoformat(),
    }


class BookingService:
    def __init__(
        self,
        ledger: CreditLedger,
        notifier: Notifier | None = None,
        *,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._ledger = ledger
        self._notifier = notifier
        self._settings = settings or get_settings()
        self._clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_session(self, db: AsyncSession, session_id: str) -> BookingSession:
        result = await db.execute(
            select(BookingSession)
            .where(BookingSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        booking = result.scalar_one_or_none()
        if booking is None:
            raise NotFound("Session", session_id)
        return booking

    async def get_session_for(self, db: AsyncSession, session_id: str, user_id: int) -> BookingSession:
        """Fetch a session the user takes part in; other users get NotFound."""
        booking = await self.get_session(db, session_id)
        if user_id not in booking.participants():
            raise NotFound("Session", session_id)
        return booking

    async def list_for_user(
        self,
        db: AsyncSession,
        user_id: int,
        *,
        status: SessionStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[BookingSession], int]:
        """Sessions where the user is student or teacher, soonest first."""
        conditions = [or_(BookingSession.student_id == user_id, BookingSession.teacher_id == user_id)]
        if status is not None:
            conditions.append(BookingSession.status == status)
        total = await db.scalar(select(func.count()).select_from(BookingSession).where(*conditions))
        result = await db.execute(
            select(BookingSession)
            .where(*conditions)
            .order_by(BookingSession.scheduled_start, BookingSession.id)
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def create_session(
        self,
        db: AsyncSession,
        *,
        student_id: int,
        teacher_id: int,
        skill_id: int,
        scheduled_start: datetime,
        scheduled_end: datetime,
        credits_per_hour: int,
        notes: str | None = None,
    ) -> BookingSession:
        """Create a pending session. No credits move until the teacher confirms."""
        _require_aware("scheduled_start", scheduled_start)
        _require_aware("scheduled_end", scheduled_end)
        if student_id == teacher_id:
            raise ValidationError("You cannot book a session with yourself")
        if scheduled_start >= scheduled_end:
            raise ValidationError("Session must end after it starts")
        now = self._clock()
        if scheduled_start <= now:
            raise ValidationError("Session must start in the future", details={"scheduled_start": scheduled_start.isoformat()})
        # Validates the rate and proves the cost is computable
        session_cost(scheduled_start, scheduled_end, credits_per_hour)

        async def attempt() -> BookingSession:
            async with self._ledger.transaction(db):
                booking = BookingSession(
                    student_id=student_id,
                    teacher_id=teacher_id,
                    skill_id=skill_id,
                    scheduled_start=scheduled_start,
                    scheduled_end=scheduled_end,
                    credits_per_hour=credits_per_hour,
                    status=SessionStatus.PENDING,
                    notes=notes,
                    created_at=now,
                    updated_at=now,
                )
                db.add(booking)
            return booking

        booking = await self._retry(attempt, "create_session")
        logger.info(
            "session_created",
            session_id=booking.id,
            student_id=student_id,
            teacher_id=teacher_id,
            skill_id=skill_id,
        )
        await self._publish(booking)
        return booking

    async def confirm_session(self, db: AsyncSession, session_id: str, actor_id: int) -> BookingSession:
        """Teacher accepts: reserve the session cost from the student."""

        async def attempt() -> BookingSession:
            booking = await self.get_session(db, session_id)
            self._require_teacher(booking, actor_id)
            validate_transition(booking.status, SessionStatus.CONFIRMED)
            async with self._ledger.transaction(db, booking.student_id, booking.teacher_id):
                await db.refresh(booking)
                validate_transition(booking.status, SessionStatus.CONFIRMED)
                cost = session_cost(booking.scheduled_start, booking.scheduled_end, booking.credits_per_hour)
                if cost > 0:
                    txn = await self._ledger.reserve(
                        db,
                        booking.student_id,
                        booking.teacher_id,
                        cost,
                        booking.id,
                        description=f"Session {booking.id}",
                    )
                    booking.reservation_id = txn.id
                now = self._clock()
                booking.status = SessionStatus.CONFIRMED
                booking.confirmed_at = now
                booking.updated_at = now
            logger.info("session_confirmed", session_id=booking.id, cost=cost, reservation_id=booking.reservation_id)
            return booking

        booking = await self._retry(attempt, "confirm_session")
        await self._publish(booking)
        return booking

    async def cancel_session(
        self,
        db: AsyncSession,
        session_id: str,
        actor_id: int | None,
        *,
        reason: str | None = None,
    ) -> BookingSession:
        """Either party (or the system, ``actor_id=None``) cancels; any reservation is released."""

        async def attempt() -> BookingSession:
            booking = await self.get_session(db, session_id)
            self._require_participant(booking, actor_id)
            validate_transition(booking.status, SessionStatus.CANCELLED)
            async with self._ledger.transaction(db, booking.student_id, booking.teacher_id):
                await db.refresh(booking)
                validate_transition(booking.status, SessionStatus.CANCELLED)
                if booking.reservation_id is not None:
                    await self._ledger.cancel(db, booking.reservation_id)
                now = self._clock()
                booking.status = SessionStatus.CANCELLED
                booking.cancelled_at = now
                booking.cancelled_by = actor_id
                booking.cancellation_reason = reason
                booking.updated_at = now
            logger.info("session_cancelled", session_id=booking.id, actor_id=actor_id, reason=reason)
            return booking

        booking = await self._retry(attempt, "cancel_session")
        await self._publish(booking)
        return booking

    async def complete_session(self, db: AsyncSession, session_id: str, actor_id: int | None) -> BookingSession:
        """Teacher (or the system) completes after the scheduled end; the reservation is committed."""

        async def attempt() -> BookingSession:
            booking = await self.get_session(db, session_id)
            self._require_teacher(booking, actor_id)
            validate_transition(booking.status, SessionStatus.COMPLETED)
            self._require_ended(booking)
            async with self._ledger.transaction(db, booking.student_id, booking.teacher_id):
                await db.refresh(booking)
                validate_transition(booking.status, SessionStatus.COMPLETED)
                if booking.reservation_id is not None:
                    await self._ledger.commit(db, booking.reservation_id)
                now = self._clock()
                booking.status = SessionStatus.COMPLETED
                booking.completed_at = now
                booking.updated_at = now
            logger.info("session_completed", session_id=booking.id, actor_id=actor_id)
            return booking

        booking = await self._retry(attempt, "complete_session")
        await self._publish(booking)
        return booking

    async def reschedule_session(
        self,
        db: AsyncSession,
        session_id: str,
        actor_id: int,
        *,
        scheduled_start: datetime,
        scheduled_end: datetime,
    ) -> BookingSession:
        """Move a pending or confirmed session. The reservation is left as is."""
        _require_aware("scheduled_start", scheduled_start)
        _require_aware("scheduled_end", scheduled_end)

        async def attempt() -> BookingSession:
            booking = await self.get_session(db, session_id)
            self._require_participant(booking, actor_id)
            validate_reschedulable(booking.status)
            self._validate_new_slot(scheduled_start, scheduled_end, booking.credits_per_hour)
            async with self._ledger.transaction(db, booking.student_id, booking.teacher_id):
                await db.refresh(booking)
                validate_reschedulable(booking.status)
                booking.scheduled_start = scheduled_start
                booking.scheduled_end = scheduled_end
                booking.updated_at = self._clock()
            logger.info(
                "session_rescheduled",
                session_id=booking.id,
                actor_id=actor_id,
                scheduled_start=scheduled_start.isoformat(),
            )
            return booking

        booking = await self._retry(attempt, "reschedule_session")
        await self._publish(booking)
        return booking

    # ------------------------------------------------------------------
    # Periodic jobs
    # ------------------------------------------------------------------

    async def expire_pending_sessions(self, db: AsyncSession) -> int:
        """Cancel pending sessions nobody confirmed in time.

        A pending session expires ``pending_session_ttl_hours`` after it was
        created, or as soon as its start time passes, whichever comes first.
        """
        now = self._clock()
        created_cutoff = now - timedelta(hours=self._settings.pending_session_ttl_hours)
        result = await db.execute(
            select(BookingSession.id).where(
                BookingSession.status == SessionStatus.PENDING,
                or_(BookingSession.created_at <= created_cutoff, BookingSession.scheduled_start <= now),
            )
        )
        expired = 0
        for session_id in result.scalars().all():
            try:
                await self.cancel_session(db, session_id, None, reason="expired")
            except SkillSwapError as exc:
                logger.warning("session_expire_failed", session_id=session_id, error=exc.code)
                continue
            expired += 1
        if expired:
            logger.info("pending_sessions_expired", count=expired)
        return expired

    async def complete_due_sessions(self, db: AsyncSession) -> int:
        """Complete confirmed sessions whose scheduled end has passed."""
        now = self._clock()
        result = await db.execute(
            select(BookingSession.id).where(
                BookingSession.status == SessionStatus.CONFIRMED,
                BookingSession.scheduled_end <= now,
            )
        )
        completed = 0
        for session_id in result.scalars().all():
            try:
                await self.complete_session(db, session_id, None)
            except SkillSwapError as exc:
                logger.warning("session_auto_complete_failed", session_id=session_id, error=exc.code)
                continue
            completed += 1
        if completed:
            logger.info("due_sessions_completed", count=completed)
        return completed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _retry(self, operation: Callable[[], Awaitable[T]], name: str) -> T:
        return await retry_transient(
            operation,
            attempts=self._settings.ledger_retry_attempts,
            backoff_seconds=self._settings.ledger_retry_backoff_seconds,
            name=name,
        )

    @staticmethod
    def _require_participant(booking: BookingSession, actor_id: int | None) -> None:
        if actor_id is not None and actor_id not in booking.participants():
            raise Unauthorized("Only the student or the teacher can change this session")

    @staticmethod
    def _require_teacher(booking: BookingSession, actor_id: int | None) -> None:
        if actor_id is not None and actor_id != booking.teacher_id:
            raise Unauthorized("Only the teacher can do this")

    def _require_ended(self, booking: BookingSession) -> None:
        if self._clock() < booking.scheduled_end:
            raise ValidationError(
                "Session cannot be completed before it ends",
                details={"scheduled_end": booking.scheduled_end.isoformat()},
            )

    def _validate_new_slot(self, start: datetime, end: datetime, credits_per_hour: int) -> None:
        if start >= end:
            raise ValidationError("Session must end after it starts")
        buffer = timedelta(minutes=self._settings.reschedule_buffer_minutes)
        earliest = self._clock() + buffer
        if start < earliest:
            raise ValidationError(
                f"Sessions must be rescheduled at least {self._settings.reschedule_buffer_minutes} minutes ahead",
                details={"scheduled_start": start.isoformat(), "earliest": earliest.isoformat()},
            )
        session_cost(start, end, credits_per_hour)

    async def _publish(self, booking: BookingSession) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.notify_session_updated(session_payload(booking), booking.participants())
        except Exception:
            logger.warning("session_notify_failed", session_id=booking.id, exc_info=True)
