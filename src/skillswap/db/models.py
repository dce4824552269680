"""ORM models for the tables the booking core writes.

``credit_transactions`` is append-only: rows are only ever inserted, and the
sole permitted updates are the ``pending -> completed`` and
``pending -> cancelled`` status changes. ``sessions`` has a mutable status.
Users live in the identity service; only their ids are stored here.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, CheckConstraint, Enum, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from skillswap.db.base import Base, UTCDateTime


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TransactionKind(str, enum.Enum):
    TRANSFER = "transfer"  # session payment, student -> teacher
    BONUS = "bonus"  # minted by the platform (welcome, referral)
    ADJUSTMENT = "adjustment"  # support correction, either direction


def _enum_column(enum_cls: type[enum.Enum], name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=16,
        values_callable=lambda members: [m.value for m in members],
    )


# ---------------------------------------------------------------------------
# Sessions (bookings)
# ---------------------------------------------------------------------------


class BookingSession(Base):
    """A booked teaching session between a student and a teacher."""

    __tablename__ = "sessions"
    __table_args__ = (
        CheckConstraint("scheduled_start < scheduled_end", name="ck_sessions_time_range"),
        CheckConstraint("credits_per_hour >= 0", name="ck_sessions_rate_non_negative"),
        Index("ix_sessions_status_start", "status", "scheduled_start"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    student_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    teacher_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    skill_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    scheduled_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    scheduled_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    credits_per_hour: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[SessionStatus] = mapped_column(
        _enum_column(SessionStatus, "session_status"),
        nullable=False,
        default=SessionStatus.PENDING,
    )
    reservation_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    cancelled_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)
    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    def participants(self) -> tuple[int, int]:
        return self.student_id, self.teacher_id


# ---------------------------------------------------------------------------
# Credit ledger
# ---------------------------------------------------------------------------


class CreditTransaction(Base):
    """One ledger entry moving ``amount`` credits from one user to another.

    ``from_user_id`` is NULL for credits minted by the platform and
    ``to_user_id`` is NULL for credits removed by a support adjustment. A
    session payment is a single row whose debit side is the student and whose
    credit side is the teacher.
    """

    __tablename__ = "credit_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_credit_transactions_amount_positive"),
        CheckConstraint(
            "from_user_id IS NOT NULL OR to_user_id IS NOT NULL",
            name="ck_credit_transactions_has_party",
        ),
        Index("ix_credit_transactions_from_status", "from_user_id", "status"),
        Index("ix_credit_transactions_to_status", "to_user_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    from_user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    to_user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    session_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    kind: Mapped[TransactionKind] = mapped_column(
        _enum_column(TransactionKind, "transaction_kind"),
        nullable=False,
        default=TransactionKind.TRANSFER,
    )
    status: Mapped[TransactionStatus] = mapped_column(
        _enum_column(TransactionStatus, "transaction_status"),
        nullable=False,
        default=TransactionStatus.PENDING,
    )
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class CreditAccount(Base):
    """One row per user that has touched the ledger.

    The row carries no balance. ``CreditLedger.transaction()`` bumps
    ``version`` for every user it locks, which holds a database write lock
    on the row until commit, so ledger work from other processes on the same
    user waits its turn.
    """

    __tablename__ = "credit_accounts"

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)
