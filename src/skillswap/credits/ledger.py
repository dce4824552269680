"""Credit ledger: append-only transactions and derived balances.

Balance(user) = completed credits received - completed credits sent.
Pending reservations never count against a balance; the payer's balance is
checked when a reservation is made and again when it is committed, so a
committed debit can never drive a balance negative.

Every balance-affecting call must run inside ``CreditLedger.transaction()``,
which serializes work per user id and commits the unit of work before the
locks are released. Serialization happens twice: an in-process ``KeyedLock``
keeps tasks of one worker from queueing on the database, and a write to each
user's ``credit_accounts`` row holds a database lock until commit, so the API
and the arq worker never interleave work on the same user::

    async with ledger.transaction(db, student_id, teacher_id):
        txn = await ledger.reserve(db, student_id, teacher_id, 20, session_id)
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from skillswap.db.models import CreditAccount, CreditTransaction, TransactionKind, TransactionStatus
from skillswap.errors import (
    InsufficientBalance,
    InvalidStateTransition,
    NotFound,
    TransientStoreError,
    ValidationError,
)
from skillswap.locks import KeyedLock

logger = structlog.get_logger()

# Largest amount a single transaction may carry (signed 64-bit column)
MAX_AMOUNT = 2**63 - 1

_UPSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


def _validate_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Credit amounts must be whole numbers", details={"amount": repr(amount)})
    if amount <= 0 or amount > MAX_AMOUNT:
        raise ValidationError("Credit amount must be a positive integer", details={"amount": amount})


class CreditLedger:
    """Per-user serialized access to the ``credit_transactions`` table."""

    def __init__(self, *, store_timeout: float = 5.0, locks: KeyedLock | None = None) -> None:
        self._store_timeout = store_timeout
        self._locks = locks or KeyedLock()

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self, db: AsyncSession, *user_ids: int) -> AsyncIterator[None]:
        """Lock ``user_ids``, run the block, then commit ``db``.

        Any exception rolls the session back. Lock waits and the commit are
        bounded by ``store_timeout``; timeouts and database operational
        errors or write conflicts surface as ``TransientStoreError``.
        """
        try:
            async with self._locks.hold(*user_ids, timeout=self._store_timeout):
                try:
                    await asyncio.wait_for(self._lock_accounts(db, user_ids), self._store_timeout)
                    yield
                    await asyncio.wait_for(db.commit(), self._store_timeout)
                except BaseException:
                    await db.rollback()
                    raise
        except TimeoutError as exc:
            logger.warning("ledger_store_timeout", user_ids=list(user_ids), timeout=self._store_timeout)
            raise TransientStoreError("Credit store timed out, please retry") from exc
        except (OperationalError, IntegrityError) as exc:
            logger.warning("ledger_store_conflict", user_ids=list(user_ids), error=type(exc).__name__)
            raise TransientStoreError(
                "Credit store conflict, please retry",
                details={"error": type(exc).__name__},
            ) from exc

    async def _lock_accounts(self, db: AsyncSession, user_ids: Sequence[int]) -> None:
        """Take the database row lock for each user, in ascending id order."""
        if not user_ids:
            return
        conn = await db.connection()
        upsert = _UPSERTS[conn.dialect.name]
        for user_id in sorted(set(user_ids)):
            stmt = upsert(CreditAccount).values(user_id=user_id, version=1)
            stmt = stmt.on_conflict_do_update(
                index_elements=[CreditAccount.user_id],
                set_={"version": CreditAccount.version + 1},
            )
            await db.execute(stmt)

    def _require_lock(self, user_id: int | None) -> None:
        if user_id is not None and not self._locks.held_by_current_task(user_id):
            msg = f"user {user_id} is not locked; wrap ledger writes in CreditLedger.transaction()"
            raise RuntimeError(msg)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def balance(self, db: AsyncSession, user_id: int) -> int:
        """Completed balance for a user."""
        received = await db.scalar(
            select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
                CreditTransaction.to_user_id == user_id,
                CreditTransaction.status == TransactionStatus.COMPLETED,
            )
        )
        sent = await db.scalar(
            select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
                CreditTransaction.from_user_id == user_id,
                CreditTransaction.status == TransactionStatus.COMPLETED,
            )
        )
        return int(received or 0) - int(sent or 0)

    async def reserved(self, db: AsyncSession, user_id: int) -> int:
        """Credits earmarked by the user's pending reservations."""
        total = await db.scalar(
            select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
                CreditTransaction.from_user_id == user_id,
                CreditTransaction.status == TransactionStatus.PENDING,
            )
        )
        return int(total or 0)

    async def get(self, db: AsyncSession, transaction_id: str, *, for_update: bool = False) -> CreditTransaction:
        stmt = select(CreditTransaction).where(CreditTransaction.id == transaction_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt.execution_options(populate_existing=True))
        txn = result.scalar_one_or_none()
        if txn is None:
            raise NotFound("Transaction", transaction_id)
        return txn

    async def history(
        self,
        db: AsyncSession,
        user_id: int,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[CreditTransaction], int]:
        """Transactions where the user is either side, newest first."""
        involves_user = or_(CreditTransaction.from_user_id == user_id, CreditTransaction.to_user_id == user_id)
        total = await db.scalar(select(func.count()).select_from(CreditTransaction).where(involves_user))
        result = await db.execute(
            select(CreditTransaction)
            .where(involves_user)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id)
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)

    async def for_session(self, db: AsyncSession, session_id: str) -> Sequence[CreditTransaction]:
        result = await db.execute(
            select(CreditTransaction)
            .where(CreditTransaction.session_id == session_id)
            .order_by(CreditTransaction.created_at)
        )
        return result.scalars().all()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def reserve(
        self,
        db: AsyncSession,
        from_user_id: int,
        to_user_id: int,
        amount: int,
        session_id: str | None,
        *,
        description: str | None = None,
    ) -> CreditTransaction:
        """Create a pending transfer; raises ``InsufficientBalance`` if the payer can't cover it."""
        _validate_amount(amount)
        if from_user_id == to_user_id:
            raise ValidationError("Cannot transfer credits to yourself", details={"user_id": from_user_id})
        self._require_lock(from_user_id)

        current = await self.balance(db, from_user_id)
        if current - amount < 0:
            logger.info(
                "ledger_reserve_rejected",
                user_id=from_user_id,
                balance=current,
                amount=amount,
                session_id=session_id,
            )
            raise InsufficientBalance(from_user_id, current, amount)

        txn = CreditTransaction(
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            amount=amount,
            session_id=session_id,
            kind=TransactionKind.TRANSFER,
            status=TransactionStatus.PENDING,
            description=description,
            created_at=datetime.now(timezone.utc),
        )
        db.add(txn)
        await db.flush()
        logger.info(
            "ledger_reserved",
            transaction_id=txn.id,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            amount=amount,
            session_id=session_id,
        )
        return txn

    async def commit(self, db: AsyncSession, transaction_id: str) -> CreditTransaction:
        """Complete a pending transfer. Committing a completed transfer is a no-op."""
        txn = await self.get(db, transaction_id, for_update=True)
        if txn.status == TransactionStatus.COMPLETED:
            return txn
        if txn.status != TransactionStatus.PENDING:
            raise InvalidStateTransition("transaction", txn.status.value, TransactionStatus.COMPLETED.value)
        self._require_lock(txn.from_user_id)

        if txn.from_user_id is not None:
            current = await self.balance(db, txn.from_user_id)
            if current - txn.amount < 0:
                logger.warning(
                    "ledger_commit_rejected",
                    transaction_id=txn.id,
                    user_id=txn.from_user_id,
                    balance=current,
                    amount=txn.amount,
                )
                raise InsufficientBalance(txn.from_user_id, current, txn.amount)

        txn.status = TransactionStatus.COMPLETED
        txn.processed_at = datetime.now(timezone.utc)
        await db.flush()
        logger.info("ledger_committed", transaction_id=txn.id, amount=txn.amount, session_id=txn.session_id)
        return txn

    async def cancel(self, db: AsyncSession, transaction_id: str) -> CreditTransaction:
        """Cancel a pending transfer. Cancelling a cancelled transfer is a no-op."""
        txn = await self.get(db, transaction_id, for_update=True)
        if txn.status == TransactionStatus.CANCELLED:
            return txn
        if txn.status != TransactionStatus.PENDING:
            raise InvalidStateTransition("transaction", txn.status.value, TransactionStatus.CANCELLED.value)
        self._require_lock(txn.from_user_id)

        txn.status = TransactionStatus.CANCELLED
        txn.processed_at = datetime.now(timezone.utc)
        await db.flush()
        logger.info("ledger_cancelled", transaction_id=txn.id, amount=txn.amount, session_id=txn.session_id)
        return txn

    async def grant(
        self,
        db: AsyncSession,
        user_id: int,
        amount: int,
        *,
        kind: TransactionKind = TransactionKind.BONUS,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> tuple[CreditTransaction, bool]:
        """Mint completed credits for a user.

        Returns ``(transaction, created)``; a repeated ``idempotency_key``
        returns the original row with ``created=False``.
        """
        _validate_amount(amount)
        self._require_lock(user_id)

        if idempotency_key is not None:
            existing = await db.execute(
                select(CreditTransaction).where(CreditTransaction.idempotency_key == idempotency_key)
            )
            found = existing.scalar_one_or_none()
            if found is not None:
                return found, False

        now = datetime.now(timezone.utc)
        txn = CreditTransaction(
            from_user_id=None,
            to_user_id=user_id,
            amount=amount,
            kind=kind,
            status=TransactionStatus.COMPLETED,
            description=description,
            idempotency_key=idempotency_key,
            created_at=now,
            processed_at=now,
        )
        db.add(txn)
        await db.flush()
        logger.info("ledger_granted", transaction_id=txn.id, user_id=user_id, amount=amount, kind=kind.value)
        return txn, True

    async def adjust(
        self,
        db: AsyncSession,
        user_id: int,
        delta: int,
        *,
        description: str | None = None,
    ) -> CreditTransaction:
        """Support correction of a user's balance by ``delta`` credits.

        A positive delta mints credits, a negative one removes them. A removal
        larger than the completed balance raises ``InsufficientBalance``.
        """
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationError("Credit amounts must be whole numbers", details={"amount": repr(delta)})
        amount = abs(delta)
        _validate_amount(amount)
        self._require_lock(user_id)

        if delta < 0:
            current = await self.balance(db, user_id)
            if current - amount < 0:
                logger.info("ledger_adjust_rejected", user_id=user_id, balance=current, amount=delta)
                raise InsufficientBalance(user_id, current, amount)

        now = datetime.now(timezone.utc)
        txn = CreditTransaction(
            from_user_id=user_id if delta < 0 else None,
            to_user_id=user_id if delta > 0 else None,
            amount=amount,
            kind=TransactionKind.ADJUSTMENT,
            status=TransactionStatus.COMPLETED,
            description=description,
            created_at=now,
            processed_at=now,
        )
        db.add(txn)
        await db.flush()
        logger.info("ledger_adjusted", transaction_id=txn.id, user_id=user_id, amount=delta)
        return txn
