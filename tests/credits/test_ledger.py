"""CreditLedger: reserve / commit / cancel and derived balances."""

from __future__ import annotations

import random

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from skillswap.credits.ledger import CreditLedger
from skillswap.db.models import TransactionKind, TransactionStatus
from skillswap.errors import InsufficientBalance, InvalidStateTransition, NotFound, ValidationError

ALICE, BOB = 1, 2


async def _grant(ledger: CreditLedger, db: AsyncSession, user_id: int, amount: int) -> None:
    async with ledger.transaction(db, user_id):
        await ledger.grant(db, user_id, amount)


class TestReserve:
    @pytest.mark.asyncio
    async def test_reserve_creates_pending_without_moving_balance(
        self, ledger: CreditLedger, db_session: AsyncSession
    ) -> None:
        await _grant(ledger, db_session, ALICE, 20)
        async with ledger.transaction(db_session, ALICE, BOB):
            txn = await ledger.reserve(db_session, ALICE, BOB, 20, "session-1")

        assert txn.status == TransactionStatus.PENDING
        assert txn.kind == TransactionKind.TRANSFER
        assert await ledger.balance(db_session, ALICE) == 20
        assert await ledger.balance(db_session, BOB) == 0
        assert await ledger.reserved(db_session, ALICE) == 20

    @pytest.mark.asyncio
    async def test_reserve_rejects_insufficient_balance(self, ledger: CreditLedger, db_session: AsyncSession) -> None:
        await _grant(ledger, db_session, ALICE, 5)
        with pytest.raises(InsufficientBalance) as exc_info:
            async with ledger.transaction(db_session, ALICE, BOB):
                await ledger.reserve(db_session, ALICE, BOB, 20, "session-1")

        assert exc_info.value.balance == 5
        assert exc_info.value.required == 20
        history, total = await ledger.history(db_session, ALICE)
        assert total == 1
        assert history[0].kind == TransactionKind.BONUS

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -1, 1.5, True])
    async def test_reserve_rejects_bad_amounts(
        self, ledger: CreditLedger, db_session: AsyncSession, amount: object
    ) -> None:
        with pytest.raises(ValidationError):
            async with ledger.transaction(db_session, ALICE, BOB):
                await ledger.reserve(db_session, ALICE, BOB, amount, None)  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_reserve_to_self_rejected(self, ledger: CreditLedger, db_session: AsyncSession) -> None:
        await _grant(ledger, db_session, ALICE, 10)
        with pytest.raises(ValidationError):
            async with ledger.transaction(db_session, ALICE):
                await ledger.reserve(db_session, ALICE, ALICE, 1, None)

    @pytest.mark.asyncio
    async def test_writes_outside_transaction_are_refused(
        self, ledger: CreditLedger, db_session: AsyncSession
    ) -> None:
        with pytest.raises(RuntimeError, match="not locked"):
            await ledger.grant(db_session, ALICE, 5)


class TestCommit:
    @pytest.mark.asyncio
    async def test_commit_moves_credits(self, ledger: CreditLedger, db_session: AsyncSession) -> None:
        await _grant(ledger, db_session, ALICE, 20)
        async with ledger.transaction(db_session, ALICE, BOB):
            txn = await ledger.reserve(db_session, ALICE, BOB, 20, "session-1")
        async with ledger.transaction(db_session, ALICE, BOB):
            committed = await ledger.commit(db_session, txn.id)

        assert committed.status == TransactionStatus.COMPLETED
        assert committed.processed_at is not None
        assert await ledger.balance(db_session, ALICE) == 0
        assert await ledger.balance(db_session, BOB) == 20

    @pytest.mark.asyncio
    async def test_commit_twice_is_noop(self, ledger: CreditLedger, db_session: AsyncSession) -> None:
        await _grant(ledger, db_session, ALICE, 20)
        async with ledger.transaction(db_session, ALICE, BOB):
            txn = await ledger.reserve(db_session, ALICE, BOB, 20, None)
        for _ in range(2):
            async with ledger.transaction(db_session, ALICE, BOB):
                await ledger.commit(db_session, txn.id)
        assert await ledger.balance(db_session, BOB) == 20

    @pytest.mark.asyncio
    async def test_commit_rechecks_balance(self, ledger: CreditLedger, db_session: AsyncSession) -> None:
        """Two reservations against one balance: only the first commit succeeds."""
        await _grant(ledger, db_session, ALICE, 20)
        async with ledger.transaction(db_session, ALICE, BOB):
            first = await ledger.reserve(db_session, ALICE, BOB, 20, "s1")
            second = await ledger.reserve(db_session, ALICE, BOB, 20, "s2")
        second_id = second.id
        async with ledger.transaction(db_session, ALICE, BOB):
            await ledger.commit(db_session, first.id)
        with pytest.raises(InsufficientBalance):
            async with ledger.transaction(db_session, ALICE, BOB):
                await ledger.commit(db_session, second_id)

        assert await ledger.balance(db_session, ALICE) == 0
        assert (await ledger.get(db_session, second_id)).status == TransactionStatus.PENDING

    @pytest.mark.asyncio
    async def test_commit_cancelled_rejected(self, ledger: CreditLedger, db_session: AsyncSession) -> None:
        await _grant(ledger, db_session, ALICE, 20)
        async with ledger.transaction(db_session, ALICE, BOB):
            txn = await ledger.reserve(db_session, ALICE, BOB, 10, None)
            await ledger.cancel(db_session, txn.id)
        with pytest.raises(InvalidStateTransition):
            async with ledger.transaction(db_session, ALICE, BOB):
                await ledger.commit(db_session, txn.id)

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, ledger: CreditLedger, db_session: AsyncSession) -> None:
        with pytest.raises(NotFound):
            async with ledger.transaction(db_session, ALICE):
                await ledger.commit(db_session, "does-not-exist")


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, ledger: CreditLedger, db_session: AsyncSession) -> None:
        await _grant(ledger, db_session, ALICE, 20)
        async with ledger.transaction(db_session, ALICE, BOB):
            txn = await ledger.reserve(db_session, ALICE, BOB, 20, None)

        results = []
        for _ in range(2):
            async with ledger.transaction(db_session, ALICE, BOB):
                results.append(await ledger.cancel(db_session, txn.id))

        assert results[0].id == results[1].id
        assert results[1].status == TransactionStatus.CANCELLED
        assert results[0].processed_at == results[1].processed_at
        assert await ledger.balance(db_session, ALICE) == 20
        assert await ledger.balance(db_session, BOB) == 0
        assert await ledger.reserved(db_session, ALICE) == 0

    @pytest.mark.asyncio
    async def test_cancel_completed_rejected(self, ledger: CreditLedger, db_session: AsyncSession) -> None:
        await _grant(ledger, db_session, ALICE, 20)
        async with ledger.transaction(db_session, ALICE, BOB):
            txn = await ledger.reserve(db_session, ALICE, BOB, 20, None)
            await ledger.commit(db_session, txn.id)
        with pytest.raises(InvalidStateTransition):
            async with ledger.transaction(db_session, ALICE, BOB):
                await ledger.cancel(db_session, txn.id)
        assert await ledger.balance(db_session, BOB) == 20


class TestGrant:
    @pytest.mark.asyncio
    async def test_grant_with_idempotency_key(self, ledger: CreditLedger, db_session: AsyncSession) -> None:
        async with ledger.transaction(db_session, ALICE):
            first, created = await ledger.grant(db_session, ALICE, 5, idempotency_key="welcome-bonus:1")
        assert created is True
        async with ledger.transaction(db_session, ALICE):
            again, created_again = await ledger.grant(db_session, ALICE, 5, idempotency_key="welcome-bonus:1")
        assert created_again is False
        assert again.id == first.id
        assert first.from_user_id is None
        assert await ledger.balance(db_session, ALICE) == 5

    @pytest.mark.asyncio
    async def test_history_is_newest_first_and_paginated(
        self, ledger: CreditLedger, db_session: AsyncSession
    ) -> None:
        for amount in (1, 2, 3):
            await _grant(ledger, db_session, ALICE, amount)
        page, total = await ledger.history(db_session, ALICE, limit=2)
        assert total == 3
        assert len(page) == 2
        assert page[0].created_at >= page[1].created_at


class TestAdjust:
    @pytest.mark.asyncio
    async def test_positive_adjustment_mints(self, ledger: CreditLedger, db_session: AsyncSession) -> None:
        async with ledger.transaction(db_session, ALICE):
            txn = await ledger.adjust(db_session, ALICE, 7, description="refund for outage")
        assert txn.kind == TransactionKind.ADJUSTMENT
        assert txn.status == TransactionStatus.COMPLETED
        assert (txn.from_user_id, txn.to_user_id, txn.amount) == (None, ALICE, 7)
        assert await ledger.balance(db_session, ALICE) == 7

    @pytest.mark.asyncio
    async def test_negative_adjustment_removes(self, ledger: CreditLedger, db_session: AsyncSession) -> None:
        await _grant(ledger, db_session, ALICE, 10)
        async with ledger.transaction(db_session, ALICE):
            txn = await ledger.adjust(db_session, ALICE, -4)
        assert (txn.from_user_id, txn.to_user_id, txn.amount) == (ALICE, None, 4)
        assert await ledger.balance(db_session, ALICE) == 6
        _, total = await ledger.history(db_session, ALICE)
        assert total == 2

    @pytest.mark.asyncio
    async def test_removal_below_zero_rejected(self, ledger: CreditLedger, db_session: AsyncSession) -> None:
        await _grant(ledger, db_session, ALICE, 3)
        with pytest.raises(InsufficientBalance):
            async with ledger.transaction(db_session, ALICE):
                await ledger.adjust(db_session, ALICE, -4)
        assert await ledger.balance(db_session, ALICE) == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("delta", [0, 1.5, True])
    async def test_bad_deltas_rejected(self, ledger: CreditLedger, db_session: AsyncSession, delta: object) -> None:
        with pytest.raises(ValidationError):
            async with ledger.transaction(db_session, ALICE):
                await ledger.adjust(db_session, ALICE, delta)  # type: ignore[arg-type]


class TestNeverNegative:
    @pytest.mark.asyncio
    async def test_random_operation_sequences(self, ledger: CreditLedger, db_session: AsyncSession) -> None:
        """Whatever order reserve/commit/cancel arrive in, no balance drops below zero."""
        rng = random.Random(1234)
        await _grant(ledger, db_session, ALICE, 30)
        pending: list[str] = []

        for _ in range(60):
            op = rng.choice(["reserve", "commit", "cancel"])
            try:
                async with ledger.transaction(db_session, ALICE, BOB):
                    if op == "reserve":
                        txn = await ledger.reserve(db_session, ALICE, BOB, rng.randint(1, 15), None)
                        pending.append(txn.id)
                    elif pending:
                        txn_id = pending.pop(rng.randrange(len(pending)))
                        if op == "commit":
                            await ledger.commit(db_session, txn_id)
                        else:
                            await ledger.cancel(db_session, txn_id)
            except InsufficientBalance:
                pass
            assert await ledger.balance(db_session, ALICE) >= 0

        assert await ledger.balance(db_session, ALICE) + await ledger.balance(db_session, BOB) == 30
