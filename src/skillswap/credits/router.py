"""Credit balance, history and welcome bonus endpoints."""

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from skillswap.auth.dependencies import get_current_identity
from skillswap.auth.jwt import Identity
from skillswap.config import get_settings
from skillswap.credits.ledger import CreditLedger
from skillswap.credits.schemas import (
    BalanceResponse,
    TransactionHistoryResponse,
    TransactionResponse,
    WelcomeBonusResponse,
)
from skillswap.db.models import CreditTransaction, TransactionKind
from skillswap.dependencies import get_db, get_ledger
from skillswap.retry import retry_transient

router = APIRouter(prefix="/api/v1/credits", tags=["Credits"])


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    ledger: CreditLedger = Depends(get_ledger),
) -> BalanceResponse:
    """Completed balance plus credits held by pending reservations."""
    return BalanceResponse(
        user_id=identity.user_id,
        balance=await ledger.balance(db, identity.user_id),
        reserved=await ledger.reserved(db, identity.user_id),
    )


@router.get("/transactions", response_model=TransactionHistoryResponse)
async def list_transactions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    ledger: CreditLedger = Depends(get_ledger),
) -> TransactionHistoryResponse:
    transactions, total = await ledger.history(db, identity.user_id, limit=limit, offset=offset)
    return TransactionHistoryResponse(
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/welcome-bonus", response_model=WelcomeBonusResponse)
async def claim_welcome_bonus(
    response: Response,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    ledger: CreditLedger = Depends(get_ledger),
) -> WelcomeBonusResponse:
    """Grant the one-time welcome bonus. Claiming again returns the original grant."""
    settings = get_settings()
    user_id = identity.user_id

    async def attempt() -> tuple[CreditTransaction, bool, int]:
        async with ledger.transaction(db, user_id):
            txn, created = await ledger.grant(
                db,
                user_id,
                settings.welcome_bonus_credits,
                kind=TransactionKind.BONUS,
                description="Welcome bonus",
                idempotency_key=f"welcome-bonus:{user_id}",
            )
            balance = await ledger.balance(db, user_id)
        return txn, created, balance

    txn, created, balance = await retry_transient(
        attempt,
        attempts=settings.ledger_retry_attempts,
        backoff_seconds=settings.ledger_retry_backoff_seconds,
        name="welcome_bonus",
    )
    response.status_code = 201 if created else 200
    return WelcomeBonusResponse(
        transaction=TransactionResponse.model_validate(txn),
        created=created,
        balance=balance,
    )
