"""Pydantic response models for credit endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from skillswap.db.models import TransactionKind, TransactionStatus


class BalanceResponse(BaseModel):
    user_id: int
    balance: int
    reserved: int


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    from_user_id: int | None = None
    to_user_id: int | None = None
    amount: int
    session_id: str | None = None
    kind: TransactionKind
    status: TransactionStatus
    description: str | None = None
    created_at: datetime
    processed_at: datetime | None = None


class TransactionHistoryResponse(BaseModel):
    transactions: list[TransactionResponse]
    total: int
    limit: int
    offset: int


class WelcomeBonusResponse(BaseModel):
    transaction: TransactionResponse
    created: bool
    balance: int
