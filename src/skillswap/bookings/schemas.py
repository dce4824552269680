"""Pydantic request/response models for session endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from skillswap.db.models import SessionStatus


class CreateSessionRequest(BaseModel):
    teacher_id: int
    skill_id: int
    scheduled_start: AwareDatetime
    scheduled_end: AwareDatetime
    credits_per_hour: int = Field(ge=0)
    notes: str | None = Field(default=None, max_length=1000)


class CancelSessionRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class RescheduleSessionRequest(BaseModel):
    scheduled_start: AwareDatetime
    scheduled_end: AwareDatetime


class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: int
    teacher_id: int
    skill_id: int
    scheduled_start: datetime
    scheduled_end: datetime
    credits_per_hour: int
    status: SessionStatus
    reservation_id: str | None = None
    notes: str | None = None
    cancellation_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    confirmed_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse]
    total: int
    limit: int
    offset: int
