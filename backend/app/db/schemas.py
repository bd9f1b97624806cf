"""
Pydantic validation schemas
"""
from pydantic import BaseModel, Field, field_serializer, field_validator
from typing import Optional, List, Literal
from datetime import date, datetime, time
from uuid import UUID

from app.db.models import ApprovalStatus, LifecycleStatus, ParticipationState, UserRole
from app.utils.helpers import isoformat_utc

# ============================================================================
# User Schemas
# ============================================================================

class UserOut(BaseModel):
    id: UUID
    email: str
    full_name: str
    role: UserRole
    is_active: bool

    class Config:
        from_attributes = True

# ============================================================================
# Schedule Schemas
# ============================================================================

class ScheduleIn(BaseModel):
    """
    Trial date/time as the attorney entered it, plus the browser's UTC offset
    in minutes (India = 330, US Pacific winter = -480).
    """
    scheduled_date: str = Field(..., description="YYYY-MM-DD")
    scheduled_time: str = Field(..., description="HH:MM (24h)")
    timezone_offset_minutes: Optional[int] = None
    timezone_name: Optional[str] = Field(None, max_length=64)

    @field_validator("scheduled_date", "scheduled_time")
    @classmethod
    def strip_value(cls, v: str) -> str:
        return v.strip()

# ============================================================================
# Case Schemas
# ============================================================================

class CaseCreate(BaseModel):
    title: str = Field(..., min_length=2, max_length=255)
    schedule: Optional[ScheduleIn] = None


class CaseResponse(BaseModel):
    id: UUID
    owner_id: UUID
    title: str
    approval_status: ApprovalStatus
    lifecycle_status: LifecycleStatus
    admin_comments: Optional[str] = None

    scheduled_date_local: Optional[date] = None
    scheduled_time_local: Optional[time] = None
    timezone_offset_minutes: Optional[int] = None
    timezone_name: Optional[str] = None
    scheduled_instant_utc: Optional[datetime] = None

    war_room_opened_at: Optional[datetime] = None
    reminders_sent_at: Optional[datetime] = None
    verdict_recorded_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @field_serializer(
        "scheduled_instant_utc", "war_room_opened_at", "reminders_sent_at",
        "verdict_recorded_at", "closed_at", "created_at", "updated_at",
    )
    def serialize_utc(self, value: Optional[datetime]) -> Optional[str]:
        return isoformat_utc(value)


class CaseListResponse(BaseModel):
    cases: List[CaseResponse]
    total: int


class JurorApplicationResponse(BaseModel):
    case_id: UUID
    juror_id: UUID
    state: ParticipationState
    decided_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True

# ============================================================================
# Admin Schemas
# ============================================================================

class ApprovalDecisionRequest(BaseModel):
    decision: Literal["approved", "rejected"]
    comments: Optional[str] = Field(None, max_length=2000)


class JurorDecisionRequest(BaseModel):
    decision: Literal["approved", "rejected"]


class VerdictRequest(BaseModel):
    summary: Optional[str] = Field(None, max_length=10000)


class StatusOverrideRequest(BaseModel):
    status: LifecycleStatus
    reason: str = Field(..., min_length=3, max_length=2000)

# ============================================================================
# Trial Access Schemas
# ============================================================================

class TrialAccessResponse(BaseModel):
    case_id: UUID
    title: str
    lifecycle_status: LifecycleStatus
    scheduled_instant_utc: Optional[datetime] = None
    war_room_opened_at: Optional[datetime] = None

    @field_serializer("scheduled_instant_utc", "war_room_opened_at")
    def serialize_utc(self, value: Optional[datetime]) -> Optional[str]:
        return isoformat_utc(value)


class VerdictResponse(BaseModel):
    case_id: UUID
    title: str
    lifecycle_status: LifecycleStatus
    verdict_summary: Optional[str] = None
    verdict_recorded_at: Optional[datetime] = None

    @field_serializer("verdict_recorded_at")
    def serialize_utc(self, value: Optional[datetime]) -> Optional[str]:
        return isoformat_utc(value)
