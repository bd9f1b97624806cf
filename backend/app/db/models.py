"""
SQLAlchemy ORM Models
"""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    TIMESTAMP,
    UniqueConstraint,
    true,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy import Index

from app.db.database import Base
from app.utils.helpers import utcnow

# ============================================================================
# Enums
# ============================================================================

class UserRole(str, enum.Enum):
    """User roles"""
    attorney = "attorney"
    juror = "juror"
    admin = "admin"


class ApprovalStatus(str, enum.Enum):
    """Admin approval of a case"""
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class LifecycleStatus(str, enum.Enum):
    """
    Case lifecycle, in its fixed total order.

    Only the transition scheduler moves a case forward through
    awaiting_trial -> war_room -> join_trial. Backward moves are only
    possible through an audited administrative override.
    """
    drafting = "drafting"
    awaiting_trial = "awaiting_trial"
    war_room = "war_room"
    join_trial = "join_trial"
    view_details = "view_details"
    closed = "closed"

    @property
    def rank(self) -> int:
        return _LIFECYCLE_ORDER.index(self)

    def precedes(self, other: "LifecycleStatus") -> bool:
        return self.rank < other.rank

    def can_advance_to(self, other: "LifecycleStatus") -> bool:
        """Forward or in-place moves only."""
        return other.rank >= self.rank


_LIFECYCLE_ORDER = tuple(LifecycleStatus)

# Statuses the transition scheduler evaluates
SCHEDULABLE_STATUSES = (LifecycleStatus.awaiting_trial, LifecycleStatus.war_room)


class ParticipationState(str, enum.Enum):
    """Juror application state for a single case"""
    applied = "applied"
    approved = "approved"
    rejected = "rejected"


class EventKind(str, enum.Enum):
    """Events handed to the notification collaborator"""
    war_room_opened = "WarRoomOpened"
    reminder_due = "ReminderDue"
    trial_countdown = "TrialCountdown"


class StatusChangeSource(str, enum.Enum):
    promotion = "promotion"
    admin_override = "admin_override"
    verdict = "verdict"
    retention = "retention"


# ============================================================================
# Models
# ============================================================================

class User(Base):
    """Attorney, juror or admin account"""
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.attorney)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())

    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=utcnow, onupdate=utcnow)

    cases = relationship("Case", back_populates="owner")
    juror_applications = relationship("JurorApplication", back_populates="juror")


class Case(Base):
    """Legal case moving through the trial lifecycle"""
    __tablename__ = "cases"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)

    # Admin approval
    approval_status = Column(SQLEnum(ApprovalStatus), nullable=False, default=ApprovalStatus.pending)
    approved_at = Column(TIMESTAMP, nullable=True)
    approved_by = Column(UUID(as_uuid=True), nullable=True)
    admin_comments = Column(Text, nullable=True)

    # State machine field, scheduler controlled
    lifecycle_status = Column(SQLEnum(LifecycleStatus), nullable=False, default=LifecycleStatus.drafting)

    # Schedule as entered by the attorney
    scheduled_date_local = Column(Date, nullable=True)
    scheduled_time_local = Column(Time, nullable=True)
    timezone_offset_minutes = Column(Integer, nullable=True)
    timezone_name = Column(String(64), nullable=True)
    # Derived once at entry time, naive UTC. Never recomputed from the local fields.
    scheduled_instant_utc = Column(TIMESTAMP, nullable=True)

    # One-time effects (audit record + idempotency guard)
    war_room_opened_at = Column(TIMESTAMP, nullable=True)
    reminders_sent_at = Column(TIMESTAMP, nullable=True)

    # Verdict / retention
    verdict_summary = Column(Text, nullable=True)
    verdict_recorded_at = Column(TIMESTAMP, nullable=True)
    closed_at = Column(TIMESTAMP, nullable=True)

    # Soft Delete
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=utcnow, onupdate=utcnow)

    owner = relationship("User", back_populates="cases")
    juror_applications = relationship("JurorApplication", back_populates="case", cascade="all, delete-orphan")
    status_audit = relationship("CaseStatusAudit", back_populates="case", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_cases_sched_status_instant", "lifecycle_status", "is_deleted", "scheduled_instant_utc"),
    )

    @property
    def has_schedule(self) -> bool:
        return self.scheduled_instant_utc is not None


class JurorApplication(Base):
    """Juror <-> Case participation"""
    __tablename__ = "juror_applications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    case_id = Column(UUID(as_uuid=True), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    juror_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    state = Column(SQLEnum(ParticipationState), nullable=False, default=ParticipationState.applied)
    decided_at = Column(TIMESTAMP, nullable=True)
    decided_by = Column(UUID(as_uuid=True), nullable=True)

    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=utcnow, onupdate=utcnow)

    case = relationship("Case", back_populates="juror_applications")
    juror = relationship("User", back_populates="juror_applications")

    __table_args__ = (
        UniqueConstraint("case_id", "juror_id", name="uq_juror_applications_case_juror"),
    )


class CaseStatusAudit(Base):
    """
    Append-only record of lifecycle changes made outside the scheduler
    (promotion to awaiting_trial, admin override, verdict, retention close).
    """
    __tablename__ = "case_status_audit"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    case_id = Column(UUID(as_uuid=True), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    from_status = Column(SQLEnum(LifecycleStatus), nullable=False)
    to_status = Column(SQLEnum(LifecycleStatus), nullable=False)
    source = Column(SQLEnum(StatusChangeSource), nullable=False)
    actor_id = Column(UUID(as_uuid=True), nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)

    case = relationship("Case", back_populates="status_audit")


class NotificationEvent(Base):
    """
    Outbox of events raised by the scheduler. Rendering and delivery
    (email / SMS / push) are handled by a separate consumer.
    """
    __tablename__ = "notification_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    case_id = Column(UUID(as_uuid=True), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    event_kind = Column(SQLEnum(EventKind), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    dispatched_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_notification_events_pending", "dispatched_at", "created_at"),
    )


class CaseCountdownReminder(Base):
    """
    One row per (case, days_before) countdown reminder. The unique constraint
    makes the insert itself the claim, so concurrent workers send each reminder once.
    """
    __tablename__ = "case_countdown_reminders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    case_id = Column(UUID(as_uuid=True), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    days_before = Column(Integer, nullable=False)
    sent_at = Column(TIMESTAMP, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("case_id", "days_before", name="uq_case_countdown_reminders_case_days"),
    )
