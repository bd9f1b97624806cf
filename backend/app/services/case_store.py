"""
services/case_store.py

Persistence collaborator for cases. Methods take a Session and leave the commit
to the caller (one case per transaction on the scheduler path). The two
insert-as-claim methods are the exception: they commit so that a unique
violation can be told apart from other work in the session.

The scheduler's only write is `conditional_advance`, a single-row
UPDATE ... WHERE id = X AND status = expected AND flag IS NULL. Its row count is
the arbitration point between concurrently running scheduler processes.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.models import (
    ApprovalStatus,
    Case,
    CaseCountdownReminder,
    CaseStatusAudit,
    JurorApplication,
    LifecycleStatus,
    ParticipationState,
    SCHEDULABLE_STATUSES,
    StatusChangeSource,
    User,
)
from app.services.time_normalizer import NormalizedSchedule
from app.utils.exceptions import (
    InvalidTransitionError,
    ScheduleLockedError,
)
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

# Columns conditional_advance may stamp
CLAIM_FLAG_FIELDS = ("war_room_opened_at", "reminders_sent_at")

# Statuses whose schedule may still change
RESCHEDULABLE_STATUSES = (LifecycleStatus.drafting, LifecycleStatus.awaiting_trial)


class CaseStore:

    # ------------------------------------------------------------------
    # Scheduler interface
    # ------------------------------------------------------------------
    def query_cases_for_scheduling(
        self,
        db: Session,
        statuses: Iterable[LifecycleStatus],
        window_start: datetime,
        window_end: datetime,
    ) -> List[Case]:
        """
        Non-deleted cases in `statuses` whose scheduled instant falls in
        [window_start, window_end]. Bounded by time so cost doesn't grow with
        the total number of cases.
        """
        return (
            db.query(Case)
            .filter(
                Case.lifecycle_status.in_(list(statuses)),
                Case.is_deleted == False,  # noqa: E712
                Case.scheduled_instant_utc.isnot(None),
                Case.scheduled_instant_utc >= window_start,
                Case.scheduled_instant_utc <= window_end,
            )
            .order_by(Case.scheduled_instant_utc.asc())
            .all()
        )

    def conditional_advance(
        self,
        db: Session,
        case_id: UUID,
        expected_status: LifecycleStatus,
        new_status: LifecycleStatus,
        flag_field: Optional[str],
        now: Optional[datetime] = None,
    ) -> int:
        """
        Atomically move a case from `expected_status` to `new_status`, stamping
        `flag_field` with `now`. Returns the affected row count (0 or 1).

        Backward moves are refused outright; those go through override_status.
        """
        if not expected_status.can_advance_to(new_status):
            raise ValueError(
                f"Refusing backward transition {expected_status.value} -> {new_status.value}"
            )
        if flag_field is not None and flag_field not in CLAIM_FLAG_FIELDS:
            raise ValueError(f"Unknown claim flag '{flag_field}'")

        now = now or utcnow()
        values = {"lifecycle_status": new_status, "updated_at": now}

        query = db.query(Case).filter(
            Case.id == case_id,
            Case.lifecycle_status == expected_status,
            Case.is_deleted == False,  # noqa: E712
        )
        if flag_field is not None:
            column = getattr(Case, flag_field)
            query = query.filter(
                column.is_(None),
                Case.approval_status == ApprovalStatus.approved,
            )
            values[flag_field] = now

        return int(query.update(values, synchronize_session=False) or 0)

    def apply_statement_timeout(self, db: Session, seconds: float) -> None:
        """
        Bound every statement in the current transaction. PostgreSQL only;
        SQLite relies on the connect-time busy timeout.
        """
        bind = db.get_bind()
        if bind.dialect.name != "postgresql":
            return
        db.execute(
            text("SELECT set_config('statement_timeout', :ms, true)"),
            {"ms": str(max(1, int(seconds * 1000)))},
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_case(self, db: Session, case_id: UUID) -> Optional[Case]:
        """Freshly loaded, non-deleted case. Always re-reads the row."""
        return (
            db.query(Case)
            .populate_existing()
            .filter(Case.id == case_id, Case.is_deleted == False)  # noqa: E712
            .first()
        )

    def list_cases(self, db: Session, owner_id: Optional[UUID] = None) -> List[Case]:
        query = db.query(Case).filter(Case.is_deleted == False)  # noqa: E712
        if owner_id is not None:
            query = query.filter(Case.owner_id == owner_id)
        return query.order_by(Case.scheduled_instant_utc.asc().nullslast(), Case.created_at.desc()).all()

    def list_expired_cases(self, db: Session, now: Optional[datetime] = None) -> List[Case]:
        """Cases whose trial time passed while still awaiting trial."""
        now = now or utcnow()
        return (
            db.query(Case)
            .filter(
                Case.lifecycle_status == LifecycleStatus.awaiting_trial,
                Case.is_deleted == False,  # noqa: E712
                Case.scheduled_instant_utc.isnot(None),
                Case.scheduled_instant_utc <= now,
            )
            .order_by(Case.scheduled_instant_utc.asc())
            .all()
        )

    def get_participation_state(
        self, db: Session, case_id: UUID, juror_id: UUID
    ) -> Optional[ParticipationState]:
        row = (
            db.query(JurorApplication)
            .populate_existing()
            .filter(JurorApplication.case_id == case_id, JurorApplication.juror_id == juror_id)
            .first()
        )
        return row.state if row else None

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------
    def create_case(
        self,
        db: Session,
        owner: User,
        title: str,
        schedule: Optional[NormalizedSchedule] = None,
        timezone_name: Optional[str] = None,
    ) -> Case:
        case = Case(
            owner_id=owner.id,
            title=title,
            approval_status=ApprovalStatus.pending,
            lifecycle_status=LifecycleStatus.drafting,
        )
        if schedule is not None:
            self._write_schedule(case, schedule, timezone_name)
        db.add(case)
        db.flush()
        logger.info("Case created: %s (owner=%s)", case.id, owner.id)
        return case

    def set_schedule(
        self,
        db: Session,
        case: Case,
        schedule: NormalizedSchedule,
        timezone_name: Optional[str] = None,
        actor_id: Optional[UUID] = None,
    ) -> Case:
        """
        Write a new schedule. Allowed up to awaiting_trial; after the war room has
        opened the instant is frozen.

        The columns are written with one conditional UPDATE on the status. If a
        scheduler process opened the war room after our read, no row matches and
        the reschedule is refused.
        """
        status = LifecycleStatus(case.lifecycle_status)
        if status not in RESCHEDULABLE_STATUSES:
            raise ScheduleLockedError(status.value)

        values = self._schedule_values(schedule, timezone_name)
        values["updated_at"] = utcnow()
        rows = (
            db.query(Case)
            .filter(
                Case.id == case.id,
                Case.lifecycle_status.in_(RESCHEDULABLE_STATUSES),
                Case.is_deleted == False,  # noqa: E712
            )
            .update(values, synchronize_session=False)
        )
        db.refresh(case)
        if not rows:
            logger.info("Reschedule of case %s refused: status is now %s", case.id, case.lifecycle_status)
            raise ScheduleLockedError(LifecycleStatus(case.lifecycle_status).value)

        # Countdown bookkeeping belongs to the previous date
        db.query(CaseCountdownReminder).filter(
            CaseCountdownReminder.case_id == case.id
        ).delete(synchronize_session=False)

        self._promote_if_ready(db, case, actor_id)
        db.flush()
        logger.info(
            "Case %s scheduled for %s UTC (offset=%s)",
            case.id, case.scheduled_instant_utc.isoformat(), case.timezone_offset_minutes,
        )
        return case

    def soft_delete(self, db: Session, case: Case, now: Optional[datetime] = None) -> Case:
        status = LifecycleStatus(case.lifecycle_status)
        if not status.precedes(LifecycleStatus.join_trial):
            raise InvalidTransitionError(
                "Cannot delete a case once the trial has started", status.value
            )
        case.is_deleted = True
        case.deleted_at = now or utcnow()
        db.flush()
        logger.info("Case %s soft-deleted", case.id)
        return case

    def apply_as_juror(self, db: Session, case: Case, juror: User) -> JurorApplication:
        existing = (
            db.query(JurorApplication)
            .filter(JurorApplication.case_id == case.id, JurorApplication.juror_id == juror.id)
            .first()
        )
        if existing:
            return existing

        application = JurorApplication(case_id=case.id, juror_id=juror.id, state=ParticipationState.applied)
        try:
            db.add(application)
            db.commit()
        except IntegrityError:
            # Double submit from two tabs; first writer wins
            db.rollback()
            logger.debug("juror_application_duplicate case=%s juror=%s", case.id, juror.id)
            return (
                db.query(JurorApplication)
                .filter(JurorApplication.case_id == case.id, JurorApplication.juror_id == juror.id)
                .one()
            )
        db.refresh(application)
        return application

    # ------------------------------------------------------------------
    # Administrative operations (outside scheduler authority)
    # ------------------------------------------------------------------
    def decide_approval(
        self,
        db: Session,
        case: Case,
        decision: ApprovalStatus,
        admin_id: UUID,
        comments: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Case:
        if decision == ApprovalStatus.pending:
            raise InvalidTransitionError("Approval decision must be approved or rejected")

        now = now or utcnow()
        case.approval_status = decision
        if comments is not None:
            case.admin_comments = comments.strip() or None
        if decision == ApprovalStatus.approved:
            case.approved_at = now
            case.approved_by = admin_id
            self._promote_if_ready(db, case, admin_id)
        db.flush()
        logger.info("Case %s %s by admin %s", case.id, decision.value, admin_id)
        return case

    def decide_juror_application(
        self,
        db: Session,
        case: Case,
        juror_id: UUID,
        state: ParticipationState,
        admin_id: UUID,
        now: Optional[datetime] = None,
    ) -> Optional[JurorApplication]:
        application = (
            db.query(JurorApplication)
            .filter(JurorApplication.case_id == case.id, JurorApplication.juror_id == juror_id)
            .first()
        )
        if application is None:
            return None
        application.state = state
        application.decided_at = now or utcnow()
        application.decided_by = admin_id
        db.flush()
        return application

    def record_verdict(
        self,
        db: Session,
        case_id: UUID,
        summary: Optional[str],
        actor_id: Optional[UUID],
        now: Optional[datetime] = None,
    ) -> int:
        """join_trial -> view_details, conditional on the case still being live."""
        now = now or utcnow()
        updated = (
            db.query(Case)
            .filter(
                Case.id == case_id,
                Case.lifecycle_status == LifecycleStatus.join_trial,
                Case.is_deleted == False,  # noqa: E712
            )
            .update(
                {
                    "lifecycle_status": LifecycleStatus.view_details,
                    "verdict_summary": summary,
                    "verdict_recorded_at": now,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        if updated:
            self._audit(
                db, case_id, LifecycleStatus.join_trial, LifecycleStatus.view_details,
                StatusChangeSource.verdict, actor_id, None,
            )
        return int(updated or 0)

    def override_status(
        self,
        db: Session,
        case: Case,
        new_status: LifecycleStatus,
        admin_id: UUID,
        reason: str,
    ) -> Case:
        """
        Administrative override: any direction, always audited. One-time effect
        flags are kept, so an effect already performed is never performed again.
        """
        if not reason or not reason.strip():
            raise InvalidTransitionError("An override reason is required")
        old_status = LifecycleStatus(case.lifecycle_status)
        if old_status == new_status:
            raise InvalidTransitionError(f"Case is already {new_status.value}", old_status.value)

        case.lifecycle_status = new_status
        self._audit(
            db, case.id, old_status, new_status,
            StatusChangeSource.admin_override, admin_id, reason.strip(),
        )
        db.flush()
        logger.info(
            "Admin override on case %s: %s -> %s by %s (%s)",
            case.id, old_status.value, new_status.value, admin_id, reason.strip(),
        )
        return case

    def close_retained_cases(
        self,
        db: Session,
        retention_days: int,
        now: Optional[datetime] = None,
    ) -> int:
        """
        view_details -> closed for verdicts older than the retention window,
        one conditional row update at a time.
        """
        now = now or utcnow()
        cutoff = now - timedelta(days=max(1, int(retention_days)))
        candidate_ids = [
            row.id
            for row in db.query(Case.id).filter(
                Case.lifecycle_status == LifecycleStatus.view_details,
                Case.is_deleted == False,  # noqa: E712
                Case.verdict_recorded_at.isnot(None),
                Case.verdict_recorded_at < cutoff,
            )
        ]

        closed = 0
        for case_id in candidate_ids:
            updated = (
                db.query(Case)
                .filter(Case.id == case_id, Case.lifecycle_status == LifecycleStatus.view_details)
                .update(
                    {"lifecycle_status": LifecycleStatus.closed, "closed_at": now, "updated_at": now},
                    synchronize_session=False,
                )
            )
            if updated:
                self._audit(
                    db, case_id, LifecycleStatus.view_details, LifecycleStatus.closed,
                    StatusChangeSource.retention, None, f"verdict older than {retention_days} days",
                )
                closed += 1
        return closed

    # ------------------------------------------------------------------
    # Countdown reminders
    # ------------------------------------------------------------------
    def query_countdown_candidates(
        self, db: Session, now: datetime, max_days: int
    ) -> List[Case]:
        return (
            db.query(Case)
            .filter(
                Case.lifecycle_status.in_(list(SCHEDULABLE_STATUSES)),
                Case.approval_status == ApprovalStatus.approved,
                Case.is_deleted == False,  # noqa: E712
                Case.scheduled_instant_utc.isnot(None),
                Case.scheduled_instant_utc > now,
                Case.scheduled_instant_utc <= now + timedelta(days=max_days),
            )
            .all()
        )

    def claim_countdown_reminder(
        self, db: Session, case_id: UUID, days_before: int, now: Optional[datetime] = None
    ) -> bool:
        """
        Insert-as-claim, committed immediately. False if another worker
        already sent this reminder.
        """
        try:
            db.add(CaseCountdownReminder(case_id=case_id, days_before=days_before, sent_at=now or utcnow()))
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.debug("countdown_reminder_claim_lost case=%s days=%s", case_id, days_before)
            return False
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @staticmethod
    def _schedule_values(schedule: NormalizedSchedule, timezone_name: Optional[str]) -> dict:
        return {
            "scheduled_date_local": schedule.local_date,
            "scheduled_time_local": schedule.local_time,
            "timezone_offset_minutes": schedule.offset_minutes,
            "timezone_name": (timezone_name or "").strip() or None,
            "scheduled_instant_utc": schedule.instant_utc_naive,
        }

    def _write_schedule(self, case: Case, schedule: NormalizedSchedule, timezone_name: Optional[str]) -> None:
        for field, value in self._schedule_values(schedule, timezone_name).items():
            setattr(case, field, value)

    def _promote_if_ready(self, db: Session, case: Case, actor_id: Optional[UUID]) -> None:
        if (
            LifecycleStatus(case.lifecycle_status) == LifecycleStatus.drafting
            and ApprovalStatus(case.approval_status) == ApprovalStatus.approved
            and case.scheduled_instant_utc is not None
        ):
            case.lifecycle_status = LifecycleStatus.awaiting_trial
            self._audit(
                db, case.id, LifecycleStatus.drafting, LifecycleStatus.awaiting_trial,
                StatusChangeSource.promotion, actor_id, None,
            )

    @staticmethod
    def _audit(
        db: Session,
        case_id: UUID,
        from_status: LifecycleStatus,
        to_status: LifecycleStatus,
        source: StatusChangeSource,
        actor_id: Optional[UUID],
        reason: Optional[str],
    ) -> None:
        db.add(CaseStatusAudit(
            case_id=case_id,
            from_status=from_status,
            to_status=to_status,
            source=source,
            actor_id=actor_id,
            reason=reason,
        ))


case_store = CaseStore()
