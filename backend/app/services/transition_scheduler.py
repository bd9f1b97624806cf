"""
services/transition_scheduler.py

Trial transition scheduler.

Every tick:
  1. Load non-deleted cases in awaiting_trial / war_room whose scheduled
     instant lies in [now - lookback, now + war room offset].
  2. Evaluate each case with case_state_machine.evaluate().
  3. Apply each due step as one conditional UPDATE, committed on its own.
     Row count 1 = CLAIMED -> fire the notification event.
     Row count 0 = LOST    -> another instance (or an earlier tick) got there first.

Several worker processes may run this side by side. The conditional UPDATE is
the only arbitration between them; nothing here takes a lock across processes.

Cases are processed one after another. A store failure or a malformed row is
logged and counted, and the tick moves on to the next case. The failed case is
simply re-evaluated on the next tick.

Usage (FastAPI lifespan):

    scheduler = TransitionScheduler.from_settings(settings, case_store, notifier, SessionLocal)
    scheduler.start()
    ...
    scheduler.stop()
"""
from __future__ import annotations

import enum
import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.models import Case, SCHEDULABLE_STATUSES
from app.services.case_state_machine import (
    ClaimStep,
    DEFAULT_POLICY,
    TransitionPolicy,
    evaluate,
)
from app.services.case_store import CaseStore
from app.services.notification_service import NotificationTrigger
from app.utils.exceptions import MalformedCaseError, StoreUnavailableError
from app.utils.helpers import isoformat_utc, to_naive_utc, utcnow

logger = logging.getLogger(__name__)

JOB_ID = "trial_transition_tick"


class ClaimOutcome(str, enum.Enum):
    CLAIMED = "claimed"
    LOST = "lost"


@dataclass
class TickSummary:
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    candidates: int = 0
    claimed: int = 0
    lost: int = 0
    events_fired: int = 0
    notify_failed: int = 0
    expired: int = 0
    malformed: int = 0
    store_failures: int = 0
    skipped: bool = False

    def as_dict(self) -> dict:
        data = asdict(self)
        data["started_at"] = isoformat_utc(self.started_at)
        data["finished_at"] = isoformat_utc(self.finished_at)
        return data


class TransitionScheduler:
    """
    Owns its APScheduler instance and the "tick in progress" guard.
    Store, notifier and session factory are injected.
    """

    def __init__(
        self,
        store: CaseStore,
        notifier: NotificationTrigger,
        session_factory: Callable[[], Session],
        policy: TransitionPolicy = DEFAULT_POLICY,
        interval_seconds: int = 30,
        lookback: timedelta = timedelta(hours=24),
        db_timeout_seconds: float = 5.0,
        scheduler_factory: Callable[[], object] = AsyncIOScheduler,
    ):
        self._store = store
        self._notifier = notifier
        self._session_factory = session_factory
        self.policy = policy
        self.interval_seconds = interval_seconds
        self.lookback = lookback
        self.db_timeout_seconds = db_timeout_seconds
        self._scheduler_factory = scheduler_factory

        self._scheduler = None
        self._tick_lock = threading.Lock()
        self._last_summary: Optional[TickSummary] = None

    @classmethod
    def from_settings(
        cls,
        settings,
        store: CaseStore,
        notifier: NotificationTrigger,
        session_factory: Callable[[], Session],
        scheduler_factory: Callable[[], object] = AsyncIOScheduler,
    ) -> "TransitionScheduler":
        return cls(
            store=store,
            notifier=notifier,
            session_factory=session_factory,
            policy=TransitionPolicy.from_settings(settings),
            interval_seconds=settings.TRIAL_SCHEDULER_INTERVAL_SECONDS,
            lookback=timedelta(hours=settings.TRIAL_SCHEDULER_LOOKBACK_HOURS),
            db_timeout_seconds=settings.TRIAL_SCHEDULER_DB_TIMEOUT_SECONDS,
            scheduler_factory=scheduler_factory,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        if self.running:
            logger.warning("Trial scheduler already running")
            return

        self._scheduler = self._scheduler_factory(timezone=timezone.utc)
        self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds, timezone=timezone.utc),
            id=JOB_ID,
            name="Trial lifecycle transitions",
            replace_existing=True,
            max_instances=1,          # a slow tick delays the next one
            coalesce=True,
            misfire_grace_time=self.interval_seconds,
            next_run_time=datetime.now(timezone.utc),  # first tick right away
        )
        logger.info(
            "Trial scheduler starting: interval=%ss war_room_offset=%s reminder_offset=%s",
            self.interval_seconds, self.policy.war_room_offset, self.policy.reminder_offset,
        )
        self._scheduler.start()

    def stop(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Trial scheduler stopped")
        self._scheduler = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def processing(self) -> bool:
        return self._tick_lock.locked()

    def status(self) -> dict:
        return {
            "running": self.running,
            "processing": self.processing,
            "interval_seconds": self.interval_seconds,
            "war_room_offset_minutes": int(self.policy.war_room_offset.total_seconds() // 60),
            "reminder_offset_minutes": int(self.policy.reminder_offset.total_seconds() // 60),
            "lookback_hours": int(self.lookback.total_seconds() // 3600),
            "last_tick": self._last_summary.as_dict() if self._last_summary else None,
        }

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------
    def tick(self, now: Optional[datetime] = None) -> TickSummary:
        """
        Run one pass over the candidate cases. Never raises.
        Returns a summary with skipped=True if a pass is already in progress.
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.debug("Trial scheduler tick skipped: previous tick still running")
            return TickSummary(skipped=True)

        now = to_naive_utc(now) if now is not None else utcnow()
        summary = TickSummary(started_at=now)
        db = None
        try:
            db = self._session_factory()
            try:
                candidates = self.load_candidates(db, now)
            except StoreUnavailableError as e:
                summary.store_failures += 1
                logger.warning("Trial scheduler: candidate query failed: %s", e)
                return summary

            summary.candidates = len(candidates)
            for case in candidates:
                try:
                    self.process_case(db, case, now, summary)
                except MalformedCaseError as e:
                    db.rollback()
                    summary.malformed += 1
                    logger.warning("Trial scheduler: skipping case %s: %s", e.case_id, e.reason)
                except StoreUnavailableError as e:
                    summary.store_failures += 1
                    logger.warning("Trial scheduler: store failure, case skipped until next tick: %s", e)
                except Exception as e:
                    db.rollback()
                    summary.malformed += 1
                    logger.warning(
                        "Trial scheduler: skipping case %s after unexpected error: %r",
                        getattr(case, "id", None), e,
                    )

        except Exception as e:
            logger.exception("Trial scheduler tick failed: %s", e)

        finally:
            if db is not None:
                db.close()
            summary.finished_at = utcnow()
            self._last_summary = summary
            self._tick_lock.release()
            self._log_summary(summary)

        return summary

    def load_candidates(self, db: Session, now: datetime) -> List[Case]:
        window_start = now - self.lookback
        window_end = now + max(self.policy.war_room_offset, self.policy.reminder_offset)
        try:
            self._store.apply_statement_timeout(db, self.db_timeout_seconds)
            return self._store.query_cases_for_scheduling(
                db, SCHEDULABLE_STATUSES, window_start, window_end
            )
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreUnavailableError(str(e)) from e

    def process_case(
        self,
        db: Session,
        case: Case,
        now: datetime,
        summary: Optional[TickSummary] = None,
    ) -> List[ClaimOutcome]:
        """
        Evaluate one case and apply its due steps in order. Stops at the first
        lost claim: the row no longer looks the way this decision assumed.
        """
        summary = summary if summary is not None else TickSummary()
        try:
            case_id = case.id
            decision = evaluate(case, now, self.policy)
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreUnavailableError(str(e)) from e

        if decision.expired:
            summary.expired += 1
            logger.debug("Case %s missed its trial while awaiting_trial; left for admin review", case_id)
            return []

        outcomes: List[ClaimOutcome] = []
        for step in decision.claim_steps():
            outcome = self.claim(db, case_id, step, now)
            outcomes.append(outcome)

            if outcome is ClaimOutcome.LOST:
                summary.lost += 1
                logger.debug(
                    "claim_lost case=%s %s->%s flag=%s",
                    case_id, step.expected_status.value, step.new_status.value, step.flag_field,
                )
                break

            summary.claimed += 1
            logger.info(
                "Case %s: %s -> %s%s",
                case_id, step.expected_status.value, step.new_status.value,
                f" ({step.flag_field} set)" if step.flag_field else "",
            )
            if step.event is not None:
                self._fire(case_id, step, now, summary)

        return outcomes

    def claim(self, db: Session, case_id, step: ClaimStep, now: datetime) -> ClaimOutcome:
        """One conditional write in its own short transaction."""
        try:
            self._store.apply_statement_timeout(db, self.db_timeout_seconds)
            rows = self._store.conditional_advance(
                db,
                case_id,
                expected_status=step.expected_status,
                new_status=step.new_status,
                flag_field=step.flag_field,
                now=now,
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreUnavailableError(f"conditional advance failed for case {case_id}: {e}") from e

        return ClaimOutcome.CLAIMED if rows == 1 else ClaimOutcome.LOST

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _fire(self, case_id, step: ClaimStep, now: datetime, summary: TickSummary) -> None:
        # The claim is already committed; a failed notification is not retried
        try:
            self._notifier.fire_event(case_id, step.event, status=step.new_status, fired_at=now)
            summary.events_fired += 1
        except Exception as e:
            summary.notify_failed += 1
            logger.warning("fire_event %s failed for case %s: %s", step.event.value, case_id, e)

    @staticmethod
    def _log_summary(summary: TickSummary) -> None:
        if summary.skipped:
            return
        level = logging.INFO if (summary.claimed or summary.store_failures or summary.malformed) else logging.DEBUG
        logger.log(
            level,
            "Trial scheduler tick done. candidates=%d claimed=%d lost=%d events=%d "
            "expired=%d malformed=%d store_failures=%d notify_failed=%d",
            summary.candidates, summary.claimed, summary.lost, summary.events_fired,
            summary.expired, summary.malformed, summary.store_failures, summary.notify_failed,
        )
