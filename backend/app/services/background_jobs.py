"""
services/background_jobs.py

Maintenance jobs that run beside the trial transition scheduler.

Jobs:
  1. send_trial_countdown_reminders
     - For approved cases awaiting trial (or already in the war room), raises a
       TrialCountdown event N days before the trial, for each N in
       COUNTDOWN_REMINDER_DAYS (default 4, 3, 2, 1).
     - Each (case, N) is claimed by inserting a unique row, so it is sent once
       even with several workers running.
     - Runs every COUNTDOWN_REMINDER_INTERVAL_MINUTES.

  2. close_retained_cases_job
     - Moves view_details cases to closed once the verdict is older than
       CASE_RETENTION_DAYS. Nothing is hard-deleted.
     - Runs every CASE_RETENTION_INTERVAL_MINUTES.

Setup (FastAPI lifespan):

    start_scheduler(notifier)
    yield
    shutdown_scheduler()
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.database import SessionLocal
from app.db.models import EventKind
from app.services.case_store import case_store
from app.services.notification_service import NotificationTrigger, OutboxNotificationTrigger
from app.utils.helpers import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

# ── Scheduler singleton ───────────────────────────────────────────────────────
_scheduler: AsyncIOScheduler | None = None


def start_scheduler(notifier: Optional[NotificationTrigger] = None) -> Optional[AsyncIOScheduler]:
    """
    Starts the maintenance scheduler. Returns None when every job is disabled.
    Call this from FastAPI lifespan startup.
    """
    global _scheduler

    if not (settings.COUNTDOWN_REMINDERS_ENABLED or settings.CASE_RETENTION_ENABLED):
        logger.info("Maintenance scheduler not started: all jobs disabled")
        return None

    notifier = notifier or OutboxNotificationTrigger(SessionLocal)
    _scheduler = AsyncIOScheduler(timezone=timezone.utc)
    registered = 0

    if settings.COUNTDOWN_REMINDERS_ENABLED:
        _scheduler.add_job(
            send_trial_countdown_reminders,
            trigger=IntervalTrigger(minutes=settings.COUNTDOWN_REMINDER_INTERVAL_MINUTES, timezone=timezone.utc),
            kwargs={"notifier": notifier},
            id="trial_countdown_reminders",
            name="Trial countdown reminders",
            replace_existing=True,
            max_instances=1,          # never run two at once
            misfire_grace_time=300,   # allow 5 min late start
        )
        registered += 1

    if settings.CASE_RETENTION_ENABLED:
        _scheduler.add_job(
            close_retained_cases_job,
            trigger=IntervalTrigger(minutes=settings.CASE_RETENTION_INTERVAL_MINUTES, timezone=timezone.utc),
            id="case_retention_close",
            name="Close cases past retention",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=300,
        )
        registered += 1

    _scheduler.start()
    logger.info("Maintenance scheduler started - %d jobs registered", registered)
    return _scheduler


def shutdown_scheduler() -> None:
    """Gracefully shuts down the scheduler. Call from FastAPI lifespan shutdown."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Maintenance scheduler shut down")
    _scheduler = None


# ============================================================================
# Job 1: Trial countdown reminders
# ============================================================================

def countdown_day_due(instant: datetime, now: datetime, days: Iterable[int]) -> Optional[int]:
    """
    The N whose window [instant - N days, instant - (N-1) days) contains `now`,
    or None. Windows for distinct N never overlap.
    """
    for n in sorted(set(days), reverse=True):
        if instant - timedelta(days=n) <= now < instant - timedelta(days=n - 1):
            return n
    return None


def send_trial_countdown_reminders(
    notifier: Optional[NotificationTrigger] = None,
    session_factory: Callable[[], Session] = SessionLocal,
    now: Optional[datetime] = None,
    days: Optional[Iterable[int]] = None,
) -> Dict[str, int]:
    notifier = notifier or OutboxNotificationTrigger(session_factory)
    days = list(days) if days is not None else settings.countdown_reminder_days_list
    now = to_naive_utc(now) if now is not None else utcnow()
    stats = {"candidates": 0, "sent": 0, "already_sent": 0, "errors": 0}

    if not days:
        return stats

    logger.info("Job: send_trial_countdown_reminders - starting")
    db = session_factory()

    try:
        # Plain tuples: every claim commits, which would expire ORM rows
        candidates = [
            (case.id, case.scheduled_instant_utc)
            for case in case_store.query_countdown_candidates(db, now, max(days))
        ]
        stats["candidates"] = len(candidates)

        for case_id, instant in candidates:
            days_before = countdown_day_due(instant, now, days)
            if days_before is None:
                continue
            try:
                if not case_store.claim_countdown_reminder(db, case_id, days_before, now):
                    stats["already_sent"] += 1
                    continue
                notifier.fire_event(
                    case_id,
                    EventKind.trial_countdown,
                    days_before=days_before,
                    scheduled_instant_utc=instant,
                )
                stats["sent"] += 1

            except Exception as e:
                db.rollback()
                logger.warning(
                    "Countdown reminder (%s days) failed for case %s: %s", days_before, case_id, e
                )
                stats["errors"] += 1

        logger.info(
            "Job: send_trial_countdown_reminders - done. "
            "candidates=%d sent=%d already_sent=%d errors=%d",
            stats["candidates"], stats["sent"], stats["already_sent"], stats["errors"],
        )

    except Exception as e:
        logger.exception("Job: send_trial_countdown_reminders - failed: %s", e)

    finally:
        db.close()

    return stats


# ============================================================================
# Job 2: Retention close
# ============================================================================

def close_retained_cases_job(
    session_factory: Callable[[], Session] = SessionLocal,
    now: Optional[datetime] = None,
    retention_days: Optional[int] = None,
) -> int:
    retention_days = retention_days or settings.CASE_RETENTION_DAYS
    now = to_naive_utc(now) if now is not None else utcnow()
    closed = 0

    db = session_factory()
    try:
        closed = case_store.close_retained_cases(db, retention_days, now)
        db.commit()
        if closed:
            logger.info("Job: close_retained_cases - closed %d cases (retention=%d days)", closed, retention_days)

    except Exception as e:
        db.rollback()
        closed = 0
        logger.exception("Job: close_retained_cases - failed: %s", e)

    finally:
        db.close()

    return closed
