"""
Standalone trial transition worker.

    python -m jobs.trial_transition_job           # run forever on the configured interval
    python -m jobs.trial_transition_job --once    # single tick, print the summary

Any number of these may run beside the API process; duplicate effects are
prevented by the conditional update in the case store.
"""
from __future__ import annotations

import argparse

from apscheduler.schedulers.blocking import BlockingScheduler

from app.core.config import settings
from app.core.logger import logger
from app.db.database import SessionLocal
from app.services.case_store import case_store
from app.services.notification_service import OutboxNotificationTrigger
from app.services.transition_scheduler import TransitionScheduler


def build_scheduler() -> TransitionScheduler:
    return TransitionScheduler.from_settings(
        settings,
        case_store,
        OutboxNotificationTrigger(SessionLocal),
        SessionLocal,
        scheduler_factory=BlockingScheduler,
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the trial lifecycle transition scheduler")
    parser.add_argument("--once", action="store_true", help="run a single tick and exit")
    args = parser.parse_args()

    scheduler = build_scheduler()
    if args.once:
        summary = scheduler.tick()
        print(summary.as_dict())
        return

    logger.info("Trial transition worker starting (interval=%ss)", scheduler.interval_seconds)
    try:
        scheduler.start()  # blocks
    except (KeyboardInterrupt, SystemExit):
        scheduler.stop()
        logger.info("Trial transition worker stopped")


if __name__ == "__main__":
    main()
