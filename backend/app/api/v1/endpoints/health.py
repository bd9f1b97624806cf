"""
Health and readiness checks: database connectivity and scheduler status.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logger import logger
from app.db.database import get_db

router = APIRouter()


def _check_database(db: Session) -> tuple[str, str]:
    """Returns (status, detail). Status is 'ok' or 'error'."""
    try:
        db.execute(text("SELECT 1"))
        return "ok", "Database reachable"
    except Exception as e:
        logger.exception("Database check failed")
        return "error", f"Database: {str(e)}"


@router.get("")
def health(db: Session = Depends(get_db)):
    db_status, db_detail = _check_database(db)
    return {
        "status": "healthy" if db_status == "ok" else "degraded",
        "database": {"status": db_status, "detail": db_detail},
    }


@router.get("/scheduler")
def scheduler_status(request: Request):
    """Transition scheduler state: running, processing, interval, offsets, last tick."""
    scheduler = getattr(request.app.state, "trial_scheduler", None)
    if scheduler is None:
        return {
            "enabled": settings.TRIAL_SCHEDULER_ENABLED,
            "running": False,
            "processing": False,
            "interval_seconds": settings.TRIAL_SCHEDULER_INTERVAL_SECONDS,
            "war_room_offset_minutes": settings.WAR_ROOM_OPEN_OFFSET_MINUTES,
            "reminder_offset_minutes": settings.TRIAL_REMINDER_OFFSET_MINUTES,
            "lookback_hours": settings.TRIAL_SCHEDULER_LOOKBACK_HOURS,
            "last_tick": None,
        }
    return {"enabled": True, **scheduler.status()}
