"""
Case management endpoints (attorney intake, scheduling, juror applications)
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from uuid import UUID

from app.core.config import settings
from app.core.logger import logger
from app.db.database import get_db
from app.db.models import ApprovalStatus, Case, LifecycleStatus, User, UserRole
from app.db.schemas import (
    CaseCreate,
    CaseListResponse,
    CaseResponse,
    JurorApplicationResponse,
    ScheduleIn,
)
from app.api.v1.deps import get_current_user, get_owned_case, require_attorney, require_juror
from app.services.case_store import case_store
from app.services.time_normalizer import NormalizedSchedule, normalize_schedule
from app.utils.exceptions import CaseNotFoundError, InvalidTransitionError, UnauthorizedError

router = APIRouter()


def _normalize(body: ScheduleIn) -> NormalizedSchedule:
    return normalize_schedule(
        body.scheduled_date,
        body.scheduled_time,
        body.timezone_offset_minutes,
        require_timezone=settings.SCHEDULE_REQUIRE_TIMEZONE,
    )

# ============================================================================
# Intake
# ============================================================================

@router.post("", response_model=CaseResponse, status_code=status.HTTP_201_CREATED)
def create_case(
    body: CaseCreate,
    current_user: User = Depends(require_attorney),
    db: Session = Depends(get_db)
):
    """Create a case in drafting. A schedule may be supplied up front."""
    schedule = _normalize(body.schedule) if body.schedule else None
    case = case_store.create_case(
        db,
        owner=current_user,
        title=body.title.strip(),
        schedule=schedule,
        timezone_name=body.schedule.timezone_name if body.schedule else None,
    )
    db.commit()
    db.refresh(case)
    return case


@router.get("", response_model=CaseListResponse)
def list_cases(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Own cases for attorneys; every non-deleted case for admins."""
    role = UserRole(current_user.role)
    if role == UserRole.juror:
        raise UnauthorizedError("Jurors cannot list cases")
    owner_id = None if role == UserRole.admin else current_user.id
    cases = case_store.list_cases(db, owner_id=owner_id)
    return {"cases": cases, "total": len(cases)}


@router.get("/{case_id}", response_model=CaseResponse)
def get_case(case: Case = Depends(get_owned_case)):
    return case

# ============================================================================
# Schedule
# ============================================================================

@router.put("/{case_id}/schedule", response_model=CaseResponse)
def set_schedule(
    body: ScheduleIn,
    case: Case = Depends(get_owned_case),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Set or change the trial schedule. The UTC instant is computed here, once,
    from the submitted offset and stored alongside the local values.
    """
    schedule = _normalize(body)
    case_store.set_schedule(db, case, schedule, body.timezone_name, actor_id=current_user.id)
    db.commit()
    db.refresh(case)
    return case

# ============================================================================
# Delete (soft)
# ============================================================================

@router.delete("/{case_id}")
def delete_case(
    case: Case = Depends(get_owned_case),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if case.owner_id != current_user.id:
        raise UnauthorizedError("Only the owning attorney can delete a case")
    case_store.soft_delete(db, case)
    db.commit()
    return {"success": True, "message": "Case deleted"}

# ============================================================================
# Juror applications
# ============================================================================

@router.post(
    "/{case_id}/applications",
    response_model=JurorApplicationResponse,
    status_code=status.HTTP_201_CREATED,
)
def apply_to_case(
    case_id: UUID,
    current_user: User = Depends(require_juror),
    db: Session = Depends(get_db)
):
    case = case_store.get_case(db, case_id)
    if not case or ApprovalStatus(case.approval_status) != ApprovalStatus.approved:
        raise CaseNotFoundError(str(case_id))
    current = LifecycleStatus(case.lifecycle_status)
    if not current.precedes(LifecycleStatus.join_trial):
        raise InvalidTransitionError("Applications are closed for this case", current.value)

    application = case_store.apply_as_juror(db, case, current_user)
    logger.info("Juror %s applied to case %s", current_user.id, case.id)
    return application
