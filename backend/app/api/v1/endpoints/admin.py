"""
Administrative case workflows: approval, juror decisions, verdicts,
status overrides and the expired-case report.

None of these run through the transition scheduler. Overrides and verdicts
are written to case_status_audit.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from uuid import UUID

from app.db.database import get_db
from app.db.models import ApprovalStatus, LifecycleStatus, ParticipationState, User
from app.db.schemas import (
    ApprovalDecisionRequest,
    CaseListResponse,
    CaseResponse,
    JurorApplicationResponse,
    JurorDecisionRequest,
    StatusOverrideRequest,
    VerdictRequest,
)
from app.api.v1.deps import require_admin
from app.services.case_store import case_store
from app.utils.exceptions import CaseNotFoundError, InvalidTransitionError
from app.utils.helpers import utcnow

router = APIRouter()


def _load(db: Session, case_id: UUID):
    case = case_store.get_case(db, case_id)
    if not case:
        raise CaseNotFoundError(str(case_id))
    return case


@router.get("/cases/expired", response_model=CaseListResponse)
def list_expired_cases(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Cases whose trial time passed while they were still awaiting trial."""
    cases = case_store.list_expired_cases(db, utcnow())
    return {"cases": cases, "total": len(cases)}


@router.post("/cases/{case_id}/approval", response_model=CaseResponse)
def decide_approval(
    case_id: UUID,
    body: ApprovalDecisionRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    case = _load(db, case_id)
    case_store.decide_approval(db, case, ApprovalStatus(body.decision), admin.id, body.comments)
    db.commit()
    db.refresh(case)
    return case


@router.post("/cases/{case_id}/applications/{juror_id}", response_model=JurorApplicationResponse)
def decide_juror_application(
    case_id: UUID,
    juror_id: UUID,
    body: JurorDecisionRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    case = _load(db, case_id)
    application = case_store.decide_juror_application(
        db, case, juror_id, ParticipationState(body.decision), admin.id
    )
    if application is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "APPLICATION_NOT_FOUND", "message": "Juror has not applied to this case"},
        )
    db.commit()
    db.refresh(application)
    return application


@router.post("/cases/{case_id}/verdict", response_model=CaseResponse)
def record_verdict(
    case_id: UUID,
    body: VerdictRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """join_trial -> view_details. 409 if the trial is not live."""
    case = _load(db, case_id)
    updated = case_store.record_verdict(db, case.id, body.summary, admin.id)
    if not updated:
        db.rollback()
        raise InvalidTransitionError(
            "A verdict can only be recorded while the trial is live",
            LifecycleStatus(case.lifecycle_status).value,
        )
    db.commit()
    return case_store.get_case(db, case_id)


@router.post("/cases/{case_id}/status-override", response_model=CaseResponse)
def override_status(
    case_id: UUID,
    body: StatusOverrideRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Move a case to any status, forward or backward. Always audited."""
    case = _load(db, case_id)
    case_store.override_status(db, case, body.status, admin.id, body.reason)
    db.commit()
    db.refresh(case)
    return case
