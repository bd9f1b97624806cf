"""
Protected trial routes. Every route runs the access gate first; the route body
only sees a case the caller is allowed to act on.
"""
from fastapi import APIRouter, Depends

from app.db.models import Case
from app.db.schemas import TrialAccessResponse, VerdictResponse
from app.api.v1.deps import require_access
from app.services.access_gate import AccessAction

router = APIRouter()


def _access_payload(case: Case) -> dict:
    return {
        "case_id": case.id,
        "title": case.title,
        "lifecycle_status": case.lifecycle_status,
        "scheduled_instant_utc": case.scheduled_instant_utc,
        "war_room_opened_at": case.war_room_opened_at,
    }


@router.get("/{case_id}/war-room", response_model=TrialAccessResponse)
def join_war_room(case: Case = Depends(require_access(AccessAction.join_war_room))):
    return _access_payload(case)


@router.get("/{case_id}/session", response_model=TrialAccessResponse)
def join_trial(case: Case = Depends(require_access(AccessAction.join_trial))):
    return _access_payload(case)


@router.get("/{case_id}/verdict", response_model=VerdictResponse)
def view_verdict(case: Case = Depends(require_access(AccessAction.view_verdict))):
    return {
        "case_id": case.id,
        "title": case.title,
        "lifecycle_status": case.lifecycle_status,
        "verdict_summary": case.verdict_summary,
        "verdict_recorded_at": case.verdict_recorded_at,
    }
