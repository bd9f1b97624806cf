"""
services/access_gate.py

Request-time authorization for trial routes (war room, live session, verdict).

Rules, first match wins:
  1. admin                          -> allow (logged)
  2. case not approved              -> CASE_NOT_APPROVED
  3. status not valid for action    -> STAGE_NOT_ACTIVE (current + allowed statuses attached)
  4. attorney not owner /
     juror not approved for case    -> ACCESS_DENIED

The gate only reads. It re-fetches the case and the juror's participation on
every call and never changes lifecycle state.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

from sqlalchemy.orm import Session

from app.db.models import (
    ApprovalStatus,
    Case,
    LifecycleStatus,
    ParticipationState,
    User,
    UserRole,
)
from app.services.case_store import CaseStore, case_store
from app.utils.exceptions import AccessDeniedError, CaseNotFoundError

logger = logging.getLogger(__name__)


class AccessAction(str, enum.Enum):
    join_war_room = "join_war_room"
    join_trial = "join_trial"
    view_verdict = "view_verdict"


ACTION_ALLOWED_STATUSES: Dict[AccessAction, FrozenSet[LifecycleStatus]] = {
    AccessAction.join_war_room: frozenset({LifecycleStatus.war_room, LifecycleStatus.join_trial}),
    AccessAction.join_trial: frozenset({LifecycleStatus.join_trial}),
    AccessAction.view_verdict: frozenset({LifecycleStatus.view_details}),
}

# Reason codes
CASE_NOT_APPROVED = "CASE_NOT_APPROVED"
STAGE_NOT_ACTIVE = "STAGE_NOT_ACTIVE"
ACCESS_DENIED = "ACCESS_DENIED"

_STAGE_MESSAGES = {
    AccessAction.join_war_room: "War room is not open for this case",
    AccessAction.join_trial: "Trial session is not active",
    AccessAction.view_verdict: "Verdict is not available yet",
}


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    current_status: Optional[LifecycleStatus] = None
    allowed_statuses: Tuple[LifecycleStatus, ...] = ()

    def raise_if_denied(self) -> None:
        if self.allowed:
            return
        raise AccessDeniedError(
            code=self.reason,
            message=self.message,
            current_status=self.current_status.value if self.current_status else None,
            allowed_statuses=[s.value for s in self.allowed_statuses] if self.allowed_statuses else None,
        )


def _ordered(statuses) -> Tuple[LifecycleStatus, ...]:
    return tuple(sorted(statuses, key=lambda s: s.rank))


def evaluate_access(
    user: User,
    case: Case,
    action: AccessAction,
    participation: Optional[ParticipationState] = None,
) -> AccessDecision:
    """Pure rule evaluation. `participation` is the juror's state for this case."""
    status = LifecycleStatus(case.lifecycle_status)
    role = UserRole(user.role)

    if role == UserRole.admin:
        return AccessDecision(allowed=True, current_status=status)

    if ApprovalStatus(case.approval_status) != ApprovalStatus.approved:
        return AccessDecision(
            allowed=False,
            reason=CASE_NOT_APPROVED,
            message="Case has not been approved by an administrator",
            current_status=status,
        )

    allowed_statuses = ACTION_ALLOWED_STATUSES[action]
    if status not in allowed_statuses:
        return AccessDecision(
            allowed=False,
            reason=STAGE_NOT_ACTIVE,
            message=_STAGE_MESSAGES[action],
            current_status=status,
            allowed_statuses=_ordered(allowed_statuses),
        )

    if role == UserRole.attorney and case.owner_id == user.id:
        return AccessDecision(allowed=True, current_status=status)
    if role == UserRole.juror and participation == ParticipationState.approved:
        return AccessDecision(allowed=True, current_status=status)

    return AccessDecision(
        allowed=False,
        reason=ACCESS_DENIED,
        message="You are not a participant in this case",
        current_status=status,
    )


class AccessGate:
    """Per-request gate bound to the request's session."""

    def __init__(self, db: Session, store: CaseStore = case_store):
        self.db = db
        self.store = store

    def check(self, user: User, case_id, action: AccessAction) -> Tuple[Optional[Case], AccessDecision]:
        case = self.store.get_case(self.db, case_id)
        if case is None:
            return None, AccessDecision(allowed=False, reason=ACCESS_DENIED, message="Case not found")

        participation = None
        if UserRole(user.role) == UserRole.juror:
            participation = self.store.get_participation_state(self.db, case.id, user.id)

        decision = evaluate_access(user, case, action, participation)
        if decision.allowed and UserRole(user.role) == UserRole.admin:
            logger.info(
                "Admin %s bypassed access gate: case=%s action=%s status=%s",
                user.id, case.id, action.value, decision.current_status.value,
            )
        elif not decision.allowed:
            logger.info(
                "Access denied: user=%s case=%s action=%s reason=%s status=%s",
                user.id, case.id, action.value, decision.reason,
                decision.current_status.value if decision.current_status else None,
            )
        return case, decision

    def authorize(self, user: User, case_id, action: AccessAction) -> Case:
        """Return the freshly loaded case, or raise CaseNotFoundError / AccessDeniedError."""
        case, decision = self.check(user, case_id, action)
        if case is None:
            raise CaseNotFoundError(str(case_id))
        decision.raise_if_denied()
        return case
