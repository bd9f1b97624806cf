"""
services/case_state_machine.py

Pure decision logic for the trial lifecycle. No I/O, no clock: callers pass `now`.

Transition table (thresholds relative to the case's scheduled UTC instant):

    awaiting_trial  approved, now >= instant - 60m, war room never opened  -> war_room   + open war room
    awaiting_trial  approved, now >= instant - 30m, reminder never sent     -> (stay)     + send reminder
    war_room        approved, now >= instant - 30m, reminder never sent     -> (stay)     + send reminder
    war_room        now >= instant                                          -> join_trial

Thresholds are "now >= X" rather than "crossed X since the last tick", so a case
approved late catches up in a single evaluation. A case still in awaiting_trial
once the instant has passed is reported as expired and left alone.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import FrozenSet, List, Optional

from app.db.models import (
    ApprovalStatus,
    EventKind,
    LifecycleStatus,
    SCHEDULABLE_STATUSES,
)
from app.utils.exceptions import MalformedCaseError
from app.utils.helpers import to_naive_utc


class Effect(str, enum.Enum):
    """One-time side effects the scheduler must perform exactly once"""
    open_war_room = "open_war_room"
    send_reminder = "send_reminder"


# Flag column each effect stamps, and the event it raises
EFFECT_FLAGS = {
    Effect.open_war_room: "war_room_opened_at",
    Effect.send_reminder: "reminders_sent_at",
}
EFFECT_EVENTS = {
    Effect.open_war_room: EventKind.war_room_opened,
    Effect.send_reminder: EventKind.reminder_due,
}


@dataclass(frozen=True)
class TransitionPolicy:
    war_room_offset: timedelta = timedelta(minutes=60)
    reminder_offset: timedelta = timedelta(minutes=30)

    @classmethod
    def from_settings(cls, settings) -> "TransitionPolicy":
        return cls(
            war_room_offset=timedelta(minutes=settings.WAR_ROOM_OPEN_OFFSET_MINUTES),
            reminder_offset=timedelta(minutes=settings.TRIAL_REMINDER_OFFSET_MINUTES),
        )


DEFAULT_POLICY = TransitionPolicy()


@dataclass(frozen=True)
class ClaimStep:
    """
    One conditional write: move `expected_status` -> `new_status` and stamp
    `flag_field` (if any) only if the row still matches.
    """
    expected_status: LifecycleStatus
    new_status: LifecycleStatus
    flag_field: Optional[str]
    event: Optional[EventKind]


@dataclass(frozen=True)
class Decision:
    current_status: LifecycleStatus
    next_status: Optional[LifecycleStatus] = None
    effects: FrozenSet[Effect] = field(default_factory=frozenset)
    expired: bool = False

    @property
    def is_noop(self) -> bool:
        return self.next_status is None and not self.effects

    def claim_steps(self) -> List[ClaimStep]:
        """
        Ordered conditional writes that realise this decision. Each step expects
        the status left behind by the previous one.
        """
        steps: List[ClaimStep] = []
        status = self.current_status

        if Effect.open_war_room in self.effects:
            steps.append(ClaimStep(
                expected_status=status,
                new_status=LifecycleStatus.war_room,
                flag_field=EFFECT_FLAGS[Effect.open_war_room],
                event=EFFECT_EVENTS[Effect.open_war_room],
            ))
            status = LifecycleStatus.war_room

        if Effect.send_reminder in self.effects:
            steps.append(ClaimStep(
                expected_status=status,
                new_status=status,
                flag_field=EFFECT_FLAGS[Effect.send_reminder],
                event=EFFECT_EVENTS[Effect.send_reminder],
            ))

        if self.next_status is not None and self.next_status != status:
            steps.append(ClaimStep(
                expected_status=status,
                new_status=self.next_status,
                flag_field=None,
                event=None,
            ))

        return steps


def evaluate(case, now: datetime, policy: TransitionPolicy = DEFAULT_POLICY) -> Decision:
    """
    Decide the next status and one-time effects for `case` at `now`.

    `case` is anything exposing the Case columns (ORM row or a plain object).
    Deterministic: the same (case, now) always yields the same Decision.
    """
    status = LifecycleStatus(case.lifecycle_status)
    if status not in SCHEDULABLE_STATUSES:
        return Decision(current_status=status)

    if case.scheduled_instant_utc is None:
        raise MalformedCaseError(case.id, f"{status.value} case has no scheduled instant")

    now = to_naive_utc(now)
    instant = to_naive_utc(case.scheduled_instant_utc)
    approved = ApprovalStatus(case.approval_status) == ApprovalStatus.approved
    reminder_due = (
        approved
        and now >= instant - policy.reminder_offset
        and case.reminders_sent_at is None
    )

    if status == LifecycleStatus.awaiting_trial:
        if now >= instant:
            # Missed trial: surfaced to admins, never force-advanced
            return Decision(current_status=status, expired=True)
        if not approved:
            return Decision(current_status=status)

        effects = set()
        next_status = None
        if now >= instant - policy.war_room_offset and case.war_room_opened_at is None:
            effects.add(Effect.open_war_room)
            next_status = LifecycleStatus.war_room
        if reminder_due:
            effects.add(Effect.send_reminder)
        return Decision(current_status=status, next_status=next_status, effects=frozenset(effects))

    # war_room
    effects = {Effect.send_reminder} if reminder_due else set()
    next_status = LifecycleStatus.join_trial if now >= instant else None
    return Decision(current_status=status, next_status=next_status, effects=frozenset(effects))
