from datetime import datetime, timedelta

from app.db.database import SessionLocal
from app.db.models import (
    ApprovalStatus,
    CaseStatusAudit,
    EventKind,
    LifecycleStatus,
    NotificationEvent,
    StatusChangeSource,
)
from app.services.background_jobs import (
    close_retained_cases_job,
    countdown_day_due,
    send_trial_countdown_reminders,
)
from app.services.case_store import case_store
from app.services.notification_service import OutboxNotificationTrigger

TRIAL_AT = datetime(2030, 1, 15, 12, 0)


# ── Countdown reminders ───────────────────────────────────────────────────────

def test_countdown_day_windows():
    days = [4, 3, 2, 1]
    assert countdown_day_due(TRIAL_AT, TRIAL_AT - timedelta(days=5), days) is None
    assert countdown_day_due(TRIAL_AT, TRIAL_AT - timedelta(days=4), days) == 4
    assert countdown_day_due(TRIAL_AT, TRIAL_AT - timedelta(days=3, hours=1), days) == 4
    assert countdown_day_due(TRIAL_AT, TRIAL_AT - timedelta(days=3), days) == 3
    assert countdown_day_due(TRIAL_AT, TRIAL_AT - timedelta(hours=2), days) == 1
    assert countdown_day_due(TRIAL_AT, TRIAL_AT, days) is None


def test_countdown_reminder_sent_once_per_day(db, make_case, notifier):
    case = make_case()
    now = TRIAL_AT - timedelta(days=3, hours=6)

    first = send_trial_countdown_reminders(notifier, SessionLocal, now=now, days=[4, 3, 2, 1])
    second = send_trial_countdown_reminders(notifier, SessionLocal, now=now + timedelta(minutes=30), days=[4, 3, 2, 1])

    assert first["sent"] == 1
    assert second["sent"] == 0
    assert second["already_sent"] == 1
    ((case_id, kind, context),) = notifier.events
    assert case_id == case.id
    assert kind == EventKind.trial_countdown
    assert context["days_before"] == 4


def test_countdown_next_day_sends_next_reminder(db, make_case, notifier):
    make_case()
    send_trial_countdown_reminders(notifier, SessionLocal, now=TRIAL_AT - timedelta(days=4), days=[4, 3, 2, 1])
    send_trial_countdown_reminders(notifier, SessionLocal, now=TRIAL_AT - timedelta(days=3), days=[4, 3, 2, 1])

    assert [context["days_before"] for _, _, context in notifier.events] == [4, 3]


def test_countdown_skips_unapproved_and_deleted_cases(db, make_case, notifier):
    make_case(approval=ApprovalStatus.pending)
    make_case(is_deleted=True)
    make_case(status=LifecycleStatus.drafting)

    stats = send_trial_countdown_reminders(notifier, SessionLocal, now=TRIAL_AT - timedelta(days=1), days=[1])
    assert stats["candidates"] == 0
    assert notifier.events == []


def test_outbox_notifier_persists_event(db, make_case):
    case = make_case()
    send_trial_countdown_reminders(
        OutboxNotificationTrigger(SessionLocal), SessionLocal, now=TRIAL_AT - timedelta(hours=3), days=[1]
    )

    event = db.query(NotificationEvent).filter(NotificationEvent.case_id == case.id).one()
    assert event.event_kind == EventKind.trial_countdown
    assert event.payload["days_before"] == 1
    assert event.payload["scheduled_instant_utc"] == "2030-01-15T12:00:00"
    assert event.dispatched_at is None


# ── Retention close ───────────────────────────────────────────────────────────

def test_retention_closes_old_verdicts_only(db, make_case):
    now = datetime(2030, 3, 1, 0, 0)
    old = make_case(status=LifecycleStatus.view_details, verdict_recorded_at=now - timedelta(days=31))
    recent = make_case(status=LifecycleStatus.view_details, verdict_recorded_at=now - timedelta(days=5))
    deleted = make_case(
        status=LifecycleStatus.view_details, verdict_recorded_at=now - timedelta(days=90), is_deleted=True
    )

    assert close_retained_cases_job(SessionLocal, now=now, retention_days=30) == 1
    assert close_retained_cases_job(SessionLocal, now=now, retention_days=30) == 0

    closed = case_store.get_case(db, old.id)
    assert closed.lifecycle_status == LifecycleStatus.closed
    assert closed.closed_at == now
    assert case_store.get_case(db, recent.id).lifecycle_status == LifecycleStatus.view_details

    db.refresh(deleted)
    assert deleted.lifecycle_status == LifecycleStatus.view_details

    audit = db.query(CaseStatusAudit).filter(CaseStatusAudit.case_id == old.id).one()
    assert audit.source == StatusChangeSource.retention
