from datetime import datetime, timedelta

from app.db.models import (
    ApprovalStatus,
    CaseCountdownReminder,
    CaseStatusAudit,
    LifecycleStatus,
    ParticipationState,
    StatusChangeSource,
    UserRole,
)
from app.services.case_store import case_store

TRIAL_AT = datetime(2030, 1, 15, 12, 0)


# ── Intake & scheduling ───────────────────────────────────────────────────────

def test_create_case_normalizes_schedule(client, make_user, auth_headers):
    attorney = make_user(UserRole.attorney)
    response = client.post(
        "/api/v1/cases",
        json={
            "title": "State v. Kumar",
            "schedule": {"scheduled_date": "2025-12-23", "scheduled_time": "06:30", "timezone_offset_minutes": 330},
        },
        headers=auth_headers(attorney),
    )
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["lifecycle_status"] == "drafting"
    assert body["approval_status"] == "pending"
    assert body["scheduled_instant_utc"] == "2025-12-23T01:00:00Z"
    assert body["scheduled_time_local"] == "06:30:00"
    assert body["timezone_offset_minutes"] == 330


def test_schedule_without_offset_is_rejected(client, make_user, make_case, auth_headers):
    attorney = make_user(UserRole.attorney)
    case = make_case(owner=attorney, status=LifecycleStatus.drafting, instant=None)
    response = client.put(
        f"/api/v1/cases/{case.id}/schedule",
        json={"scheduled_date": "2025-12-23", "scheduled_time": "06:30"},
        headers=auth_headers(attorney),
    )
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "MISSING_TIMEZONE"


def test_schedule_on_approved_draft_promotes_to_awaiting_trial(db, client, make_user, make_case, auth_headers):
    attorney = make_user(UserRole.attorney)
    case = make_case(owner=attorney, status=LifecycleStatus.drafting, instant=None)
    response = client.put(
        f"/api/v1/cases/{case.id}/schedule",
        json={"scheduled_date": "2025-12-23", "scheduled_time": "06:30", "timezone_offset_minutes": -480},
        headers=auth_headers(attorney),
    )
    assert response.status_code == 200, response.text
    assert response.json()["lifecycle_status"] == "awaiting_trial"
    assert response.json()["scheduled_instant_utc"] == "2025-12-23T14:30:00Z"

    audit = db.query(CaseStatusAudit).filter(CaseStatusAudit.case_id == case.id).one()
    assert audit.source == StatusChangeSource.promotion


def test_reschedule_clears_countdown_bookkeeping(db, client, make_user, make_case, auth_headers):
    attorney = make_user(UserRole.attorney)
    case = make_case(owner=attorney)
    db.add(CaseCountdownReminder(case_id=case.id, days_before=3))
    db.commit()

    response = client.put(
        f"/api/v1/cases/{case.id}/schedule",
        json={"scheduled_date": "2030-02-01", "scheduled_time": "10:00", "timezone_offset_minutes": 0},
        headers=auth_headers(attorney),
    )
    assert response.status_code == 200, response.text
    assert db.query(CaseCountdownReminder).filter(CaseCountdownReminder.case_id == case.id).count() == 0


def test_schedule_locked_after_war_room(client, make_user, make_case, auth_headers):
    attorney = make_user(UserRole.attorney)
    case = make_case(owner=attorney, status=LifecycleStatus.war_room)
    response = client.put(
        f"/api/v1/cases/{case.id}/schedule",
        json={"scheduled_date": "2030-02-01", "scheduled_time": "10:00", "timezone_offset_minutes": 0},
        headers=auth_headers(attorney),
    )
    assert response.status_code == 409
    assert response.json()["detail"] == {
        "code": "SCHEDULE_LOCKED",
        "message": "Trial schedule can no longer be changed",
        "currentStatus": "war_room",
    }


def test_other_attorney_cannot_see_case(client, make_user, make_case, auth_headers):
    case = make_case()
    stranger = make_user(UserRole.attorney)
    response = client.get(f"/api/v1/cases/{case.id}", headers=auth_headers(stranger))
    assert response.status_code == 403


def test_list_cases_scoped_to_owner(client, make_user, make_case, auth_headers):
    attorney = make_user(UserRole.attorney)
    make_case(owner=attorney)
    make_case(owner=attorney, is_deleted=True)
    make_case()

    mine = client.get("/api/v1/cases", headers=auth_headers(attorney)).json()
    everything = client.get("/api/v1/cases", headers=auth_headers(make_user(UserRole.admin))).json()

    assert mine["total"] == 1
    assert everything["total"] == 2


def test_delete_refused_once_trial_started(client, make_user, make_case, auth_headers):
    attorney = make_user(UserRole.attorney)
    live = make_case(owner=attorney, status=LifecycleStatus.join_trial)
    pending = make_case(owner=attorney, status=LifecycleStatus.awaiting_trial)

    assert client.delete(f"/api/v1/cases/{live.id}", headers=auth_headers(attorney)).status_code == 409
    assert client.delete(f"/api/v1/cases/{pending.id}", headers=auth_headers(attorney)).status_code == 200
    assert client.get(f"/api/v1/cases/{pending.id}", headers=auth_headers(attorney)).status_code == 404


def test_requests_without_token_are_rejected(client):
    assert client.get("/api/v1/cases").status_code in (401, 403)


# ── Juror applications ────────────────────────────────────────────────────────

def test_juror_application_flow(db, client, make_user, make_case, auth_headers):
    juror = make_user(UserRole.juror)
    admin = make_user(UserRole.admin)
    case = make_case(status=LifecycleStatus.war_room)

    first = client.post(f"/api/v1/cases/{case.id}/applications", headers=auth_headers(juror))
    again = client.post(f"/api/v1/cases/{case.id}/applications", headers=auth_headers(juror))
    assert first.status_code == 201, first.text
    assert again.json()["state"] == "applied"

    decided = client.post(
        f"/api/v1/admin/cases/{case.id}/applications/{juror.id}",
        json={"decision": "approved"},
        headers=auth_headers(admin),
    )
    assert decided.status_code == 200, decided.text
    assert case_store.get_participation_state(db, case.id, juror.id) == ParticipationState.approved


# ── Admin workflows ───────────────────────────────────────────────────────────

def test_approval_promotes_scheduled_draft(client, make_user, make_case, auth_headers):
    admin = make_user(UserRole.admin)
    case = make_case(status=LifecycleStatus.drafting, approval=ApprovalStatus.pending)
    response = client.post(
        f"/api/v1/admin/cases/{case.id}/approval",
        json={"decision": "approved", "comments": "Looks good"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200, response.text
    assert response.json()["approval_status"] == "approved"
    assert response.json()["lifecycle_status"] == "awaiting_trial"


def test_non_admin_cannot_approve(client, make_user, make_case, auth_headers):
    attorney = make_user(UserRole.attorney)
    case = make_case(owner=attorney, approval=ApprovalStatus.pending)
    response = client.post(
        f"/api/v1/admin/cases/{case.id}/approval",
        json={"decision": "approved"},
        headers=auth_headers(attorney),
    )
    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "FORBIDDEN"


def test_verdict_only_while_trial_is_live(client, make_user, make_case, auth_headers):
    admin = make_user(UserRole.admin)
    waiting = make_case(status=LifecycleStatus.war_room)
    live = make_case(status=LifecycleStatus.join_trial)

    refused = client.post(f"/api/v1/admin/cases/{waiting.id}/verdict", json={}, headers=auth_headers(admin))
    recorded = client.post(
        f"/api/v1/admin/cases/{live.id}/verdict", json={"summary": "Plaintiff prevails"}, headers=auth_headers(admin)
    )

    assert refused.status_code == 409
    assert refused.json()["detail"]["currentStatus"] == "war_room"
    assert recorded.status_code == 200, recorded.text
    assert recorded.json()["lifecycle_status"] == "view_details"
    assert recorded.json()["verdict_recorded_at"] is not None


def test_override_moves_backward_and_keeps_flags(db, client, make_user, make_case, auth_headers):
    admin = make_user(UserRole.admin)
    opened_at = TRIAL_AT - timedelta(minutes=60)
    case = make_case(status=LifecycleStatus.war_room, war_room_opened_at=opened_at)

    response = client.post(
        f"/api/v1/admin/cases/{case.id}/status-override",
        json={"status": "awaiting_trial", "reason": "Judge postponed the session"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200, response.text
    assert response.json()["lifecycle_status"] == "awaiting_trial"
    assert response.json()["war_room_opened_at"] == "2030-01-15T11:00:00Z"

    audit = db.query(CaseStatusAudit).filter(CaseStatusAudit.case_id == case.id).one()
    assert audit.source == StatusChangeSource.admin_override
    assert audit.from_status == LifecycleStatus.war_room
    assert audit.to_status == LifecycleStatus.awaiting_trial
    assert audit.actor_id == admin.id


def test_override_requires_reason(client, make_user, make_case, auth_headers):
    admin = make_user(UserRole.admin)
    case = make_case()
    response = client.post(
        f"/api/v1/admin/cases/{case.id}/status-override",
        json={"status": "war_room", "reason": ""},
        headers=auth_headers(admin),
    )
    assert response.status_code == 422


def test_expired_cases_listed_for_admin(client, make_user, make_case, auth_headers):
    admin = make_user(UserRole.admin)
    expired = make_case(instant=datetime(2020, 1, 1, 9, 0), approval=ApprovalStatus.pending)
    make_case(instant=TRIAL_AT)

    body = client.get("/api/v1/admin/cases/expired", headers=auth_headers(admin)).json()
    assert [c["id"] for c in body["cases"]] == [str(expired.id)]


# ── Protected trial routes ────────────────────────────────────────────────────

def test_unapproved_juror_gets_access_denied_in_live_trial(client, make_user, make_case, make_application, auth_headers):
    juror = make_user(UserRole.juror)
    case = make_case(status=LifecycleStatus.join_trial)
    make_application(case, juror, ParticipationState.applied)

    response = client.get(f"/api/v1/trials/{case.id}/session", headers=auth_headers(juror))
    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "ACCESS_DENIED"


def test_approved_juror_gets_stage_not_active_before_trial(client, make_user, make_case, make_application, auth_headers):
    juror = make_user(UserRole.juror)
    case = make_case(status=LifecycleStatus.awaiting_trial)
    make_application(case, juror, ParticipationState.approved)

    response = client.get(f"/api/v1/trials/{case.id}/session", headers=auth_headers(juror))
    assert response.status_code == 403
    assert response.json()["detail"] == {
        "code": "STAGE_NOT_ACTIVE",
        "message": "Trial session is not active",
        "currentStatus": "awaiting_trial",
        "allowedStatuses": ["join_trial"],
    }


def test_unapproved_case_denied(client, make_user, make_case, auth_headers):
    attorney = make_user(UserRole.attorney)
    case = make_case(owner=attorney, status=LifecycleStatus.war_room, approval=ApprovalStatus.rejected)
    response = client.get(f"/api/v1/trials/{case.id}/war-room", headers=auth_headers(attorney))
    assert response.json()["detail"]["code"] == "CASE_NOT_APPROVED"


def test_owner_joins_war_room_and_admin_sees_verdict(client, make_user, make_case, auth_headers):
    attorney = make_user(UserRole.attorney)
    war_room = make_case(owner=attorney, status=LifecycleStatus.war_room)
    decided = make_case(owner=attorney, status=LifecycleStatus.view_details, verdict_summary="Dismissed")

    joined = client.get(f"/api/v1/trials/{war_room.id}/war-room", headers=auth_headers(attorney))
    verdict = client.get(f"/api/v1/trials/{decided.id}/verdict", headers=auth_headers(make_user(UserRole.admin)))

    assert joined.status_code == 200
    assert joined.json()["lifecycle_status"] == "war_room"
    assert verdict.status_code == 200
    assert verdict.json()["verdict_summary"] == "Dismissed"


def test_trial_route_for_unknown_case(client, make_user, auth_headers):
    response = client.get(
        "/api/v1/trials/00000000-0000-0000-0000-000000000000/war-room",
        headers=auth_headers(make_user(UserRole.attorney)),
    )
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "CASE_NOT_FOUND"


# ── Health ────────────────────────────────────────────────────────────────────

def test_health_endpoints(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/api/v1/health").json()["database"]["status"] == "ok"

    scheduler = client.get("/api/v1/health/scheduler").json()
    assert scheduler["enabled"] is False
    assert scheduler["running"] is False
    assert scheduler["interval_seconds"] == 30


def test_correlation_id_is_echoed(client):
    response = client.get("/health", headers={"X-Correlation-ID": "abc-123"})
    assert response.headers["X-Correlation-ID"] == "abc-123"
