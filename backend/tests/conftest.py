import os
import tempfile
import uuid
from datetime import datetime, timedelta

_DB_DIR = tempfile.mkdtemp(prefix="quickverdicts-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ["DB_AUTO_CREATE"] = "false"
os.environ["TRIAL_SCHEDULER_ENABLED"] = "false"
os.environ["COUNTDOWN_REMINDERS_ENABLED"] = "false"
os.environ["CASE_RETENTION_ENABLED"] = "false"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.core.security import create_access_token  # noqa: E402
from app.db.database import Base, SessionLocal, engine  # noqa: E402
from app.db.models import (  # noqa: E402
    ApprovalStatus,
    Case,
    JurorApplication,
    LifecycleStatus,
    ParticipationState,
    User,
    UserRole,
)

# Fixed trial instant used across tests (naive UTC)
TRIAL_AT = datetime(2030, 1, 15, 12, 0)


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def fire_event(self, case_id, event_kind, **context):
        self.events.append((case_id, event_kind, context))

    def kinds(self, case_id=None):
        return [kind for cid, kind, _ in self.events if case_id is None or cid == case_id]


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_user(db):
    def _make(role=UserRole.attorney, **fields):
        user = User(
            email=fields.pop("email", f"{role.value}-{uuid.uuid4().hex[:8]}@example.com"),
            full_name=fields.pop("full_name", f"Test {role.value.title()}"),
            role=role,
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def make_case(db, make_user):
    def _make(
        owner=None,
        status=LifecycleStatus.awaiting_trial,
        approval=ApprovalStatus.approved,
        instant=TRIAL_AT,
        **fields,
    ):
        owner = owner or make_user(UserRole.attorney)
        case = Case(
            owner_id=owner.id,
            title=fields.pop("title", "Doe v. Roe"),
            approval_status=approval,
            lifecycle_status=status,
            scheduled_instant_utc=instant,
            **fields,
        )
        if instant is not None:
            case.scheduled_date_local = instant.date()
            case.scheduled_time_local = instant.time()
            case.timezone_offset_minutes = 0
        db.add(case)
        db.commit()
        db.refresh(case)
        return case
    return _make


@pytest.fixture
def make_application(db):
    def _make(case, juror, state=ParticipationState.approved):
        application = JurorApplication(case_id=case.id, juror_id=juror.id, state=state)
        db.add(application)
        db.commit()
        return application
    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        token = create_access_token({"sub": str(user.id), "role": user.role.value}, timedelta(minutes=5))
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def client(db):
    from app.main import app

    with TestClient(app) as test_client:
        yield test_client
