import os
from datetime import datetime, time, timedelta
from typing import Any, Dict, Iterator, List, Optional

# 테스트 중에는 로그 파일을 만들지 않음
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("SCHEDULER_API_KEY", "test-scheduler-key")

import pytest
import sqlalchemy as sa
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from healit import models
from healit.database import Base, get_db
from healit.exceptions import TransportFailure
from healit.services.auth import create_access_token
from healit.services.events import change_feed
from healit.services.routine import RoutineService

ALL_DAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class FakeTransport:
    """Records payloads instead of calling the notification webhook."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    def send(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.fail:
            raise TransportFailure("webhook unavailable", status_code=503)
        self.sent.append(payload)
        return {"ok": True}


@pytest.fixture(scope="function")
def engine():
    """Provide an isolated in-memory SQLite database for each test."""

    engine = sa.create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture(scope="function")
def db(session_factory) -> Iterator[Session]:
    """Yield a SQLAlchemy session tied to the in-memory database."""

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _reset_change_feed():
    yield
    change_feed.clear()


@pytest.fixture()
def organization(db):
    org = models.Organization(name="Clinic One")
    db.add(org)
    db.commit()
    db.refresh(org)
    return org


@pytest.fixture()
def patient(db, organization):
    p = models.Patient(organization_id=organization.id, name="Dana Levi", email="dana@example.com", phone="+972500000000")
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


@pytest.fixture()
def make_routine(db, patient):
    """Factory creating a routine with one schedule rule for ``patient``."""

    def _make(
        name: str = "Morning pills",
        type: str = "medication",
        priority: Optional[str] = "critical",
        at: time = time(8, 0),
        days: Optional[List[str]] = None,
        buffer_minutes: int = 0,
        timezone: str = "UTC",
        steps: Optional[List[Dict[str, Any]]] = None,
        target_patient=None,
        **extra,
    ):
        owner = target_patient or patient
        schedules = [] if type == "gate" and steps else [{
            "days_of_week": ALL_DAYS if days is None else days,
            "time_of_day": at,
            "buffer_minutes": buffer_minutes,
        }]
        return RoutineService(db).create_routine(
            owner.organization_id,
            owner.id,
            name=name,
            type=type,
            priority=priority,
            schedules=schedules,
            steps=steps,
            timezone=timezone,
            **extra,
        )

    return _make


@pytest.fixture()
def make_followup(db, patient):
    def _make(
        due_at: datetime,
        priority: str = "medium",
        status: str = "open",
        category: str = "schedule_appointment",
        assigned_to: Optional[str] = None,
        event_id: Optional[int] = None,
        target_patient=None,
    ):
        owner = target_patient or patient
        item = models.FollowupItem(
            organization_id=owner.organization_id,
            patient_id=owner.id,
            event_id=event_id,
            category=category,
            description=f"{category} follow-up",
            due_at=due_at,
            priority=priority,
            status=status,
            owner_role="staff",
            assigned_to=assigned_to,
            created_by="test",
        )
        db.add(item)
        db.commit()
        db.refresh(item)
        return item

    return _make


@pytest.fixture()
def fake_transport():
    return FakeTransport()


@pytest.fixture()
def client(session_factory) -> Iterator[TestClient]:
    """Yield a FastAPI test client bound to the in-memory database."""

    from healit.main import app

    def _session_dependency():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _session_dependency
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
def auth_headers(organization):
    def _headers(role: str = "editor", patient_id: Optional[int] = None, organization_id: Optional[int] = None, **claims):
        payload = {
            "sub": claims.pop("sub", f"{role}-user"),
            "role": role,
            "organization_id": organization_id if organization_id is not None else organization.id,
        }
        if patient_id is not None:
            payload["patient_id"] = patient_id
        payload.update(claims)
        token = create_access_token(payload, expires_delta=timedelta(minutes=5))
        return {"Authorization": f"Bearer {token}"}

    return _headers
