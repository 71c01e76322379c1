import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from course_scheduler import rate_limiter
from course_scheduler.auth import Actor
from course_scheduler.database import Base, build_engine, get_db, get_session_factory
from course_scheduler.main import app
from course_scheduler.models import ScheduleRequest, TimeSlot, User
from course_scheduler.security_utils import create_jwt_token, hash_password_bcrypt

DAY = datetime(2024, 1, 1, tzinfo=timezone.utc)

TEACHER = Actor(id="t1", role="teacher", name="teacher")
ALICE = Actor(id="s1", role="student", name="Alice")
BOB = Actor(id="s2", role="student", name="Bob")


def at(hour: int, minute: int = 0) -> datetime:
    return DAY + timedelta(hours=hour, minutes=minute)


def token_for(actor: Actor) -> str:
    return create_jwt_token({"sub": actor.id, "role": actor.role, "name": actor.name})


def make_slot(db, hour: int, student: Actor = None, confirmed: bool = False) -> TimeSlot:
    """Insert a one-hour slot, booked by ``student`` when given"""
    slot = TimeSlot(start_time=at(hour), end_time=at(hour + 1), status="free", is_confirmed=False)
    if student is not None:
        slot.status = "busy"
        slot.student_id = student.id
        slot.student_name = student.name
        slot.course_content = "Algebra"
        slot.is_confirmed = confirmed
    db.add(slot)
    db.commit()
    return slot


def make_request(db, student: Actor, target: TimeSlot, original: TimeSlot = None) -> ScheduleRequest:
    request = ScheduleRequest(
        student_id=student.id,
        student_name=student.name,
        original_slot_id=original.public_id if original is not None else None,
        target_slot_id=target.public_id,
        course_content="Conflict with exam",
        request_type="modify" if original is not None else "new",
        status="pending",
    )
    db.add(request)
    db.commit()
    return request


def fetch_slot(db, slot_id: str):
    db.expire_all()
    return db.query(TimeSlot).filter(TimeSlot.public_id == slot_id).first()


def fetch_request(db, request_id: str):
    db.expire_all()
    return db.query(ScheduleRequest).filter(ScheduleRequest.public_id == request_id).first()


@pytest.fixture(autouse=True)
def memory_only_rate_limits(monkeypatch):
    monkeypatch.setattr(rate_limiter, "get_optional_redis_client", lambda: None)
    rate_limiter.memory_cache.clear()
    yield
    rate_limiter.memory_cache.clear()


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def file_sessions(tmp_path):
    """Opens sessions on separate connections to one on-disk database"""
    engine = build_engine(
        f"sqlite:///{tmp_path / 'schedule.db'}",
        connect_args={"check_same_thread": False, "timeout": 0.2},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    opened = []

    def open_session():
        session = factory()
        opened.append(session)
        return session

    yield open_session
    for session in opened:
        session.close()
    engine.dispose()


@pytest.fixture(scope="session")
def password_hash():
    return hash_password_bcrypt("secret123")


@pytest.fixture
def users(db, password_hash):
    """Persisted accounts mirroring the TEACHER/ALICE/BOB actors"""
    for actor in (TEACHER, ALICE, BOB):
        db.add(User(public_id=actor.id, name=actor.name, password_hash=password_hash, role=actor.role))
    db.commit()
    return {"teacher": TEACHER, "alice": ALICE, "bob": BOB}


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    # One portal for every websocket so broadcasts cross connections on a single loop
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
