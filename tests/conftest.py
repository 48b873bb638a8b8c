import uuid
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app.db.session import Base, make_engine, get_db
from app.models.user import User
from app.models.slot import ParkingSlot  # noqa: F401
from app.models.booking import Booking  # noqa: F401
from app.models.audit_log import AuditLog  # noqa: F401
from app.core.security import create_access_token
from app.api.deps import request_time
from app.main import app
from app.seed import ensure_slots

# A fixed Monday morning; every test moves time explicitly from here.
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def at(hours: float = 0, minutes: float = 0) -> datetime:
    return NOW + timedelta(hours=hours, minutes=minutes)


def parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'parking-test.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    ensure_slots(s)
    yield s
    s.close()


def _make_user(db, email: str, role: str = "customer") -> User:
    u = User(id=str(uuid.uuid4()), email=email, full_name=email.split("@")[0], role=role,
             password_hash="x", is_active=True)
    db.add(u)
    db.commit()
    return u


@pytest.fixture
def make_user(db):
    def _factory(email: str | None = None, role: str = "customer") -> User:
        return _make_user(db, email or f"{uuid.uuid4().hex[:8]}@example.com", role)
    return _factory


@pytest.fixture
def alice(make_user):
    return make_user("alice@example.com")


@pytest.fixture
def bob(make_user):
    return make_user("bob@example.com")


@pytest.fixture
def admin(make_user):
    return make_user("admin@example.com", role="admin")


@pytest.fixture
def clock():
    return Clock(NOW)


@pytest.fixture
def client(session_factory, db, clock):
    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[request_time] = lambda: clock.now
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def auth(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}
