import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.pop("RABBIT_URL", None)
os.environ.pop("MEETING_SERVICE_URL", None)
os.environ.pop("EXPIRY_SWEEP_ENABLED", None)

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from booking_service import actions
from booking_service.db import Base, get_db
from booking_service.main import app
from booking_service.models import Booking
from booking_service.publisher import publisher
from booking_service.security import issue_token

T0 = datetime(2030, 3, 1, 12, 0, tzinfo=timezone.utc)

APPLICANT = "applicant-1"
PROVIDER = "provider-1"


def make_booking(**overrides) -> Booking:
    """Transient Booking for pure status-machine tests."""
    fields = dict(
        booking_id="b-1",
        applicant_id=APPLICANT,
        provider_id=PROVIDER,
        service_id="svc-1",
        status="pending_provider",
        booking_model="requires_confirmation",
        delivery="live",
        created_at=T0,
        updated_at=T0,
        expires_at=T0 + timedelta(hours=48),
        scheduled_at=T0 + timedelta(days=5),
        duration=60,
        turnaround_deadline=None,
        timezone="America/New_York",
        price=120.0,
        cancellation_policy="flexible",
        applicant_snapshot={},
        provider_snapshot={},
        service_snapshot={"type": "mock_interview"},
        intake_data={},
        attachments=[],
        meeting_url=None,
        applicant_review_id=None,
    )
    fields.update(overrides)
    return Booking(**fields)


def auth(sub: str, roles: list[str]) -> dict:
    return {"Authorization": f"Bearer {issue_token(sub, roles)}"}


def run_seeded(engine, session_factory, bookings, scenario):
    """Creates the schema, stores the bookings, then runs the scenario coroutine on one loop."""
    async def main():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with session_factory() as db:
            db.add_all(bookings)
            await db.commit()
        return await scenario()

    return asyncio.run(main())


async def reload_booking(session_factory, booking_id):
    async with session_factory() as db:
        res = await db.execute(select(Booking).where(Booking.booking_id == booking_id))
        return res.scalar_one()


@pytest.fixture
def applicant_headers():
    return auth(APPLICANT, ["applicant"])


@pytest.fixture
def provider_headers():
    return auth(PROVIDER, ["provider"])


@pytest.fixture
def admin_headers():
    return auth("admin-1", ["admin"])


@pytest.fixture
def engine():
    return create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def client(engine, session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def create_tables():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        c.portal.call(create_tables)
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def competing_write(monkeypatch, session_factory):
    """
    Set ``competing_write["status"]`` and the next conditional update finds the
    row already moved to that status by another session.
    """
    original = actions._conditional_update
    pending = {}

    async def racing(db, booking, expected, values):
        if "status" in pending:
            async with session_factory() as other:
                await other.execute(
                    update(Booking)
                    .where(Booking.booking_id == booking.booking_id)
                    .values(status=pending.pop("status"))
                )
                await other.commit()
        return await original(db, booking, expected, values)

    monkeypatch.setattr(actions, "_conditional_update", racing)
    return pending


@pytest.fixture
def published(monkeypatch):
    sent = []

    async def fake_publish(routing_key, body):
        sent.append(routing_key)

    monkeypatch.setattr(publisher, "publish", fake_publish)
    return sent


@pytest.fixture
def clock(monkeypatch):
    """Pins "now" for the action handlers and the response views."""
    state = {"now": T0}

    def now():
        return state["now"]

    monkeypatch.setattr("booking_service.actions.utcnow", now)
    monkeypatch.setattr("booking_service.routes.utcnow", now)
    return state


class FakeRedis:
    def __init__(self):
        self.store = {}

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def get(self, key):
        return self.store.get(key)

    async def exists(self, key):
        return int(key in self.store)

    async def incr(self, key):
        self.store[key] = int(self.store.get(key) or 0) + 1
        return self.store[key]

    async def expire(self, key, seconds):
        return key in self.store

    async def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.calls = []

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self.calls.append((name, args, kwargs))
        return queue

    async def execute(self):
        for name, args, kwargs in self.calls:
            await getattr(self.redis, name)(*args, **kwargs)
        self.calls = []


@pytest.fixture
def fake_redis(monkeypatch):
    r = FakeRedis()
    monkeypatch.setattr("booking_service.idempotency.redis_client", r)
    monkeypatch.setattr("booking_service.expiry_worker.redis_client", r)
    monkeypatch.setattr("booking_service.breaker.redis_client", r)
    return r
