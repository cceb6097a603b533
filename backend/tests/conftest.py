"""
Pytest fixtures for test database, client, collaborators and factories.

Each test gets a fresh database: a temporary SQLite file by default, or
TEST_DATABASE_URL (e.g. a PostgreSQL test database) when set. Tables are
created before and dropped after every test for isolation.
"""

import os
from datetime import datetime, timezone, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from app.main import app
from app.db.base import Base
from app.db.session import get_db
from app.core.security import create_access_token
from app.models import (
    Booking,
    BookingStatus,
    ClassSession,
    CreditPack,
    Member,
    SessionStatus,
    UnlimitedMembership,
)
from app.services import signals
from app.services.collaborators import configure_collaborators
from app.services.interfaces.collaborators import ActivityTracker, NotificationDispatcher

NOW = datetime.now(timezone.utc).replace(microsecond=0)


class RecordingNotifier(NotificationDispatcher):
    def __init__(self):
        self.sent = []

    async def send(self, signal):
        self.sent.append(signal)


class RecordingTracker(ActivityTracker):
    def __init__(self):
        self.check_ins = []

    async def record_check_in(self, signal):
        self.check_ins.append(signal)


@pytest_asyncio.fixture
async def engine(tmp_path):
    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'booking_test.db'}"
    test_engine = create_async_engine(url, echo=False)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(autouse=True)
async def collaborators():
    """Record outbound signals instead of publishing them."""
    notifier = RecordingNotifier()
    tracker = RecordingTracker()
    configure_collaborators(notifier=notifier, tracker=tracker)
    yield notifier, tracker
    await signals.drain()
    configure_collaborators(None, None)


@pytest.fixture
def notifier(collaborators) -> RecordingNotifier:
    return collaborators[0]


@pytest.fixture
def tracker(collaborators) -> RecordingTracker:
    return collaborators[1]


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client; each request gets its own DB session, like production."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth_headers_for(member_id=None, staff=False) -> dict:
    claims = {"staff": staff}
    if member_id is not None:
        claims["sub"] = str(member_id)
    return {"Authorization": f"Bearer {create_access_token(data=claims)}"}


@pytest.fixture
def staff_headers() -> dict:
    return auth_headers_for(staff=True)


# ---------------------------------------------------------------- factories
#
# Factories write through their own short-lived session and hand back
# detached objects, so a rollback inside a service call on `db_session`
# never expires test fixtures. Use `fetch` to read current state.


@pytest.fixture
def persist(session_factory):
    async def _persist(obj):
        async with session_factory() as db:
            db.add(obj)
            await db.commit()
        return obj

    return _persist


@pytest.fixture
def fetch(session_factory):
    async def _fetch(model, obj_id):
        async with session_factory() as db:
            return await db.get(model, obj_id)

    return _fetch


@pytest.fixture
def make_member(persist):
    counter = {"n": 0}

    async def _make(first_name: str = "Test", last_name: str = "Member") -> Member:
        counter["n"] += 1
        member = Member(
            first_name=first_name,
            last_name=f"{last_name} {counter['n']}",
            email=f"member{counter['n']}@example.com",
        )
        return await persist(member)

    return _make


@pytest.fixture
def make_session(persist):
    async def _make(
        capacity: int = 10,
        starts_at: datetime = NOW + timedelta(days=2),
        duration: timedelta = timedelta(hours=1),
        class_type_id: int = 1,
        location_id: int = 1,
        status: SessionStatus = SessionStatus.SCHEDULED,
    ) -> ClassSession:
        session = ClassSession(
            class_type_id=class_type_id,
            location_id=location_id,
            instructor_id=1,
            starts_at=starts_at,
            ends_at=starts_at + duration,
            capacity=capacity,
            booked_count=0,
            waitlist_count=0,
            status=status.value,
        )
        return await persist(session)

    return _make


@pytest.fixture
def make_unlimited(persist):
    async def _make(
        member: Member,
        starts_at: datetime = NOW - timedelta(days=30),
        ends_at=NOW + timedelta(days=30),
        valid_location_ids=(),
        valid_class_type_ids=(),
    ) -> UnlimitedMembership:
        source = UnlimitedMembership(
            member_id=member.id,
            name="Unlimited Monthly",
            starts_at=starts_at,
            ends_at=ends_at,
            valid_location_ids=list(valid_location_ids),
            valid_class_type_ids=list(valid_class_type_ids),
        )
        return await persist(source)

    return _make


@pytest.fixture
def make_credit_pack(persist):
    async def _make(
        member: Member,
        credits: int = 10,
        starts_at: datetime = NOW - timedelta(days=30),
        ends_at=NOW + timedelta(days=60),
        valid_location_ids=(),
        valid_class_type_ids=(),
    ) -> CreditPack:
        source = CreditPack(
            member_id=member.id,
            name=f"{credits}-class pack",
            starts_at=starts_at,
            ends_at=ends_at,
            credits_remaining=credits,
            credits_used=0,
            valid_location_ids=list(valid_location_ids),
            valid_class_type_ids=list(valid_class_type_ids),
        )
        return await persist(source)

    return _make


@pytest.fixture
def make_bookable_member(make_member, make_unlimited):
    """Member holding an unlimited membership valid everywhere."""

    async def _make(first_name: str = "Test") -> Member:
        member = await make_member(first_name=first_name)
        await make_unlimited(member)
        return member

    return _make


# --------------------------------------------------------------- invariants


@pytest.fixture
def assert_session_invariants(session_factory):
    """
    booked_count matches the BOOKED rows and never exceeds capacity;
    waitlist positions are exactly 1..waitlist_count.
    """

    async def _check(session_id: int) -> ClassSession:
        async with session_factory() as db:
            session = await db.get(ClassSession, session_id)
            booked = (
                await db.execute(
                    select(func.count())
                    .select_from(Booking)
                    .where(
                        Booking.class_session_id == session_id,
                        Booking.status == BookingStatus.BOOKED.value,
                    )
                )
            ).scalar()
            positions = (
                await db.execute(
                    select(Booking.waitlist_position).where(
                        Booking.class_session_id == session_id,
                        Booking.status == BookingStatus.WAITLISTED.value,
                    )
                )
            ).scalars().all()

            if session.status in (SessionStatus.SCHEDULED.value, SessionStatus.IN_PROGRESS.value):
                assert session.booked_count == booked
            assert session.booked_count <= session.capacity
            assert sorted(positions) == list(range(1, session.waitlist_count + 1))
            return session

    return _check
