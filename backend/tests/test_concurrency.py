"""
Concurrency tests: many callers, one session, separate DB sessions;
the last credit contested across two sessions; and the retry path taken
when a session row changes between read and guarded write.
"""

import asyncio
from datetime import timedelta

import pytest

from prometheus_client import REGISTRY
from sqlalchemy import func, select, update

from app.core.config import get_settings
from app.core.errors import ConflictError, NoEntitlementError
from app.models import Booking, BookingStatus, ClassSession, CreditPack
from app.services import booking_service
from conftest import NOW


@pytest.mark.asyncio
async def test_simultaneous_bookings_never_overbook(session_factory, make_session, make_bookable_member, assert_session_invariants):
    capacity, extra = 5, 7
    session = await make_session(capacity=capacity)
    members = [await make_bookable_member() for _ in range(capacity + extra)]

    async def attempt(member_id):
        async with session_factory() as db:
            return await booking_service.book_session(db, member_id, session.id)

    bookings = await asyncio.gather(*(attempt(m.id) for m in members))

    booked = [b for b in bookings if b.status == BookingStatus.BOOKED.value]
    waitlisted = [b for b in bookings if b.status == BookingStatus.WAITLISTED.value]
    assert len(booked) == capacity
    assert sorted(b.waitlist_position for b in waitlisted) == list(range(1, extra + 1))

    checked = await assert_session_invariants(session.id)
    assert (checked.booked_count, checked.waitlist_count) == (capacity, extra)


@pytest.mark.asyncio
async def test_simultaneous_cancellations_keep_waitlist_dense(
    db_session, session_factory, make_session, make_bookable_member, assert_session_invariants,
):
    session = await make_session(capacity=2)
    members = [await make_bookable_member() for _ in range(7)]
    bookings = {}
    for member in members:
        bookings[member.id] = (await booking_service.book_session(db_session, member.id, session.id)).id

    # Both booked members and two waitlisted ones leave at once
    leaving = [members[0], members[1], members[3], members[5]]

    async def cancel(member):
        async with session_factory() as db:
            return await booking_service.cancel_booking(db, bookings[member.id], member.id)

    await asyncio.gather(*(cancel(m) for m in leaving))

    checked = await assert_session_invariants(session.id)
    assert (checked.booked_count, checked.waitlist_count) == (2, 1)


@pytest.mark.asyncio
async def test_last_credit_spent_once(session_factory, fetch, make_session, make_member, make_credit_pack):
    first = await make_session()
    second = await make_session(starts_at=NOW + timedelta(days=3))
    member = await make_member()
    pack = await make_credit_pack(member, credits=1)

    async def attempt(session_id):
        async with session_factory() as db:
            return await booking_service.book_session(db, member.id, session_id)

    results = await asyncio.gather(attempt(first.id), attempt(second.id), return_exceptions=True)

    assert sum(1 for r in results if isinstance(r, NoEntitlementError)) == 1
    assert sum(1 for r in results if not isinstance(r, Exception)) == 1
    assert (await fetch(CreditPack, pack.id)).credits_remaining == 0


@pytest.fixture
def stale_counter_writes(monkeypatch):
    """
    Make the first `times` counter writes of a booking unit miss their
    version guard, as if another writer had bumped the row in between.
    """

    def _install(times):
        calls = {"n": 0}
        original = booking_service.apply_counters

        async def apply_counters(db, session, **kwargs):
            calls["n"] += 1
            if calls["n"] <= times:
                await db.execute(
                    update(ClassSession)
                    .where(ClassSession.id == session.id)
                    .values(version=ClassSession.version + 1)
                    .execution_options(synchronize_session=False)
                )
            return await original(db, session, **kwargs)

        monkeypatch.setattr(booking_service, "apply_counters", apply_counters)
        return calls

    return _install


def _retries() -> float:
    return REGISTRY.get_sample_value("session_unit_retries_total") or 0.0


@pytest.mark.asyncio
async def test_version_conflict_reruns_the_unit(
    db_session, make_session, make_bookable_member, stale_counter_writes, assert_session_invariants,
):
    session = await make_session(capacity=2)
    member = await make_bookable_member()
    calls = stale_counter_writes(times=1)
    retries_before = _retries()

    booking = await booking_service.book_session(db_session, member.id, session.id)

    assert booking.status == BookingStatus.BOOKED.value
    assert calls["n"] == 2
    assert _retries() - retries_before == 1
    checked = await assert_session_invariants(session.id)
    assert (checked.booked_count, checked.waitlist_count) == (1, 0)
    assert checked.version == session.version + 1


@pytest.mark.asyncio
async def test_persistent_version_conflict_gives_up_unchanged(
    db_session, session_factory, fetch, make_session, make_bookable_member, stale_counter_writes,
):
    session = await make_session(capacity=1)
    holder = await make_bookable_member()
    await booking_service.book_session(db_session, holder.id, session.id)
    before = await fetch(ClassSession, session.id)

    attempts = get_settings().MAX_RETRY_ATTEMPTS
    calls = stale_counter_writes(times=attempts)
    newcomer = await make_bookable_member()

    with pytest.raises(ConflictError):
        await booking_service.book_session(db_session, newcomer.id, session.id)

    assert calls["n"] == attempts
    after = await fetch(ClassSession, session.id)
    assert (after.booked_count, after.waitlist_count, after.version) == (
        before.booked_count,
        before.waitlist_count,
        before.version,
    )
    async with session_factory() as db:
        rows = (
            await db.execute(
                select(func.count()).select_from(Booking).where(Booking.class_session_id == session.id)
            )
        ).scalar()
    assert rows == 1
