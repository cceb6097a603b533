"""
Tests for entitlement resolution and the credit ledger.
"""

from datetime import timedelta

import pytest
from app.core.errors import StaleSessionError
from app.models import CreditPack, EntitlementStatus, UnlimitedMembership
from app.services.credit_ledger import deduct_credit, is_refund_eligible, refund_credit
from app.services.entitlement_service import pick_source, resolve_entitlement
from conftest import NOW


def _unlimited(id, ends_at=NOW + timedelta(days=10), **kwargs):
    return UnlimitedMembership(
        id=id,
        member_id=1,
        starts_at=NOW - timedelta(days=10),
        ends_at=ends_at,
        status=EntitlementStatus.ACTIVE.value,
        valid_location_ids=kwargs.get("locations", []),
        valid_class_type_ids=kwargs.get("class_types", []),
    )


def _pack(id, credits, ends_at=NOW + timedelta(days=10)):
    return CreditPack(
        id=id,
        member_id=1,
        starts_at=NOW - timedelta(days=10),
        ends_at=ends_at,
        status=EntitlementStatus.ACTIVE.value,
        credits_remaining=credits,
        credits_used=0,
        valid_location_ids=[],
        valid_class_type_ids=[],
    )


class TestPickSource:
    def test_nothing_usable(self):
        assert pick_source([], 1, 1, NOW) is None

    def test_empty_pack_is_unusable_inside_its_window(self):
        assert pick_source([_pack(1, credits=0)], 1, 1, NOW) is None

    def test_expired_and_future_sources_are_unusable(self):
        expired = _unlimited(1, ends_at=NOW - timedelta(days=1))
        future = _unlimited(2)
        future.starts_at = NOW + timedelta(days=1)
        assert pick_source([expired, future], 1, 1, NOW) is None

    def test_location_and_class_type_restrictions(self):
        source = _unlimited(1, locations=[7], class_types=[3])
        assert pick_source([source], 3, 7, NOW) is source
        assert pick_source([source], 3, 8, NOW) is None
        assert pick_source([source], 4, 7, NOW) is None

    def test_cancelled_source_is_ignored(self):
        source = _unlimited(1)
        source.status = EntitlementStatus.CANCELLED.value
        assert pick_source([source], 1, 1, NOW) is None

    def test_soonest_expiring_source_wins(self):
        later = _unlimited(1, ends_at=NOW + timedelta(days=20))
        sooner = _pack(2, credits=3, ends_at=NOW + timedelta(days=5))
        open_ended = _unlimited(3, ends_at=None)
        assert pick_source([later, open_ended, sooner], 1, 1, NOW) is sooner

    def test_open_ended_source_used_last(self):
        open_ended = _unlimited(1, ends_at=None)
        assert pick_source([open_ended], 1, 1, NOW) is open_ended

    def test_ties_go_to_oldest_source(self):
        ends = NOW + timedelta(days=5)
        assert pick_source([_unlimited(9, ends_at=ends), _unlimited(4, ends_at=ends)], 1, 1, NOW).id == 4


@pytest.mark.asyncio
async def test_resolve_entitlement_reads_member_sources(db_session, make_member, make_credit_pack):
    member = await make_member()
    other = await make_member()
    pack = await make_credit_pack(member, credits=2)
    await make_credit_pack(other, credits=5)

    resolved = await resolve_entitlement(db_session, member.id, 1, 1, NOW)
    assert resolved.id == pack.id
    assert isinstance(resolved, CreditPack)


@pytest.mark.asyncio
async def test_deduct_until_exhausted_then_refund_reactivates(db_session, make_member, make_credit_pack):
    member = await make_member()
    pack = await make_credit_pack(member, credits=2)
    pack = await db_session.get(CreditPack, pack.id)

    await deduct_credit(db_session, pack, session_id=1)
    assert pack.credits_remaining == 1
    assert pack.credits_used == 1
    assert pack.status == EntitlementStatus.ACTIVE.value

    await deduct_credit(db_session, pack, session_id=1)
    assert pack.credits_remaining == 0
    assert pack.status == EntitlementStatus.EXHAUSTED.value

    with pytest.raises(StaleSessionError):
        await deduct_credit(db_session, pack, session_id=1)

    assert await refund_credit(db_session, pack.id) is True
    await db_session.commit()
    await db_session.refresh(pack)
    assert pack.credits_remaining == 1
    assert pack.credits_used == 1
    assert pack.status == EntitlementStatus.ACTIVE.value


@pytest.mark.asyncio
async def test_refund_with_nothing_used_is_a_noop(db_session, fetch, make_member, make_credit_pack):
    member = await make_member()
    pack = await make_credit_pack(member, credits=3)

    assert await refund_credit(db_session, pack.id) is False
    await db_session.commit()

    reloaded = await fetch(CreditPack, pack.id)
    assert reloaded.credits_remaining == 3
    assert reloaded.credits_used == 0


class _Booking:
    def __init__(self, credit_source_id):
        self.credit_source_id = credit_source_id

    @property
    def credit_deducted(self):
        return self.credit_source_id is not None


class _Session:
    starts_at = NOW + timedelta(hours=24)


@pytest.mark.parametrize(
    "booking, now, expected",
    [
        (_Booking(1), NOW, True),
        (_Booking(1), NOW + timedelta(hours=11, minutes=59), True),
        (_Booking(1), NOW + timedelta(hours=12), False),
        (_Booking(1), NOW + timedelta(hours=20), False),
        (_Booking(None), NOW, False),
    ],
)
def test_refund_eligibility(booking, now, expected):
    assert is_refund_eligible(booking, _Session(), now, cancellation_window_hours=12) is expected
