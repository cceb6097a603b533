"""
HTTP tests for booking endpoints, including error mapping.
"""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from conftest import auth_headers_for


@pytest.mark.asyncio
class TestCreateBooking:
    async def test_book_requires_auth(self, client: AsyncClient, make_session):
        session = await make_session()
        response = await client.post("/api/v1/bookings/", json={"session_id": session.id})
        assert response.status_code == 401

    async def test_book_and_waitlist(self, client: AsyncClient, make_session, make_bookable_member):
        session = await make_session(capacity=1)
        first = await make_bookable_member()
        second = await make_bookable_member()

        response = await client.post(
            "/api/v1/bookings/", json={"session_id": session.id}, headers=auth_headers_for(first.id)
        )
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "BOOKED"
        assert data["member_id"] == first.id
        assert data["waitlist_position"] is None

        response = await client.post(
            "/api/v1/bookings/", json={"session_id": session.id}, headers=auth_headers_for(second.id)
        )
        assert response.status_code == 201
        assert response.json()["status"] == "WAITLISTED"
        assert response.json()["waitlist_position"] == 1

    async def test_duplicate_is_conflict(self, client: AsyncClient, make_session, make_bookable_member):
        session = await make_session()
        member = await make_bookable_member()
        headers = auth_headers_for(member.id)
        await client.post("/api/v1/bookings/", json={"session_id": session.id}, headers=headers)

        response = await client.post("/api/v1/bookings/", json={"session_id": session.id}, headers=headers)
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "CONFLICT"

    async def test_no_entitlement_is_402(self, client: AsyncClient, make_session, make_member):
        session = await make_session()
        member = await make_member()

        response = await client.post(
            "/api/v1/bookings/", json={"session_id": session.id}, headers=auth_headers_for(member.id)
        )
        assert response.status_code == 402
        assert response.json()["detail"]["code"] == "NO_ENTITLEMENT"

    async def test_unknown_session_is_404(self, client: AsyncClient, make_bookable_member):
        member = await make_bookable_member()
        response = await client.post(
            "/api/v1/bookings/", json={"session_id": 9999}, headers=auth_headers_for(member.id)
        )
        assert response.status_code == 404

    async def test_staff_books_for_member(self, client: AsyncClient, make_session, make_bookable_member, staff_headers):
        session = await make_session()
        member = await make_bookable_member()

        response = await client.post(
            "/api/v1/bookings/",
            json={"session_id": session.id, "member_id": member.id},
            headers=staff_headers,
        )
        assert response.status_code == 201
        assert response.json()["member_id"] == member.id


@pytest.mark.asyncio
class TestCancelBooking:
    async def test_cancel_own_booking(self, client: AsyncClient, make_session, make_bookable_member):
        session = await make_session()
        member = await make_bookable_member()
        headers = auth_headers_for(member.id)
        booking = (await client.post("/api/v1/bookings/", json={"session_id": session.id}, headers=headers)).json()

        response = await client.delete(f"/api/v1/bookings/{booking['id']}", headers=headers)
        assert response.status_code == 200
        assert response.json()["status"] == "CANCELLED"

        response = await client.delete(f"/api/v1/bookings/{booking['id']}", headers=headers)
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "INVALID_STATE"

    async def test_cannot_cancel_others(self, client: AsyncClient, make_session, make_bookable_member):
        session = await make_session()
        owner = await make_bookable_member()
        other = await make_bookable_member()
        booking = (
            await client.post(
                "/api/v1/bookings/", json={"session_id": session.id}, headers=auth_headers_for(owner.id)
            )
        ).json()

        response = await client.delete(f"/api/v1/bookings/{booking['id']}", headers=auth_headers_for(other.id))
        assert response.status_code == 404

        response = await client.get(f"/api/v1/bookings/{booking['id']}", headers=auth_headers_for(other.id))
        assert response.status_code == 403

    async def test_staff_cancel_promotes_waitlist(self, client: AsyncClient, make_session, make_bookable_member, staff_headers):
        session = await make_session(capacity=1)
        holder = await make_bookable_member()
        waiting = await make_bookable_member()
        held = (
            await client.post("/api/v1/bookings/", json={"session_id": session.id}, headers=auth_headers_for(holder.id))
        ).json()
        queued = (
            await client.post("/api/v1/bookings/", json={"session_id": session.id}, headers=auth_headers_for(waiting.id))
        ).json()

        response = await client.delete(f"/api/v1/bookings/{held['id']}", headers=staff_headers)
        assert response.status_code == 200

        response = await client.get(f"/api/v1/bookings/{queued['id']}", headers=auth_headers_for(waiting.id))
        assert response.json()["status"] == "BOOKED"
        assert response.json()["promoted_at"] is not None


@pytest.mark.asyncio
class TestCheckIn:
    async def test_members_cannot_check_in(self, client: AsyncClient, make_session, make_bookable_member):
        session = await make_session()
        member = await make_bookable_member()
        headers = auth_headers_for(member.id)
        booking = (await client.post("/api/v1/bookings/", json={"session_id": session.id}, headers=headers)).json()

        response = await client.post(f"/api/v1/bookings/{booking['id']}/check-in", headers=headers)
        assert response.status_code == 403

    async def test_check_in_too_early_is_422(self, client: AsyncClient, make_session, make_bookable_member, staff_headers):
        session = await make_session()
        member = await make_bookable_member()
        booking = (
            await client.post("/api/v1/bookings/", json={"session_id": session.id}, headers=auth_headers_for(member.id))
        ).json()

        response = await client.post(
            f"/api/v1/bookings/{booking['id']}/check-in", json={"method": "MANUAL"}, headers=staff_headers
        )
        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "WINDOW_VIOLATION"
        assert detail["details"]["reason"] == "TOO_EARLY"

    async def test_lookup_check_in(self, client: AsyncClient, make_session, make_bookable_member, staff_headers):
        # Starts in ten minutes, so the window is already open
        session = await make_session(starts_at=_soon())
        member = await make_bookable_member()
        await client.post("/api/v1/bookings/", json={"session_id": session.id}, headers=auth_headers_for(member.id))

        response = await client.post(
            "/api/v1/bookings/check-in/lookup",
            json={"member_id": member.id, "session_id": session.id},
            headers=staff_headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "CHECKED_IN"
        assert response.json()["check_in_method"] == "QR_SCAN"


@pytest.mark.asyncio
async def test_upcoming_and_history(client: AsyncClient, make_session, make_bookable_member):
    member = await make_bookable_member()
    headers = auth_headers_for(member.id)
    session = await make_session()
    await client.post("/api/v1/bookings/", json={"session_id": session.id}, headers=headers)

    response = await client.get("/api/v1/bookings/upcoming", headers=headers)
    assert response.status_code == 200
    upcoming = response.json()
    assert len(upcoming) == 1
    assert upcoming[0]["session"]["id"] == session.id

    response = await client.get("/api/v1/bookings/history", headers=headers)
    assert response.status_code == 200
    assert response.json()["total"] == 0
    assert response.json()["page"] == 1


def _soon():
    return datetime.now(timezone.utc) + timedelta(minutes=10)
