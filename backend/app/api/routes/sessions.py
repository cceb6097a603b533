"""
Session lifecycle and front-desk views.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.core.security import Principal, get_current_principal, require_staff
from app.schemas.session import RosterEntry, SessionCancelRequest, SessionResponse, WaitlistEntry
from app.services import session_service

router = APIRouter(prefix="/sessions", tags=["Sessions"])


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Live counters; never cached."""
    return await session_service.get_session(db, session_id)


@router.post("/{session_id}/start", response_model=SessionResponse)
async def start_session(
    session_id: int,
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await session_service.start_session(db, session_id)


@router.post("/{session_id}/complete", response_model=SessionResponse)
async def complete_session(
    session_id: int,
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Close the session; members who never checked in become no-shows."""
    return await session_service.complete_session(db, session_id)


@router.post("/{session_id}/cancel", response_model=SessionResponse)
async def cancel_session(
    session_id: int,
    request: SessionCancelRequest = SessionCancelRequest(),
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await session_service.cancel_session(db, session_id, request.reason)


@router.get("/{session_id}/roster", response_model=list[RosterEntry])
async def get_roster(
    session_id: int,
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    rows = await session_service.get_roster(db, session_id)
    return [
        RosterEntry(
            booking_id=booking.id,
            member_id=member.id,
            first_name=member.first_name,
            last_name=member.last_name,
            email=member.email,
            status=booking.status,
            booked_at=booking.booked_at,
            checked_in_at=booking.checked_in_at,
        )
        for booking, member in rows
    ]


@router.get("/{session_id}/waitlist", response_model=list[WaitlistEntry])
async def get_waitlist(
    session_id: int,
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    rows = await session_service.get_waitlist(db, session_id)
    return [
        WaitlistEntry(
            booking_id=booking.id,
            member_id=member.id,
            first_name=member.first_name,
            last_name=member.last_name,
            email=member.email,
            position=booking.waitlist_position,
            joined_at=booking.booked_at,
        )
        for booking, member in rows
    ]
