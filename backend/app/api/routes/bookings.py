"""
Booking endpoints: book, cancel, check in, member views.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.core.errors import ForbiddenError
from app.core.security import Principal, get_current_principal, require_staff
from app.schemas.booking import (
    BookingCreate,
    BookingHistoryResponse,
    BookingResponse,
    CheckInLookupRequest,
    CheckInRequest,
    MemberBookingResponse,
    SessionSummary,
)
from app.services import booking_service

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def _member_of(principal: Principal) -> int:
    if principal.member_id is None:
        raise ForbiddenError("Member profile required")
    return principal.member_id


def _with_sessions(rows) -> list[MemberBookingResponse]:
    return [
        MemberBookingResponse(
            booking=BookingResponse.model_validate(booking),
            session=SessionSummary.model_validate(session),
        )
        for booking, session in rows
    ]


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """
    Book a class session.

    Returns the booking in BOOKED status, or WAITLISTED with its queue
    position when the session is full. Staff may pass `member_id` to book
    for a member.
    """
    if principal.is_staff and booking_data.member_id is not None:
        member_id = booking_data.member_id
    else:
        member_id = _member_of(principal)
    return await booking_service.book_session(db, member_id, booking_data.session_id)


@router.get("/upcoming", response_model=list[MemberBookingResponse])
async def list_upcoming_bookings(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    rows = await booking_service.get_upcoming_bookings(db, _member_of(principal))
    return _with_sessions(rows)


@router.get("/history", response_model=BookingHistoryResponse)
async def list_booking_history(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    rows, total = await booking_service.get_booking_history(db, _member_of(principal), page, page_size)
    return BookingHistoryResponse(
        bookings=_with_sessions(rows),
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/check-in/lookup", response_model=BookingResponse)
async def check_in_by_lookup(
    lookup: CheckInLookupRequest,
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Front desk: check in by member + session (QR scan)."""
    return await booking_service.check_in_by_lookup(
        db, lookup.member_id, lookup.session_id, lookup.method
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    booking = await booking_service.get_booking(db, booking_id)
    if not principal.is_staff and booking.member_id != principal.member_id:
        raise ForbiddenError("You can only view your own bookings")
    return booking


@router.delete("/{booking_id}", response_model=BookingResponse)
async def cancel_booking(
    booking_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """
    Cancel a booking. Staff can cancel any booking, members only their own.
    Frees the spot for the next eligible waitlisted member.
    """
    if principal.is_staff:
        member_id = (await booking_service.get_booking(db, booking_id)).member_id
    else:
        member_id = _member_of(principal)
    return await booking_service.cancel_booking(db, booking_id, member_id)


@router.post("/{booking_id}/check-in", response_model=BookingResponse)
async def check_in(
    booking_id: int,
    request: CheckInRequest = CheckInRequest(),
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.check_in(db, booking_id, request.method)
