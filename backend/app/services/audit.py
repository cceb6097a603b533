"""
Writes to the append-only booking event log.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.booking import Booking
from app.models.booking_event import BookingEvent, BookingEventType


def record_event(
    db: AsyncSession,
    booking: Booking,
    event_type: BookingEventType,
    occurred_at: datetime,
    **details: Any,
) -> BookingEvent:
    """Booking must already have an id (flush first for new rows)."""
    event = BookingEvent(
        booking_id=booking.id,
        class_session_id=booking.class_session_id,
        member_id=booking.member_id,
        event_type=event_type.value,
        occurred_at=occurred_at,
        details=details,
    )
    db.add(event)
    return event


async def list_booking_events(db: AsyncSession, booking_id: int) -> list[BookingEvent]:
    result = await db.execute(
        select(BookingEvent)
        .where(BookingEvent.booking_id == booking_id)
        .order_by(BookingEvent.occurred_at.asc(), BookingEvent.id.asc())
    )
    return list(result.scalars().all())
