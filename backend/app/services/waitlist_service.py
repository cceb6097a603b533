"""
Waitlist promotion engine.

Runs inside the cancelling unit, while the session lock is still held,
so a freed spot always goes to the waitlist before any new booking can
see it.

The walk is an explicit loop over candidates in position order. A
candidate whose entitlement has lapsed since joining is cancelled and
taken off the waitlist (nothing was charged while waitlisted, so there is
nothing to refund), then the next one is tried. Every skipped candidate
leaves the waitlist for good, so the loop runs at most `waitlist_count`
times.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.core.metrics import record_promotion
from app.models.booking import Booking, BookingStatus
from app.models.booking_event import BookingEventType
from app.models.class_session import ClassSession
from app.services.audit import record_event
from app.services.capacity_ledger import apply_counters
from app.services.credit_ledger import deduct_credit
from app.services.entitlement_service import resolve_entitlement
from app.services.signals import Signal, SignalKind, SignalOutbox

logger = get_logger(__name__)


@dataclass
class PromotionResult:
    promoted: Optional[Booking] = None
    skipped: list[Booking] = field(default_factory=list)


async def waitlisted_bookings(db: AsyncSession, session_id: int) -> list[Booking]:
    result = await db.execute(
        select(Booking)
        .where(
            Booking.class_session_id == session_id,
            Booking.status == BookingStatus.WAITLISTED.value,
        )
        .order_by(Booking.waitlist_position.asc(), Booking.id.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def compact_waitlist(db: AsyncSession, session_id: int) -> int:
    """Renumber waitlisted bookings 1..n, keeping their order. Returns n."""
    await db.flush()
    bookings = await waitlisted_bookings(db, session_id)
    for position, booking in enumerate(bookings, start=1):
        if booking.waitlist_position != position:
            booking.waitlist_position = position
    await db.flush()
    return len(bookings)


async def _next_candidate(db: AsyncSession, session_id: int) -> Optional[Booking]:
    result = await db.execute(
        select(Booking)
        .where(
            Booking.class_session_id == session_id,
            Booking.status == BookingStatus.WAITLISTED.value,
        )
        .order_by(Booking.waitlist_position.asc(), Booking.id.asc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _skip(
    db: AsyncSession,
    session: ClassSession,
    candidate: Booking,
    outbox: SignalOutbox,
    now: datetime,
) -> None:
    position = candidate.waitlist_position
    candidate.status = BookingStatus.CANCELLED.value
    candidate.waitlist_position = None
    candidate.cancelled_at = now
    await apply_counters(db, session, waitlisted=-1)
    record_event(db, candidate, BookingEventType.SKIPPED, now, reason="no_entitlement", position=position)
    await compact_waitlist(db, session.id)

    record_promotion("skipped")
    logger.info(
        "waitlist_candidate_skipped",
        booking_id=candidate.id,
        member_id=candidate.member_id,
        session_id=session.id,
        position=position,
    )
    outbox.emit(
        Signal(
            kind=SignalKind.WAITLIST_REMOVED,
            member_id=candidate.member_id,
            session_id=session.id,
            booking_id=candidate.id,
            occurred_at=now,
            payload={"reason": "no_entitlement"},
        )
    )


async def promote_from_waitlist(
    db: AsyncSession,
    session: ClassSession,
    outbox: SignalOutbox,
    now: datetime,
) -> PromotionResult:
    """
    Fill one freed spot from the waitlist. Caller holds the session unit
    and has already released the spot (booked_count decremented).
    """
    outcome = PromotionResult()
    if session.booked_count >= session.capacity:
        return outcome

    for _ in range(session.waitlist_count):
        candidate = await _next_candidate(db, session.id)
        if candidate is None:
            break

        source = await resolve_entitlement(
            db, candidate.member_id, session.class_type_id, session.location_id, now
        )
        if source is None:
            await _skip(db, session, candidate, outbox, now)
            outcome.skipped.append(candidate)
            continue

        position = candidate.waitlist_position
        candidate.status = BookingStatus.BOOKED.value
        candidate.waitlist_position = None
        candidate.promoted_at = now
        candidate.credit_source_id = None
        if source.consumes_credit:
            await deduct_credit(db, source, session.id)
            candidate.credit_source_id = source.id
        await apply_counters(db, session, booked=1, waitlisted=-1)

        record_event(db, candidate, BookingEventType.PROMOTED, now, position=position, source_id=source.id)
        if candidate.credit_source_id is not None:
            record_event(db, candidate, BookingEventType.CREDIT_DEDUCTED, now, source_id=source.id)
        await compact_waitlist(db, session.id)

        record_promotion("promoted")
        logger.info(
            "waitlist_promoted",
            booking_id=candidate.id,
            member_id=candidate.member_id,
            session_id=session.id,
            from_position=position,
            skipped=len(outcome.skipped),
        )
        outbox.emit(
            Signal(
                kind=SignalKind.BOOKING_PROMOTED,
                member_id=candidate.member_id,
                session_id=session.id,
                booking_id=candidate.id,
                occurred_at=now,
            )
        )
        outcome.promoted = candidate
        return outcome

    record_promotion("empty")
    return outcome
