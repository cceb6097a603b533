"""
Booking state machine.

    (none) ──book──▶ BOOKED ──check_in──▶ CHECKED_IN
       │               │ └──session completed──▶ NO_SHOW
       └──book (full)──▶ WAITLISTED ──promotion──▶ BOOKED
    BOOKED | WAITLISTED ──cancel──▶ CANCELLED ──book──▶ (row reopened)

Each transition is one call to `run_session_unit` (see capacity_ledger):
the entitlement check, counter change, credit movement, booking write and
audit event commit together or not at all. Notifications and activity
updates are emitted to the unit's outbox and delivered after commit.

All public functions take `now` so callers (and tests) can pin the clock.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import (
    BookingEngineError,
    ConflictError,
    InvalidStateError,
    NoEntitlementError,
    NotFoundError,
    WindowReason,
    WindowViolationError,
)
from app.core.logging import get_logger
from app.core.metrics import record_transition
from app.models.booking import Booking, BookingStatus, CheckInMethod
from app.models.booking_event import BookingEventType
from app.models.class_session import ClassSession, SessionStatus, OPEN_SESSION_STATUSES
from app.models.member import Member
from app.services.audit import record_event
from app.services.capacity_ledger import apply_counters, lock_session, run_session_unit
from app.services.check_in_gate import CheckInWindow, evaluate_check_in
from app.services.credit_ledger import deduct_credit, is_refund_eligible, refund_credit
from app.services.entitlement_service import resolve_entitlement
from app.services.signals import Signal, SignalKind, SignalOutbox
from app.services.waitlist_service import compact_waitlist, promote_from_waitlist

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _load_booking(db: AsyncSession, booking_id: int) -> Optional[Booking]:
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _find_pair(db: AsyncSession, member_id: int, session_id: int) -> Optional[Booking]:
    result = await db.execute(
        select(Booking)
        .where(Booking.member_id == member_id, Booking.class_session_id == session_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _session_id_of(db: AsyncSession, booking_id: int, member_id: Optional[int] = None) -> int:
    # class_session_id never changes, so reading it before taking the lock is safe
    query = select(Booking.class_session_id).where(Booking.id == booking_id)
    if member_id is not None:
        query = query.where(Booking.member_id == member_id)
    session_id = (await db.execute(query)).scalar_one_or_none()
    if session_id is None:
        raise NotFoundError("Booking not found", details={"booking_id": booking_id})
    return session_id


def _ensure_open(session: ClassSession) -> None:
    if session.status not in OPEN_SESSION_STATUSES:
        raise InvalidStateError(
            f"Class session is {session.status}",
            details={"session_id": session.id, "status": session.status},
        )


async def book_session(
    db: AsyncSession,
    member_id: int,
    session_id: int,
    *,
    now: Optional[datetime] = None,
) -> Booking:
    """
    Book a member into a session, or onto its waitlist when it is full.

    A member's cancelled booking for the same session is reopened rather
    than duplicated, keeping its id.
    """
    now = now or _utcnow()

    async def operation(outbox: SignalOutbox) -> Booking:
        session = await lock_session(db, session_id)
        if session.status != SessionStatus.SCHEDULED.value:
            raise InvalidStateError(
                "Cannot book a class that is not scheduled",
                details={"session_id": session_id, "status": session.status},
            )
        if session.starts_at <= now:
            raise WindowViolationError(
                "Cannot book a class that has already started",
                WindowReason.SESSION_STARTED,
                details={"session_id": session_id},
            )

        if await db.get(Member, member_id) is None:
            raise NotFoundError("Member not found", details={"member_id": member_id})

        booking = await _find_pair(db, member_id, session_id)
        if booking is not None and booking.is_active:
            raise ConflictError(
                "You already have a booking for this class",
                details={"booking_id": booking.id, "status": booking.status},
            )

        source = await resolve_entitlement(db, member_id, session.class_type_id, session.location_id, now)
        if source is None:
            raise NoEntitlementError(
                "No valid membership or credits for this class",
                details={"member_id": member_id, "session_id": session_id},
            )

        reopened = booking is not None
        if booking is None:
            booking = Booking(member_id=member_id, class_session_id=session_id)
            db.add(booking)

        booking.booked_at = now
        booking.cancelled_at = None
        booking.checked_in_at = None
        booking.check_in_method = None
        booking.promoted_at = None
        booking.credit_source_id = None

        waitlisted = session.booked_count >= session.capacity
        if waitlisted:
            booking.status = BookingStatus.WAITLISTED.value
            booking.waitlist_position = session.waitlist_count + 1
            await apply_counters(db, session, waitlisted=1)
        else:
            booking.status = BookingStatus.BOOKED.value
            booking.waitlist_position = None
            if source.consumes_credit:
                await deduct_credit(db, source, session_id)
                booking.credit_source_id = source.id
            await apply_counters(db, session, booked=1)

        await db.flush()
        if reopened:
            record_event(db, booking, BookingEventType.REOPENED, now)
        record_event(
            db,
            booking,
            BookingEventType.WAITLISTED if waitlisted else BookingEventType.CREATED,
            now,
            source_id=source.id,
            position=booking.waitlist_position,
        )
        if booking.credit_source_id is not None:
            record_event(db, booking, BookingEventType.CREDIT_DEDUCTED, now, source_id=source.id)

        logger.info(
            "booking_waitlisted" if waitlisted else "booking_created",
            booking_id=booking.id,
            member_id=member_id,
            session_id=session_id,
            position=booking.waitlist_position,
            reopened=reopened,
            source_id=source.id,
        )
        return booking

    try:
        booking = await run_session_unit(db, session_id, operation)
    except BookingEngineError as e:
        record_transition("book", e.code)
        raise
    record_transition("book")
    return booking


async def cancel_booking(
    db: AsyncSession,
    booking_id: int,
    member_id: int,
    *,
    now: Optional[datetime] = None,
    cancellation_window_hours: Optional[int] = None,
) -> Booking:
    """
    Cancel a member's booking.

    Booked: frees the spot, refunds a consumed credit if cancelled before
    the deadline, then promotes from the waitlist in the same unit.
    Waitlisted: leaves the queue; positions behind it move up.
    """
    now = now or _utcnow()
    window_hours = (
        cancellation_window_hours
        if cancellation_window_hours is not None
        else get_settings().CANCELLATION_WINDOW_HOURS
    )
    session_id = await _session_id_of(db, booking_id, member_id)

    async def operation(outbox: SignalOutbox) -> Booking:
        session = await lock_session(db, session_id)
        booking = await _load_booking(db, booking_id)

        if booking.status == BookingStatus.CANCELLED.value:
            raise InvalidStateError("Booking is already cancelled", details={"booking_id": booking_id})
        if booking.status in (BookingStatus.CHECKED_IN.value, BookingStatus.NO_SHOW.value):
            raise InvalidStateError(
                "Cannot cancel after check-in" if booking.status == BookingStatus.CHECKED_IN.value
                else "Cannot cancel a no-show",
                details={"booking_id": booking_id, "status": booking.status},
            )
        _ensure_open(session)

        was_booked = booking.status == BookingStatus.BOOKED.value
        booking.status = BookingStatus.CANCELLED.value
        booking.cancelled_at = now
        refunded = False

        if was_booked:
            if is_refund_eligible(booking, session, now, window_hours):
                refunded = await refund_credit(db, booking.credit_source_id)
            await apply_counters(db, session, booked=-1)
            record_event(db, booking, BookingEventType.CANCELLED, now, was="BOOKED", refunded=refunded)
            if refunded:
                record_event(db, booking, BookingEventType.CREDIT_REFUNDED, now, source_id=booking.credit_source_id)
            await promote_from_waitlist(db, session, outbox, now)
        else:
            position = booking.waitlist_position
            booking.waitlist_position = None
            await apply_counters(db, session, waitlisted=-1)
            record_event(db, booking, BookingEventType.CANCELLED, now, was="WAITLISTED", position=position)
            await compact_waitlist(db, session_id)

        await db.flush()
        outbox.emit(
            Signal(
                kind=SignalKind.BOOKING_CANCELLED,
                member_id=booking.member_id,
                session_id=session_id,
                booking_id=booking_id,
                occurred_at=now,
                payload={"was": "BOOKED" if was_booked else "WAITLISTED", "credit_refunded": refunded},
            )
        )
        logger.info(
            "booking_cancelled",
            booking_id=booking_id,
            member_id=member_id,
            session_id=session_id,
            was_booked=was_booked,
            credit_refunded=refunded,
        )
        return booking

    try:
        booking = await run_session_unit(db, session_id, operation)
    except BookingEngineError as e:
        record_transition("cancel", e.code)
        raise
    record_transition("cancel")
    return booking


async def check_in(
    db: AsyncSession,
    booking_id: int,
    method: CheckInMethod = CheckInMethod.MANUAL,
    *,
    now: Optional[datetime] = None,
    lead_minutes: Optional[int] = None,
) -> Booking:
    """Mark a booked member present. Only valid inside the check-in window."""
    now = now or _utcnow()
    lead = lead_minutes if lead_minutes is not None else get_settings().CHECKIN_LEAD_MINUTES
    session_id = await _session_id_of(db, booking_id)

    async def operation(outbox: SignalOutbox) -> Booking:
        session = await lock_session(db, session_id)
        booking = await _load_booking(db, booking_id)

        if booking.status != BookingStatus.BOOKED.value:
            raise InvalidStateError(
                "Can only check in booked members",
                details={"booking_id": booking_id, "status": booking.status},
            )
        _ensure_open(session)

        window = evaluate_check_in(now, session.starts_at, session.ends_at, lead)
        if window == CheckInWindow.TOO_EARLY:
            raise WindowViolationError(
                "Check-in is not yet open for this class",
                WindowReason.TOO_EARLY,
                details={"opens_minutes_before_start": lead},
            )
        if window == CheckInWindow.TOO_LATE:
            raise WindowViolationError("Check-in window has closed", WindowReason.TOO_LATE)

        booking.status = BookingStatus.CHECKED_IN.value
        booking.checked_in_at = now
        booking.check_in_method = CheckInMethod(method).value
        await apply_counters(db, session)
        record_event(db, booking, BookingEventType.CHECKED_IN, now, method=booking.check_in_method)
        await db.flush()

        outbox.emit(
            Signal(
                kind=SignalKind.MEMBER_CHECKED_IN,
                member_id=booking.member_id,
                session_id=session_id,
                booking_id=booking_id,
                occurred_at=now,
                payload={"method": booking.check_in_method},
            )
        )
        logger.info(
            "member_checked_in",
            booking_id=booking_id,
            member_id=booking.member_id,
            session_id=session_id,
            method=booking.check_in_method,
        )
        return booking

    try:
        booking = await run_session_unit(db, session_id, operation)
    except BookingEngineError as e:
        record_transition("check_in", e.code)
        raise
    record_transition("check_in")
    return booking


async def check_in_by_lookup(
    db: AsyncSession,
    member_id: int,
    session_id: int,
    method: CheckInMethod = CheckInMethod.QR_SCAN,
    *,
    now: Optional[datetime] = None,
    lead_minutes: Optional[int] = None,
) -> Booking:
    """Check in by member + session, e.g. from a scanned member QR code."""
    booking = await _find_pair(db, member_id, session_id)
    if booking is None or not booking.is_active:
        raise NotFoundError(
            "No booking found for this member and class",
            details={"member_id": member_id, "session_id": session_id},
        )
    return await check_in(db, booking.id, method, now=now, lead_minutes=lead_minutes)


async def get_booking(db: AsyncSession, booking_id: int) -> Booking:
    booking = await _load_booking(db, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found", details={"booking_id": booking_id})
    return booking


async def get_upcoming_bookings(
    db: AsyncSession,
    member_id: int,
    *,
    now: Optional[datetime] = None,
) -> list[tuple[Booking, ClassSession]]:
    """Booked or waitlisted, on sessions that haven't started yet, soonest first."""
    now = now or _utcnow()
    result = await db.execute(
        select(Booking, ClassSession)
        .join(ClassSession, ClassSession.id == Booking.class_session_id)
        .where(
            Booking.member_id == member_id,
            Booking.status.in_([BookingStatus.BOOKED.value, BookingStatus.WAITLISTED.value]),
            ClassSession.starts_at >= now,
        )
        .order_by(ClassSession.starts_at.asc())
    )
    return [(booking, session) for booking, session in result.all()]


async def get_booking_history(
    db: AsyncSession,
    member_id: int,
    page: int = 1,
    page_size: int = 20,
    *,
    now: Optional[datetime] = None,
) -> tuple[list[tuple[Booking, ClassSession]], int]:
    """Bookings on sessions that already started, newest first, paginated."""
    now = now or _utcnow()
    conditions = (
        Booking.member_id == member_id,
        ClassSession.starts_at < now,
    )
    base = select(Booking, ClassSession).join(ClassSession, ClassSession.id == Booking.class_session_id)

    count_query = (
        select(func.count())
        .select_from(Booking)
        .join(ClassSession, ClassSession.id == Booking.class_session_id)
        .where(*conditions)
    )
    total = (await db.execute(count_query)).scalar()

    result = await db.execute(
        base.where(*conditions)
        .order_by(ClassSession.starts_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return [(booking, session) for booking, session in result.all()], total
