"""
Session lifecycle (start, complete, cancel) and read models (roster,
waitlist).

The catalog owns creating and editing sessions; this module only moves a
session through its statuses, and each move is a session unit like any
booking transition. A sweep that completes finished sessions can
therefore run alongside member traffic: whichever unit gets the lock
second sees the new status and fails fast with InvalidStateError.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import BookingEngineError, InvalidStateError, NotFoundError
from app.core.logging import get_logger
from app.core.metrics import record_transition
from app.models.booking import Booking, BookingStatus
from app.models.booking_event import BookingEventType
from app.models.class_session import ClassSession, SessionStatus, OPEN_SESSION_STATUSES
from app.models.member import Member
from app.services.audit import record_event
from app.services.capacity_ledger import apply_counters, lock_session, run_session_unit
from app.services.credit_ledger import refund_credit
from app.services.signals import Signal, SignalKind, SignalOutbox

logger = get_logger(__name__)

ROSTER_STATUSES = (
    BookingStatus.BOOKED.value,
    BookingStatus.CHECKED_IN.value,
    BookingStatus.NO_SHOW.value,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def get_session(db: AsyncSession, session_id: int) -> ClassSession:
    result = await db.execute(
        select(ClassSession)
        .where(ClassSession.id == session_id)
        .execution_options(populate_existing=True)
    )
    session = result.scalar_one_or_none()
    if session is None:
        raise NotFoundError(f"Class session {session_id} not found", details={"session_id": session_id})
    return session


async def start_session(db: AsyncSession, session_id: int) -> ClassSession:
    async def operation(outbox: SignalOutbox) -> ClassSession:
        session = await lock_session(db, session_id)
        if session.status != SessionStatus.SCHEDULED.value:
            raise InvalidStateError(
                "Only scheduled classes can be started",
                details={"session_id": session_id, "status": session.status},
            )
        await apply_counters(db, session, status=SessionStatus.IN_PROGRESS.value)
        logger.info("session_started", session_id=session_id)
        return session

    session = await run_session_unit(db, session_id, operation)
    record_transition("start_session")
    return session


async def complete_session(
    db: AsyncSession,
    session_id: int,
    *,
    now: Optional[datetime] = None,
) -> ClassSession:
    """
    Close the session. Bookings still BOOKED become NO_SHOW; the spot was
    used up, so counters and credits stay as they are. Checked-in and
    waitlisted bookings are left alone.
    """
    now = now or _utcnow()

    async def operation(outbox: SignalOutbox) -> ClassSession:
        session = await lock_session(db, session_id)
        if session.status not in OPEN_SESSION_STATUSES:
            raise InvalidStateError(
                "Only scheduled or in-progress classes can be completed",
                details={"session_id": session_id, "status": session.status},
            )

        result = await db.execute(
            select(Booking)
            .where(
                Booking.class_session_id == session_id,
                Booking.status == BookingStatus.BOOKED.value,
            )
            .execution_options(populate_existing=True)
        )
        no_shows = list(result.scalars().all())
        for booking in no_shows:
            booking.status = BookingStatus.NO_SHOW.value
            record_event(db, booking, BookingEventType.NO_SHOW, now)

        await apply_counters(db, session, status=SessionStatus.COMPLETED.value)
        logger.info("session_completed", session_id=session_id, no_shows=len(no_shows))
        return session

    session = await run_session_unit(db, session_id, operation)
    record_transition("complete_session")
    return session


async def cancel_session(
    db: AsyncSession,
    session_id: int,
    reason: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> ClassSession:
    """
    Cancel a scheduled session. Every booked and waitlisted member is
    cancelled; consumed credits are refunded regardless of the deadline,
    since the member didn't cause it. Each affected member is notified.
    """
    now = now or _utcnow()

    async def operation(outbox: SignalOutbox) -> ClassSession:
        session = await lock_session(db, session_id)
        if session.status != SessionStatus.SCHEDULED.value:
            raise InvalidStateError(
                "Can only cancel scheduled classes",
                details={"session_id": session_id, "status": session.status},
            )

        result = await db.execute(
            select(Booking)
            .where(
                Booking.class_session_id == session_id,
                Booking.status.in_([BookingStatus.BOOKED.value, BookingStatus.WAITLISTED.value]),
            )
            .execution_options(populate_existing=True)
        )
        affected = list(result.scalars().all())
        refunds = 0
        for booking in affected:
            was = booking.status
            booking.status = BookingStatus.CANCELLED.value
            booking.waitlist_position = None
            booking.cancelled_at = now
            record_event(db, booking, BookingEventType.CANCELLED, now, was=was, reason="session_cancelled")
            if was == BookingStatus.BOOKED.value and booking.credit_deducted:
                if await refund_credit(db, booking.credit_source_id):
                    refunds += 1
                    record_event(
                        db, booking, BookingEventType.CREDIT_REFUNDED, now, source_id=booking.credit_source_id
                    )
            outbox.emit(
                Signal(
                    kind=SignalKind.SESSION_CANCELLED,
                    member_id=booking.member_id,
                    session_id=session_id,
                    booking_id=booking.id,
                    occurred_at=now,
                    payload={"reason": reason} if reason else {},
                )
            )

        await apply_counters(
            db,
            session,
            booked=-session.booked_count,
            waitlisted=-session.waitlist_count,
            status=SessionStatus.CANCELLED.value,
            cancellation_reason=reason,
        )
        logger.info(
            "session_cancelled",
            session_id=session_id,
            bookings_cancelled=len(affected),
            credits_refunded=refunds,
        )
        return session

    session = await run_session_unit(db, session_id, operation)
    record_transition("cancel_session")
    return session


async def get_roster(db: AsyncSession, session_id: int) -> list[tuple[Booking, Member]]:
    """Members holding a spot, in the order they got it."""
    await get_session(db, session_id)
    result = await db.execute(
        select(Booking, Member)
        .join(Member, Member.id == Booking.member_id)
        .where(
            Booking.class_session_id == session_id,
            Booking.status.in_(ROSTER_STATUSES),
        )
        .order_by(Booking.booked_at.asc(), Booking.id.asc())
    )
    return [(booking, member) for booking, member in result.all()]


async def get_waitlist(db: AsyncSession, session_id: int) -> list[tuple[Booking, Member]]:
    await get_session(db, session_id)
    result = await db.execute(
        select(Booking, Member)
        .join(Member, Member.id == Booking.member_id)
        .where(
            Booking.class_session_id == session_id,
            Booking.status == BookingStatus.WAITLISTED.value,
        )
        .order_by(Booking.waitlist_position.asc())
    )
    return [(booking, member) for booking, member in result.all()]


async def complete_past_sessions(
    session_factory: Callable[[], AsyncSession],
    *,
    now: Optional[datetime] = None,
) -> list[int]:
    """
    Sweep: complete every open session that has ended. Each session is
    its own unit on its own DB session; one that another caller already
    closed is skipped.
    """
    now = now or _utcnow()
    async with session_factory() as db:
        result = await db.execute(
            select(ClassSession.id)
            .where(
                ClassSession.status.in_([s.value for s in OPEN_SESSION_STATUSES]),
                ClassSession.ends_at <= now,
            )
            .order_by(ClassSession.ends_at.asc())
        )
        due = list(result.scalars().all())

    completed = []
    for session_id in due:
        async with session_factory() as db:
            try:
                await complete_session(db, session_id, now=now)
            except InvalidStateError:
                logger.info("sweep_session_already_closed", session_id=session_id)
                continue
            except BookingEngineError as e:
                logger.warning("sweep_session_skipped", session_id=session_id, code=e.code, error=e.message)
                continue
            completed.append(session_id)

    if completed:
        logger.info("sweep_completed_sessions", count=len(completed))
    return completed
