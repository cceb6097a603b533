"""
Credit ledger for credit-pack entitlement sources.

Both operations are single guarded UPDATEs: the row lock taken by the
UPDATE serialises concurrent spends of the same pack, and the guard
(credits_remaining > 0 on deduct) makes a lost race match zero rows.
A zero-row deduct raises StaleSessionError so the enclosing unit
re-resolves the entitlement from scratch.
"""

from datetime import datetime, timedelta

from sqlalchemy import case, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import StaleSessionError
from app.core.logging import get_logger
from app.core.metrics import record_credit_operation
from app.models.booking import Booking
from app.models.class_session import ClassSession
from app.models.entitlement import EntitlementSource, EntitlementStatus

logger = get_logger(__name__)


def refund_deadline(session: ClassSession, cancellation_window_hours: int) -> datetime:
    return session.starts_at - timedelta(hours=cancellation_window_hours)


def is_refund_eligible(
    booking: Booking,
    session: ClassSession,
    now: datetime,
    cancellation_window_hours: int,
) -> bool:
    """A consumed credit comes back only if the cancellation beats the deadline."""
    if not booking.credit_deducted:
        return False
    return now < refund_deadline(session, cancellation_window_hours)


async def deduct_credit(db: AsyncSession, source: EntitlementSource, session_id: int) -> EntitlementSource:
    result = await db.execute(
        update(EntitlementSource)
        .where(
            EntitlementSource.id == source.id,
            EntitlementSource.credits_remaining > 0,
        )
        .values(
            credits_remaining=EntitlementSource.credits_remaining - 1,
            credits_used=func.coalesce(EntitlementSource.credits_used, 0) + 1,
            status=case(
                (EntitlementSource.credits_remaining <= 1, EntitlementStatus.EXHAUSTED.value),
                else_=EntitlementSource.status,
            ),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise StaleSessionError(session_id, reason="credit_exhausted_concurrently")

    await db.refresh(source)
    record_credit_operation("deduct")
    logger.info(
        "credit_deducted",
        source_id=source.id,
        member_id=source.member_id,
        credits_remaining=source.credits_remaining,
    )
    return source


async def refund_credit(db: AsyncSession, source_id: int) -> bool:
    """Give one credit back. Returns False if the ledger had nothing to undo."""
    result = await db.execute(
        update(EntitlementSource)
        .where(
            EntitlementSource.id == source_id,
            EntitlementSource.credits_used > 0,
        )
        .values(
            credits_remaining=EntitlementSource.credits_remaining + 1,
            credits_used=EntitlementSource.credits_used - 1,
            status=case(
                (EntitlementSource.status == EntitlementStatus.EXHAUSTED.value, EntitlementStatus.ACTIVE.value),
                else_=EntitlementSource.status,
            ),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.warning("credit_refund_skipped", source_id=source_id, reason="nothing_to_refund")
        return False

    record_credit_operation("refund")
    logger.info("credit_refunded", source_id=source_id)
    return True
