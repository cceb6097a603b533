"""
Entitlement resolver: which membership or credit pack pays for a booking.

Read-only. Among usable sources it picks the one whose window closes
first, so expiring credits are spent before open-ended ones; ties fall
back to the oldest source.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.entitlement import EntitlementSource, EntitlementStatus


def _expiry_order(source: EntitlementSource) -> tuple:
    # open-ended sources sort last
    return (source.ends_at is None, source.ends_at or source.starts_at, source.id)


async def list_member_sources(db: AsyncSession, member_id: int) -> list[EntitlementSource]:
    result = await db.execute(
        select(EntitlementSource)
        .where(
            EntitlementSource.member_id == member_id,
            EntitlementSource.status != EntitlementStatus.CANCELLED.value,
        )
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


def pick_source(
    sources: list[EntitlementSource],
    class_type_id: int,
    location_id: int,
    now: datetime,
) -> Optional[EntitlementSource]:
    usable = [s for s in sources if s.is_usable_for(class_type_id, location_id, now)]
    if not usable:
        return None
    return min(usable, key=_expiry_order)


async def resolve_entitlement(
    db: AsyncSession,
    member_id: int,
    class_type_id: int,
    location_id: int,
    now: datetime,
) -> Optional[EntitlementSource]:
    """Returns None when the member has nothing that covers this class."""
    sources = await list_member_sources(db, member_id)
    return pick_source(sources, class_type_id, location_id, now)
