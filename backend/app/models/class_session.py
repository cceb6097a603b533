"""
Class session with denormalised capacity counters.

Key design decisions:
- `booked_count` / `waitlist_count` are denormalised (avoids COUNT over
  bookings on every admission decision). They are written only through
  `capacity_ledger.apply_counters`, inside the per-session atomic unit.
- `version` is bumped by every transition touching the session, so a
  counter write that lost a race matches zero rows instead of clobbering.
- Catalog ids (class type, location, instructor) are references into the
  external catalog; this service never edits them.
"""

import enum

from sqlalchemy import Column, Integer, String, Index, CheckConstraint

from app.db.base import Base, TimestampMixin
from app.db.types import UTCDateTime


class SessionStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


OPEN_SESSION_STATUSES = (SessionStatus.SCHEDULED, SessionStatus.IN_PROGRESS)


class ClassSession(Base, TimestampMixin):
    __tablename__ = "class_sessions"

    id = Column(Integer, primary_key=True, index=True)
    class_type_id = Column(Integer, nullable=False)
    location_id = Column(Integer, nullable=False)
    instructor_id = Column(Integer, nullable=True)
    starts_at = Column(UTCDateTime(), nullable=False)
    ends_at = Column(UTCDateTime(), nullable=False)
    capacity = Column(Integer, nullable=False)
    booked_count = Column(Integer, nullable=False, default=0)
    waitlist_count = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=SessionStatus.SCHEDULED.value)
    cancellation_reason = Column(String(500), nullable=True)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("capacity >= 0", name="check_session_capacity_non_negative"),
        CheckConstraint("booked_count >= 0", name="check_session_booked_non_negative"),
        CheckConstraint("booked_count <= capacity", name="check_session_booked_lte_capacity"),
        CheckConstraint("waitlist_count >= 0", name="check_session_waitlist_non_negative"),
        CheckConstraint("ends_at > starts_at", name="check_session_ends_after_start"),
        CheckConstraint(
            "status IN ('SCHEDULED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED')",
            name="check_session_status",
        ),
        # Completion sweep: open sessions whose end has passed
        Index("ix_class_sessions_status_ends_at", "status", "ends_at"),
        Index("ix_class_sessions_starts_at", "starts_at"),
    )

    @property
    def spots_left(self) -> int:
        return max(self.capacity - self.booked_count, 0)

    def __repr__(self) -> str:
        return (
            f"<ClassSession(id={self.id}, status={self.status}, "
            f"booked={self.booked_count}/{self.capacity}, waitlist={self.waitlist_count})>"
        )
