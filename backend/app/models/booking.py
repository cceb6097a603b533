"""
Booking: one member's claim on one class session.

Key design decisions:
- Unique constraint on (member_id, class_session_id): a cancelled row is
  reopened by a later booking instead of inserting a second one. The
  history that reuse would overwrite lives in `booking_events`.
- Rows are never deleted; status carries the lifecycle.
- `waitlist_position` is set exactly while status is WAITLISTED.
- `credit_source_id` is set only when a credit-pack credit was consumed,
  which is what makes a booking refundable.
"""

import enum

from sqlalchemy import Column, Integer, String, ForeignKey, UniqueConstraint, CheckConstraint, Index

from app.db.base import Base, TimestampMixin
from app.db.types import UTCDateTime


class BookingStatus(str, enum.Enum):
    BOOKED = "BOOKED"
    WAITLISTED = "WAITLISTED"
    CHECKED_IN = "CHECKED_IN"
    NO_SHOW = "NO_SHOW"
    CANCELLED = "CANCELLED"


class CheckInMethod(str, enum.Enum):
    QR_SCAN = "QR_SCAN"
    MANUAL = "MANUAL"
    AUTO = "AUTO"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    class_session_id = Column(Integer, ForeignKey("class_sessions.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    waitlist_position = Column(Integer, nullable=True)
    credit_source_id = Column(Integer, ForeignKey("entitlement_sources.id"), nullable=True)

    booked_at = Column(UTCDateTime(), nullable=False)
    cancelled_at = Column(UTCDateTime(), nullable=True)
    checked_in_at = Column(UTCDateTime(), nullable=True)
    check_in_method = Column(String(20), nullable=True)
    promoted_at = Column(UTCDateTime(), nullable=True)

    __table_args__ = (
        UniqueConstraint("member_id", "class_session_id", name="uq_member_session_booking"),
        CheckConstraint(
            "status IN ('BOOKED', 'WAITLISTED', 'CHECKED_IN', 'NO_SHOW', 'CANCELLED')",
            name="check_booking_status",
        ),
        CheckConstraint(
            "(status = 'WAITLISTED' AND waitlist_position IS NOT NULL AND waitlist_position >= 1)"
            " OR (status <> 'WAITLISTED' AND waitlist_position IS NULL)",
            name="check_booking_waitlist_position",
        ),
        # Roster / waitlist / no-show sweep all filter by session + status
        Index("ix_bookings_session_status", "class_session_id", "status"),
    )

    @property
    def credit_deducted(self) -> bool:
        return self.credit_source_id is not None

    @property
    def is_active(self) -> bool:
        return self.status != BookingStatus.CANCELLED

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, member={self.member_id}, "
            f"session={self.class_session_id}, status={self.status})>"
        )
