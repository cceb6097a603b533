"""
Append-only audit trail of booking transitions.

A cancelled booking row can be reopened by a later booking, which resets
its timestamps. Every transition is also written here, inside the same
atomic unit, so nothing about earlier cycles is lost.
"""

import enum

from sqlalchemy import Column, Integer, String, ForeignKey, JSON, Index

from app.db.base import Base
from app.db.types import UTCDateTime, utcnow


class BookingEventType(str, enum.Enum):
    CREATED = "CREATED"
    WAITLISTED = "WAITLISTED"
    REOPENED = "REOPENED"
    CANCELLED = "CANCELLED"
    PROMOTED = "PROMOTED"
    SKIPPED = "SKIPPED"  # removed from waitlist during promotion, no entitlement
    CHECKED_IN = "CHECKED_IN"
    NO_SHOW = "NO_SHOW"
    CREDIT_DEDUCTED = "CREDIT_DEDUCTED"
    CREDIT_REFUNDED = "CREDIT_REFUNDED"


class BookingEvent(Base):
    __tablename__ = "booking_events"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    class_session_id = Column(Integer, ForeignKey("class_sessions.id"), nullable=False)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False)
    event_type = Column(String(30), nullable=False)
    occurred_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    details = Column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_booking_events_session_occurred", "class_session_id", "occurred_at"),
    )

    def __repr__(self) -> str:
        return f"<BookingEvent(booking={self.booking_id}, type={self.event_type})>"
