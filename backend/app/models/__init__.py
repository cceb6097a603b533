from app.models.member import Member
from app.models.class_session import ClassSession, SessionStatus
from app.models.entitlement import (
    EntitlementSource,
    EntitlementKind,
    EntitlementStatus,
    UnlimitedMembership,
    CreditPack,
)
from app.models.booking import Booking, BookingStatus, CheckInMethod
from app.models.booking_event import BookingEvent, BookingEventType

__all__ = [
    "Member",
    "ClassSession", "SessionStatus",
    "EntitlementSource", "EntitlementKind", "EntitlementStatus", "UnlimitedMembership", "CreditPack",
    "Booking", "BookingStatus", "CheckInMethod",
    "BookingEvent", "BookingEventType",
]
