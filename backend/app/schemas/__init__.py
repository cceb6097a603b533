from app.schemas.booking import (
    BookingCreate, BookingResponse, CheckInRequest, CheckInLookupRequest,
    MemberBookingResponse, BookingHistoryResponse,
)
from app.schemas.session import (
    SessionResponse, SessionCancelRequest, RosterEntry, WaitlistEntry,
)

__all__ = [
    "BookingCreate", "BookingResponse", "CheckInRequest", "CheckInLookupRequest",
    "MemberBookingResponse", "BookingHistoryResponse",
    "SessionResponse", "SessionCancelRequest", "RosterEntry", "WaitlistEntry",
]
