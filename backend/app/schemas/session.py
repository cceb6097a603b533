"""
Pydantic schemas for session lifecycle, roster and waitlist responses.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from app.models.booking import BookingStatus
from app.models.class_session import SessionStatus


class SessionResponse(BaseModel):
    id: int
    class_type_id: int
    location_id: int
    instructor_id: Optional[int]
    starts_at: datetime
    ends_at: datetime
    capacity: int
    booked_count: int
    waitlist_count: int
    spots_left: int
    status: SessionStatus
    cancellation_reason: Optional[str]

    model_config = {"from_attributes": True}


class SessionCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class RosterEntry(BaseModel):
    booking_id: int
    member_id: int
    first_name: str
    last_name: str
    email: str
    status: BookingStatus
    booked_at: datetime
    checked_in_at: Optional[datetime]


class WaitlistEntry(BaseModel):
    booking_id: int
    member_id: int
    first_name: str
    last_name: str
    email: str
    position: int
    joined_at: datetime
