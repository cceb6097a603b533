"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from app.models.booking import BookingStatus, CheckInMethod


class BookingCreate(BaseModel):
    session_id: int = Field(..., gt=0)
    # Staff may book on behalf of a member; ignored for member tokens
    member_id: Optional[int] = Field(default=None, gt=0)


class CheckInRequest(BaseModel):
    method: CheckInMethod = CheckInMethod.MANUAL


class CheckInLookupRequest(BaseModel):
    member_id: int = Field(..., gt=0)
    session_id: int = Field(..., gt=0)
    method: CheckInMethod = CheckInMethod.QR_SCAN


class BookingResponse(BaseModel):
    id: int
    member_id: int
    class_session_id: int
    status: BookingStatus
    waitlist_position: Optional[int]
    credit_source_id: Optional[int]
    booked_at: datetime
    cancelled_at: Optional[datetime]
    checked_in_at: Optional[datetime]
    check_in_method: Optional[CheckInMethod]
    promoted_at: Optional[datetime]

    model_config = {"from_attributes": True}


class SessionSummary(BaseModel):
    id: int
    class_type_id: int
    location_id: int
    starts_at: datetime
    ends_at: datetime

    model_config = {"from_attributes": True}


class MemberBookingResponse(BaseModel):
    booking: BookingResponse
    session: SessionSummary


class BookingHistoryResponse(BaseModel):
    bookings: list[MemberBookingResponse]
    total: int
    page: int
    page_size: int
