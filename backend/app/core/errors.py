"""
Domain errors for the booking engine.

Every failure a caller can see is one of these. They are raised inside an
atomic unit, which rolls back before the error leaves the service layer,
so a raised error always means "nothing changed".

The API layer turns them into JSON via `to_http_exception()`.
"""

from enum import Enum
from typing import Any, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class BookingEngineError(Exception):
    """Base class for user-presentable booking failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_code: str = "BOOKING_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_dict())


class NotFoundError(BookingEngineError):
    """Session, booking or member does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"


class ConflictError(BookingEngineError):
    """Duplicate active booking, or a unit that lost too many races."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "CONFLICT"


class InvalidStateError(BookingEngineError):
    """Operation not valid for the booking's or session's current status."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "INVALID_STATE"


class NoEntitlementError(BookingEngineError):
    """Member has no membership or credit pack that covers the session."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_code = "NO_ENTITLEMENT"


class WindowReason(str, Enum):
    TOO_EARLY = "TOO_EARLY"
    TOO_LATE = "TOO_LATE"
    SESSION_STARTED = "SESSION_STARTED"


class WindowViolationError(InvalidStateError):
    """
    A time window was missed: check-in too early/late, or booking a session
    that has already started. It is an InvalidStateError too, so callers
    matching on the broader class still catch it.
    """

    status_code = HTTP_422_UNPROCESSABLE
    default_code = "WINDOW_VIOLATION"

    def __init__(self, message: str, reason: WindowReason, details: Optional[dict[str, Any]] = None):
        self.reason = reason
        merged = {"reason": reason.value, **(details or {})}
        super().__init__(message, details=merged)


class ForbiddenError(BookingEngineError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "FORBIDDEN"


class StaleSessionError(Exception):
    """
    Internal: the session row's version moved under us, or a guarded
    credit update matched no row. The atomic unit is rolled back and
    retried; callers never see this directly.
    """

    def __init__(self, session_id: int, reason: str = "version_conflict"):
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"session {session_id}: {reason}")
