"""
Check-in window: open from `lead_minutes` before the session starts until
the session ends, both ends inclusive.
"""

import enum
from datetime import datetime, timedelta


class CheckInWindow(str, enum.Enum):
    OPEN = "OPEN"
    TOO_EARLY = "TOO_EARLY"
    TOO_LATE = "TOO_LATE"


def evaluate_check_in(
    now: datetime,
    starts_at: datetime,
    ends_at: datetime,
    lead_minutes: int = 30,
) -> CheckInWindow:
    if now < starts_at - timedelta(minutes=lead_minutes):
        return CheckInWindow.TOO_EARLY
    if now > ends_at:
        return CheckInWindow.TOO_LATE
    return CheckInWindow.OPEN
