"""
Tests for the check-in window gate.
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.services.check_in_gate import CheckInWindow, evaluate_check_in

STARTS = datetime(2026, 3, 2, 18, 0, tzinfo=timezone.utc)
ENDS = STARTS + timedelta(hours=1)


@pytest.mark.parametrize(
    "offset, expected",
    [
        (timedelta(minutes=-31), CheckInWindow.TOO_EARLY),
        (timedelta(minutes=-30), CheckInWindow.OPEN),
        (timedelta(minutes=-10), CheckInWindow.OPEN),
        (timedelta(minutes=45), CheckInWindow.OPEN),
        (timedelta(hours=1), CheckInWindow.OPEN),
        (timedelta(hours=1, seconds=1), CheckInWindow.TOO_LATE),
    ],
)
def test_window_boundaries(offset, expected):
    assert evaluate_check_in(STARTS + offset, STARTS, ENDS) == expected


def test_custom_lead_minutes():
    now = STARTS - timedelta(minutes=50)
    assert evaluate_check_in(now, STARTS, ENDS, lead_minutes=30) == CheckInWindow.TOO_EARLY
    assert evaluate_check_in(now, STARTS, ENDS, lead_minutes=60) == CheckInWindow.OPEN
