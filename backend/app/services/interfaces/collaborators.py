"""
External collaborator interfaces.
The booking engine signals them; it never waits on them inside a unit.
"""

from abc import ABC, abstractmethod

from app.services.signals import Signal


class NotificationDispatcher(ABC):
    """
    Member-facing messages (promotion off the waitlist, removal from the
    waitlist, own booking cancelled, session cancelled).

    Implementations:
    - LoggingNotificationDispatcher: log only (development, Redis disabled)
    - RedisNotificationDispatcher: publish to the notification channel
    """

    @abstractmethod
    async def send(self, signal: Signal) -> None:
        """Deliver one message. Raising is allowed; the caller logs it."""
        pass


class ActivityTracker(ABC):
    """
    Member activity / attendance streak tracker, fed by check-ins.
    """

    @abstractmethod
    async def record_check_in(self, signal: Signal) -> None:
        pass
