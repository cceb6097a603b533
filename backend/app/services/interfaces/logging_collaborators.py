"""
Log-only collaborators.
Used when Redis is disabled or unreachable; the transitions still commit.
"""

from app.core.logging import get_logger
from app.services.interfaces.collaborators import ActivityTracker, NotificationDispatcher
from app.services.signals import Signal

logger = get_logger(__name__)


class LoggingNotificationDispatcher(NotificationDispatcher):
    async def send(self, signal: Signal) -> None:
        logger.info("notification_logged", **signal.to_message())


class LoggingActivityTracker(ActivityTracker):
    async def record_check_in(self, signal: Signal) -> None:
        logger.info("activity_logged", **signal.to_message())
