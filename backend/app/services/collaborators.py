"""
Collaborator factory.
Configures which notification / activity backends the engine signals.
"""

from typing import Optional

from app.core.config import get_settings
from app.core.logging import get_logger
from app.infrastructure.redis_client import get_redis
from app.services.interfaces.collaborators import ActivityTracker, NotificationDispatcher
from app.services.interfaces.logging_collaborators import (
    LoggingActivityTracker,
    LoggingNotificationDispatcher,
)
from app.services.redis_collaborators import RedisActivityTracker, RedisNotificationDispatcher

logger = get_logger(__name__)

_notifier: Optional[NotificationDispatcher] = None
_tracker: Optional[ActivityTracker] = None


async def init_collaborators() -> None:
    """
    Pick backends at startup.

    - SIGNAL_BACKEND=log: log-only (development default)
    - SIGNAL_BACKEND=redis: Redis pub/sub + activity hashes, falling back
      to log-only if Redis is unreachable
    """
    settings = get_settings()
    notifier: NotificationDispatcher = LoggingNotificationDispatcher()
    tracker: ActivityTracker = LoggingActivityTracker()

    if settings.SIGNAL_BACKEND == "redis":
        client = await get_redis()
        if client is not None:
            notifier = RedisNotificationDispatcher(client)
            tracker = RedisActivityTracker(client)
        else:
            logger.warning("signal_backend_fallback", requested="redis", using="log")

    configure_collaborators(notifier=notifier, tracker=tracker)


def configure_collaborators(
    notifier: Optional[NotificationDispatcher] = None,
    tracker: Optional[ActivityTracker] = None,
) -> None:
    global _notifier, _tracker
    _notifier = notifier
    _tracker = tracker


def get_notifier() -> NotificationDispatcher:
    global _notifier
    if _notifier is None:
        _notifier = LoggingNotificationDispatcher()
    return _notifier


def get_activity_tracker() -> ActivityTracker:
    global _tracker
    if _tracker is None:
        _tracker = LoggingActivityTracker()
    return _tracker
