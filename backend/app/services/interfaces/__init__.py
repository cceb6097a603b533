"""
Collaborator interfaces for dependency inversion.
Allows swapping notification / activity backends without touching the engine.
"""

from .collaborators import NotificationDispatcher, ActivityTracker
from .logging_collaborators import LoggingNotificationDispatcher, LoggingActivityTracker

__all__ = [
    'NotificationDispatcher',
    'ActivityTracker',
    'LoggingNotificationDispatcher',
    'LoggingActivityTracker',
]
