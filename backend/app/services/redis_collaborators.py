"""
Redis-backed collaborators.

Notifications are published as JSON on a pub/sub channel; the messaging
service subscribes and renders emails/pushes.

Activity tracking keeps one hash per member:
  member:{id}:activity -> last_active_at, last_check_in_date, streak_days
A check-in on the day after the previous one extends the streak, a
second check-in on the same day leaves it alone, anything else restarts
it at 1.
"""

import json
from datetime import date, timedelta
from typing import Optional

import redis.asyncio as redis

from app.core.config import get_settings
from app.services.interfaces.collaborators import ActivityTracker, NotificationDispatcher
from app.services.signals import Signal


def activity_key(member_id: int) -> str:
    return f"member:{member_id}:activity"


def next_streak(previous_day: Optional[date], current_streak: int, today: date) -> int:
    if previous_day is None:
        return 1
    if previous_day == today:
        return max(current_streak, 1)
    if previous_day == today - timedelta(days=1):
        return current_streak + 1
    return 1


class RedisNotificationDispatcher(NotificationDispatcher):
    def __init__(self, client: redis.Redis, channel: Optional[str] = None):
        self.redis = client
        self.channel = channel or get_settings().NOTIFICATION_CHANNEL

    async def send(self, signal: Signal) -> None:
        await self.redis.publish(self.channel, json.dumps(signal.to_message()))


class RedisActivityTracker(ActivityTracker):
    def __init__(self, client: redis.Redis):
        self.redis = client

    async def record_check_in(self, signal: Signal) -> None:
        key = activity_key(signal.member_id)
        current = await self.redis.hgetall(key)
        previous_raw = current.get("last_check_in_date")
        previous_day = date.fromisoformat(previous_raw) if previous_raw else None
        today = signal.occurred_at.date()
        streak = next_streak(previous_day, int(current.get("streak_days", 0)), today)

        await self.redis.hset(
            key,
            mapping={
                "last_active_at": signal.occurred_at.isoformat(),
                "last_check_in_date": today.isoformat(),
                "streak_days": streak,
            },
        )
