"""
Periodic sweep that completes sessions whose end time has passed.
Started from the app lifespan when SWEEP_ENABLED is set.
"""

import asyncio
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.services.session_service import complete_past_sessions

logger = get_logger(__name__)


async def run_completion_sweep(
    session_factory: Callable[[], AsyncSession],
    interval_seconds: int,
    stop: asyncio.Event,
) -> None:
    logger.info("sweeper_started", interval_seconds=interval_seconds)
    while not stop.is_set():
        try:
            await complete_past_sessions(session_factory)
        except Exception as e:
            # Storage hiccups must not kill the loop; the next tick retries
            logger.error("sweep_failed", error=str(e))
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass
    logger.info("sweeper_stopped")
