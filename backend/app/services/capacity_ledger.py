"""
Session capacity ledger: per-session counters and the atomic unit that
guards them.

CONCURRENCY STRATEGY: Session-scoped critical section + versioned writes
========================================================================

Problem:
  Two members book the last spot simultaneously. Both read
  booked_count = capacity - 1, both increment, the session is overbooked.
  The same race on waitlist_count hands out duplicate waitlist positions.

Solution:
  Every mutating operation (book, cancel + promotion, check-in, start,
  complete, cancel session) runs through `run_session_unit`:

  1. Acquire an in-process asyncio.Lock keyed by session id. Callers in
     this process queue up here instead of burning retries.
  2. Re-read the session row with SELECT ... FOR UPDATE. Other processes
     block on the row lock until we commit. (SQLite ignores FOR UPDATE;
     it serialises writers on its own.)
  3. Validate, then write counters with
       UPDATE class_sessions SET ..., version = version + 1
       WHERE id = :id AND version = :seen_version
     If rows_affected == 0 something moved underneath us: roll back and
     run the whole unit again, up to MAX_RETRY_ATTEMPTS.
  4. Commit, release the lock, then dispatch deferred signals.

  Lock order is always session row, then entitlement row. Sessions are
  never locked two at a time, so units cannot deadlock each other.
  Operations on different sessions run fully in parallel.

  DB CHECK constraints (booked_count <= capacity, counters >= 0) are the
  final safety net.
"""

import asyncio
import time
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import ConflictError, NotFoundError, StaleSessionError
from app.core.logging import get_logger
from app.core.metrics import session_unit_latency, session_unit_retries
from app.models.class_session import ClassSession
from app.services import signals
from app.services.signals import SignalOutbox

logger = get_logger(__name__)

T = TypeVar("T")


class SessionLockRegistry:
    """
    One asyncio.Lock per session id. Entries are held weakly, so a lock
    disappears once no coroutine is holding or waiting on it.
    """

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    @asynccontextmanager
    async def hold(self, session_id: int) -> AsyncIterator[None]:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        async with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)


session_locks = SessionLockRegistry()


async def lock_session(db: AsyncSession, session_id: int) -> ClassSession:
    """Row-lock and freshly load the session. Must run inside a unit."""
    result = await db.execute(
        select(ClassSession)
        .where(ClassSession.id == session_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    session = result.scalar_one_or_none()
    if session is None:
        raise NotFoundError(f"Class session {session_id} not found", details={"session_id": session_id})
    return session


async def apply_counters(
    db: AsyncSession,
    session: ClassSession,
    *,
    booked: int = 0,
    waitlisted: int = 0,
    **fields,
) -> ClassSession:
    """
    The only writer of booked_count / waitlist_count / status.

    Applies deltas relative to the row, bumps the version and reloads the
    session object. A zero-delta call is a pure version bump, used by
    transitions that change bookings but not counters.
    """
    values = {
        "booked_count": ClassSession.booked_count + booked,
        "waitlist_count": ClassSession.waitlist_count + waitlisted,
        "version": ClassSession.version + 1,
        **fields,
    }
    result = await db.execute(
        update(ClassSession)
        .where(ClassSession.id == session.id, ClassSession.version == session.version)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise StaleSessionError(session.id)

    await db.refresh(session)
    return session


async def run_session_unit(
    db: AsyncSession,
    session_id: int,
    operation: Callable[[SignalOutbox], Awaitable[T]],
) -> T:
    """
    Run `operation` as one serialisable, all-or-nothing unit for a session.

    `operation` receives a fresh outbox on every attempt; signals from a
    rolled-back attempt are dropped. Domain errors roll back and propagate
    untouched; database errors likewise.
    """
    settings = get_settings()
    started = time.perf_counter()

    async with session_locks.hold(session_id):
        for attempt in range(1, settings.MAX_RETRY_ATTEMPTS + 1):
            outbox = SignalOutbox()
            try:
                result = await operation(outbox)
                await db.commit()
            except StaleSessionError as e:
                await db.rollback()
                session_unit_retries.inc()
                logger.info(
                    "session_unit_retry",
                    session_id=session_id,
                    attempt=attempt,
                    reason=e.reason,
                )
                if attempt == settings.MAX_RETRY_ATTEMPTS:
                    raise ConflictError(
                        "Session is busy, please try again",
                        details={"session_id": session_id},
                    )
                continue
            except Exception:
                await db.rollback()
                raise
            break

    session_unit_latency.observe(time.perf_counter() - started)
    signals.dispatch(outbox)
    return result
