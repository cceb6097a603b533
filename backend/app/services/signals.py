"""
Deferred side effects of booking transitions.

Atomic units never talk to the outside world. They append `Signal`s to a
`SignalOutbox`; once the unit has committed, `dispatch()` hands each
signal to its collaborator on a background task. Delivery is best-effort:
a failure is logged and counted, and never touches booking state.
"""

import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Iterator

from app.core.logging import get_logger
from app.core.metrics import record_signal_failure

logger = get_logger(__name__)


class SignalKind(str, enum.Enum):
    BOOKING_PROMOTED = "booking_promoted"
    BOOKING_CANCELLED = "booking_cancelled"
    WAITLIST_REMOVED = "waitlist_removed"
    SESSION_CANCELLED = "session_cancelled"
    MEMBER_CHECKED_IN = "member_checked_in"


@dataclass(frozen=True)
class Signal:
    kind: SignalKind
    member_id: int
    session_id: int
    booking_id: int
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "member_id": self.member_id,
            "session_id": self.session_id,
            "booking_id": self.booking_id,
            "occurred_at": self.occurred_at.isoformat(),
            **self.payload,
        }


class SignalOutbox:
    """Signals collected during one atomic unit; discarded if it rolls back."""

    def __init__(self) -> None:
        self._signals: list[Signal] = []

    def emit(self, signal: Signal) -> None:
        self._signals.append(signal)

    def __iter__(self) -> Iterator[Signal]:
        return iter(self._signals)

    def __len__(self) -> int:
        return len(self._signals)


_pending: set[asyncio.Task] = set()


def dispatch(signals: Iterable[Signal]) -> None:
    """Fire-and-forget delivery. Must be called after commit."""
    for signal in signals:
        task = asyncio.create_task(_deliver(signal))
        _pending.add(task)
        task.add_done_callback(_pending.discard)


async def _deliver(signal: Signal) -> None:
    # Imported late: the factory builds Redis-backed collaborators lazily
    from app.services.collaborators import get_activity_tracker, get_notifier

    try:
        if signal.kind == SignalKind.MEMBER_CHECKED_IN:
            await get_activity_tracker().record_check_in(signal)
        else:
            await get_notifier().send(signal)
    except Exception as e:
        record_signal_failure(signal.kind.value)
        logger.error(
            "signal_dispatch_failed",
            kind=signal.kind.value,
            booking_id=signal.booking_id,
            member_id=signal.member_id,
            error=str(e),
        )


async def drain() -> None:
    """Wait for in-flight deliveries (shutdown hook and tests)."""
    if _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)
