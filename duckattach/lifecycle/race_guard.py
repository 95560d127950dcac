"""In-flight guard for user-triggered lifecycle operations."""

from contextlib import contextmanager
from typing import Iterator, Set

from duckattach.logging import get_logger

logger = get_logger(__name__)


class RaceGuard:
    """Synchronous in-flight flags keyed by operation slot.

    Slots are plain strings such as ``"name:database:sales"``. Callers must
    call :meth:`try_acquire` before their first ``await`` so that two
    invocations dispatched back to back on the same event loop cannot both
    observe the slot as free, and must release the slot in a ``finally``.
    """

    def __init__(self):
        self._in_flight: Set[str] = set()

    def try_acquire(self, slot: str) -> bool:
        """Mark ``slot`` busy; return False if it already was."""
        if slot in self._in_flight:
            logger.debug("Operation '%s' already in progress; ignoring", slot)
            return False
        self._in_flight.add(slot)
        return True

    def release(self, slot: str) -> None:
        self._in_flight.discard(slot)

    def is_in_flight(self, slot: str) -> bool:
        return slot in self._in_flight

    @contextmanager
    def hold(self, slot: str) -> Iterator[bool]:
        """Context manager yielding whether the slot was acquired."""
        acquired = self.try_acquire(slot)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(slot)

    def __len__(self) -> int:
        return len(self._in_flight)
