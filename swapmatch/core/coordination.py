"""
Coordination resources shared by the engine's mutating operations.

Both are explicit objects injected into the services that need them:
- AuctionLockRegistry: one re-entrant lock per auction (or swap) id
- Clock: a callable returning the current UTC time
"""

import threading
from contextlib import ExitStack, contextmanager
from datetime import date, datetime, time, timezone
from typing import Callable, Dict, Iterator

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(timezone.utc)


class AuctionLockRegistry:
    """
    Per-key lock registry.

    Every mutation of an auction runs while holding its swap's lock and
    then the auction's lock, always in that order, so swap-level and
    auction-level writers never interleave. Locks are re-entrant so a held
    operation can call another operation on the same swap or auction.
    """

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self.lock_for(key)
        with lock:
            yield

    @contextmanager
    def hold_all(self, *keys: str) -> Iterator[None]:
        """Acquire several locks in the order given, release in reverse."""
        with ExitStack() as stack:
            for key in keys:
                stack.enter_context(self.hold(key))
            yield

    def __len__(self) -> int:
        return len(self._locks)


def as_utc(value: date) -> datetime:
    """Coerce a date or naive datetime to an aware UTC datetime."""
    if not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
