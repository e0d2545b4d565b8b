"""
Per-professional, per-day mutual exclusion for booking writes.

Locks are coarser than the exact booking window (one per professional and
calendar day) so the number of lock objects stays small. Acquisition waits a
bounded time and then fails with ``SlotConflictError``; the caller is expected
to refresh availability rather than retry blindly.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Sequence, Tuple, TypeVar, Union

import pendulum
from pendulum import Date, DateTime

from ..domain.exceptions import SlotConflictError
from ..domain.models import TimeRange

logger = logging.getLogger(__name__)

T = TypeVar("T")

LockKey = Tuple[str, Date]


@dataclass(frozen=True)
class ReservationLock:
    """A held lock, kept only while the guarded call runs."""
    professional_id: str
    day: Date
    acquired_at: DateTime
    expires_at: DateTime


class _LockEntry:
    __slots__ = ("lock", "waiters", "reservation")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.waiters = 0
        self.reservation: ReservationLock | None = None


class ConflictGuard:
    """
    Serializes writes on a professional's timeline.

    Example:
        guard = ConflictGuard(timeout_seconds=3)
        guard.with_exclusive_window("pro-1", window, lambda: book(...))
    """

    def __init__(self, timeout_seconds: float = 3.0, clock: Callable[[], DateTime] = pendulum.now):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._registry_lock = threading.Lock()
        self._entries: Dict[LockKey, _LockEntry] = {}

    def with_exclusive_window(
        self,
        professional_id: str,
        windows: Union[TimeRange, Sequence[TimeRange]],
        fn: Callable[[], T],
    ) -> T:
        """
        Run ``fn`` while holding the locks of every day the windows touch.

        Raises:
            SlotConflictError: If a lock is not acquired within the timeout
        """
        return self.with_exclusive_windows([(professional_id, windows)], fn)

    def with_exclusive_windows(
        self,
        scopes: Iterable[Tuple[str, Union[TimeRange, Sequence[TimeRange]]]],
        fn: Callable[[], T],
    ) -> T:
        """
        Like ``with_exclusive_window`` for several professionals at once.

        Keys are taken in sorted order so two writers never wait on each other
        in a cycle. The timeout bounds the whole call, not each key.
        """
        keys = self._keys_for(scopes)
        held: List[LockKey] = []
        deadline = time.monotonic() + self.timeout_seconds

        try:
            for key in keys:
                self._acquire(key, deadline)
                held.append(key)
            return fn()
        finally:
            for key in reversed(held):
                self._release(key)

    def active_reservations(self) -> List[ReservationLock]:
        """Locks held right now."""
        with self._registry_lock:
            return [e.reservation for e in self._entries.values() if e.reservation is not None]

    def _keys_for(
        self,
        scopes: Iterable[Tuple[str, Union[TimeRange, Sequence[TimeRange]]]],
    ) -> List[LockKey]:
        keys: set[LockKey] = set()
        for professional_id, windows in scopes:
            if isinstance(windows, TimeRange):
                windows = [windows]
            for window in windows:
                for day in window.days():
                    keys.add((professional_id, day))
        return sorted(keys)

    def _acquire(self, key: LockKey, deadline: float) -> None:
        with self._registry_lock:
            entry = self._entries.setdefault(key, _LockEntry())
            entry.waiters += 1

        acquired = entry.lock.acquire(timeout=max(0.0, deadline - time.monotonic()))

        if not acquired:
            self._forget(key, entry)
            professional_id, day = key
            logger.warning(
                "Lock for professional %s on %s not acquired within %.1fs",
                professional_id, day, self.timeout_seconds,
            )
            raise SlotConflictError(
                f"Timeline of professional {professional_id} on {day} is busy; "
                f"refresh availability and try again",
                professional_id=professional_id,
            )

        now = self._clock()
        entry.reservation = ReservationLock(
            professional_id=key[0],
            day=key[1],
            acquired_at=now,
            expires_at=now.add(microseconds=int(self.timeout_seconds * 1_000_000)),
        )

    def _release(self, key: LockKey) -> None:
        with self._registry_lock:
            entry = self._entries[key]
            entry.reservation = None
        entry.lock.release()
        self._forget(key, entry)

    def _forget(self, key: LockKey, entry: _LockEntry) -> None:
        """Drop the entry once nobody holds or waits for it."""
        with self._registry_lock:
            entry.waiters -= 1
            if entry.waiters == 0 and self._entries.get(key) is entry:
                del self._entries[key]
