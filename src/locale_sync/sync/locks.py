"""Per-link exclusive locks.

At most one reconciliation may be in flight per link inside one process.
Acquisition never blocks: a second caller gets ``LockContentionError``
and the orchestrator reports it as a no-op.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from ..core.exceptions import LockContentionError


class LinkLocks:
    """Registry of non-blocking locks keyed by link id.

    An entry lives only while some caller is inside ``hold`` for it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._users: dict[str, int] = {}

    def _checkout(self, link_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(link_id)
            if lock is None:
                lock = self._locks[link_id] = threading.Lock()
            self._users[link_id] = self._users.get(link_id, 0) + 1
            return lock

    def _checkin(self, link_id: str) -> None:
        with self._guard:
            remaining = self._users[link_id] - 1
            if remaining:
                self._users[link_id] = remaining
            else:
                del self._users[link_id]
                del self._locks[link_id]

    @contextmanager
    def hold(self, link_id: str) -> Iterator[None]:
        """Hold the lock for *link_id* for the duration of the block.

        Raises:
            LockContentionError: If another holder already has it.
        """
        lock = self._checkout(link_id)
        try:
            if not lock.acquire(blocking=False):
                raise LockContentionError(link_id)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(link_id)

    def is_held(self, link_id: str) -> bool:
        """Return ``True`` if a reconciliation currently holds *link_id*."""
        with self._guard:
            lock = self._locks.get(link_id)
        return lock is not None and lock.locked()

    def tracked_links(self) -> int:
        """Number of link ids with a live entry."""
        with self._guard:
            return len(self._locks)
