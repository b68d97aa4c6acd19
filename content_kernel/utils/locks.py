"""
In-process keyed locks.

Responsibility:
    Serializes same-key operations (one content item, one approval
    request) inside a single process so that concurrent callers queue
    instead of colliding on the database and burning retries.

Architecture position:
    Kernel > Utils.  No imports from other kernel layers.

Failure modes:
    None.  Cross-process serialization is the database's job (row locks,
    unique constraints, optimistic row versions); this lock only reduces
    contention.
"""

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager


class KeyedLock:
    """Reference-counted map of per-key ``threading.Lock`` objects."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}
        self._holders: dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._holders[key] = self._holders.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._holders[key] -= 1
                if self._holders[key] == 0:
                    del self._holders[key]
                    del self._locks[key]
