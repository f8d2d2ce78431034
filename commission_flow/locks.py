from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class PerKeyLock:
    """One mutex per key. Work on the same PO id is serialized, different ids run freely."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield
