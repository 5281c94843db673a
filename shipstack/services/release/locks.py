from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class KeyedLock:
    """One re-entrant lock per key (stack identity).

    Holding the lock for ``a-prod-api`` never blocks ``a-prod-web``. A key's
    lock is dropped once no thread holds or waits for it, so a long-lived
    process does not accumulate one lock per stack it ever deployed.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # key -> (lock, threads holding or waiting)
        self._locks: dict[str, tuple[threading.RLock, int]] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _enter(self, key: str) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(key)
            lock, users = entry if entry is not None else (threading.RLock(), 0)
            self._locks[key] = (lock, users + 1)
            return lock

    def _leave(self, key: str) -> None:
        with self._guard:
            lock, users = self._locks[key]
            if users == 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._enter(key)
        try:
            with lock:
                yield
        finally:
            self._leave(key)
