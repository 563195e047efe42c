from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from gigsync.errors import LockTimeout


class SerialLock:
    """Single-writer lock shared by every entry point that mutates a store.

    Acquisition waits at most ``timeout`` seconds and then gives up with
    ``LockTimeout``. The lock is not reentrant; nested ``hold`` calls from the
    same thread time out like any other contender.
    """

    def __init__(self, name: str = "gigsync") -> None:
        self.name = name
        self._lock = threading.Lock()

    def acquire(self, timeout: float) -> bool:
        if timeout <= 0:
            return self._lock.acquire(blocking=False)
        return self._lock.acquire(timeout=timeout)

    def release(self) -> None:
        self._lock.release()

    def locked(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self, timeout: float) -> Iterator[None]:
        if not self.acquire(timeout):
            raise LockTimeout(f"{self.name} lock not acquired within {timeout}s")
        try:
            yield
        finally:
            self.release()
