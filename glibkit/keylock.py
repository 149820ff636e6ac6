"""Per-key mutual exclusion and a helper that waits for a termination signal."""

from __future__ import annotations

import signal
import threading
import time
from collections.abc import Callable, Hashable, Iterator
from contextlib import contextmanager

_WAIT_SIGNALS = tuple(
    getattr(signal, name)
    for name in ("SIGINT", "SIGTERM", "SIGQUIT", "SIGTSTP")
    if hasattr(signal, name)
)
_POLL_INTERVAL = 0.05


class _Entry:
    __slots__ = ("mutex", "count")

    def __init__(self) -> None:
        self.mutex = threading.Lock()
        self.count = 0


class KeyLock:
    """A set of locks addressed by key; idle keys are dropped automatically."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, _Entry] = {}

    def lock(self, key: Hashable) -> Callable[[], None]:
        """Acquire the lock for ``key`` and return the function that releases it."""
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _Entry()
            entry.count += 1
        entry.mutex.acquire()
        released = False

        def unlock() -> None:
            nonlocal released
            with self._guard:
                if released:
                    raise RuntimeError("lock already released")
                released = True
                entry.count -= 1
                if entry.count == 0:
                    del self._locks[key]
            entry.mutex.release()

        return unlock

    @contextmanager
    def locked(self, key: Hashable) -> Iterator[None]:
        """Hold the lock for ``key`` for the duration of a ``with`` block."""
        unlock = self.lock(key)
        try:
            yield
        finally:
            unlock()

    def get_num(self, key: Hashable) -> int:
        """Number of holders and waiters for ``key``."""
        with self._guard:
            entry = self._locks.get(key)
            return entry.count if entry is not None else 0

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def wait_signal() -> signal.Signals:
    """Block until an interrupt or termination signal arrives and return it."""
    received: list[int] = []

    def handler(signum, _frame):
        received.append(signum)

    previous = {sig: signal.signal(sig, handler) for sig in _WAIT_SIGNALS}
    try:
        while not received:
            time.sleep(_POLL_INTERVAL)
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old if old is not None else signal.SIG_DFL)
    return signal.Signals(received[0])