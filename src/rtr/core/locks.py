"""In-process mutual exclusion for positionally addressed kernel state.

Rule positions and rule priorities shift as soon as anything mutates the
same chain or table, so every list-then-mutate sequence must run alone
for its key. Keys are tuples such as ``("firewall", "filter")``,
``("firewall", "filter", "INPUT")``, ``("routes", "main")`` or ``("rules",)``.
When two keys are held, the shorter firewall key is taken first.
"""

import threading
from contextlib import contextmanager
from typing import Generator, Hashable, Optional


class KeyedLocks:
    """Registry of re-entrant locks, one per key.

    Locks are re-entrant so a caller can hold a key around its own
    listing and then call service operations that take the same key.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, threading.RLock] = {}
        self._mutex = threading.Lock()

    def get(self, key: Hashable) -> threading.RLock:
        """Return the lock for ``key``, creating it on first use."""
        with self._mutex:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable, timeout: Optional[float] = None) -> Generator[None, None, None]:
        """Hold the lock for ``key`` for the duration of the block.

        Args:
            key: Lock key
            timeout: Seconds to wait, None waits forever

        Raises:
            TimeoutError: If the lock could not be acquired in time
        """
        lock = self.get(key)
        acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise TimeoutError(f"Timed out waiting for lock {key!r}")
        try:
            yield
        finally:
            lock.release()


# Shared registry so every service instance in a process serializes on the same keys
_default_locks: Optional[KeyedLocks] = None
_default_mutex = threading.Lock()


def get_default_locks() -> KeyedLocks:
    """Get or create the process-wide lock registry."""
    global _default_locks
    with _default_mutex:
        if _default_locks is None:
            _default_locks = KeyedLocks()
        return _default_locks
