"""Per-order mutual exclusion for delivery order commands.

At most one mutating command runs per key at a time. The lock is held for
the whole command, including the unit-of-work commit, so a concurrent
command always loads the committed state. Reads never take the lock.
"""

import threading
from contextlib import contextmanager

import structlog
from protean.utils.globals import current_domain

from delivery.errors import ConcurrentUpdateError
from delivery.config import get_settings

logger = structlog.get_logger(__name__)


class _KeyedLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class KeyedLockRegistry:
    """``threading.Lock`` per key, dropped once no thread holds or awaits it."""

    def __init__(self):
        self._locks: dict[str, _KeyedLock] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def __contains__(self, key: str) -> bool:
        with self._guard:
            return key in self._locks

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyedLock()
            entry.users += 1
            return entry.lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: str, timeout: float):
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=timeout):
                logger.warning("Lock wait timed out", key=key, timeout_seconds=timeout)
                raise ConcurrentUpdateError({"_entity": [f"Another update to {key} is in progress, retry shortly"]})
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)


_registry = KeyedLockRegistry()


def order_lock(key: str, timeout: float | None = None):
    """Context manager holding the lock for ``key``."""
    if timeout is None:
        timeout = get_settings().lock_timeout_seconds
    return _registry.hold(str(key), timeout)


def branch_lock_key(branch_code: str) -> str:
    return f"branch:{branch_code}"


def process_exclusively(command, key: str):
    """Process ``command`` synchronously while holding the lock for ``key``."""
    with order_lock(key):
        return current_domain.process(command, asynchronous=False)
