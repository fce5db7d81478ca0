"""Per-resource write locks for ledger coordinates and pending transfers."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from fieldstock.exceptions import ConcurrentModificationError

logger = logging.getLogger(__name__)


class ResourceLock:
    """Keyed lock table; one writer per resource key at a time."""

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout
        self._locks: dict[str, threading.Lock] = {}
        self._lock_owners: dict[str, str] = {}
        self._master_lock = threading.Lock()

    def _lock_for(self, resource_key: str) -> threading.Lock:
        with self._master_lock:
            if resource_key not in self._locks:
                self._locks[resource_key] = threading.Lock()
            return self._locks[resource_key]

    def acquire(self, resource_key: str, owner: str, timeout: Optional[float] = None) -> bool:
        """Takes the lock for a resource; False on timeout."""
        while True:
            lock = self._lock_for(resource_key)
            acquired = lock.acquire(timeout=self.timeout if timeout is None else timeout)
            if not acquired:
                break
            with self._master_lock:
                if self._locks.get(resource_key) is lock:
                    break
            # discarded while we waited on it
            lock.release()
        if acquired:
            self._lock_owners[resource_key] = owner
            logger.debug("Lock acquired: %s -> %s", owner, resource_key)
        else:
            logger.warning("Lock timeout: %s -> %s", owner, resource_key)
        return acquired

    def release(self, resource_key: str, owner: str) -> bool:
        """Releases a lock held by owner."""
        if resource_key not in self._locks:
            return False

        current = self._lock_owners.get(resource_key)
        if current != owner:
            logger.warning("Lock owner mismatch on %s: %s != %s", resource_key, owner, current)
            return False

        del self._lock_owners[resource_key]
        self._locks[resource_key].release()
        return True

    def is_locked(self, resource_key: str) -> bool:
        if resource_key not in self._locks:
            return False
        return self._locks[resource_key].locked()

    def discard(self, resource_key: str) -> bool:
        """Drops the lock for a key nobody holds, e.g. a resolved transfer."""
        with self._master_lock:
            lock = self._locks.get(resource_key)
            if lock is None or lock.locked():
                return False
            del self._locks[resource_key]
            return True

    def __contains__(self, resource_key: str) -> bool:
        return resource_key in self._locks

    @contextmanager
    def hold(self, *resource_keys: str, owner: Optional[str] = None) -> Iterator[None]:
        """Holds every key for the duration of the block.

        Keys are taken in sorted order so two writers touching the same pair
        of entries cannot deadlock.
        """
        owner = owner or f"thread-{threading.get_ident()}"
        taken: list[str] = []
        try:
            for key in sorted(set(resource_keys)):
                if not self.acquire(key, owner):
                    raise ConcurrentModificationError(
                        f"Timed out after {self.timeout}s waiting for {key}"
                    )
                taken.append(key)
            yield
        finally:
            for key in reversed(taken):
                self.release(key, owner)
