"""Per-kind job locks serializing synchronization runs."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from igdb.entities import get_entity
from igdb.errors import CatalogSyncError

logger = logging.getLogger(__name__)


class SyncInProgressError(CatalogSyncError):
    """Raised when a sync of the same kind is already running."""

    error_type = "sync_in_progress"

    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(f"a {kind} sync is already running")


class SyncLockRegistry:
    """Hand out one non-blocking lock per entity kind."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, kind: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(kind)
            if lock is None:
                lock = threading.Lock()
                self._locks[kind] = lock
            return lock

    @contextmanager
    def acquire(self, kind: str) -> Iterator[None]:
        """Hold the writer lock of ``kind`` or fail fast with :class:`SyncInProgressError`."""

        key = get_entity(kind).kind
        lock = self._lock_for(key)
        if not lock.acquire(blocking=False):
            logger.warning("Rejected concurrent %s sync", key)
            raise SyncInProgressError(key)
        try:
            yield
        finally:
            lock.release()

    @contextmanager
    def hold_for_read(self, kind: str, *, timeout: float | None = None) -> Iterator[None]:
        """Hold ``kind``'s lock while a dependent sync reads its rows.

        Without ``timeout`` a running writer makes the reader fail fast.
        """

        key = get_entity(kind).kind
        lock = self._lock_for(key)
        if timeout is None:
            acquired = lock.acquire(blocking=False)
        else:
            acquired = lock.acquire(timeout=timeout)
        if not acquired:
            raise SyncInProgressError(key)
        try:
            yield
        finally:
            lock.release()

    def is_running(self, kind: str) -> bool:
        return self._lock_for(get_entity(kind).kind).locked()

    def running(self) -> list[str]:
        with self._guard:
            return sorted(kind for kind, lock in self._locks.items() if lock.locked())


__all__ = ["SyncInProgressError", "SyncLockRegistry"]
