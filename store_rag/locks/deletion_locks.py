"""
Per-store deletion locks.

While a store's knowledge is being wiped, indexing must not write into its
namespaces and searches should not read half-deleted data. This module keeps a
process-local registry of those locks. Locks expire after a short TTL so a
crashed deletion never blocks a store for long; expired entries are purged the
next time anyone checks.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Optional

from store_rag.config.settings import settings
from store_rag.errors import LockHeldError
from store_rag.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class DeletionLock:
    """An active lock on one store."""
    store_id: str
    reason: str
    owner: str
    locked_at: float


@dataclass
class LockStatus:
    """Snapshot returned by ``check_lock``."""
    store_id: str
    locked: bool
    reason: Optional[str]
    owner: Optional[str]
    age_ms: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'store_id': self.store_id,
            'locked': self.locked,
            'reason': self.reason,
            'owner': self.owner,
            'age_ms': round(self.age_ms, 1),
        }


class DeletionLockManager:
    """
    Registry of deletion locks keyed by store id.

    All mutations happen without awaiting, so under a single event loop each
    call is atomic with respect to other coroutines.

    Examples:
        >>> locks = DeletionLockManager()
        >>> async with locks.deletion_lock("42", reason="store_disconnected"):
        ...     await vector_store.delete_all_namespaces("42")
    """

    def __init__(self,
                 ttl_seconds: Optional[float] = None,
                 poll_interval: Optional[float] = None,
                 clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.lock_ttl_seconds
        self.poll_interval = poll_interval if poll_interval is not None else settings.lock_poll_interval
        self._clock = clock
        self._locks: Dict[str, DeletionLock] = {}
        self.logger = get_logger(__name__, component="deletion_locks")

    def _age_seconds(self, lock: DeletionLock) -> float:
        return max(0.0, self._clock() - lock.locked_at)

    def _is_stale(self, lock: DeletionLock) -> bool:
        return self._age_seconds(lock) > self.ttl_seconds

    def _purge_stale(self) -> None:
        for store_id, lock in list(self._locks.items()):
            if self._is_stale(lock):
                self.logger.warning(
                    "Purging stale deletion lock",
                    store_id=store_id,
                    reason=lock.reason,
                    age_ms=round(self._age_seconds(lock) * 1000, 1)
                )
                del self._locks[store_id]

    def lock_for_deletion(self, store_id: str, reason: str, owner: Optional[str] = None) -> DeletionLock:
        """
        Lock a store for deletion.

        Re-locking by the same owner refreshes the timestamp. A live lock held
        by another owner is not replaced.

        Raises:
            LockHeldError: If a different owner holds a non-stale lock
        """
        owner = owner or reason
        existing = self._locks.get(store_id)

        if existing and not self._is_stale(existing) and existing.owner != owner:
            self.logger.warning(
                "Deletion lock already held",
                store_id=store_id,
                holder=existing.owner,
                requested_by=owner
            )
            raise LockHeldError(store_id, holder=existing.owner, reason=existing.reason)

        lock = DeletionLock(store_id=store_id, reason=reason, owner=owner, locked_at=self._clock())
        self._locks[store_id] = lock

        self.logger.info(
            "Store locked for deletion",
            store_id=store_id,
            reason=reason,
            owner=owner,
            refreshed=existing is not None
        )
        return lock

    def unlock_after_deletion(self, store_id: str, owner: Optional[str] = None) -> bool:
        """Release the lock; returns False when there was nothing to release."""
        lock = self._locks.pop(store_id, None)
        if lock is None:
            return False

        if owner and owner != lock.owner:
            self.logger.warning(
                "Deletion lock released by a different owner",
                store_id=store_id,
                holder=lock.owner,
                released_by=owner
            )

        self.logger.info(
            "Store unlocked after deletion",
            store_id=store_id,
            held_ms=round(self._age_seconds(lock) * 1000, 1)
        )
        return True

    def check_lock(self, store_id: str) -> Optional[LockStatus]:
        """Current lock for ``store_id`` or None; stale locks are purged first."""
        self._purge_stale()
        lock = self._locks.get(store_id)
        if lock is None:
            return None
        return LockStatus(
            store_id=store_id,
            locked=True,
            reason=lock.reason,
            owner=lock.owner,
            age_ms=self._age_seconds(lock) * 1000
        )

    def is_locked(self, store_id: str) -> bool:
        return self.check_lock(store_id) is not None

    async def wait_for_unlock(self, store_id: str, timeout: Optional[float] = None,
                              force: bool = True) -> bool:
        """
        Poll until the store is unlocked.

        Args:
            store_id: Store to wait on
            timeout: Seconds to wait (defaults to ``LOCK_WAIT_TIMEOUT``)
            force: Force-unlock when the timeout expires

        Returns:
            True if the store is unlocked on return, False if the wait timed
            out with ``force=False``
        """
        timeout = settings.lock_wait_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while self.is_locked(store_id):
            if loop.time() >= deadline:
                if not force:
                    return False
                lock = self._locks.get(store_id)
                self.logger.warning(
                    "Lock wait timed out, forcing unlock (possible race with a running deletion)",
                    store_id=store_id,
                    timeout=timeout,
                    reason=lock.reason if lock else None
                )
                self._locks.pop(store_id, None)
                return True
            await asyncio.sleep(self.poll_interval)

        return True

    def get_status(self) -> Dict[str, Any]:
        """Summary of all live locks."""
        self._purge_stale()
        active = [
            LockStatus(
                store_id=lock.store_id,
                locked=True,
                reason=lock.reason,
                owner=lock.owner,
                age_ms=self._age_seconds(lock) * 1000
            ).to_dict()
            for lock in self._locks.values()
        ]
        return {
            'total_locks': len(active),
            'active_locks': active,
            'ttl_seconds': self.ttl_seconds,
        }

    @asynccontextmanager
    async def deletion_lock(self, store_id: str, reason: str,
                            owner: Optional[str] = None) -> AsyncIterator[DeletionLock]:
        """Hold the lock for the duration of the block, releasing it on any exit."""
        lock = self.lock_for_deletion(store_id, reason, owner)
        try:
            yield lock
        finally:
            current = self._locks.get(store_id)
            if current is not None and current.owner == lock.owner:
                self.unlock_after_deletion(store_id, lock.owner)

    def clear(self) -> int:
        """Drop every lock. Returns how many were removed."""
        count = len(self._locks)
        self._locks.clear()
        if count:
            self.logger.warning("All deletion locks cleared", count=count)
        return count
