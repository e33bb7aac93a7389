"""
Deletion locks guarding destructive operations on a store's knowledge.
"""

from .deletion_locks import DeletionLock, DeletionLockManager, LockStatus

__all__ = ["DeletionLock", "DeletionLockManager", "LockStatus"]
