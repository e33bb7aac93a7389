"""
Namespace indexing and sync status.
"""

from .namespace_indexer import DataTypeCounts, IndexReport, NamespaceIndexer, TypeStatus
from .sync_status import SyncStatus, SyncStatusReport, SyncStatusService

__all__ = [
    "DataTypeCounts",
    "IndexReport",
    "NamespaceIndexer",
    "TypeStatus",
    "SyncStatus",
    "SyncStatusReport",
    "SyncStatusService",
]
