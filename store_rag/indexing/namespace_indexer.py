"""
Namespace indexer: the only writer of a store's knowledge.

For every requested data type the indexer runs the connector, chunks the
records, embeds the chunks and upserts them into the type's namespace. Data
types are processed concurrently and independently: a failing connector or
upsert marks that type failed in the report without touching the others.
Document ids are deterministic, so running the indexer twice over unchanged
source data leaves the namespaces unchanged.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from store_rag.config.settings import settings
from store_rag.errors import ReconnectionRequiredError, StoreLockedError, StoreRAGError
from store_rag.ingestion.base_connector import BaseConnector
from store_rag.ingestion.records import ALL_DATA_TYPES, DataType, utc_now
from store_rag.integrations import StoreCredentials
from store_rag.locks.deletion_locks import DeletionLockManager
from store_rag.processing.chunker import DocumentChunker
from store_rag.processing.documents import EmbeddedDocument
from store_rag.utils.async_utils import async_timeout, async_timer, gather_with_concurrency
from store_rag.utils.logger import get_logger
from store_rag.vector.base_store import BaseVectorStore
from store_rag.vector.embeddings import BaseEmbeddingService

logger = get_logger(__name__)


class TypeStatus(str, Enum):
    """Outcome of indexing one data type."""
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"
    EMPTY = "empty"


@dataclass
class DataTypeCounts:
    """Per data type tallies; ``indexed``/``skipped``/``failed`` count source records.

    ``cursor`` is the newest ``updated_at`` the connector returned.
    """
    indexed: int = 0
    skipped: int = 0
    failed: int = 0
    documents: int = 0
    dropped_chunks: int = 0
    status: TypeStatus = TypeStatus.EMPTY
    error: Optional[str] = None
    cursor: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'indexed': self.indexed,
            'skipped': self.skipped,
            'failed': self.failed,
            'documents': self.documents,
            'dropped_chunks': self.dropped_chunks,
            'status': self.status.value,
            'error': self.error,
            'cursor': self.cursor.isoformat() if self.cursor else None,
        }


@dataclass
class IndexReport:
    store_id: str
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    last_indexed_at: Optional[datetime] = None
    per_type: Dict[DataType, DataTypeCounts] = field(default_factory=dict)
    deleted_types: List[DataType] = field(default_factory=list)

    @property
    def failed_types(self) -> List[DataType]:
        return [dt for dt, counts in self.per_type.items() if counts.status is TypeStatus.FAILED]

    @property
    def success(self) -> bool:
        return not self.failed_types

    @property
    def totals(self) -> Dict[str, int]:
        return {
            'indexed': sum(c.indexed for c in self.per_type.values()),
            'skipped': sum(c.skipped for c in self.per_type.values()),
            'failed': sum(c.failed for c in self.per_type.values()),
            'documents': sum(c.documents for c in self.per_type.values()),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'store_id': self.store_id,
            'success': self.success,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'last_indexed_at': self.last_indexed_at.isoformat() if self.last_indexed_at else None,
            'per_type': {dt.value: counts.to_dict() for dt, counts in self.per_type.items()},
            'deleted_types': [dt.value for dt in self.deleted_types],
            'totals': self.totals,
        }


class NamespaceIndexer:
    """
    Builds and tears down the per-store namespaces.

    Examples:
        >>> indexer = NamespaceIndexer(store, embedder, locks, connectors)
        >>> report = await indexer.index_store_data("42", credentials)
        >>> report.per_type[DataType.PRODUCTS].indexed
    """

    def __init__(self,
                 vector_store: BaseVectorStore,
                 embedding_service: BaseEmbeddingService,
                 lock_manager: DeletionLockManager,
                 connectors: Dict[DataType, BaseConnector],
                 chunker: Optional[DocumentChunker] = None,
                 max_concurrency: Optional[int] = None):
        self.vector_store = vector_store
        self.embedding_service = embedding_service
        self.lock_manager = lock_manager
        self.connectors = connectors
        self.chunker = chunker or DocumentChunker()
        self.max_concurrency = max_concurrency or settings.max_concurrent_requests
        self.logger = get_logger(__name__, component="namespace_indexer")

    def _ensure_unlocked(self, store_id: str) -> None:
        status = self.lock_manager.check_lock(store_id)
        if status is not None:
            raise StoreLockedError(store_id, reason=status.reason, age_ms=status.age_ms)

    @staticmethod
    def _normalize_types(data_types: Optional[Sequence[DataType]]) -> List[DataType]:
        if not data_types:
            return list(ALL_DATA_TYPES)
        seen: List[DataType] = []
        for data_type in data_types:
            data_type = DataType(data_type)
            if data_type not in seen:
                seen.append(data_type)
        return seen

    async def index_store_data(self,
                               store_id: str,
                               credentials: StoreCredentials,
                               data_types: Optional[Sequence[DataType]] = None,
                               since: Optional[datetime] = None) -> IndexReport:
        """
        Index the requested data types (all by default).

        Raises:
            StoreLockedError: The store is locked for deletion
            ReconnectionRequiredError: The commerce platform rejected the credentials
        """
        self._ensure_unlocked(store_id)
        report = IndexReport(store_id=store_id)
        await self._run_types(report, credentials, self._normalize_types(data_types), since)
        return report

    async def cleanup_and_reindex(self,
                                  store_id: str,
                                  credentials: StoreCredentials,
                                  data_types: Optional[Sequence[DataType]] = None) -> IndexReport:
        """Drop the requested namespaces, then rebuild them from scratch."""
        self._ensure_unlocked(store_id)
        types = self._normalize_types(data_types)
        report = IndexReport(store_id=store_id)

        for data_type in types:
            await self.vector_store.delete_namespace(store_id, data_type)
            report.deleted_types.append(data_type)

        self.logger.info(
            "Namespaces cleared before re-index",
            store_id=store_id,
            data_types=[dt.value for dt in types]
        )
        await self._run_types(report, credentials, types, since=None)
        return report

    async def delete_store_data(self,
                                store_id: str,
                                reason: str = "store_deletion",
                                step_timeout: Optional[float] = None,
                                owner: Optional[str] = None) -> List[str]:
        """
        Wipe every namespace of the store under a deletion lock.

        The lock is released on every exit path, including timeouts.
        Returns the names of the completed steps.
        """
        step_timeout = step_timeout or settings.delete_step_timeout
        completed: List[str] = []

        async with self.lock_manager.deletion_lock(store_id, reason, owner):
            completed.append("lock")
            await async_timeout(
                self.vector_store.delete_all_namespaces(store_id),
                step_timeout,
                operation="delete_all_namespaces"
            )
            completed.append("delete_namespaces")
        completed.append("unlock")

        self.logger.info("Store knowledge deleted", store_id=store_id, reason=reason)
        return completed

    async def _run_types(self, report: IndexReport, credentials: StoreCredentials,
                         data_types: List[DataType], since: Optional[datetime]) -> None:
        store_id = report.store_id
        async with async_timer("Store indexing", store_id=store_id, data_types=len(data_types)):
            results = await gather_with_concurrency(
                [self._index_data_type(store_id, credentials, dt, since) for dt in data_types],
                max_concurrency=self.max_concurrency,
                return_exceptions=True
            )

        reconnect: Optional[ReconnectionRequiredError] = None
        for data_type, result in zip(data_types, results):
            if isinstance(result, ReconnectionRequiredError):
                reconnect = result
                result = DataTypeCounts(status=TypeStatus.FAILED, error=str(result))
            elif isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                self.logger.exception(
                    "Unexpected indexing error",
                    store_id=store_id,
                    data_type=data_type.value,
                    exc_info=result
                )
                result = DataTypeCounts(status=TypeStatus.FAILED, error=str(result))
            report.per_type[data_type] = result

        report.finished_at = utc_now()
        report.last_indexed_at = report.finished_at

        self.logger.info(
            "Store indexing finished",
            store_id=store_id,
            success=report.success,
            failed_types=[dt.value for dt in report.failed_types],
            **report.totals
        )

        if reconnect is not None:
            raise reconnect

    async def _index_data_type(self, store_id: str, credentials: StoreCredentials,
                               data_type: DataType, since: Optional[datetime]) -> DataTypeCounts:
        counts = DataTypeCounts()
        connector = self.connectors.get(data_type)
        if connector is None:
            counts.status = TypeStatus.FAILED
            counts.error = f"no connector for {data_type.value}"
            return counts

        try:
            fetched = await connector.fetch(store_id, credentials, since)
        except ReconnectionRequiredError:
            raise
        except StoreRAGError as e:
            counts.status = TypeStatus.FAILED
            counts.error = str(e)
            return counts

        counts.skipped = fetched.skipped
        counts.cursor = fetched.next_cursor
        records = fetched.records
        if not records:
            if counts.skipped:
                counts.failed = counts.skipped
                counts.status = TypeStatus.FAILED
                counts.error = "every record was malformed"
            return counts

        chunks = self.chunker.chunk_records(store_id, records)
        outcome = await self.embedding_service.embed_chunks(chunks)
        counts.dropped_chunks = len(outcome.dropped)

        embedded_sources = {doc.chunk.source_id for doc in outcome.embedded}
        documents: List[EmbeddedDocument] = outcome.embedded

        try:
            self._ensure_unlocked(store_id)
            if documents:
                counts.documents = await self.vector_store.upsert(store_id, data_type, documents)
        except StoreRAGError as e:
            self.logger.error(
                "Upsert failed for data type",
                store_id=store_id,
                data_type=data_type.value,
                error=str(e)
            )
            counts.failed = len(records)
            counts.status = TypeStatus.FAILED
            counts.error = str(e)
            return counts

        counts.indexed = sum(1 for record in records if record.source_id in embedded_sources)
        counts.failed = len(records) - counts.indexed

        if counts.indexed == 0:
            counts.status = TypeStatus.FAILED
            counts.error = "no record could be embedded"
        elif counts.failed or counts.skipped:
            counts.status = TypeStatus.PARTIAL
        else:
            counts.status = TypeStatus.SUCCEEDED
        return counts
