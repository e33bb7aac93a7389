"""
Pinecone vector database integration.

Stores every store/data-type pair in its own Pinecone namespace. The Pinecone
SDK is synchronous, so each call is pushed to the default thread pool to keep
the event loop responsive. Failures surface as ``VectorStoreError``; retrying is
left to the caller.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from pinecone import Pinecone

from store_rag.config.settings import settings
from store_rag.errors import VectorStoreError
from store_rag.ingestion.records import ALL_DATA_TYPES, DataType
from store_rag.processing.documents import EmbeddedDocument
from store_rag.utils.async_utils import async_timer, run_async
from store_rag.utils.logger import get_logger
from store_rag.vector.base_store import BaseVectorStore, VectorCandidate
from store_rag.vector.namespaces import namespace_for, parse_namespace

logger = get_logger(__name__)

MAX_CONTENT_LENGTH = 8000
MAX_TEXT_LENGTH = 1000


def _is_not_found(error: Exception) -> bool:
    return getattr(error, "status", None) == 404 or type(error).__name__ == "NotFoundException"


class PineconeVectorStore(BaseVectorStore):
    """
    Namespace-per-data-type storage on a single Pinecone index.

    Features:
    - Batched upserts
    - Metadata cleaned to Pinecone-compatible primitives
    - Idempotent namespace deletion
    """

    name = "pinecone"

    def __init__(self,
                 api_key: Optional[str] = None,
                 index_name: Optional[str] = None,
                 batch_size: Optional[int] = None,
                 index: Any = None):
        """
        Args:
            api_key: Pinecone API key (uses settings if not provided)
            index_name: Index to use (uses settings if not provided)
            batch_size: Vectors per upsert request
            index: Pre-built index handle, mainly for tests
        """
        self.index_name = index_name or settings.pinecone_index_name
        self.batch_size = batch_size or settings.upsert_batch_size
        self._index = index
        self._client: Optional[Pinecone] = None

        if self._index is None:
            self.api_key = api_key or settings.pinecone_api_key
            if not self.api_key:
                raise ValueError("Pinecone API key is required")
            self._client = Pinecone(api_key=self.api_key)

        self.logger = get_logger(__name__, index=self.index_name)

    @property
    def index(self):
        if self._index is None:
            self._index = self._client.Index(self.index_name)
        return self._index

    async def upsert(self, store_id: str, data_type: DataType,
                     documents: Sequence[EmbeddedDocument]) -> int:
        namespace = namespace_for(store_id, data_type)
        if not documents:
            return 0

        upserted = 0
        async with async_timer("Pinecone upsert", namespace=namespace, count=len(documents)):
            for start in range(0, len(documents), self.batch_size):
                batch = documents[start:start + self.batch_size]
                vectors = [
                    {
                        'id': document.id,
                        'values': document.embedding,
                        'metadata': self._clean_metadata(document.chunk.vector_metadata()),
                    }
                    for document in batch
                ]
                try:
                    response = await run_async(self.index.upsert, vectors=vectors, namespace=namespace)
                except Exception as e:
                    self.logger.error(
                        "Pinecone upsert failed",
                        namespace=namespace,
                        batch_start=start,
                        error=str(e)
                    )
                    raise VectorStoreError(f"Upsert to {namespace} failed: {e}") from e
                upserted += getattr(response, "upserted_count", None) or len(batch)

        return upserted

    async def query(self, store_id: str, data_types: Sequence[DataType],
                    query_vector: List[float], top_k: int,
                    score_threshold: float = 0.0) -> List[VectorCandidate]:
        candidates: List[VectorCandidate] = []

        for data_type in data_types:
            data_type = DataType(data_type)
            namespace = namespace_for(store_id, data_type)
            try:
                response = await run_async(
                    self.index.query,
                    vector=query_vector,
                    top_k=top_k,
                    namespace=namespace,
                    include_metadata=True,
                )
            except Exception as e:
                if _is_not_found(e):
                    continue
                self.logger.error("Pinecone query failed", namespace=namespace, error=str(e))
                raise VectorStoreError(f"Query on {namespace} failed: {e}") from e

            for match in response.matches or []:
                if match.score is None or match.score < score_threshold:
                    continue
                candidates.append(VectorCandidate(
                    id=match.id,
                    score=float(match.score),
                    data_type=data_type,
                    metadata=dict(match.metadata or {}),
                ))

        candidates.sort(key=lambda c: (-c.score, c.id))
        return candidates[:top_k]

    async def delete_namespace(self, store_id: str, data_type: DataType) -> bool:
        namespace = namespace_for(store_id, data_type)
        try:
            await run_async(self.index.delete, delete_all=True, namespace=namespace)
        except Exception as e:
            if _is_not_found(e):
                self.logger.debug("Namespace already absent", namespace=namespace)
                return True
            self.logger.error("Pinecone namespace delete failed", namespace=namespace, error=str(e))
            raise VectorStoreError(f"Delete of {namespace} failed: {e}") from e

        self.logger.info("Namespace deleted", namespace=namespace)
        return True

    async def delete_all_namespaces(self, store_id: str) -> bool:
        for data_type in ALL_DATA_TYPES:
            await self.delete_namespace(store_id, data_type)
        return True

    async def namespace_stats(self, store_id: str) -> Dict[DataType, int]:
        try:
            stats = await run_async(self.index.describe_index_stats)
        except Exception as e:
            raise VectorStoreError(f"Could not read index stats: {e}") from e

        counts: Dict[DataType, int] = {}
        for namespace, summary in (stats.namespaces or {}).items():
            parsed = parse_namespace(namespace)
            if parsed and parsed[0] == store_id:
                counts[parsed[1]] = int(getattr(summary, "vector_count", 0) or 0)
        return counts

    def _clean_metadata(self, metadata: Dict[str, Any]) -> Dict[str, Any]:
        """Keep only values Pinecone accepts: primitives and lists of strings."""
        clean = {}

        for key, value in metadata.items():
            if value is None:
                continue

            if isinstance(value, str):
                limit = MAX_CONTENT_LENGTH if key == 'content' else MAX_TEXT_LENGTH
                clean[key] = value if len(value) <= limit else value[:limit] + "..."
            elif isinstance(value, (bool, int, float)):
                clean[key] = value
            elif isinstance(value, (list, tuple)):
                clean[key] = [str(item) for item in value]
            elif isinstance(value, datetime):
                clean[key] = value.isoformat()
            elif isinstance(value, dict):
                for sub_key, sub_value in value.items():
                    if isinstance(sub_value, (str, int, float, bool)):
                        clean[f"{key}_{sub_key}"] = sub_value

        return clean

    async def health_check(self) -> Dict[str, Any]:
        try:
            stats = await run_async(self.index.describe_index_stats)
            return {
                'service': self.name,
                'index': self.index_name,
                'status': 'healthy',
                'total_vector_count': stats.total_vector_count,
                'namespaces': len(stats.namespaces or {}),
                'last_check': datetime.now(timezone.utc).isoformat()
            }
        except Exception as e:
            return {
                'service': self.name,
                'index': self.index_name,
                'status': 'unhealthy',
                'error': str(e),
                'last_check': datetime.now(timezone.utc).isoformat()
            }
