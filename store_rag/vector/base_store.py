"""
Namespace-scoped vector store interface.

The indexer and the search engine only ever talk to a store through this
interface, addressing documents by ``(store_id, data_type)``; the mapping to
physical namespaces lives in ``store_rag.vector.namespaces``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from store_rag.ingestion.records import DataType
from store_rag.processing.documents import EmbeddedDocument


@dataclass
class VectorCandidate:
    """A match returned by ``query``."""
    id: str
    score: float
    data_type: DataType
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def content(self) -> str:
        return self.metadata.get('content', '')

    @property
    def source_id(self) -> Optional[str]:
        return self.metadata.get('source_id')

    @property
    def updated_at(self) -> Optional[str]:
        return self.metadata.get('updated_at')


class BaseVectorStore(ABC):
    """Operations the pipeline needs from a vector database."""

    name: str = "vector_store"

    @abstractmethod
    async def upsert(self, store_id: str, data_type: DataType,
                     documents: Sequence[EmbeddedDocument]) -> int:
        """Write documents into the namespace; returns how many were written."""

    @abstractmethod
    async def query(self, store_id: str, data_types: Sequence[DataType],
                    query_vector: List[float], top_k: int,
                    score_threshold: float = 0.0) -> List[VectorCandidate]:
        """Nearest neighbours across the given namespaces, best first."""

    @abstractmethod
    async def delete_namespace(self, store_id: str, data_type: DataType) -> bool:
        """Drop one namespace. A namespace that does not exist counts as deleted."""

    @abstractmethod
    async def delete_all_namespaces(self, store_id: str) -> bool:
        """Drop every namespace owned by the store."""

    @abstractmethod
    async def namespace_stats(self, store_id: str) -> Dict[DataType, int]:
        """Vector count per data type for namespaces that exist."""

    async def health_check(self) -> Dict[str, Any]:
        return {'service': self.name, 'status': 'healthy'}
