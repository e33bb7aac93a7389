"""
In-process vector store.

Keeps vectors in per-namespace dictionaries and ranks them with numpy cosine
similarity. Used with ``VECTOR_BACKEND=memory`` for local development and by
the test suite, which can make individual operations fail on purpose.
"""

from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from store_rag.errors import VectorStoreError
from store_rag.ingestion.records import ALL_DATA_TYPES, DataType
from store_rag.processing.documents import EmbeddedDocument
from store_rag.utils.logger import get_logger
from store_rag.vector.base_store import BaseVectorStore, VectorCandidate
from store_rag.vector.namespaces import namespace_for, store_namespaces

logger = get_logger(__name__)


class InMemoryVectorStore(BaseVectorStore):
    """Dictionary-backed vector store with cosine similarity search."""

    name = "memory_vector_store"

    def __init__(self):
        self._namespaces: Dict[str, Dict[str, Tuple[np.ndarray, Dict[str, Any]]]] = {}
        self._failures: Set[Tuple[str, Optional[DataType]]] = set()
        self.calls: List[Tuple[str, str]] = []

    def fail_operation(self, operation: str, data_type: Optional[DataType] = None) -> None:
        """Make ``operation`` raise ``VectorStoreError`` (for one data type, or all)."""
        self._failures.add((operation, data_type))

    def reset_failures(self) -> None:
        self._failures.clear()

    def _check_failure(self, operation: str, data_type: Optional[DataType]) -> None:
        if (operation, None) in self._failures or (operation, data_type) in self._failures:
            raise VectorStoreError(
                f"Simulated {operation} failure",
                {"data_type": data_type.value if data_type else None}
            )

    async def upsert(self, store_id: str, data_type: DataType,
                     documents: Sequence[EmbeddedDocument]) -> int:
        data_type = DataType(data_type)
        namespace = namespace_for(store_id, data_type)
        self.calls.append(("upsert", namespace))
        self._check_failure("upsert", data_type)

        if not documents:
            return 0

        vectors = self._namespaces.setdefault(namespace, {})
        for document in documents:
            vectors[document.id] = (
                np.asarray(document.embedding, dtype=np.float32),
                document.chunk.vector_metadata(),
            )
        return len(documents)

    async def query(self, store_id: str, data_types: Sequence[DataType],
                    query_vector: List[float], top_k: int,
                    score_threshold: float = 0.0) -> List[VectorCandidate]:
        query = np.asarray(query_vector, dtype=np.float32)
        query_norm = np.linalg.norm(query)
        candidates: List[VectorCandidate] = []

        for data_type in data_types:
            data_type = DataType(data_type)
            namespace = namespace_for(store_id, data_type)
            self.calls.append(("query", namespace))
            self._check_failure("query", data_type)

            entries = self._namespaces.get(namespace)
            if not entries or query_norm == 0:
                continue

            ids = list(entries.keys())
            matrix = np.stack([entries[doc_id][0] for doc_id in ids])
            norms = np.linalg.norm(matrix, axis=1) * query_norm
            norms[norms == 0] = 1.0
            scores = (matrix @ query) / norms

            for index in np.argsort(-scores)[:top_k]:
                score = float(scores[index])
                if score < score_threshold:
                    break
                doc_id = ids[index]
                candidates.append(VectorCandidate(
                    id=doc_id,
                    score=score,
                    data_type=data_type,
                    metadata=dict(entries[doc_id][1]),
                ))

        candidates.sort(key=lambda c: (-c.score, c.id))
        return candidates[:top_k]

    async def delete_namespace(self, store_id: str, data_type: DataType) -> bool:
        data_type = DataType(data_type)
        namespace = namespace_for(store_id, data_type)
        self.calls.append(("delete_namespace", namespace))
        self._check_failure("delete", data_type)
        self._namespaces.pop(namespace, None)
        return True

    async def delete_all_namespaces(self, store_id: str) -> bool:
        for data_type in ALL_DATA_TYPES:
            await self.delete_namespace(store_id, data_type)
        return True

    async def namespace_stats(self, store_id: str) -> Dict[DataType, int]:
        self._check_failure("stats", None)
        return {
            data_type: len(self._namespaces[namespace])
            for data_type, namespace in store_namespaces(store_id).items()
            if namespace in self._namespaces
        }

    def document_ids(self, store_id: str, data_type: DataType) -> List[str]:
        return sorted(self._namespaces.get(namespace_for(store_id, data_type), {}))

    async def health_check(self) -> Dict[str, Any]:
        return {
            'service': self.name,
            'status': 'healthy',
            'namespaces': len(self._namespaces),
            'vectors': sum(len(v) for v in self._namespaces.values()),
        }
