"""
Vector storage, embeddings and hybrid search.
"""

from .base_store import BaseVectorStore, VectorCandidate
from .memory_store import InMemoryVectorStore
from .embeddings import BaseEmbeddingService, EmbeddingOutcome, OpenAIEmbeddingService
from .hybrid_search import (
    HybridSearchEngine,
    LockMode,
    SearchContext,
    SearchFilters,
    SearchHit,
    SearchOptions,
    SearchResponse,
    SearchStatus,
)
from .namespaces import namespace_for, data_types_for_agent

__all__ = [
    "BaseVectorStore",
    "VectorCandidate",
    "InMemoryVectorStore",
    "BaseEmbeddingService",
    "EmbeddingOutcome",
    "OpenAIEmbeddingService",
    "HybridSearchEngine",
    "LockMode",
    "SearchContext",
    "SearchFilters",
    "SearchHit",
    "SearchOptions",
    "SearchResponse",
    "SearchStatus",
    "namespace_for",
    "data_types_for_agent",
]
