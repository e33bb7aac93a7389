"""
Hybrid semantic + keyword search over a store's namespaces.

Candidates come from the vector store (one query per data type, run
concurrently); each is then rescored as a weighted blend of its semantic
similarity and the share of query keywords found in its text. Ranking is
fully deterministic: score, then recency, then document id.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from store_rag.config.settings import settings
from store_rag.errors import EmbeddingError, SearchUnavailableError
from store_rag.ingestion.records import ALL_DATA_TYPES, DataType, parse_timestamp
from store_rag.locks.deletion_locks import DeletionLockManager
from store_rag.utils.async_utils import async_timer
from store_rag.utils.logger import get_logger
from store_rag.utils.text_utils import extract_keywords, keyword_overlap, normalize_whitespace, truncate_text
from store_rag.vector.base_store import BaseVectorStore, VectorCandidate
from store_rag.vector.embeddings import BaseEmbeddingService
from store_rag.vector.namespaces import data_types_for_agent

logger = get_logger(__name__)

EXCERPT_LENGTH = 300


class LockMode(str, Enum):
    """What a search does when the store is locked for deletion."""
    WAIT = "wait"
    FAIL_FAST = "fail_fast"


class SearchStatus(str, Enum):
    OK = "ok"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"


@dataclass
class SearchContext:
    store_id: str
    agent_type: Optional[str] = None


@dataclass
class SearchOptions:
    top_k: Optional[int] = None
    score_threshold: Optional[float] = None
    lock_mode: LockMode = LockMode.WAIT
    lock_wait_timeout: Optional[float] = None
    restrict_to_agent_namespaces: bool = False


@dataclass
class SearchFilters:
    data_types: Optional[List[DataType]] = None


@dataclass
class SearchHit:
    """One ranked result with its provenance."""
    document_id: str
    store_id: str
    data_type: DataType
    source_id: Optional[str]
    semantic_score: float
    keyword_score: float
    final_score: float
    excerpt: str
    updated_at: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'document_id': self.document_id,
            'store_id': self.store_id,
            'data_type': self.data_type.value,
            'source_id': self.source_id,
            'semantic_score': round(self.semantic_score, 4),
            'keyword_score': round(self.keyword_score, 4),
            'final_score': round(self.final_score, 4),
            'excerpt': self.excerpt,
            'updated_at': self.updated_at,
            'metadata': self.metadata,
        }


@dataclass
class SearchResponse:
    status: SearchStatus
    results: List[SearchHit] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_available(self) -> bool:
        return self.status is SearchStatus.OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'results': [hit.to_dict() for hit in self.results],
            'metadata': self.metadata,
        }


def _recency_key(updated_at: Optional[str]) -> float:
    try:
        parsed = parse_timestamp(updated_at)
    except (TypeError, ValueError):
        return 0.0
    return parsed.timestamp() if parsed else 0.0


class HybridSearchEngine:
    """
    Semantic retrieval reranked with keyword overlap.

    final_score = semantic_weight * semantic + keyword_weight * keyword
    """

    def __init__(self,
                 vector_store: BaseVectorStore,
                 embedding_service: BaseEmbeddingService,
                 lock_manager: DeletionLockManager,
                 semantic_weight: Optional[float] = None,
                 keyword_weight: Optional[float] = None,
                 candidate_multiplier: int = 2):
        self.vector_store = vector_store
        self.embedding_service = embedding_service
        self.lock_manager = lock_manager
        self.semantic_weight = settings.semantic_search_weight if semantic_weight is None else semantic_weight
        self.keyword_weight = settings.keyword_search_weight if keyword_weight is None else keyword_weight
        self.candidate_multiplier = max(1, candidate_multiplier)
        self.logger = get_logger(__name__, component="hybrid_search")

    async def search(self,
                     query: str,
                     context: SearchContext,
                     options: Optional[SearchOptions] = None,
                     filters: Optional[SearchFilters] = None) -> SearchResponse:
        """
        Run a hybrid search for one store.

        Raises:
            ValueError: On an empty query or an out-of-range ``top_k``
            SearchUnavailableError: If the query cannot be embedded
        """
        options = options or SearchOptions()
        filters = filters or SearchFilters()

        if not query or not query.strip():
            raise ValueError("query must not be empty")

        top_k = options.top_k or settings.default_search_results
        if not 1 <= top_k <= settings.max_search_results:
            raise ValueError(f"top_k must be between 1 and {settings.max_search_results}")
        threshold = (settings.default_score_threshold
                     if options.score_threshold is None else options.score_threshold)

        store_id = context.store_id
        if not await self._store_available(store_id, options):
            self.logger.info("Search skipped, store locked for deletion", store_id=store_id)
            return SearchResponse(
                status=SearchStatus.TEMPORARILY_UNAVAILABLE,
                metadata={'store_id': store_id, 'reason': 'store_locked'}
            )

        data_types = self._resolve_data_types(context, options, filters)

        try:
            query_vector = await self.embedding_service.embed_query(query)
        except EmbeddingError as e:
            self.logger.error("Query embedding failed", store_id=store_id, error=str(e))
            raise SearchUnavailableError("Search is unavailable: query could not be embedded") from e

        keywords = extract_keywords(query)

        async with async_timer("Hybrid search", store_id=store_id, data_types=len(data_types)) as timing:
            candidates, failed = await self._collect_candidates(
                store_id, data_types, query_vector, top_k * self.candidate_multiplier
            )
            hits = self._rank(store_id, candidates, keywords, threshold)[:top_k]

        return SearchResponse(
            status=SearchStatus.OK,
            results=hits,
            metadata={
                'store_id': store_id,
                'keywords': keywords,
                'data_types': [dt.value for dt in data_types],
                'failed_data_types': [dt.value for dt in failed],
                'candidates': len(candidates),
                'search_time_ms': round(timing['elapsed_ms'], 2),
            }
        )

    async def _store_available(self, store_id: str, options: SearchOptions) -> bool:
        if not self.lock_manager.is_locked(store_id):
            return True
        if options.lock_mode is LockMode.FAIL_FAST:
            return False
        timeout = (settings.search_lock_wait_timeout
                   if options.lock_wait_timeout is None else options.lock_wait_timeout)
        return await self.lock_manager.wait_for_unlock(store_id, timeout=timeout, force=False)

    def _resolve_data_types(self, context: SearchContext, options: SearchOptions,
                            filters: SearchFilters) -> List[DataType]:
        requested = [DataType(dt) for dt in filters.data_types] if filters.data_types else list(ALL_DATA_TYPES)
        if options.restrict_to_agent_namespaces:
            return data_types_for_agent(context.agent_type, requested)
        return requested

    async def _collect_candidates(self, store_id: str, data_types: Sequence[DataType],
                                  query_vector: List[float], limit: int):
        results = await asyncio.gather(
            *(self.vector_store.query(store_id, [dt], query_vector, limit, 0.0) for dt in data_types),
            return_exceptions=True
        )

        candidates: List[VectorCandidate] = []
        failed: List[DataType] = []
        for data_type, result in zip(data_types, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                failed.append(data_type)
                self.logger.warning(
                    "Namespace query failed, continuing without it",
                    store_id=store_id,
                    data_type=data_type.value,
                    error=str(result)
                )
                continue
            candidates.extend(result)
        return candidates, failed

    def _rank(self, store_id: str, candidates: Sequence[VectorCandidate],
              keywords: List[str], threshold: float) -> List[SearchHit]:
        hits: Dict[str, SearchHit] = {}

        for candidate in candidates:
            keyword_score = keyword_overlap(keywords, candidate.content)
            final_score = self.semantic_weight * candidate.score + self.keyword_weight * keyword_score
            if final_score < threshold:
                continue

            hit = SearchHit(
                document_id=candidate.id,
                store_id=store_id,
                data_type=candidate.data_type,
                source_id=candidate.source_id,
                semantic_score=candidate.score,
                keyword_score=keyword_score,
                final_score=final_score,
                excerpt=truncate_text(normalize_whitespace(candidate.content), EXCERPT_LENGTH),
                updated_at=candidate.updated_at,
                metadata={k: v for k, v in candidate.metadata.items() if k != 'content'},
            )
            existing = hits.get(hit.document_id)
            if existing is None or existing.final_score < hit.final_score:
                hits[hit.document_id] = hit

        return sorted(
            hits.values(),
            key=lambda h: (-h.final_score, -_recency_key(h.updated_at), h.document_id)
        )
