"""
Operational facade over the knowledge core.

``KnowledgeService`` is what an outer surface (the HTTP API, a worker, a
webhook handler) talks to: it submits jobs, runs searches and reports lock,
sync and health status. ``build_knowledge_service`` wires the components
from settings.
"""

from typing import Any, Dict, Optional, Sequence

from store_rag.config.settings import Settings, settings as default_settings
from store_rag.indexing.namespace_indexer import NamespaceIndexer
from store_rag.indexing.sync_status import SyncStatusReport, SyncStatusService
from store_rag.ingestion.commerce_client import CommercePlatformClient
from store_rag.ingestion.connectors import ClientFactory, build_connectors
from store_rag.ingestion.records import DataType, utc_now
from store_rag.integrations import (
    ConversationSource,
    InMemoryConversationSource,
    InMemorySyncBookkeeping,
    JobEventSink,
    StaticTokenProvider,
    SyncBookkeeping,
    TokenProvider,
)
from store_rag.jobs.job_manager import BackgroundJobManager, Job
from store_rag.locks.deletion_locks import DeletionLockManager
from store_rag.processing.chunker import DocumentChunker
from store_rag.utils.logger import get_logger
from store_rag.vector.base_store import BaseVectorStore
from store_rag.vector.embeddings import BaseEmbeddingService, OpenAIEmbeddingService
from store_rag.vector.hybrid_search import (
    HybridSearchEngine,
    SearchContext,
    SearchFilters,
    SearchOptions,
    SearchResponse,
)
from store_rag.vector.memory_store import InMemoryVectorStore

logger = get_logger(__name__)


class KnowledgeService:
    """Single entry point for jobs, search and status."""

    def __init__(self,
                 vector_store: BaseVectorStore,
                 embedding_service: BaseEmbeddingService,
                 lock_manager: DeletionLockManager,
                 indexer: NamespaceIndexer,
                 search_engine: HybridSearchEngine,
                 job_manager: BackgroundJobManager,
                 sync_status: SyncStatusService):
        self.vector_store = vector_store
        self.embedding_service = embedding_service
        self.lock_manager = lock_manager
        self.indexer = indexer
        self.search_engine = search_engine
        self.job_manager = job_manager
        self.sync_status = sync_status
        self.started_at = utc_now()

    def submit_index_job(self, store_id: str, incremental: bool = False) -> str:
        return self.job_manager.submit_index_job(store_id, incremental=incremental)

    def submit_cleanup_job(self, store_id: str, data_types: Optional[Sequence[DataType]] = None) -> str:
        return self.job_manager.submit_cleanup_job(store_id, data_types)

    def submit_delete_job(self, store_id: str, reason: str = "store_deletion") -> str:
        return self.job_manager.submit_delete_job(store_id, reason)

    async def search(self,
                     query: str,
                     context: SearchContext,
                     options: Optional[SearchOptions] = None,
                     filters: Optional[SearchFilters] = None) -> SearchResponse:
        return await self.search_engine.search(query, context, options, filters)

    def get_lock_status(self) -> Dict[str, Any]:
        return self.lock_manager.get_status()

    async def get_sync_status(self, store_id: str) -> SyncStatusReport:
        return await self.sync_status.get_sync_status(store_id)

    def get_job(self, job_id: str) -> Job:
        return self.job_manager.get_job(job_id)

    async def health_check(self) -> Dict[str, Any]:
        """Component health; overall status is ``degraded`` if any component is unhealthy."""
        components = {
            'vector_store': await self.vector_store.health_check(),
            'embeddings': await self.embedding_service.health_check(),
        }
        healthy = all(component.get('status') == 'healthy' for component in components.values())
        return {
            'status': 'healthy' if healthy else 'degraded',
            'timestamp': utc_now().isoformat(),
            'uptime_seconds': (utc_now() - self.started_at).total_seconds(),
            'components': components,
            'jobs': self.job_manager.get_stats(),
            'locks': self.lock_manager.get_status(),
        }

    async def shutdown(self) -> None:
        await self.job_manager.shutdown()


def _build_vector_store(config: Settings) -> BaseVectorStore:
    if config.vector_backend == "memory":
        return InMemoryVectorStore()
    from store_rag.vector.pinecone_store import PineconeVectorStore
    return PineconeVectorStore(api_key=config.pinecone_api_key, index_name=config.pinecone_index_name)


def build_knowledge_service(config: Optional[Settings] = None,
                            vector_store: Optional[BaseVectorStore] = None,
                            embedding_service: Optional[BaseEmbeddingService] = None,
                            token_provider: Optional[TokenProvider] = None,
                            bookkeeping: Optional[SyncBookkeeping] = None,
                            conversation_source: Optional[ConversationSource] = None,
                            event_sink: Optional[JobEventSink] = None,
                            client_factory: ClientFactory = CommercePlatformClient,
                            lock_manager: Optional[DeletionLockManager] = None) -> KnowledgeService:
    """
    Wire a ``KnowledgeService`` from settings.

    Any collaborator can be passed in to override the default; the defaults
    for bookkeeping, tokens and conversations are in-memory implementations.
    """
    config = config or default_settings

    vector_store = vector_store or _build_vector_store(config)
    embedding_service = embedding_service or OpenAIEmbeddingService(api_key=config.openai_api_key)
    lock_manager = lock_manager or DeletionLockManager(ttl_seconds=config.lock_ttl_seconds)
    bookkeeping = bookkeeping or InMemorySyncBookkeeping()
    token_provider = token_provider or StaticTokenProvider()
    conversation_source = conversation_source or InMemoryConversationSource()

    indexer = NamespaceIndexer(
        vector_store=vector_store,
        embedding_service=embedding_service,
        lock_manager=lock_manager,
        connectors=build_connectors(conversation_source, client_factory=client_factory),
        chunker=DocumentChunker(),
        max_concurrency=config.max_concurrent_requests,
    )
    job_manager = BackgroundJobManager(
        indexer=indexer,
        token_provider=token_provider,
        bookkeeping=bookkeeping,
        event_sink=event_sink,
        max_concurrent_jobs=config.max_concurrent_jobs,
        max_retries=config.job_max_retries,
        retry_base_delay=config.job_retry_base_delay,
        index_timeout=config.index_job_timeout,
        delete_step_timeout=config.delete_step_timeout,
        history_limit=config.job_history_limit,
    )
    service = KnowledgeService(
        vector_store=vector_store,
        embedding_service=embedding_service,
        lock_manager=lock_manager,
        indexer=indexer,
        search_engine=HybridSearchEngine(
            vector_store,
            embedding_service,
            lock_manager,
            semantic_weight=config.semantic_search_weight,
            keyword_weight=config.keyword_search_weight,
        ),
        job_manager=job_manager,
        sync_status=SyncStatusService(
            bookkeeping,
            vector_store,
            job_lookup=job_manager.last_sync_job_for,
            grace_minutes=config.initial_sync_grace_minutes,
            stale_minutes=config.stale_sync_minutes,
        ),
    )

    logger.info(
        "Knowledge service ready",
        vector_backend=config.vector_backend,
        embedding_model=embedding_service.model,
        environment=config.environment
    )
    return service
