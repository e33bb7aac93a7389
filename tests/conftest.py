"""
Shared fakes for the unit tests.

``FakeCommerceClient`` serves canned platform payloads through the same
interface connectors use; ``HashingEmbeddingService`` produces deterministic
bag-of-words vectors so that texts sharing terms land close together.
"""

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from store_rag.errors import ReconnectionRequiredError
from store_rag.indexing.namespace_indexer import NamespaceIndexer
from store_rag.ingestion.connectors import build_connectors
from store_rag.integrations import (
    InMemoryConversationSource,
    InMemorySyncBookkeeping,
    LoggingEventSink,
    StaticTokenProvider,
    StoreCredentials,
)
from store_rag.locks.deletion_locks import DeletionLockManager
from store_rag.utils.text_utils import tokenize_terms
from store_rag.vector.embeddings import BaseEmbeddingService
from store_rag.vector.hybrid_search import HybridSearchEngine
from store_rag.vector.memory_store import InMemoryVectorStore

STORE_ID = "S1"
NOW = datetime.now(timezone.utc)


def iso(days_ago: float = 0.0) -> str:
    return (NOW - timedelta(days=days_ago)).isoformat()


def sample_catalog() -> Dict[str, Any]:
    """Store S1: a profile, 3 products, 2 orders and 1 customer."""
    return {
        'store': {
            'id': 1001,
            'name': {'es': "Tienda Demo", 'en': "Demo Store"},
            'description': {'es': "<p>Ropa de <b>algodón</b></p>"},
            'original_domain': "demo.mitiendanube.com",
            'country': "AR",
            'main_currency': "ARS",
        },
        'products': [
            {
                'id': 1,
                'name': {'es': "Remera básica"},
                'description': {'es': "Remera de algodón peinado"},
                'variants': [
                    {'price': "1500.00", 'stock_management': True, 'stock': 10, 'sku': "REM-1",
                     'values': [{'es': "M"}]},
                    {'price': "1400.00", 'stock_management': True, 'stock': 5, 'values': [{'es': "S"}]},
                ],
                'categories': [{'name': {'es': "Remeras"}}],
                'updated_at': iso(2),
            },
            {
                'id': 2,
                'name': {'es': "Pantalón jean"},
                'variants': [{'price': "5200.00", 'stock_management': True, 'stock': 3}],
                'updated_at': iso(1),
            },
            {
                'id': 3,
                'name': {'en': "Leather belt"},
                'variants': [{'price': "2100.50", 'promotional_price': "1900.00"}],
                'brand': "Cueros SA",
                'updated_at': iso(3),
            },
        ],
        'orders': [
            {
                'id': 501,
                'number': 1001,
                'total': "2900.00",
                'currency': "ARS",
                'status': "open",
                'payment_status': "paid",
                'shipping_status': "unpacked",
                'customer': {'name': "Ana Gómez"},
                'products': [{'name': {'es': "Remera básica"}, 'quantity': 2, 'price': "1450.00"}],
                'created_at': iso(1),
                'updated_at': iso(1),
            },
            {
                'id': 502,
                'number': 1002,
                'total': "5200.00",
                'currency': "ARS",
                'status': "open",
                'payment_status': "pending",
                'customer': {'name': "Luis Pérez"},
                'products': [{'name': {'es': "Pantalón jean"}, 'quantity': 1, 'price': "5200.00"}],
                'created_at': iso(10),
                'updated_at': iso(10),
            },
        ],
        'customers': [
            {
                'id': 900,
                'name': "Ana Gómez",
                'email': "ana@example.com",
                'total_spent': "2900.00",
                'total_spent_currency': "ARS",
                'orders_count': 1,
                'default_address': {'city': "Córdoba", 'country': "AR"},
                'updated_at': iso(1),
            },
        ],
    }


class FakeCommerceClient:
    """Stands in for ``CommercePlatformClient``; pages are served from memory."""

    def __init__(self, credentials: StoreCredentials, data: Dict[str, Any],
                 failures: Optional[Dict[str, Exception]] = None):
        self.credentials = credentials
        self.data = data
        self.failures = failures or {}
        self.requests: List[Dict[str, Any]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    def _maybe_fail(self, resource: str) -> None:
        if resource in self.failures:
            raise self.failures[resource]

    async def get_store(self):
        self.requests.append({'resource': 'store'})
        self._maybe_fail('store')
        return self.data.get('store')

    async def iter_pages(self, resource: str, per_page: int, max_pages: Optional[int] = None, **filters):
        self.requests.append({'resource': resource, 'per_page': per_page, **filters})
        self._maybe_fail(resource)
        items = list(self.data.get(resource, []))
        for start in range(0, len(items), per_page):
            yield items[start:start + per_page]


class FakeClientFactory:
    """Callable that hands out ``FakeCommerceClient``s and remembers them."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data = data if data is not None else sample_catalog()
        self.failures: Dict[str, Exception] = {}
        self.clients: List[FakeCommerceClient] = []

    def __call__(self, credentials: StoreCredentials) -> FakeCommerceClient:
        if not credentials.access_token:
            raise ReconnectionRequiredError(credentials.store_id)
        client = FakeCommerceClient(credentials, self.data, self.failures)
        self.clients.append(client)
        return client


class HashingEmbeddingService(BaseEmbeddingService):
    """Deterministic bag-of-words embeddings with switchable failures."""

    def __init__(self, size: int = 64, **kwargs):
        kwargs.setdefault('max_attempts', 1)
        kwargs.setdefault('retry_base_delay', 0.0)
        super().__init__(model="hashing-test", provider="fake", **kwargs)
        self.size = size
        self.fail_all = False
        self.fail_markers: List[str] = []
        self.calls = 0

    @property
    def dimension(self) -> int:
        return self.size

    async def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        self.calls += 1
        if self.fail_all:
            raise RuntimeError("embedding provider unavailable")
        for text in texts:
            if any(marker in text for marker in self.fail_markers):
                raise RuntimeError("input rejected by provider")
        return [self.vectorize(text) for text in texts]

    def vectorize(self, text: str) -> List[float]:
        vector = [0.0] * self.size
        for term in tokenize_terms(text):
            bucket = int(hashlib.md5(term.encode("utf-8")).hexdigest(), 16) % self.size
            vector[bucket] += 1.0
        return vector


@pytest.fixture
def credentials() -> StoreCredentials:
    return StoreCredentials(store_id=STORE_ID, access_token="token-s1", platform_store_id="1001")


@pytest.fixture
def token_provider(credentials) -> StaticTokenProvider:
    return StaticTokenProvider({STORE_ID: credentials})


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def conversation_source() -> InMemoryConversationSource:
    return InMemoryConversationSource()


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def embedding_service() -> HashingEmbeddingService:
    return HashingEmbeddingService()


@pytest.fixture
def lock_manager() -> DeletionLockManager:
    return DeletionLockManager(ttl_seconds=10, poll_interval=0.01)


@pytest.fixture
def bookkeeping() -> InMemorySyncBookkeeping:
    return InMemorySyncBookkeeping()


@pytest.fixture
def event_sink() -> LoggingEventSink:
    return LoggingEventSink()


@pytest.fixture
def indexer(vector_store, embedding_service, lock_manager, client_factory, conversation_source) -> NamespaceIndexer:
    return NamespaceIndexer(
        vector_store=vector_store,
        embedding_service=embedding_service,
        lock_manager=lock_manager,
        connectors=build_connectors(conversation_source, client_factory=client_factory),
    )


@pytest.fixture
def search_engine(vector_store, embedding_service, lock_manager) -> HybridSearchEngine:
    return HybridSearchEngine(vector_store, embedding_service, lock_manager)
