"""
Unit tests for namespaces and the vector store backends.
"""

from datetime import datetime, timezone
from types import SimpleNamespace
from typing import List
from unittest.mock import MagicMock, patch

import pytest

from store_rag.config.settings import settings
from store_rag.errors import VectorStoreError
from store_rag.ingestion.records import ALL_DATA_TYPES, DataType
from store_rag.processing.documents import DocumentChunk, EmbeddedDocument, make_document_id
from store_rag.vector.namespaces import (
    data_types_for_agent,
    namespace_for,
    parse_namespace,
    store_namespaces,
)
from store_rag.vector.pinecone_store import PineconeVectorStore


def _document(store_id: str, data_type: DataType, source_id: str, embedding: List[float],
              text: str = "Producto: Remera", **metadata) -> EmbeddedDocument:
    chunk = DocumentChunk(
        id=make_document_id(store_id, data_type, source_id, 0),
        store_id=store_id,
        data_type=data_type,
        source_id=source_id,
        chunk_index=0,
        total_chunks=1,
        text=text,
        updated_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        metadata=metadata,
    )
    return EmbeddedDocument(chunk=chunk, embedding=embedding)


class NotFoundException(Exception):
    status = 404


class TestNamespaces:
    """Test cases for namespace naming and agent access."""

    def test_namespace_names(self):
        """Test the store profile uses the bare store namespace."""
        assert namespace_for("S1", DataType.STORE) == "store-S1"
        assert namespace_for("S1", DataType.PRODUCTS) == "store-S1-products"
        assert namespace_for("S1", "orders") == "store-S1-orders"

    def test_namespace_requires_store(self):
        """Test an empty store id is rejected."""
        with pytest.raises(ValueError):
            namespace_for("", DataType.PRODUCTS)

    def test_store_namespaces_are_distinct(self):
        """Test each data type maps to its own namespace."""
        namespaces = store_namespaces("S1")
        assert set(namespaces) == set(ALL_DATA_TYPES)
        assert len(set(namespaces.values())) == len(ALL_DATA_TYPES)

    @pytest.mark.parametrize("namespace,expected", [
        ("store-S1", ("S1", DataType.STORE)),
        ("store-S1-products", ("S1", DataType.PRODUCTS)),
        ("store-my-shop-orders", ("my-shop", DataType.ORDERS)),
        ("store-", None),
        ("legacy-S1", None),
    ])
    def test_parse_namespace(self, namespace, expected):
        """Test namespace names map back to store and data type."""
        assert parse_namespace(namespace) == expected

    def test_agent_access(self):
        """Test agents only see the data types they may read."""
        assert data_types_for_agent("marketing") == [DataType.STORE, DataType.CUSTOMERS]
        assert data_types_for_agent("analytics", [DataType.PRODUCTS, DataType.CONVERSATIONS]) == [
            DataType.PRODUCTS
        ]

    def test_unknown_agent_is_unrestricted(self):
        """Test agents missing from the access table see everything requested."""
        assert data_types_for_agent("unknown_agent") == list(ALL_DATA_TYPES)
        assert data_types_for_agent(None, ["orders"]) == [DataType.ORDERS]


class TestInMemoryVectorStore:
    """Test cases for the in-process backend."""

    @pytest.mark.asyncio
    async def test_upsert_and_query(self, vector_store):
        """Test nearest neighbours come back best first."""
        await vector_store.upsert("S1", DataType.PRODUCTS, [
            _document("S1", DataType.PRODUCTS, "1", [1.0, 0.0]),
            _document("S1", DataType.PRODUCTS, "2", [0.6, 0.8]),
            _document("S1", DataType.PRODUCTS, "3", [0.0, 1.0]),
        ])

        results = await vector_store.query("S1", [DataType.PRODUCTS], [1.0, 0.0], top_k=2)

        assert [r.source_id for r in results] == ["1", "2"]
        assert results[0].score == pytest.approx(1.0)
        assert results[1].score == pytest.approx(0.6)
        assert results[0].data_type is DataType.PRODUCTS
        assert results[0].content == "Producto: Remera"

    @pytest.mark.asyncio
    async def test_query_threshold(self, vector_store):
        """Test matches under the threshold are left out."""
        await vector_store.upsert("S1", DataType.PRODUCTS, [
            _document("S1", DataType.PRODUCTS, "1", [1.0, 0.0]),
            _document("S1", DataType.PRODUCTS, "2", [0.0, 1.0]),
        ])

        results = await vector_store.query("S1", [DataType.PRODUCTS], [1.0, 0.0], top_k=5,
                                           score_threshold=0.5)
        assert [r.source_id for r in results] == ["1"]

    @pytest.mark.asyncio
    async def test_upsert_overwrites_same_id(self, vector_store):
        """Test re-upserting a document replaces it."""
        await vector_store.upsert("S1", DataType.PRODUCTS, [_document("S1", DataType.PRODUCTS, "1", [1.0, 0.0])])
        await vector_store.upsert("S1", DataType.PRODUCTS, [
            _document("S1", DataType.PRODUCTS, "1", [0.0, 1.0], text="Producto: Jean")
        ])

        assert len(vector_store.document_ids("S1", DataType.PRODUCTS)) == 1
        results = await vector_store.query("S1", [DataType.PRODUCTS], [0.0, 1.0], top_k=1)
        assert results[0].content == "Producto: Jean"

    @pytest.mark.asyncio
    async def test_stores_are_isolated(self, vector_store):
        """Test one store never sees another store's vectors."""
        await vector_store.upsert("S1", DataType.PRODUCTS, [_document("S1", DataType.PRODUCTS, "1", [1.0, 0.0])])
        await vector_store.upsert("S2", DataType.PRODUCTS, [_document("S2", DataType.PRODUCTS, "9", [1.0, 0.0])])

        results = await vector_store.query("S1", list(ALL_DATA_TYPES), [1.0, 0.0], top_k=10)

        assert [r.metadata['store_id'] for r in results] == ["S1"]

    @pytest.mark.asyncio
    async def test_query_merges_data_types(self, vector_store):
        """Test results from several namespaces are merged by score."""
        await vector_store.upsert("S1", DataType.PRODUCTS, [_document("S1", DataType.PRODUCTS, "1", [0.6, 0.8])])
        await vector_store.upsert("S1", DataType.ORDERS, [_document("S1", DataType.ORDERS, "501", [1.0, 0.0])])

        results = await vector_store.query("S1", [DataType.PRODUCTS, DataType.ORDERS], [1.0, 0.0], top_k=10)

        assert [r.data_type for r in results] == [DataType.ORDERS, DataType.PRODUCTS]

    @pytest.mark.asyncio
    async def test_zero_query_vector(self, vector_store):
        """Test an all-zero query matches nothing."""
        await vector_store.upsert("S1", DataType.PRODUCTS, [_document("S1", DataType.PRODUCTS, "1", [1.0, 0.0])])
        assert await vector_store.query("S1", [DataType.PRODUCTS], [0.0, 0.0], top_k=5) == []

    @pytest.mark.asyncio
    async def test_delete_and_stats(self, vector_store):
        """Test namespace deletion and per-type counts."""
        await vector_store.upsert("S1", DataType.PRODUCTS, [
            _document("S1", DataType.PRODUCTS, "1", [1.0, 0.0]),
            _document("S1", DataType.PRODUCTS, "2", [0.0, 1.0]),
        ])
        await vector_store.upsert("S1", DataType.ORDERS, [_document("S1", DataType.ORDERS, "501", [1.0, 0.0])])

        assert await vector_store.namespace_stats("S1") == {DataType.PRODUCTS: 2, DataType.ORDERS: 1}

        assert await vector_store.delete_namespace("S1", DataType.ORDERS) is True
        assert await vector_store.delete_namespace("S1", DataType.ORDERS) is True
        assert await vector_store.namespace_stats("S1") == {DataType.PRODUCTS: 2}

        await vector_store.delete_all_namespaces("S1")
        assert await vector_store.namespace_stats("S1") == {}

    @pytest.mark.asyncio
    async def test_simulated_failures(self, vector_store):
        """Test failures can be injected per operation and data type."""
        vector_store.fail_operation("upsert", DataType.ORDERS)

        with pytest.raises(VectorStoreError):
            await vector_store.upsert("S1", DataType.ORDERS, [_document("S1", DataType.ORDERS, "501", [1.0])])
        assert await vector_store.upsert("S1", DataType.PRODUCTS, [_document("S1", DataType.PRODUCTS, "1", [1.0])]) == 1

        vector_store.reset_failures()
        assert await vector_store.upsert("S1", DataType.ORDERS, [_document("S1", DataType.ORDERS, "501", [1.0])]) == 1


class TestPineconeVectorStore:
    """Test cases for the Pinecone backend with a mocked index."""

    def test_requires_api_key(self):
        """Test construction without a key or index fails."""
        with patch.object(settings, "pinecone_api_key", None):
            with pytest.raises(ValueError):
                PineconeVectorStore(api_key="")

    @pytest.mark.asyncio
    async def test_upsert_batches_into_namespace(self):
        """Test documents are written in batches to the data type namespace."""
        index = MagicMock()
        index.upsert.return_value = SimpleNamespace(upserted_count=None)
        store = PineconeVectorStore(index=index, batch_size=2)
        documents = [
            _document("S1", DataType.PRODUCTS, str(i), [0.1, 0.2], categories=["Remeras"], extra=None)
            for i in range(3)
        ]

        assert await store.upsert("S1", DataType.PRODUCTS, documents) == 3
        assert index.upsert.call_count == 2

        kwargs = index.upsert.call_args_list[0].kwargs
        assert kwargs['namespace'] == "store-S1-products"
        metadata = kwargs['vectors'][0]['metadata']
        assert metadata['store_id'] == "S1"
        assert metadata['categories'] == ["Remeras"]
        assert 'extra' not in metadata

    @pytest.mark.asyncio
    async def test_upsert_failure(self):
        """Test SDK errors become VectorStoreError."""
        index = MagicMock()
        index.upsert.side_effect = RuntimeError("quota exceeded")
        store = PineconeVectorStore(index=index)

        with pytest.raises(VectorStoreError, match="quota exceeded"):
            await store.upsert("S1", DataType.PRODUCTS, [_document("S1", DataType.PRODUCTS, "1", [0.1])])

    @pytest.mark.asyncio
    async def test_query_filters_and_skips_missing_namespaces(self):
        """Test thresholding, merging and missing namespaces."""
        def query(vector, top_k, namespace, include_metadata):
            if namespace == "store-S1-orders":
                raise NotFoundException("namespace not found")
            return SimpleNamespace(matches=[
                SimpleNamespace(id="p1", score=0.9, metadata={'content': "Producto: Remera"}),
                SimpleNamespace(id="p2", score=0.1, metadata={}),
            ])

        index = MagicMock()
        index.query.side_effect = query
        store = PineconeVectorStore(index=index)

        results = await store.query("S1", [DataType.PRODUCTS, DataType.ORDERS], [0.1], top_k=5,
                                    score_threshold=0.3)

        assert [r.id for r in results] == ["p1"]
        assert results[0].content == "Producto: Remera"

    @pytest.mark.asyncio
    async def test_delete_namespace_is_idempotent(self):
        """Test deleting a missing namespace counts as deleted."""
        index = MagicMock()
        index.delete.side_effect = NotFoundException("missing")
        store = PineconeVectorStore(index=index)

        assert await store.delete_namespace("S1", DataType.ORDERS) is True

    @pytest.mark.asyncio
    async def test_delete_failure(self):
        """Test other delete errors propagate."""
        index = MagicMock()
        index.delete.side_effect = RuntimeError("timeout")
        store = PineconeVectorStore(index=index)

        with pytest.raises(VectorStoreError):
            await store.delete_all_namespaces("S1")

    @pytest.mark.asyncio
    async def test_namespace_stats_for_one_store(self):
        """Test stats are narrowed to the requested store."""
        index = MagicMock()
        index.describe_index_stats.return_value = SimpleNamespace(
            total_vector_count=12,
            namespaces={
                "store-S1": SimpleNamespace(vector_count=1),
                "store-S1-products": SimpleNamespace(vector_count=3),
                "store-S2-orders": SimpleNamespace(vector_count=8),
            },
        )
        store = PineconeVectorStore(index=index)

        assert await store.namespace_stats("S1") == {DataType.STORE: 1, DataType.PRODUCTS: 3}

        health = await store.health_check()
        assert health['status'] == 'healthy'
        assert health['total_vector_count'] == 12
