"""
Unit tests for source connectors and the commerce platform client.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from store_rag.errors import CommerceAPIError, ConnectorError, ReconnectionRequiredError
from store_rag.ingestion.base_connector import ConnectorStatus, LocalizedText
from store_rag.ingestion.commerce_client import CommercePlatformClient, TransientCommerceError
from store_rag.ingestion.connectors import (
    AnalyticsConnector,
    ConversationConnector,
    CustomerConnector,
    OrderConnector,
    ProductConnector,
    StoreInfoConnector,
    build_connectors,
)
from store_rag.ingestion.records import (
    DataType,
    OrderMetadata,
    ProductMetadata,
    SourceRecord,
    parse_timestamp,
)
from store_rag.integrations import ConversationTranscript, StoreCredentials
from store_rag.utils.async_utils import AsyncRateLimiter
from tests.conftest import STORE_ID, FakeClientFactory


class TestRecords:
    """Test cases for normalized records."""

    def test_parse_timestamp_variants(self):
        """Test platform offsets, Z suffixes and naive values are accepted."""
        assert parse_timestamp("2024-03-01T10:00:00+0000") == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
        assert parse_timestamp("2024-03-01T10:00:00Z") == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
        assert parse_timestamp("2024-03-01T10:00:00").tzinfo is timezone.utc
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None

    def test_record_requires_text(self):
        """Test empty text is rejected."""
        with pytest.raises(ValueError):
            SourceRecord("1", DataType.PRODUCTS, "   ", ProductMetadata(name="x"))

    def test_record_rejects_mismatched_metadata(self):
        """Test metadata must match the record's data type."""
        with pytest.raises(ValueError, match="OrderMetadata"):
            SourceRecord("1", DataType.PRODUCTS, "Producto: x", OrderMetadata(order_number="1"))

    def test_metadata_flattening(self):
        """Test None values are dropped and tuples become string lists."""
        metadata = ProductMetadata(name="Remera", price=10.0, categories=("Remeras", "Verano"))
        flat = metadata.to_fields()

        assert flat['categories'] == ["Remeras", "Verano"]
        assert 'sku' not in flat
        assert flat['published'] is True


class TestLocalizedText:
    """Test cases for multi-language field resolution."""

    def test_precedence_order(self):
        """Test locales are tried in precedence order."""
        value = {'es': "Remera", 'pt': "Camiseta"}
        assert LocalizedText(["es", "pt"]).resolve(value) == "Remera"
        assert LocalizedText(["pt", "es"]).resolve(value) == "Camiseta"

    def test_falls_back_to_any_locale(self):
        """Test any non-empty translation is used when preferred ones are missing."""
        assert LocalizedText(["es"]).resolve({'es': " ", 'fr': "Chemise"}) == "Chemise"

    def test_fallback_literal(self):
        """Test the fallback literal for missing values."""
        localizer = LocalizedText(["es"], fallback="Sin nombre")
        assert localizer.resolve(None) == "Sin nombre"
        assert localizer.resolve({}) == "Sin nombre"
        assert localizer.resolve("") == "Sin nombre"
        assert localizer.resolve({}, fallback="") == ""

    def test_plain_values(self):
        """Test plain strings and numbers pass through."""
        localizer = LocalizedText(["es"])
        assert localizer.resolve("  Remera ") == "Remera"
        assert localizer.resolve(42) == "42"


class TestCommerceConnectors:
    """Test cases for commerce-backed connectors."""

    @pytest.mark.asyncio
    async def test_product_records(self, credentials, client_factory):
        """Test product text and metadata."""
        connector = ProductConnector(client_factory, localizer=LocalizedText(["es", "en"]))
        result = await connector.fetch(STORE_ID, credentials)

        assert len(result.records) == 3
        assert result.skipped == 0
        assert connector.status is ConnectorStatus.COMPLETED

        remera = result.records[0]
        assert remera.source_id == "1"
        assert remera.data_type is DataType.PRODUCTS
        assert remera.text.startswith("Producto: Remera básica")
        assert "Precio: $1,400.00" in remera.text
        assert "Stock: 15 unidades" in remera.text
        assert "Categorías: Remeras" in remera.text
        assert "M - Precio: $1,500.00 - Stock: 10" in remera.text
        assert remera.metadata.price == 1400.0
        assert remera.metadata.stock == 15
        assert remera.metadata.sku == "REM-1"
        assert remera.metadata.variant_count == 2

        belt = result.records[2]
        assert belt.metadata.name == "Leather belt"
        assert belt.metadata.compare_at_price == 1900.0
        assert belt.metadata.stock is None
        assert "Marca: Cueros SA" in belt.text

    @pytest.mark.asyncio
    async def test_next_cursor_is_latest_update(self, credentials, client_factory):
        """Test the cursor advances to the newest record timestamp."""
        result = await ProductConnector(client_factory).fetch(STORE_ID, credentials)
        newest = max(record.updated_at for record in result.records)
        assert result.next_cursor == newest

    @pytest.mark.asyncio
    async def test_incremental_fetch_passes_cursor(self, credentials, client_factory):
        """Test the since cursor is forwarded as an updated_at filter."""
        since = datetime(2024, 1, 1, tzinfo=timezone.utc)
        await OrderConnector(client_factory).fetch(STORE_ID, credentials, since_cursor=since)

        request = client_factory.clients[-1].requests[0]
        assert request['resource'] == "orders"
        assert request['updated_at_min'] == since

    @pytest.mark.asyncio
    async def test_order_records(self, credentials, client_factory):
        """Test order text and metadata."""
        result = await OrderConnector(client_factory).fetch(STORE_ID, credentials)

        assert [r.source_id for r in result.records] == ["501", "502"]
        order = result.records[0]
        assert order.text.startswith("Orden #1001")
        assert "Total: $2,900.00 ARS" in order.text
        assert "Pago: paid" in order.text
        assert "Cliente: Ana Gómez" in order.text
        assert "Remera básica - Cantidad: 2" in order.text
        assert order.metadata.item_count == 2
        assert order.metadata.payment_status == "paid"

    @pytest.mark.asyncio
    async def test_customer_records(self, credentials, client_factory):
        """Test customer text and metadata."""
        result = await CustomerConnector(client_factory).fetch(STORE_ID, credentials)

        customer = result.records[0]
        assert customer.source_id == "900"
        assert "Email: ana@example.com" in customer.text
        assert "Ubicación: Córdoba, AR" in customer.text
        assert customer.metadata.total_spent == 2900.0
        assert customer.metadata.orders_count == 1

    @pytest.mark.asyncio
    async def test_store_record(self, credentials, client_factory):
        """Test the store profile strips HTML from the description."""
        result = await StoreInfoConnector(client_factory).fetch(STORE_ID, credentials)

        assert len(result.records) == 1
        store = result.records[0]
        assert store.text.startswith("Tienda: Tienda Demo")
        assert "Descripción: Ropa de algodón" in store.text
        assert "<b>" not in store.text
        assert store.metadata.currency == "ARS"
        assert store.metadata.domain == "demo.mitiendanube.com"

    @pytest.mark.asyncio
    async def test_store_missing_yields_nothing(self, credentials):
        """Test a missing store profile produces no records."""
        factory = FakeClientFactory({'store': None})
        result = await StoreInfoConnector(factory).fetch(STORE_ID, credentials)
        assert result.records == []

    @pytest.mark.asyncio
    async def test_malformed_records_are_skipped(self, credentials):
        """Test malformed items are counted and the run continues."""
        factory = FakeClientFactory({'products': [
            {'name': {'es': "Sin id"}},
            "not-an-object",
            {'id': 7, 'name': "Precio roto", 'variants': [{'price': "abc"}]},
            {'id': 8, 'name': "Gorra", 'variants': [{'price': "900"}]},
        ]})
        connector = ProductConnector(factory)
        result = await connector.fetch(STORE_ID, credentials)

        assert [r.source_id for r in result.records] == ["8"]
        assert result.skipped == 3
        assert result.fetched == 4
        assert len(result.errors) == 3
        assert connector.get_metrics()['skipped'] == 3

    @pytest.mark.asyncio
    async def test_revoked_token_requires_reconnection(self, client_factory):
        """Test rejected credentials propagate as ReconnectionRequiredError."""
        revoked = StoreCredentials(store_id=STORE_ID, access_token="")
        connector = OrderConnector(client_factory)

        with pytest.raises(ReconnectionRequiredError):
            await connector.fetch(STORE_ID, revoked)
        assert connector.status is ConnectorStatus.FAILED

    @pytest.mark.asyncio
    async def test_transport_errors_are_wrapped(self, credentials, client_factory):
        """Test network failures surface as ConnectorError."""
        client_factory.failures['customers'] = aiohttp.ClientConnectionError("connection reset")
        connector = CustomerConnector(client_factory)

        with pytest.raises(ConnectorError, match="connection reset"):
            await connector.fetch(STORE_ID, credentials)

        health = await connector.health_check()
        assert health['status'] == 'unhealthy'

    @pytest.mark.asyncio
    async def test_analytics_periods(self, credentials):
        """Test sales summaries per period."""
        now = datetime(2024, 6, 30, 12, tzinfo=timezone.utc)
        orders = [
            {'id': 1, 'total': "100.00", 'currency': "ARS", 'payment_status': "paid",
             'created_at': (now - timedelta(hours=2)).isoformat(),
             'products': [{'name': {'es': "Remera"}, 'quantity': 2}]},
            {'id': 2, 'total': "300.00", 'currency': "ARS", 'payment_status': "paid",
             'created_at': (now - timedelta(days=5)).isoformat(),
             'products': [{'name': {'es': "Jean"}, 'quantity': 1}]},
            {'id': 3, 'total': "50.00", 'payment_status': "pending",
             'created_at': (now - timedelta(days=20)).isoformat()},
            {'id': 4, 'total': "999.00", 'payment_status': "paid", 'status': "cancelled",
             'created_at': (now - timedelta(days=1, hours=-1)).isoformat()},
        ]
        connector = AnalyticsConnector(FakeClientFactory({'orders': orders}), now=lambda: now)
        result = await connector.fetch(STORE_ID, credentials)

        by_period = {r.metadata.period: r for r in result.records}
        assert set(by_period) == {"day", "week", "month"}

        day = by_period["day"].metadata
        assert day.total_revenue == 100.0
        assert day.total_orders == 1
        assert day.top_products == ("Remera",)

        week = by_period["week"].metadata
        assert week.total_revenue == 400.0
        assert week.average_order_value == 200.0
        assert week.top_products == ("Remera", "Jean")

        month = by_period["month"]
        assert "Pedidos pendientes de pago: 1" in month.text
        assert month.metadata.currency == "ARS"

    @pytest.mark.asyncio
    async def test_analytics_without_orders(self, credentials):
        """Test periods without sales still produce zeroed summaries."""
        connector = AnalyticsConnector(FakeClientFactory({'orders': []}))
        result = await connector.fetch(STORE_ID, credentials)

        assert len(result.records) == 3
        assert all(r.metadata.total_orders == 0 for r in result.records)
        assert all(r.metadata.average_order_value == 0.0 for r in result.records)


class TestConversationConnector:
    """Test cases for conversation transcripts."""

    @pytest.mark.asyncio
    async def test_transcripts_become_records(self, credentials, conversation_source):
        """Test messages are labelled by role and empty transcripts skipped."""
        updated = datetime(2024, 5, 1, tzinfo=timezone.utc)
        conversation_source.add(STORE_ID, ConversationTranscript(
            conversation_id="c-1",
            messages=[
                {'role': "user", 'content': "¿Tienen talle M?"},
                {'role': "assistant", 'content': "Sí, quedan 10 unidades."},
            ],
            updated_at=updated,
            agent_type="sales",
        ))
        conversation_source.add(STORE_ID, ConversationTranscript("c-2", [], updated))

        result = await ConversationConnector(conversation_source).fetch(STORE_ID, credentials)

        assert [r.source_id for r in result.records] == ["c-1"]
        assert result.skipped == 1
        record = result.records[0]
        assert "Cliente: ¿Tienen talle M?" in record.text
        assert "Asistente: Sí, quedan 10 unidades." in record.text
        assert record.metadata.message_count == 2
        assert record.metadata.agent_type == "sales"

    def test_build_connectors_covers_every_type(self, conversation_source, client_factory):
        """Test one connector is registered per data type."""
        connectors = build_connectors(conversation_source, client_factory=client_factory)
        assert set(connectors) == set(DataType)
        assert all(c.data_type is t for t, c in connectors.items())


def _response(status: int, payload=None) -> MagicMock:
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)
    response.text = AsyncMock(return_value="error body")
    return response


def _client(responses, **kwargs) -> CommercePlatformClient:
    session = MagicMock()
    session.get.return_value.__aenter__.side_effect = responses
    return CommercePlatformClient(
        StoreCredentials(store_id=STORE_ID, access_token="token-s1", platform_store_id="1001"),
        base_url="https://api.example.test/v1",
        session=session,
        rate_limiter=AsyncRateLimiter(rate=1000, per=1.0),
        retry_base_delay=0.0,
        **kwargs
    )


class TestCommercePlatformClient:
    """Test cases for the REST client."""

    def test_requires_token(self):
        """Test a client cannot be built without a token."""
        with pytest.raises(ReconnectionRequiredError):
            CommercePlatformClient(StoreCredentials(store_id=STORE_ID, access_token=""))

    def test_headers_and_base_url(self):
        """Test the platform store id and bearer token are used."""
        client = _client([])
        assert client.base_url == "https://api.example.test/v1/1001"
        assert client.headers['Authentication'] == "bearer token-s1"

    @pytest.mark.asyncio
    async def test_pagination_stops_on_short_page(self):
        """Test iteration ends after a page shorter than per_page."""
        client = _client([
            _response(200, [{'id': 1}, {'id': 2}]),
            _response(200, [{'id': 3}]),
        ])
        async with client:
            pages = [page async for page in client.iter_pages("products", per_page=2)]

        assert pages == [[{'id': 1}, {'id': 2}], [{'id': 3}]]

    @pytest.mark.asyncio
    async def test_pagination_stops_on_not_found(self):
        """Test a 404 past the last page ends iteration."""
        client = _client([_response(200, [{'id': 1}, {'id': 2}]), _response(404)])
        async with client:
            pages = [page async for page in client.iter_pages("orders", per_page=2)]

        assert len(pages) == 1

    @pytest.mark.asyncio
    async def test_pagination_respects_page_cap(self):
        """Test iteration stops at max_pages."""
        client = _client([_response(200, [{'id': 1}]), _response(200, [{'id': 2}])])
        async with client:
            pages = [page async for page in client.iter_pages("customers", per_page=1, max_pages=1)]

        assert pages == [[{'id': 1}]]

    @pytest.mark.asyncio
    async def test_unknown_resource(self):
        """Test unsupported resources are rejected."""
        client = _client([])
        with pytest.raises(ValueError):
            async with client:
                async for _ in client.iter_pages("coupons", per_page=10):
                    pass

    @pytest.mark.asyncio
    async def test_unauthorized_is_not_retried(self):
        """Test 401 maps to ReconnectionRequiredError on the first attempt."""
        client = _client([_response(401), _response(200, [])])
        async with client:
            with pytest.raises(ReconnectionRequiredError):
                await client.get_store()

        assert client._session.get.call_count == 1

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self):
        """Test 5xx responses are retried until success."""
        client = _client([_response(503), _response(200, {'id': 1001})])
        async with client:
            assert await client.get_store() == {'id': 1001}

        assert client._session.get.call_count == 2

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_attempts(self):
        """Test persistent 5xx responses raise after the last attempt."""
        client = _client([_response(500), _response(502)], max_attempts=2)
        async with client:
            with pytest.raises(TransientCommerceError) as exc_info:
                await client.get_store()

        assert exc_info.value.is_transient

    @pytest.mark.asyncio
    async def test_client_errors_raise(self):
        """Test other 4xx responses raise CommerceAPIError without retry."""
        client = _client([_response(422), _response(200, {})])
        async with client:
            with pytest.raises(CommerceAPIError) as exc_info:
                await client.get_store()

        assert exc_info.value.status == 422
        assert not exc_info.value.is_transient
        assert client._session.get.call_count == 1
