"""
Source connectors for each store data type.

Commerce-backed connectors (store profile, products, orders, customers,
analytics) read from the platform API; the conversations connector reads
transcripts kept by the account/session store. Each turns raw payloads into a
Spanish-labelled text block plus a typed metadata variant.
"""

from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from store_rag.config.settings import settings
from store_rag.ingestion.base_connector import BaseConnector, LocalizedText
from store_rag.ingestion.commerce_client import CommercePlatformClient
from store_rag.ingestion.records import (
    AnalyticsMetadata,
    ConversationMetadata,
    CustomerMetadata,
    DataType,
    OrderMetadata,
    ProductMetadata,
    SourceRecord,
    StoreMetadata,
    parse_timestamp,
    utc_now,
)
from store_rag.integrations import ConversationSource, StoreCredentials
from store_rag.utils.text_utils import remove_html_tags

ClientFactory = Callable[[StoreCredentials], CommercePlatformClient]


def _require_id(raw: Dict[str, Any]) -> str:
    value = raw['id']
    if value is None or str(value).strip() == "":
        raise ValueError("missing id")
    return str(value)


def _to_float(value: Any) -> Optional[float]:
    """Parse platform money strings ("1500.00"); None when absent."""
    if value is None or value == "":
        return None
    return float(value)


def _record_timestamp(raw: Dict[str, Any]) -> datetime:
    return parse_timestamp(raw.get('updated_at')) or parse_timestamp(raw.get('created_at')) or utc_now()


def _money(value: Optional[float]) -> str:
    return f"${value:,.2f}" if value is not None else "-"


class CommerceConnector(BaseConnector):
    """Connector over one paginated commerce API resource."""

    resource: str = ""

    def __init__(self,
                 client_factory: ClientFactory = CommercePlatformClient,
                 page_size: Optional[int] = None,
                 max_pages: Optional[int] = None,
                 localizer: Optional[LocalizedText] = None):
        super().__init__(localizer=localizer)
        self.client_factory = client_factory
        self.page_size = page_size or settings.default_page_size
        self.max_pages = max_pages or settings.max_pages

    async def iter_raw(self, store_id: str, credentials: StoreCredentials,
                       since: Optional[datetime]) -> AsyncIterator[Dict[str, Any]]:
        async with self.client_factory(credentials) as client:
            async for page in client.iter_pages(self.resource, per_page=self.page_size,
                                                max_pages=self.max_pages, updated_at_min=since):
                for item in page:
                    yield item


class StoreInfoConnector(CommerceConnector):
    data_type = DataType.STORE

    async def iter_raw(self, store_id: str, credentials: StoreCredentials,
                       since: Optional[datetime]) -> AsyncIterator[Dict[str, Any]]:
        async with self.client_factory(credentials) as client:
            store = await client.get_store()
        if store:
            yield store

    def build_record(self, raw: Dict[str, Any]) -> SourceRecord:
        source_id = _require_id(raw)
        name = self.localizer.resolve(raw.get('name'))
        description = remove_html_tags(self.localizer.resolve(raw.get('description'), fallback=""))
        domain = raw.get('original_domain') or raw.get('url')

        lines = [f"Tienda: {name}"]
        if description:
            lines.append(f"Descripción: {description}")
        if domain:
            lines.append(f"URL: {domain}")
        if raw.get('country'):
            lines.append(f"País: {raw['country']}")
        if raw.get('main_currency') or raw.get('currency'):
            lines.append(f"Moneda: {raw.get('main_currency') or raw.get('currency')}")
        if raw.get('email'):
            lines.append(f"Email: {raw['email']}")
        if raw.get('phone'):
            lines.append(f"Teléfono: {raw['phone']}")

        return SourceRecord(
            source_id=source_id,
            data_type=self.data_type,
            text="\n".join(lines),
            metadata=StoreMetadata(
                name=name,
                country=raw.get('country'),
                currency=raw.get('main_currency') or raw.get('currency'),
                domain=domain,
                plan=raw.get('plan_name'),
            ),
            updated_at=_record_timestamp(raw),
        )


class ProductConnector(CommerceConnector):
    data_type = DataType.PRODUCTS
    resource = "products"

    def __init__(self, *args, **kwargs):
        kwargs.setdefault('page_size', settings.products_page_size)
        super().__init__(*args, **kwargs)

    def build_record(self, raw: Dict[str, Any]) -> SourceRecord:
        source_id = _require_id(raw)
        name = self.localizer.resolve(raw.get('name'))
        description = remove_html_tags(self.localizer.resolve(raw.get('description'), fallback=""))
        variants = raw.get('variants') or []

        prices = [p for p in (_to_float(v.get('price')) for v in variants) if p is not None]
        promos = [p for p in (_to_float(v.get('promotional_price')) for v in variants) if p is not None]
        price = min(prices) if prices else _to_float(raw.get('price'))
        managed = [v for v in variants if v.get('stock_management') and v.get('stock') is not None]
        stock = sum(int(v['stock']) for v in managed) if managed else None
        sku = next((v.get('sku') for v in variants if v.get('sku')), None)
        categories = tuple(
            self.localizer.resolve(c.get('name') if isinstance(c, dict) else c)
            for c in raw.get('categories') or []
        )
        brand = raw.get('brand') or None
        published = bool(raw.get('published', True))

        lines = [f"Producto: {name}"]
        if description:
            lines.append(f"Descripción: {description}")
        if price is not None:
            lines.append(f"Precio: {_money(price)}")
        if promos:
            lines.append(f"Precio promocional: {_money(min(promos))}")
        if stock is not None:
            lines.append(f"Stock: {stock} unidades")
        if sku:
            lines.append(f"SKU: {sku}")
        if brand:
            lines.append(f"Marca: {brand}")
        if categories:
            lines.append(f"Categorías: {', '.join(categories)}")
        variant_lines = self._describe_variants(variants)
        if variant_lines:
            lines.append(f"Variantes: {'; '.join(variant_lines)}")
        lines.append(f"Publicado: {'Sí' if published else 'No'}")

        return SourceRecord(
            source_id=source_id,
            data_type=self.data_type,
            text="\n".join(lines),
            metadata=ProductMetadata(
                name=name,
                price=price,
                compare_at_price=min(promos) if promos else None,
                stock=stock,
                sku=sku,
                brand=brand,
                categories=categories,
                published=published,
                variant_count=len(variants),
            ),
            updated_at=_record_timestamp(raw),
        )

    def _describe_variants(self, variants: List[Dict[str, Any]]) -> List[str]:
        described = []
        for variant in variants:
            parts = [
                self.localizer.resolve(value, fallback="")
                for value in variant.get('values') or []
            ]
            parts = [p for p in parts if p]
            price = _to_float(variant.get('price'))
            if price is not None:
                parts.append(f"Precio: {_money(price)}")
            if variant.get('stock_management') and variant.get('stock') is not None:
                parts.append(f"Stock: {variant['stock']}")
            if parts:
                described.append(" - ".join(parts))
        return described


class OrderConnector(CommerceConnector):
    data_type = DataType.ORDERS
    resource = "orders"

    def build_record(self, raw: Dict[str, Any]) -> SourceRecord:
        source_id = _require_id(raw)
        number = str(raw.get('number') or source_id)
        total = _to_float(raw.get('total'))
        currency = raw.get('currency')
        customer = raw.get('customer') or {}
        customer_name = customer.get('name') if isinstance(customer, dict) else None
        items = raw.get('products') or []
        created = parse_timestamp(raw.get('created_at'))

        lines = [f"Orden #{number}", f"Pedido ID: {source_id}"]
        if total is not None:
            lines.append(f"Total: {_money(total)}{f' {currency}' if currency else ''}")
        if raw.get('status'):
            lines.append(f"Estado: {raw['status']}")
        if raw.get('payment_status'):
            lines.append(f"Pago: {raw['payment_status']}")
        if raw.get('shipping_status'):
            lines.append(f"Envío: {raw['shipping_status']}")
        if created:
            lines.append(f"Fecha: {created.date().isoformat()}")
        if customer_name:
            lines.append(f"Cliente: {customer_name}")

        item_lines = []
        for item in items:
            parts = [self.localizer.resolve(item.get('name'), fallback="Producto")]
            if item.get('quantity'):
                parts.append(f"Cantidad: {item['quantity']}")
            price = _to_float(item.get('price'))
            if price is not None:
                parts.append(f"Precio: {_money(price)}")
            item_lines.append(" - ".join(parts))
        if item_lines:
            lines.append(f"Productos: {'; '.join(item_lines)}")
        if raw.get('note'):
            lines.append(f"Nota: {raw['note']}")

        return SourceRecord(
            source_id=source_id,
            data_type=self.data_type,
            text="\n".join(lines),
            metadata=OrderMetadata(
                order_number=number,
                status=raw.get('status'),
                payment_status=raw.get('payment_status'),
                shipping_status=raw.get('shipping_status'),
                total=total,
                currency=currency,
                customer_name=customer_name,
                item_count=sum(int(item.get('quantity') or 0) for item in items),
            ),
            updated_at=_record_timestamp(raw),
        )


class CustomerConnector(CommerceConnector):
    data_type = DataType.CUSTOMERS
    resource = "customers"

    def build_record(self, raw: Dict[str, Any]) -> SourceRecord:
        source_id = _require_id(raw)
        name = self.localizer.resolve(raw.get('name'), fallback="Cliente sin nombre")
        total_spent = _to_float(raw.get('total_spent'))
        currency = raw.get('total_spent_currency')
        address = raw.get('default_address') or {}

        lines = [f"Cliente: {name}"]
        if raw.get('email'):
            lines.append(f"Email: {raw['email']}")
        if raw.get('phone'):
            lines.append(f"Teléfono: {raw['phone']}")
        if total_spent is not None:
            lines.append(f"Total gastado: {_money(total_spent)}{f' {currency}' if currency else ''}")
        location = ", ".join(
            str(address[key]) for key in ('city', 'province', 'country') if address.get(key)
        )
        if location:
            lines.append(f"Ubicación: {location}")
        if raw.get('note'):
            lines.append(f"Nota: {raw['note']}")

        return SourceRecord(
            source_id=source_id,
            data_type=self.data_type,
            text="\n".join(lines),
            metadata=CustomerMetadata(
                name=name,
                email=raw.get('email'),
                total_spent=total_spent,
                currency=currency,
                orders_count=raw.get('orders_count'),
            ),
            updated_at=_record_timestamp(raw),
        )


ANALYTICS_PERIODS: Tuple[Tuple[str, str, int], ...] = (
    ("day", "Hoy", 1),
    ("week", "Últimos 7 días", 7),
    ("month", "Últimos 30 días", 30),
)


class AnalyticsConnector(CommerceConnector):
    """
    Sales summaries derived from recent orders.

    One record per period (day, week, month): revenue and order count of
    non-cancelled paid orders, average order value, pending orders and the
    best-selling products of the period.
    """

    data_type = DataType.ANALYTICS
    resource = "orders"

    def __init__(self, *args, now: Callable[[], datetime] = utc_now, top_products: int = 5, **kwargs):
        super().__init__(*args, **kwargs)
        self._now = now
        self.top_products = top_products

    async def iter_raw(self, store_id: str, credentials: StoreCredentials,
                       since: Optional[datetime]) -> AsyncIterator[Dict[str, Any]]:
        now = self._now()
        window_start = now - timedelta(days=max(days for _, _, days in ANALYTICS_PERIODS))
        orders: List[Dict[str, Any]] = []

        async with self.client_factory(credentials) as client:
            async for page in client.iter_pages("orders", per_page=self.page_size,
                                                max_pages=self.max_pages, created_at_min=window_start):
                orders.extend(o for o in page if isinstance(o, dict))

        currency = next((o.get('currency') for o in orders if o.get('currency')), None)
        for period, label, days in ANALYTICS_PERIODS:
            yield self._summarize(period, label, now - timedelta(days=days), now, orders, currency)

    def _summarize(self, period: str, label: str, start: datetime, now: datetime,
                   orders: List[Dict[str, Any]], currency: Optional[str]) -> Dict[str, Any]:
        revenue = 0.0
        paid_orders = 0
        pending = 0
        product_units: Dict[str, int] = {}

        for order in orders:
            try:
                created = parse_timestamp(order.get('created_at'))
                total = _to_float(order.get('total')) or 0.0
            except (TypeError, ValueError):
                self.logger.warning("Order ignored in analytics", order_id=order.get('id'))
                continue
            if created is None or created < start or order.get('status') == 'cancelled':
                continue
            if order.get('payment_status') == 'paid':
                revenue += total
                paid_orders += 1
                for item in order.get('products') or []:
                    name = self.localizer.resolve(item.get('name'), fallback="")
                    if name:
                        product_units[name] = product_units.get(name, 0) + int(item.get('quantity') or 0)
            elif order.get('payment_status') == 'pending':
                pending += 1

        top = sorted(product_units.items(), key=lambda kv: (-kv[1], kv[0]))[:self.top_products]
        return {
            'id': f"sales-{period}",
            'period': period,
            'label': label,
            'revenue': round(revenue, 2),
            'orders': paid_orders,
            'pending': pending,
            'currency': currency,
            'top_products': [name for name, _ in top],
            'updated_at': now.isoformat(),
        }

    def build_record(self, raw: Dict[str, Any]) -> SourceRecord:
        source_id = _require_id(raw)
        revenue = float(raw['revenue'])
        orders = int(raw['orders'])
        average = round(revenue / orders, 2) if orders else 0.0

        lines = [
            f"Análisis del período: {raw.get('label') or raw['period']}",
            f"Ventas totales: {_money(revenue)}",
            f"Número de ventas: {orders}",
            f"Venta promedio: {_money(average)}",
            f"Pedidos pendientes de pago: {raw.get('pending', 0)}",
        ]
        if raw.get('top_products'):
            lines.append(f"Productos más vendidos: {', '.join(raw['top_products'])}")

        return SourceRecord(
            source_id=source_id,
            data_type=self.data_type,
            text="\n".join(lines),
            metadata=AnalyticsMetadata(
                period=raw['period'],
                total_revenue=revenue,
                total_orders=orders,
                average_order_value=average,
                currency=raw.get('currency'),
                top_products=tuple(raw.get('top_products') or ()),
            ),
            updated_at=_record_timestamp(raw),
        )


ROLE_LABELS = {'user': "Cliente", 'customer': "Cliente", 'assistant': "Asistente", 'agent': "Asistente"}


class ConversationConnector(BaseConnector):
    """Conversation transcripts from the account/session store."""

    data_type = DataType.CONVERSATIONS

    def __init__(self, source: ConversationSource, localizer: Optional[LocalizedText] = None):
        super().__init__(localizer=localizer)
        self.source = source

    async def iter_raw(self, store_id: str, credentials: StoreCredentials,
                       since: Optional[datetime]) -> AsyncIterator[Dict[str, Any]]:
        for transcript in await self.source.list_conversations(store_id, since):
            yield {
                'id': transcript.conversation_id,
                'messages': transcript.messages,
                'agent_type': transcript.agent_type,
                'channel': transcript.channel,
                'updated_at': transcript.updated_at,
            }

    def build_record(self, raw: Dict[str, Any]) -> SourceRecord:
        source_id = _require_id(raw)
        messages = [m for m in raw.get('messages') or [] if isinstance(m, dict) and m.get('content')]
        if not messages:
            raise ValueError("conversation has no messages")

        lines = [f"Conversación {source_id}"]
        for message in messages:
            role = ROLE_LABELS.get(str(message.get('role', '')).lower(), "Mensaje")
            lines.append(f"{role}: {str(message['content']).strip()}")

        return SourceRecord(
            source_id=source_id,
            data_type=self.data_type,
            text="\n".join(lines),
            metadata=ConversationMetadata(
                conversation_id=source_id,
                message_count=len(messages),
                agent_type=raw.get('agent_type'),
                channel=raw.get('channel'),
            ),
            updated_at=_record_timestamp(raw),
        )


def build_connectors(conversation_source: ConversationSource,
                     client_factory: ClientFactory = CommercePlatformClient,
                     localizer: Optional[LocalizedText] = None) -> Dict[DataType, BaseConnector]:
    """One connector per data type."""
    localizer = localizer or LocalizedText()
    return {
        DataType.STORE: StoreInfoConnector(client_factory, localizer=localizer),
        DataType.PRODUCTS: ProductConnector(client_factory, localizer=localizer),
        DataType.ORDERS: OrderConnector(client_factory, localizer=localizer),
        DataType.CUSTOMERS: CustomerConnector(client_factory, localizer=localizer),
        DataType.ANALYTICS: AnalyticsConnector(client_factory, localizer=localizer),
        DataType.CONVERSATIONS: ConversationConnector(conversation_source, localizer=localizer),
    }
