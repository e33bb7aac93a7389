"""
Normalized records produced by the source connectors.

Each data type has its own metadata dataclass carrying only the facts that make
sense for it (a price lives on products, a payment status on orders). A
``SourceRecord`` pairs the searchable text with exactly one of those variants.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple, Union


class DataType(str, Enum):
    """Kinds of store data kept in separate namespaces."""
    STORE = "store"
    PRODUCTS = "products"
    ORDERS = "orders"
    CUSTOMERS = "customers"
    ANALYTICS = "analytics"
    CONVERSATIONS = "conversations"


ALL_DATA_TYPES: Tuple[DataType, ...] = tuple(DataType)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse the platform's ISO-8601 timestamps (``+0000`` offsets included)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        elif len(text) > 5 and text[-5] in "+-" and text[-4:].isdigit():
            text = f"{text[:-2]}:{text[-2:]}"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class _RecordMetadata:
    """Shared flattening for the metadata variants."""

    data_type: ClassVar[DataType]

    def to_fields(self) -> Dict[str, Any]:
        """Flatten to primitive values accepted by the vector store."""
        flat: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, tuple):
                value = [str(v) for v in value]
            elif isinstance(value, datetime):
                value = value.isoformat()
            flat[f.name] = value
        return flat


@dataclass(frozen=True)
class StoreMetadata(_RecordMetadata):
    data_type: ClassVar[DataType] = DataType.STORE

    name: str
    country: Optional[str] = None
    currency: Optional[str] = None
    domain: Optional[str] = None
    plan: Optional[str] = None


@dataclass(frozen=True)
class ProductMetadata(_RecordMetadata):
    data_type: ClassVar[DataType] = DataType.PRODUCTS

    name: str
    price: Optional[float] = None
    compare_at_price: Optional[float] = None
    stock: Optional[int] = None
    sku: Optional[str] = None
    brand: Optional[str] = None
    categories: Tuple[str, ...] = field(default_factory=tuple)
    published: bool = True
    variant_count: int = 0


@dataclass(frozen=True)
class OrderMetadata(_RecordMetadata):
    data_type: ClassVar[DataType] = DataType.ORDERS

    order_number: str
    status: Optional[str] = None
    payment_status: Optional[str] = None
    shipping_status: Optional[str] = None
    total: Optional[float] = None
    currency: Optional[str] = None
    customer_name: Optional[str] = None
    item_count: int = 0


@dataclass(frozen=True)
class CustomerMetadata(_RecordMetadata):
    data_type: ClassVar[DataType] = DataType.CUSTOMERS

    name: str
    email: Optional[str] = None
    total_spent: Optional[float] = None
    currency: Optional[str] = None
    orders_count: Optional[int] = None


@dataclass(frozen=True)
class AnalyticsMetadata(_RecordMetadata):
    data_type: ClassVar[DataType] = DataType.ANALYTICS

    period: str
    total_revenue: float = 0.0
    total_orders: int = 0
    average_order_value: float = 0.0
    currency: Optional[str] = None
    top_products: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ConversationMetadata(_RecordMetadata):
    data_type: ClassVar[DataType] = DataType.CONVERSATIONS

    conversation_id: str
    message_count: int = 0
    agent_type: Optional[str] = None
    channel: Optional[str] = None


RecordMetadata = Union[
    StoreMetadata,
    ProductMetadata,
    OrderMetadata,
    CustomerMetadata,
    AnalyticsMetadata,
    ConversationMetadata,
]


@dataclass
class SourceRecord:
    """One normalized record ready for chunking."""
    source_id: str
    data_type: DataType
    text: str
    metadata: RecordMetadata
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if not self.source_id:
            raise ValueError("source_id is required")
        if not self.text or not self.text.strip():
            raise ValueError(f"record {self.source_id} has no text")
        if self.metadata.data_type is not self.data_type:
            raise ValueError(
                f"{type(self.metadata).__name__} cannot describe a {self.data_type.value} record"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_id': self.source_id,
            'data_type': self.data_type.value,
            'text': self.text,
            'metadata': self.metadata.to_fields(),
            'updated_at': self.updated_at.isoformat(),
        }
