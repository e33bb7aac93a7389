"""
Data ingestion from the commerce platform and conversation history.

Connectors normalize source payloads into ``SourceRecord``s, one connector per
data type.
"""

from .records import (
    ALL_DATA_TYPES,
    DataType,
    SourceRecord,
    StoreMetadata,
    ProductMetadata,
    OrderMetadata,
    CustomerMetadata,
    AnalyticsMetadata,
    ConversationMetadata,
)
from .base_connector import BaseConnector, ConnectorResult, LocalizedText
from .commerce_client import CommercePlatformClient
from .connectors import (
    StoreInfoConnector,
    ProductConnector,
    OrderConnector,
    CustomerConnector,
    AnalyticsConnector,
    ConversationConnector,
    build_connectors,
)

__all__ = [
    "ALL_DATA_TYPES",
    "DataType",
    "SourceRecord",
    "StoreMetadata",
    "ProductMetadata",
    "OrderMetadata",
    "CustomerMetadata",
    "AnalyticsMetadata",
    "ConversationMetadata",
    "BaseConnector",
    "ConnectorResult",
    "LocalizedText",
    "CommercePlatformClient",
    "StoreInfoConnector",
    "ProductConnector",
    "OrderConnector",
    "CustomerConnector",
    "AnalyticsConnector",
    "ConversationConnector",
    "build_connectors",
]
