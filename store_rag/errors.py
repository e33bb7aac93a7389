"""
Exception hierarchy for the store knowledge pipeline.

Every failure the core raises on purpose derives from ``StoreRAGError`` so the
job layer and the HTTP surface can tell expected failures from bugs.
"""

from typing import Any, Dict, List, Optional


class StoreRAGError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class VectorStoreError(StoreRAGError):
    """A vector database call failed (network, timeout, rejected request)."""


class StoreLockedError(StoreRAGError):
    """The store is under a deletion lock and cannot be written to."""

    def __init__(self, store_id: str, reason: Optional[str] = None, age_ms: Optional[float] = None):
        super().__init__(
            f"Store {store_id} is locked for deletion",
            {"store_id": store_id, "reason": reason, "age_ms": age_ms}
        )
        self.store_id = store_id
        self.reason = reason


class LockHeldError(StoreLockedError):
    """A different owner already holds the deletion lock."""

    def __init__(self, store_id: str, holder: str, reason: Optional[str] = None):
        super().__init__(store_id, reason=reason)
        self.holder = holder
        self.details["holder"] = holder


class SearchUnavailableError(StoreRAGError):
    """Search cannot run because the query could not be embedded."""


class EmbeddingError(StoreRAGError):
    """The embedding provider rejected or failed a request."""


class ConnectorError(StoreRAGError):
    """A source connector could not complete its run."""


class CommerceAPIError(ConnectorError):
    """Non-success HTTP response from the commerce platform."""

    def __init__(self, status: int, message: str, url: Optional[str] = None):
        super().__init__(message, {"status": status, "url": url})
        self.status = status

    @property
    def is_transient(self) -> bool:
        return self.status == 429 or self.status >= 500


class ReconnectionRequiredError(StoreRAGError):
    """Store credentials are missing or revoked; the merchant must reconnect."""

    def __init__(self, store_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Store {store_id} must be reconnected to the commerce platform",
            {"store_id": store_id}
        )
        self.store_id = store_id


class IndexingFailedError(StoreRAGError):
    """An indexing run finished with at least one data type failed."""

    def __init__(self, store_id: str, failed_types: List[str]):
        super().__init__(
            f"Indexing failed for store {store_id}: {', '.join(failed_types)}",
            {"store_id": store_id, "failed_types": failed_types}
        )
        self.failed_types = failed_types
