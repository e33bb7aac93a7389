"""
Base connector abstract class for source data ingestion.

A connector pulls raw items for one data type from an external source and
normalizes each into a ``SourceRecord``. Malformed items are skipped and
counted rather than aborting the run; failures talking to the source itself
end the run with a ``ConnectorError``.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, ClassVar, Deque, Dict, List, Optional, Sequence

import aiohttp

from store_rag.config.settings import settings
from store_rag.errors import ConnectorError, ReconnectionRequiredError
from store_rag.ingestion.records import DataType, SourceRecord, utc_now
from store_rag.integrations import StoreCredentials
from store_rag.utils.async_utils import async_timer
from store_rag.utils.logger import get_logger

logger = get_logger(__name__)


class ConnectorStatus(Enum):
    """Status of the most recent connector run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class LocalizedText:
    """
    Resolve multi-language fields to one display string.

    Values may be plain strings or ``{"es": ..., "en": ...}`` mappings. Locales
    are tried in precedence order, then any other non-empty string in the
    mapping, then the fallback literal.

    Examples:
        >>> LocalizedText(["es", "en"]).resolve({"en": "Shirt", "pt": "Camisa"})
        'Shirt'
        >>> LocalizedText(["es"]).resolve({}, fallback="Sin nombre")
        'Sin nombre'
    """

    def __init__(self, precedence: Optional[Sequence[str]] = None, fallback: Optional[str] = None):
        self.precedence = list(precedence or settings.locale_precedence)
        self.fallback = settings.localized_fallback if fallback is None else fallback

    def resolve(self, value: Any, fallback: Optional[str] = None) -> str:
        fallback = self.fallback if fallback is None else fallback

        if isinstance(value, str):
            return value.strip() or fallback
        if isinstance(value, bool) or value is None:
            return fallback
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, dict):
            for locale in self.precedence:
                text = value.get(locale)
                if isinstance(text, str) and text.strip():
                    return text.strip()
            for text in value.values():
                if isinstance(text, str) and text.strip():
                    return text.strip()
        return fallback


@dataclass
class ConnectorResult:
    """Outcome of one connector run."""
    data_type: DataType
    records: List[SourceRecord] = field(default_factory=list)
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    next_cursor: Optional[datetime] = None

    @property
    def fetched(self) -> int:
        return len(self.records) + self.skipped


@dataclass
class ConnectorMetrics:
    runs: int = 0
    failed_runs: int = 0
    records: int = 0
    skipped: int = 0
    last_run_at: Optional[datetime] = None
    errors: Deque[str] = field(default_factory=lambda: deque(maxlen=20))

    @property
    def skip_rate(self) -> float:
        total = self.records + self.skipped
        return (self.skipped / total) * 100 if total else 0.0


class BaseConnector(ABC):
    """
    Abstract base class for all source connectors.

    Subclasses provide ``iter_raw`` (an async generator over raw source items)
    and ``build_record`` (raw item to ``SourceRecord``; raise ``KeyError``,
    ``TypeError`` or ``ValueError`` for malformed items).
    """

    data_type: ClassVar[DataType]

    def __init__(self, name: Optional[str] = None, localizer: Optional[LocalizedText] = None):
        self.name = name or f"{self.data_type.value}_connector"
        self.localizer = localizer or LocalizedText()
        self.metrics = ConnectorMetrics()
        self.status = ConnectorStatus.PENDING
        self.logger = get_logger(__name__, connector=self.name)

    @abstractmethod
    def iter_raw(self, store_id: str, credentials: StoreCredentials,
                 since: Optional[datetime]) -> AsyncIterator[Dict[str, Any]]:
        """Yield raw items from the source."""

    @abstractmethod
    def build_record(self, raw: Dict[str, Any]) -> SourceRecord:
        """Normalize one raw item."""

    async def fetch(self, store_id: str, credentials: StoreCredentials,
                    since_cursor: Optional[datetime] = None) -> ConnectorResult:
        """
        Run the connector once.

        Raises:
            ReconnectionRequiredError: Credentials were rejected
            ConnectorError: The source could not be read
        """
        result = ConnectorResult(data_type=self.data_type)
        self.status = ConnectorStatus.RUNNING
        self.metrics.runs += 1
        self.metrics.last_run_at = utc_now()

        try:
            async with async_timer(f"{self.name} fetch", store_id=store_id):
                async for raw in self.iter_raw(store_id, credentials, since_cursor):
                    self._accept(raw, result)
        except ReconnectionRequiredError:
            self._mark_failed("credentials rejected")
            raise
        except ConnectorError as e:
            self._mark_failed(str(e))
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._mark_failed(str(e))
            raise ConnectorError(f"{self.name} could not read the source: {e}") from e

        self.status = ConnectorStatus.COMPLETED
        self.metrics.records += len(result.records)
        self.metrics.skipped += result.skipped

        self.logger.info(
            "Connector run completed",
            store_id=store_id,
            records=len(result.records),
            skipped=result.skipped,
            incremental=since_cursor is not None
        )
        return result

    def _accept(self, raw: Any, result: ConnectorResult) -> None:
        raw_id = raw.get('id') if isinstance(raw, dict) else None
        try:
            if not isinstance(raw, dict):
                raise TypeError(f"expected an object, got {type(raw).__name__}")
            record = self.build_record(raw)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            result.skipped += 1
            message = f"{self.data_type.value} {raw_id}: {e}"
            result.errors.append(message)
            self.metrics.errors.append(message)
            self.logger.warning("Skipping malformed record", source_id=raw_id, error=str(e))
            return

        result.records.append(record)
        if result.next_cursor is None or record.updated_at > result.next_cursor:
            result.next_cursor = record.updated_at

    def _mark_failed(self, error: str) -> None:
        self.status = ConnectorStatus.FAILED
        self.metrics.failed_runs += 1
        self.metrics.errors.append(error)
        self.logger.error("Connector run failed", error=error)

    def get_metrics(self) -> Dict[str, Any]:
        return {
            'connector_name': self.name,
            'data_type': self.data_type.value,
            'status': self.status.value,
            'runs': self.metrics.runs,
            'failed_runs': self.metrics.failed_runs,
            'records': self.metrics.records,
            'skipped': self.metrics.skipped,
            'skip_rate': self.metrics.skip_rate,
            'last_run_at': self.metrics.last_run_at.isoformat() if self.metrics.last_run_at else None,
            'last_errors': list(self.metrics.errors)[-5:],
        }

    async def health_check(self) -> Dict[str, Any]:
        healthy = self.status is not ConnectorStatus.FAILED
        return {
            'connector': self.name,
            'status': 'healthy' if healthy else 'unhealthy',
            'last_check': utc_now().isoformat(),
            'error': None if healthy else (self.metrics.errors[-1] if self.metrics.errors else None),
        }
