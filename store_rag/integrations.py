"""
Contracts for the collaborators that live outside the core.

The account/session store, the token issuer, conversation history and the
outbound notification channel are owned by other services. The core only talks
to them through the protocols below; the in-memory implementations back local
development and the test suite.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Protocol, runtime_checkable

from store_rag.errors import ReconnectionRequiredError
from store_rag.utils.logger import get_logger

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StoreCredentials:
    """Access token for one connected store."""
    store_id: str
    access_token: str
    platform_store_id: Optional[str] = None

    @property
    def api_store_id(self) -> str:
        """Identifier used in commerce platform URLs."""
        return self.platform_store_id or self.store_id


@dataclass
class StoreRecord:
    """Sync bookkeeping for one store."""
    store_id: str
    created_at: datetime
    last_sync_at: Optional[datetime] = None


@dataclass
class ConversationTranscript:
    conversation_id: str
    messages: List[Dict[str, str]]
    updated_at: datetime
    agent_type: Optional[str] = None
    channel: Optional[str] = None


@dataclass
class JobEvent:
    """Job completion or failure notice sent to the notification channel."""
    event: str
    job_id: str
    store_id: str
    job_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    emitted_at: datetime = field(default_factory=utc_now)


@runtime_checkable
class TokenProvider(Protocol):
    async def get_credentials(self, store_id: str) -> StoreCredentials:
        """Return credentials or raise ``ReconnectionRequiredError``."""
        ...


class SyncBookkeeping(Protocol):
    async def get_store_record(self, store_id: str) -> Optional[StoreRecord]:
        ...

    async def mark_synced(self, store_id: str, synced_at: datetime) -> None:
        ...

    async def clear_sync(self, store_id: str) -> None:
        """Forget the last sync once the store's knowledge has been deleted."""
        ...


class ConversationSource(Protocol):
    async def list_conversations(self, store_id: str,
                                 since: Optional[datetime] = None) -> List[ConversationTranscript]:
        ...


class JobEventSink(Protocol):
    async def publish(self, event: JobEvent) -> None:
        ...


class StaticTokenProvider:
    """Token provider backed by a dict; stores without an entry must reconnect."""

    def __init__(self, credentials: Optional[Dict[str, StoreCredentials]] = None):
        self._credentials = dict(credentials or {})

    def set_credentials(self, credentials: StoreCredentials) -> None:
        self._credentials[credentials.store_id] = credentials

    def revoke(self, store_id: str) -> None:
        self._credentials.pop(store_id, None)

    async def get_credentials(self, store_id: str) -> StoreCredentials:
        credentials = self._credentials.get(store_id)
        if credentials is None or not credentials.access_token:
            raise ReconnectionRequiredError(store_id)
        return credentials


class InMemorySyncBookkeeping:
    def __init__(self):
        self._records: Dict[str, StoreRecord] = {}

    def register_store(self, store_id: str, created_at: Optional[datetime] = None,
                       last_sync_at: Optional[datetime] = None) -> StoreRecord:
        record = StoreRecord(store_id, created_at or utc_now(), last_sync_at)
        self._records[store_id] = record
        return record

    async def get_store_record(self, store_id: str) -> Optional[StoreRecord]:
        return self._records.get(store_id)

    async def mark_synced(self, store_id: str, synced_at: datetime) -> None:
        record = self._records.get(store_id)
        if record is None:
            record = self.register_store(store_id, created_at=synced_at)
        record.last_sync_at = synced_at

    async def clear_sync(self, store_id: str) -> None:
        record = self._records.get(store_id)
        if record is not None:
            record.last_sync_at = None


class InMemoryConversationSource:
    def __init__(self):
        self._conversations: Dict[str, List[ConversationTranscript]] = {}

    def add(self, store_id: str, transcript: ConversationTranscript) -> None:
        self._conversations.setdefault(store_id, []).append(transcript)

    async def list_conversations(self, store_id: str,
                                 since: Optional[datetime] = None) -> List[ConversationTranscript]:
        transcripts = self._conversations.get(store_id, [])
        if since is None:
            return list(transcripts)
        return [t for t in transcripts if t.updated_at >= since]


class LoggingEventSink:
    """Default notification channel: job events go to the structured log."""

    def __init__(self, history: int = 500):
        self.events: Deque[JobEvent] = deque(maxlen=history)

    async def publish(self, event: JobEvent) -> None:
        self.events.append(event)
        logger.info(
            "Job event",
            job_event=event.event,
            job_id=event.job_id,
            store_id=event.store_id,
            job_type=event.job_type,
            **event.payload
        )
