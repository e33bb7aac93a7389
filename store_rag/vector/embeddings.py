"""
Embedding service for document chunks and search queries.

Chunks are embedded in provider-sized batches. A batch that keeps failing after
its retries is broken up and each chunk is tried on its own, so one bad input
only costs itself: chunks that still cannot be embedded are dropped and
reported back to the caller instead of failing the whole run. When the
provider itself is unreachable the batch is dropped as a whole.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from store_rag.config.settings import settings
from store_rag.errors import EmbeddingError
from store_rag.processing.documents import DocumentChunk, EmbeddedDocument
from store_rag.utils.async_utils import AsyncRetry, async_timer
from store_rag.utils.logger import get_logger

logger = get_logger(__name__)


MODEL_DIMENSIONS = {
    "text-embedding-3-large": 3072,
    "text-embedding-3-small": 1536,
    "text-embedding-ada-002": 1536,
}


@dataclass
class EmbeddingOutcome:
    """Result of embedding a list of chunks."""
    embedded: List[EmbeddedDocument] = field(default_factory=list)
    dropped: List[DocumentChunk] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def dropped_ids(self) -> List[str]:
        return [chunk.id for chunk in self.dropped]


class BaseEmbeddingService(ABC):
    """Batching, retry and drop-on-failure logic shared by embedding providers."""

    def __init__(self,
                 model: str,
                 provider: str,
                 batch_size: Optional[int] = None,
                 max_attempts: Optional[int] = None,
                 retry_base_delay: Optional[float] = None):
        self.model = model
        self.provider = provider
        self.batch_size = batch_size or settings.embedding_batch_size

        self.retry = AsyncRetry(
            max_attempts=max_attempts or settings.embedding_max_attempts,
            base_delay=settings.embedding_retry_base_delay if retry_base_delay is None else retry_base_delay,
            max_delay=30.0,
            exponential_factor=2.0,
        )

        self.logger = get_logger(__name__, provider=self.provider, model=self.model)

    @property
    def dimension(self) -> int:
        return MODEL_DIMENSIONS.get(self.model, settings.vector_dimensions)

    @abstractmethod
    async def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        """Call the provider once for ``texts``; one vector per text, same order."""

    async def _embed_with_retry(self, texts: List[str]) -> List[List[float]]:
        async def attempt() -> List[List[float]]:
            vectors = await self._embed_texts(texts)
            if len(vectors) != len(texts):
                raise EmbeddingError(
                    f"Provider returned {len(vectors)} vectors for {len(texts)} texts"
                )
            return vectors

        return await self.retry.call(attempt)

    async def embed_query(self, text: str) -> List[float]:
        """
        Embed a single search query.

        Raises:
            EmbeddingError: If the provider keeps failing or returns no vector
        """
        try:
            vectors = await self._embed_with_retry([text])
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Query embedding failed: {e}") from e

        if not vectors or not vectors[0]:
            raise EmbeddingError("Provider returned an empty query embedding")
        return list(vectors[0])

    async def embed_chunks(self, chunks: Sequence[DocumentChunk]) -> EmbeddingOutcome:
        """Embed chunks in batches, dropping the ones that cannot be embedded."""
        outcome = EmbeddingOutcome()
        if not chunks:
            return outcome

        async with async_timer("Chunk embedding", count=len(chunks), model=self.model):
            for start in range(0, len(chunks), self.batch_size):
                batch = list(chunks[start:start + self.batch_size])
                await self._embed_batch(batch, outcome)

        if outcome.dropped:
            self.logger.warning(
                "Chunks dropped after embedding failures",
                dropped=len(outcome.dropped),
                embedded=len(outcome.embedded)
            )
        return outcome

    def is_outage(self, error: BaseException) -> bool:
        """True when ``error`` says the provider is unreachable rather than rejecting an input."""
        return isinstance(error, (ConnectionError, asyncio.TimeoutError))

    async def _embed_batch(self, batch: List[DocumentChunk], outcome: EmbeddingOutcome) -> None:
        try:
            vectors = await self._embed_with_retry([chunk.text for chunk in batch])
        except Exception as e:
            if self.is_outage(e):
                self.logger.error(
                    "Embedding provider unavailable, dropping batch",
                    batch_size=len(batch),
                    error=str(e)
                )
                outcome.dropped.extend(batch)
                outcome.errors.extend(f"{chunk.id}: {e}" for chunk in batch)
                return

            self.logger.error(
                "Embedding batch failed, retrying chunks individually",
                batch_size=len(batch),
                error=str(e)
            )
            if len(batch) == 1:
                outcome.dropped.append(batch[0])
                outcome.errors.append(f"{batch[0].id}: {e}")
                return
            for chunk in batch:
                await self._embed_batch([chunk], outcome)
            return

        for chunk, vector in zip(batch, vectors):
            if vector:
                outcome.embedded.append(EmbeddedDocument(chunk=chunk, embedding=list(vector)))
            else:
                outcome.dropped.append(chunk)
                outcome.errors.append(f"{chunk.id}: empty embedding")

    async def health_check(self) -> Dict[str, Any]:
        try:
            vector = await self.embed_query("health check")
            return {
                'service': f"{self.provider}_embeddings",
                'model': self.model,
                'status': 'healthy',
                'dimension': len(vector),
                'last_check': datetime.now(timezone.utc).isoformat()
            }
        except Exception as e:
            return {
                'service': f"{self.provider}_embeddings",
                'model': self.model,
                'status': 'unhealthy',
                'error': str(e),
                'last_check': datetime.now(timezone.utc).isoformat()
            }


class OpenAIEmbeddingService(BaseEmbeddingService):
    """OpenAI embeddings through the async client."""

    def __init__(self,
                 api_key: Optional[str] = None,
                 model: Optional[str] = None,
                 client: Optional[AsyncOpenAI] = None,
                 **kwargs):
        super().__init__(model=model or settings.embedding_model, provider="openai", **kwargs)

        if client is None:
            api_key = api_key or settings.openai_api_key
            if not api_key:
                raise ValueError("OpenAI API key is required")
            client = AsyncOpenAI(api_key=api_key)
        self.client = client

    async def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        response = await self.client.embeddings.create(
            model=self.model,
            input=texts,
            encoding_format="float"
        )
        data = sorted(response.data, key=lambda item: item.index)
        return [item.embedding for item in data]

    def is_outage(self, error: BaseException) -> bool:
        if isinstance(error, (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError)):
            return True
        return super().is_outage(error)
