"""
Sentence-aware chunking of source records.

Records are split on sentence boundaries into chunks no longer than
``max_chunk_size`` characters. Consecutive chunks share up to
``chunk_overlap`` characters of trailing context so a fact that straddles a
boundary is still retrievable from either side.
"""

from dataclasses import dataclass
from typing import Any, Dict, List

from store_rag.config.settings import settings
from store_rag.ingestion.records import SourceRecord
from store_rag.processing.documents import DocumentChunk, make_document_id
from store_rag.utils.logger import get_logger
from store_rag.utils.text_utils import clean_text, count_tokens_approximate, split_into_sentences

logger = get_logger(__name__)


@dataclass
class ChunkingConfig:
    """Configuration for the chunker."""
    max_chunk_size: int = 1000
    chunk_overlap: int = 200

    def __post_init__(self):
        if self.max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        if not 0 <= self.chunk_overlap < self.max_chunk_size:
            raise ValueError("chunk_overlap must be smaller than max_chunk_size")

    @classmethod
    def from_settings(cls) -> "ChunkingConfig":
        return cls(max_chunk_size=settings.chunk_size, chunk_overlap=settings.chunk_overlap)


class DocumentChunker:
    """Turns ``SourceRecord``s into ``DocumentChunk``s."""

    def __init__(self, config: ChunkingConfig = None):
        self.config = config or ChunkingConfig.from_settings()
        self.logger = get_logger(__name__, component="chunker")
        self.stats: Dict[str, int] = {'records': 0, 'chunks': 0, 'estimated_tokens': 0}

    def chunk(self, store_id: str, record: SourceRecord) -> List[DocumentChunk]:
        """Split one record; always returns at least one chunk."""
        text = clean_text(record.text)
        pieces = self.split_text(text) or [text]
        record_fields = record.metadata.to_fields()

        chunks = [
            DocumentChunk(
                id=make_document_id(store_id, record.data_type, record.source_id, index),
                store_id=store_id,
                data_type=record.data_type,
                source_id=record.source_id,
                chunk_index=index,
                total_chunks=len(pieces),
                text=piece,
                updated_at=record.updated_at,
                metadata=dict(record_fields),
            )
            for index, piece in enumerate(pieces)
        ]

        self.stats['records'] += 1
        self.stats['chunks'] += len(chunks)
        self.stats['estimated_tokens'] += sum(count_tokens_approximate(c.text) for c in chunks)

        if len(chunks) > 1:
            self.logger.debug(
                "Record split into chunks",
                source_id=record.source_id,
                data_type=record.data_type.value,
                chunks=len(chunks)
            )
        return chunks

    def chunk_records(self, store_id: str, records: List[SourceRecord]) -> List[DocumentChunk]:
        chunks: List[DocumentChunk] = []
        for record in records:
            chunks.extend(self.chunk(store_id, record))
        return chunks

    def split_text(self, text: str) -> List[str]:
        """Greedy sentence packing with trailing-context overlap."""
        max_size = self.config.max_chunk_size
        if not text:
            return []
        if len(text) <= max_size:
            return [text]

        sentences: List[str] = []
        for sentence in split_into_sentences(text):
            if len(sentence) > max_size:
                sentences.extend(self._split_long_sentence(sentence))
            else:
                sentences.append(sentence)

        chunks: List[str] = []
        current = ""
        for sentence in sentences:
            candidate = f"{current} {sentence}" if current else sentence
            if len(candidate) <= max_size:
                current = candidate
                continue

            chunks.append(current)
            overlap = self._overlap_tail(current)
            if overlap and len(overlap) + 1 + len(sentence) <= max_size:
                current = f"{overlap} {sentence}"
            else:
                current = sentence

        if current:
            chunks.append(current)
        return chunks

    def _overlap_tail(self, text: str) -> str:
        overlap = self.config.chunk_overlap
        if overlap <= 0:
            return ""
        if len(text) <= overlap:
            return text
        tail = text[-overlap:]
        # start the overlap on a word boundary
        space = tail.find(" ")
        if 0 <= space < len(tail) - 1:
            tail = tail[space + 1:]
        return tail.strip()

    def _split_long_sentence(self, sentence: str) -> List[str]:
        max_size = self.config.max_chunk_size
        pieces: List[str] = []
        current = ""
        for word in sentence.split():
            while len(word) > max_size:
                if current:
                    pieces.append(current)
                    current = ""
                pieces.append(word[:max_size])
                word = word[max_size:]
            if not word:
                continue
            candidate = f"{current} {word}" if current else word
            if len(candidate) <= max_size:
                current = candidate
            else:
                pieces.append(current)
                current = word
        if current:
            pieces.append(current)
        return pieces

    def get_stats(self) -> Dict[str, Any]:
        records = self.stats['records']
        return {
            **self.stats,
            'chunks_per_record': self.stats['chunks'] / records if records else 0.0,
            'max_chunk_size': self.config.max_chunk_size,
            'chunk_overlap': self.config.chunk_overlap,
        }
