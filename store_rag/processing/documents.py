"""
Document chunks and their vector-ready form.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List

from store_rag.ingestion.records import DataType
from store_rag.utils.text_utils import generate_text_hash


def make_document_id(store_id: str, data_type: DataType, source_id: str, chunk_index: int) -> str:
    """
    Deterministic vector id for one chunk of one source record.

    Re-indexing the same record yields the same ids, so upserts overwrite
    instead of duplicating.
    """
    return generate_text_hash(f"{store_id}:{DataType(data_type).value}:{source_id}:{chunk_index}")


@dataclass
class DocumentChunk:
    """A piece of a source record small enough to embed."""
    id: str
    store_id: str
    data_type: DataType
    source_id: str
    chunk_index: int
    total_chunks: int
    text: str
    updated_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    def vector_metadata(self) -> Dict[str, Any]:
        """Metadata stored alongside the vector; record facts never override provenance."""
        return {
            **self.metadata,
            'content': self.text,
            'store_id': self.store_id,
            'data_type': self.data_type.value,
            'source_id': self.source_id,
            'chunk_index': self.chunk_index,
            'total_chunks': self.total_chunks,
            'updated_at': self.updated_at.isoformat(),
        }

    def __len__(self) -> int:
        return len(self.text)


@dataclass
class EmbeddedDocument:
    """A chunk paired with its embedding, ready for upsert."""
    chunk: DocumentChunk
    embedding: List[float]

    @property
    def id(self) -> str:
        return self.chunk.id
