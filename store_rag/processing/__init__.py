"""
Record processing: chunking source records into embeddable documents.
"""

from .chunker import ChunkingConfig, DocumentChunker
from .documents import DocumentChunk, EmbeddedDocument, make_document_id

__all__ = [
    "ChunkingConfig",
    "DocumentChunker",
    "DocumentChunk",
    "EmbeddedDocument",
    "make_document_id",
]
