"""Text chunking for ingestion."""

from local_rag.chunking.chunker import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CHUNK_OVERLAP,
    TextChunker,
    chunk_text,
)

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_CHUNK_OVERLAP",
    "TextChunker",
    "chunk_text",
]
