"""
Chunker module - split raw text into overlapping passages.

Single responsibility: turn one long string into bounded pieces that can be
embedded independently. Each chunk ends on a sentence or line boundary when
one exists in the back half of the window, and consecutive chunks share
`overlap` characters so a sentence cut at a boundary is still seen whole once.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 500
DEFAULT_CHUNK_OVERLAP = 50
BOUNDARY_CHARS = (".", "\n")


class TextChunker:
    """Window chunker with boundary snapping and fixed overlap."""

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_CHUNK_OVERLAP,
        boundary_chars: tuple[str, ...] = BOUNDARY_CHARS,
    ):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if not 0 <= overlap < chunk_size:
            raise ValueError(f"overlap must be in [0, chunk_size), got {overlap}")
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.boundary_chars = boundary_chars

    def _find_break(self, text: str, start: int, end: int) -> int:
        """Last boundary at or before `end`, or -1."""
        return max(text.rfind(ch, start, end + 1) for ch in self.boundary_chars)

    def chunk(self, text: str) -> list[str]:
        """Split text into overlapping chunks.

        Text no longer than chunk_size comes back as a single chunk.
        A chunk may be one character longer than chunk_size when the
        boundary sits exactly at the window edge.
        """
        if not text:
            return []
        if len(text) <= self.chunk_size:
            return [text]

        length = len(text)
        chunks = []
        start = 0

        while start < length:
            end = start + self.chunk_size

            if end < length:
                break_point = self._find_break(text, start, end)
                if break_point > start + self.chunk_size * 0.5:
                    end = break_point + 1

            chunks.append(text[start:min(end, length)])

            if end >= length:
                break
            start = max(end - self.overlap, start + 1)

        logger.debug(f"Chunked {length} chars into {len(chunks)} chunks")
        return chunks


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """Convenience wrapper around TextChunker.chunk()."""
    return TextChunker(chunk_size=chunk_size, overlap=overlap).chunk(text)
