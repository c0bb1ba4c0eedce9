"""
Core protocols defining contracts for the entire engine.

All infrastructure components implement these protocols,
enabling dependency injection and easy testing.

PATTERN:
- Protocol defines the contract
- Multiple implementations possible
- Factory functions for instantiation
- Test doubles for fast unit tests

INTERVIEW TALKING POINT:
------------------------
"The engine never knows whether vectors come from OpenAI or from a hashing
trick, or whether documents live in Postgres or in a dict. It talks to two
protocols. The ANN index is the only piece that is not behind a protocol,
because it is a derived cache we can always rebuild from the store."
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import numpy as np

if TYPE_CHECKING:
    from local_rag.retrieval.document import Document


# ---------------------------------------------------------------------------
# EMBEDDING PROVIDER PROTOCOL
# ---------------------------------------------------------------------------


@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Contract for embedding generation.

    Implementations:
    - OpenAIEmbeddings (remote API)
    - BackendEmbeddings (self-hosted HTTP service)
    - HashingEmbeddings (deterministic local fallback)
    - EmbeddingService (cached fallback chain over the above)
    """

    name: str

    @property
    def dimensions(self) -> int:
        """Length of every vector this provider returns."""
        ...

    async def embed(self, text: str) -> np.ndarray:
        """Generate embedding for a single text."""
        ...

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """Generate embeddings for multiple texts."""
        ...


# ---------------------------------------------------------------------------
# VECTOR STORE PROTOCOL
# ---------------------------------------------------------------------------


@runtime_checkable
class VectorStore(Protocol):
    """
    Contract for durable document storage.

    The store is the source of truth. The ANN index is rebuilt from get_all().

    Implementations:
    - PgVectorStore (PostgreSQL with pgvector)
    - FileVectorStore (single JSON file on local disk)
    - InMemoryVectorStore (testing/development)
    """

    async def open(self) -> None:
        """Prepare the backend (connect, create schema, load file)."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        ...

    async def add(self, doc: Document) -> str:
        """Insert or replace a document. Returns its id."""
        ...

    async def add_batch(self, docs: list[Document]) -> int:
        """Insert documents in one transaction. Returns the number written."""
        ...

    async def get(self, doc_id: str) -> Document | None:
        """Fetch a document by id."""
        ...

    async def get_all(self) -> list[Document]:
        """Fetch every document."""
        ...

    async def get_by_category(self, category: str) -> list[Document]:
        """Fetch documents with an exact category match."""
        ...

    async def delete(self, doc_id: str) -> bool:
        """Delete a document. Returns False when the id was unknown."""
        ...

    async def clear(self) -> None:
        """Delete every document."""
        ...

    async def count(self) -> int:
        """Number of stored documents."""
        ...


# ---------------------------------------------------------------------------
# SEARCH RESULTS
# ---------------------------------------------------------------------------


@dataclass
class SearchHit:
    """A raw ANN hit: node id, similarity and the node's metadata."""
    id: str
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class RetrievedDocument:
    """A retrieval result, optionally hydrated from the vector store."""
    id: str
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)
    full_text: str | None = None
    source: str | None = None
    timestamp: float | None = None

    @property
    def text(self) -> str:
        """Best available text: hydrated text, else the index copy."""
        if self.full_text is not None:
            return self.full_text
        return self.metadata.get("text", "")

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "similarity": self.similarity,
            "metadata": self.metadata,
            "full_text": self.full_text,
            "source": self.source,
            "timestamp": self.timestamp,
        }
