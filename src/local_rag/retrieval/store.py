"""
Vector store implementations following the project-wide pattern.

Pattern: Protocol → Production impls → Test double → Factory

This module contains:
1. VectorStoreConfig - Configuration dataclass for PostgreSQL
2. PgVectorStore - PostgreSQL with pgvector (production, shared)
3. FileVectorStore - single JSON file (production, local/offline)
4. InMemoryVectorStore - dict-backed store (testing/development)
5. get_vector_store() - Factory function

All stores are keyed by document id with last-write-wins semantics and
answer exact-match category queries. They never compute embeddings: a
document without an embedding is rejected before anything is written.

INTERVIEW TALKING POINT:
------------------------
"The store is the source of truth and the HNSW graph is a cache of it. That
split is why stores only need seven dumb operations - put, get, get-all,
query-by-category, delete, clear, count - and why swapping a JSON file for
Postgres is a one-line config change."
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from local_rag.config import RAGConfig
from local_rag.core.errors import StorageError, ValidationError
from local_rag.core.protocols import VectorStore
from local_rag.retrieval.document import Document

logger = logging.getLogger(__name__)

# Optional: Only import psycopg if available (for local dev without postgres)
try:
    import psycopg
    from psycopg.types.json import Jsonb
    from pgvector.psycopg import register_vector_async

    PGVECTOR_AVAILABLE = True
except ImportError:
    PGVECTOR_AVAILABLE = False


def _require_embedding(doc: Document) -> None:
    if doc.embedding is None:
        raise ValidationError(f"document '{doc.id}' has no embedding")


# ---------------------------------------------------------------------------
# CONFIGURATION
# ---------------------------------------------------------------------------


@dataclass
class VectorStoreConfig:
    """Configuration for the PostgreSQL vector store."""

    connection_string: str = "postgresql://localhost/local_rag"
    embedding_dim: int = 384
    table_name: str = "rag_embeddings"


# ---------------------------------------------------------------------------
# PGVECTOR STORE (Production)
# ---------------------------------------------------------------------------


class PgVectorStore:
    """
    PostgreSQL document store using pgvector for the embedding column.

    Similarity search stays in the in-process HNSW index; Postgres only
    provides durability and the category/source/timestamp secondary indexes.
    """

    def __init__(self, config: VectorStoreConfig):
        self.config = config
        self._conn = None

    async def open(self) -> None:
        """Connect and create the schema if needed."""
        if not PGVECTOR_AVAILABLE:
            raise ImportError(
                "pgvector not available. Install with: pip install pgvector psycopg[binary]"
            )
        if self._conn is not None:
            return

        try:
            self._conn = await psycopg.AsyncConnection.connect(
                self.config.connection_string, autocommit=True
            )
            await self._conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
            await register_vector_async(self._conn)
            await self.create_schema()
        except psycopg.Error as e:
            raise StorageError(f"Failed to open PostgreSQL store: {e}") from e

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def create_schema(self) -> None:
        """Create the documents table and secondary indexes."""
        table = self.config.table_name
        await self._conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                text TEXT NOT NULL,
                embedding vector({self.config.embedding_dim}) NOT NULL,
                category TEXT NOT NULL DEFAULT 'general',
                source TEXT NOT NULL DEFAULT 'manual',
                metadata JSONB NOT NULL DEFAULT '{{}}',
                timestamp DOUBLE PRECISION NOT NULL
            )
        """
        )
        for column in ("category", "source", "timestamp"):
            await self._conn.execute(
                f"CREATE INDEX IF NOT EXISTS {table}_{column}_idx ON {table} ({column})"
            )

    def _connection(self):
        if self._conn is None:
            raise StorageError("PgVectorStore is not open")
        return self._conn

    def _params(self, doc: Document) -> tuple:
        return (
            doc.id,
            doc.text,
            np.asarray(doc.embedding, dtype=np.float32),
            doc.category,
            doc.source,
            Jsonb(doc.metadata),
            doc.timestamp,
        )

    @property
    def _upsert_sql(self) -> str:
        return f"""
            INSERT INTO {self.config.table_name}
                (id, text, embedding, category, source, metadata, timestamp)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (id) DO UPDATE SET
                text = EXCLUDED.text,
                embedding = EXCLUDED.embedding,
                category = EXCLUDED.category,
                source = EXCLUDED.source,
                metadata = EXCLUDED.metadata,
                timestamp = EXCLUDED.timestamp
        """

    @property
    def _select_sql(self) -> str:
        return (
            "SELECT id, text, embedding, category, source, metadata, timestamp "
            f"FROM {self.config.table_name}"
        )

    @staticmethod
    def _row_to_document(row) -> Document:
        return Document(
            id=row[0],
            text=row[1],
            embedding=np.asarray(row[2], dtype=np.float32) if row[2] is not None else None,
            category=row[3],
            source=row[4],
            metadata=dict(row[5] or {}),
            timestamp=float(row[6]),
        )

    async def add(self, doc: Document) -> str:
        _require_embedding(doc)
        try:
            await self._connection().execute(self._upsert_sql, self._params(doc))
        except psycopg.Error as e:
            raise StorageError(f"Failed to store document '{doc.id}': {e}") from e
        return doc.id

    async def add_batch(self, docs: list[Document]) -> int:
        for doc in docs:
            _require_embedding(doc)
        conn = self._connection()
        try:
            async with conn.transaction():
                async with conn.cursor() as cur:
                    await cur.executemany(self._upsert_sql, [self._params(d) for d in docs])
        except psycopg.Error as e:
            raise StorageError(f"Failed to store batch of {len(docs)} documents: {e}") from e
        return len(docs)

    async def _fetch(self, sql: str, params: tuple = ()) -> list[Document]:
        try:
            cursor = await self._connection().execute(sql, params)
            rows = await cursor.fetchall()
        except psycopg.Error as e:
            raise StorageError(f"Failed to read documents: {e}") from e
        return [self._row_to_document(row) for row in rows]

    async def get(self, doc_id: str) -> Document | None:
        docs = await self._fetch(f"{self._select_sql} WHERE id = %s", (doc_id,))
        return docs[0] if docs else None

    async def get_all(self) -> list[Document]:
        return await self._fetch(f"{self._select_sql} ORDER BY timestamp, id")

    async def get_by_category(self, category: str) -> list[Document]:
        return await self._fetch(
            f"{self._select_sql} WHERE category = %s ORDER BY timestamp, id", (category,)
        )

    async def delete(self, doc_id: str) -> bool:
        try:
            cursor = await self._connection().execute(
                f"DELETE FROM {self.config.table_name} WHERE id = %s", (doc_id,)
            )
        except psycopg.Error as e:
            raise StorageError(f"Failed to delete document '{doc_id}': {e}") from e
        return cursor.rowcount > 0

    async def clear(self) -> None:
        try:
            await self._connection().execute(f"DELETE FROM {self.config.table_name}")
        except psycopg.Error as e:
            raise StorageError(f"Failed to clear store: {e}") from e

    async def count(self) -> int:
        try:
            cursor = await self._connection().execute(
                f"SELECT COUNT(*) FROM {self.config.table_name}"
            )
            row = await cursor.fetchone()
        except psycopg.Error as e:
            raise StorageError(f"Failed to count documents: {e}") from e
        return int(row[0])


# ---------------------------------------------------------------------------
# IN-MEMORY STORE (Testing/Development)
# ---------------------------------------------------------------------------


class InMemoryVectorStore:
    """
    In-memory vector store for development/testing.

    Implements the same interface as PgVectorStore but keeps everything in
    a dict, with a category -> ids map standing in for the secondary index.
    """

    def __init__(self):
        self._documents: dict[str, Document] = {}
        self._by_category: dict[str, set[str]] = {}

    async def open(self) -> None:
        """No-op for in-memory store."""
        pass

    async def close(self) -> None:
        """No-op for in-memory store."""
        pass

    def _put(self, doc: Document) -> None:
        previous = self._documents.get(doc.id)
        if previous is not None:
            self._by_category.get(previous.category, set()).discard(doc.id)
        self._documents[doc.id] = doc
        self._by_category.setdefault(doc.category, set()).add(doc.id)

    async def add(self, doc: Document) -> str:
        _require_embedding(doc)
        self._put(doc)
        return doc.id

    async def add_batch(self, docs: list[Document]) -> int:
        # Validate everything first so a bad record leaves the store untouched
        for doc in docs:
            _require_embedding(doc)
        for doc in docs:
            self._put(doc)
        return len(docs)

    async def get(self, doc_id: str) -> Document | None:
        return self._documents.get(doc_id)

    async def get_all(self) -> list[Document]:
        return list(self._documents.values())

    async def get_by_category(self, category: str) -> list[Document]:
        ids = self._by_category.get(category, set())
        return [doc for doc_id, doc in self._documents.items() if doc_id in ids]

    async def delete(self, doc_id: str) -> bool:
        doc = self._documents.pop(doc_id, None)
        if doc is None:
            return False
        self._by_category.get(doc.category, set()).discard(doc_id)
        return True

    async def clear(self) -> None:
        self._documents.clear()
        self._by_category.clear()

    async def count(self) -> int:
        return len(self._documents)


# ---------------------------------------------------------------------------
# FILE STORE (Local persistence)
# ---------------------------------------------------------------------------


class FileVectorStore(InMemoryVectorStore):
    """
    Durable store backed by one JSON file.

    The whole collection is held in memory and rewritten atomically
    (temp file + rename) after every mutation. Writes are serialized by an
    asyncio lock, so concurrent writers to one id resolve last-write-wins.
    """

    def __init__(self, file_path: Path | str = ".rag_vectors.json"):
        super().__init__()
        self._path = Path(file_path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        """Get the backing file path."""
        return self._path

    def _read_file(self) -> list[dict]:
        if not self._path.exists():
            return []
        with open(self._path, encoding="utf-8") as f:
            data = json.load(f)
        return data.get("documents", [])

    def _write_file(self, payload: dict) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp_path, self._path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    async def open(self) -> None:
        """Load the JSON file into memory."""
        try:
            records = await asyncio.to_thread(self._read_file)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to load vector file {self._path}: {e}") from e

        self._documents.clear()
        self._by_category.clear()
        for record in records:
            try:
                self._put(Document.from_dict(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable record in {self._path}: {e}")
        logger.debug(f"Loaded {len(self._documents)} documents from {self._path}")

    async def _flush(self) -> None:
        payload = {"documents": [doc.to_dict() for doc in self._documents.values()]}
        try:
            await asyncio.to_thread(self._write_file, payload)
        except OSError as e:
            raise StorageError(f"Failed to write vector file {self._path}: {e}") from e
        except (TypeError, ValueError) as e:
            # json.dump rejects non-JSON metadata values
            raise StorageError(f"Cannot serialize documents to {self._path}: {e}") from e

    async def add(self, doc: Document) -> str:
        await self.add_batch([doc])
        return doc.id

    async def add_batch(self, docs: list[Document]) -> int:
        """Write all documents or none: a failed flush restores the previous state."""
        for doc in docs:
            _require_embedding(doc)
        async with self._lock:
            snapshot = dict(self._documents)
            for doc in docs:
                self._put(doc)
            try:
                await self._flush()
            except StorageError:
                self._restore(snapshot)
                raise
        return len(docs)

    def _restore(self, snapshot: dict[str, Document]) -> None:
        self._documents.clear()
        self._by_category.clear()
        for doc in snapshot.values():
            self._put(doc)

    async def delete(self, doc_id: str) -> bool:
        async with self._lock:
            snapshot = dict(self._documents)
            removed = await super().delete(doc_id)
            if removed:
                try:
                    await self._flush()
                except StorageError:
                    self._restore(snapshot)
                    raise
        return removed

    async def clear(self) -> None:
        async with self._lock:
            snapshot = dict(self._documents)
            await super().clear()
            try:
                await self._flush()
            except StorageError:
                self._restore(snapshot)
                raise


# ---------------------------------------------------------------------------
# FACTORY FUNCTION
# ---------------------------------------------------------------------------


def get_vector_store(
    backend: str | None = None,
    config: RAGConfig | None = None,
) -> VectorStore:
    """
    Factory function to get the appropriate vector store.

    Args:
        backend: "memory", "file" or "postgres" (default: config.store_backend)
        config: Engine configuration (uses defaults if not provided)

    Returns:
        VectorStore implementation (not yet opened)
    """
    config = config or RAGConfig()
    backend = (backend or config.store_backend).lower()

    if backend == "memory":
        return InMemoryVectorStore()
    if backend == "file":
        return FileVectorStore(config.store_path)
    if backend == "postgres":
        return PgVectorStore(
            VectorStoreConfig(
                connection_string=config.database_url,
                embedding_dim=config.dimension,
                table_name=config.table_name,
            )
        )
    raise ValueError(f"Unknown store backend: {backend}")
