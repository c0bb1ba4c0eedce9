"""
RAGEngine - orchestrates chunking, embedding, storage and ANN search.

Ingestion:  chunk -> embed -> persist (store) -> insert (index)
Retrieval:  embed query -> search index (top_k * 2) -> filter -> hydrate from store
Startup:    replay every stored record into a fresh index

The store is the source of truth and the index mirrors it. Every operation
that touches the graph runs under the write side of a reader/writer lock,
searches run under the read side, so no search ever observes a document that
is stored but not yet indexed (or indexed but already deleted).

INTERVIEW TALKING POINT:
------------------------
"Embedding happens before we take the write lock. It is the slow, network-
bound step, so concurrent add_document calls overlap their API calls and
only serialize for the few microseconds it takes to persist and link the
chunks into the graph."
"""

from __future__ import annotations

import logging
import secrets
import string
import time
import warnings
from datetime import datetime, timezone
from typing import Any, Iterable

import numpy as np

from local_rag.chunking import TextChunker
from local_rag.config import RAGConfig
from local_rag.core.errors import (
    EngineNotInitializedError,
    IndexConsistencyWarning,
    StorageError,
    ValidationError,
)
from local_rag.core.protocols import EmbeddingProvider, RetrievedDocument, VectorStore
from local_rag.engine.context import format_context
from local_rag.engine.locks import ReadWriteLock
from local_rag.engine.stats import EngineStats
from local_rag.index import HNSWIndex
from local_rag.observability import get_tracer, get_tracing_config
from local_rag.observability import attributes as attrs
from local_rag.retrieval.document import Document
from local_rag.schemas import DocumentInput, parse_document, parse_retrieve_options

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_chunk_id(chunk_index: int) -> str:
    """`{epoch_ms}_{chunk_index}_{9 random base36 chars}`"""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{int(time.time() * 1000)}_{chunk_index}_{suffix}"


def _node_metadata(doc: Document) -> dict[str, Any]:
    return {"text": doc.text, "category": doc.category, "source": doc.source}


class RAGEngine:
    """
    Local retrieval engine over an owned store, index and embedding provider.

    Call initialize() (or use `async with`) before anything else.

    Args:
        config: Engine configuration
        embeddings: Embedding provider (normally an EmbeddingService)
        store: Durable document store
        index: ANN index (built from config.hnsw when omitted)
        chunker: Text chunker (built from config when omitted)
    """

    def __init__(
        self,
        config: RAGConfig,
        embeddings: EmbeddingProvider,
        store: VectorStore,
        index: HNSWIndex | None = None,
        chunker: TextChunker | None = None,
    ):
        self.config = config
        self.embeddings = embeddings
        self.store = store
        self.index = index or HNSWIndex.from_config(config.dimension, config.hnsw)
        self.chunker = chunker or TextChunker(config.chunk_size, config.chunk_overlap)

        if embeddings.dimensions != self.index.dimension:
            raise ValueError(
                f"embedding provider has {embeddings.dimensions} dimensions, "
                f"index expects {self.index.dimension}"
            )

        self._lock = ReadWriteLock()
        self._stats = EngineStats()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise EngineNotInitializedError("call initialize() before using the engine")

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def initialize(self) -> None:
        """Open the store and rebuild the index from it. Safe to call twice."""
        async with self._lock.write():
            if self._initialized:
                return
            await self.store.open()
            loaded = await self._rebuild_index()
            self._stats.documents_indexed = loaded
            self._initialized = True
        logger.info(f"RAG engine initialized with {loaded} documents")

    async def _rebuild_index(self) -> int:
        self.index.clear()
        loaded = 0
        for doc in await self.store.get_all():
            problem = self._replay_problem(doc)
            if problem is None:
                try:
                    self.index.insert(doc.id, doc.embedding, _node_metadata(doc))
                    loaded += 1
                    continue
                except ValidationError as e:
                    problem = str(e)

            message = f"Skipping stored record '{doc.id}' on rebuild: {problem}"
            logger.warning(message)
            warnings.warn(message, IndexConsistencyWarning, stacklevel=3)
        return loaded

    def _replay_problem(self, doc: Document) -> str | None:
        if doc.embedding is None:
            return "missing embedding"
        shape = np.shape(doc.embedding)
        if shape != (self.index.dimension,):
            return f"embedding shape {shape}, expected ({self.index.dimension},)"
        return None

    async def close(self) -> None:
        """Close the store and any provider HTTP clients."""
        await self.store.close()
        close = getattr(self.embeddings, "aclose", None)
        if close is not None:
            await close()
        self._initialized = False

    async def __aenter__(self) -> "RAGEngine":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Ingestion
    # ------------------------------------------------------------------ #

    async def add_document(self, document: DocumentInput | dict[str, Any]) -> list[str]:
        """
        Chunk, embed, persist and index one document.

        Args:
            document: {"text", "category"?, "source"?, "metadata"?}

        Returns:
            Ids of the stored chunks, in text order

        Raises:
            ValidationError: text shorter than min_text_length or malformed input
            StorageError: the store failed; chunks written before the failure stay
        """
        self._require_initialized()
        doc_in = parse_document(document)
        if len(doc_in.text) < self.config.min_text_length:
            raise ValidationError(
                f"document text too short ({len(doc_in.text)} chars, "
                f"minimum {self.config.min_text_length})"
            )

        tracer = get_tracer()
        with tracer.start_span(
            "rag.add_document",
            attributes=attrs.ingest_attributes(doc_in.category, doc_in.source, len(doc_in.text)),
        ) as span:
            chunks = self.chunker.chunk(doc_in.text)
            vectors = await self.embeddings.embed_batch(chunks)

            records = [
                Document(
                    id=new_chunk_id(i),
                    text=chunk,
                    embedding=vector,
                    category=doc_in.category,
                    source=doc_in.source,
                    metadata={
                        **doc_in.metadata,
                        "chunk_index": i,
                        "total_chunks": len(chunks),
                        "original_length": len(doc_in.text),
                    },
                )
                for i, (chunk, vector) in enumerate(zip(chunks, vectors))
            ]

            ids: list[str] = []
            async with self._lock.write():
                for record in records:
                    await self.store.add(record)
                    self.index.insert(record.id, record.embedding, _node_metadata(record))
                    self._stats.documents_indexed += 1
                    ids.append(record.id)
                    logger.debug(f"Indexed chunk {record.id} ({len(record.text)} chars)")

            span.set_attribute(attrs.RAG_CHUNK_COUNT, len(ids))
            span.set_attribute(attrs.RAG_INDEX_SIZE, len(self.index))

        logger.info(f"Added {len(ids)} chunks from document (source={doc_in.source})")
        return ids

    async def import_batch(self, documents: Iterable[DocumentInput | dict[str, Any]]) -> int:
        """Add documents one by one, skipping the ones that fail. Returns the count added."""
        documents = list(documents)
        imported = 0
        for position, document in enumerate(documents):
            try:
                await self.add_document(document)
                imported += 1
            except (ValidationError, StorageError) as e:
                logger.warning(f"Failed to import document #{position}: {e}")

        logger.info(f"Imported {imported}/{len(documents)} documents")
        return imported

    # ------------------------------------------------------------------ #
    # Retrieval
    # ------------------------------------------------------------------ #

    async def retrieve(self, query: str, **options: Any) -> list[RetrievedDocument]:
        """
        Find the passages most similar to a query.

        Options:
            top_k: max hits (default config.top_k)
            min_similarity: drop hits below this (default config.min_similarity)
            category: exact category filter
            include_metadata: hydrate full text/source/timestamp (default True)

        Returns an empty list when nothing clears the threshold.
        """
        self._require_initialized()
        if not isinstance(query, str):
            raise ValidationError(f"query must be a string, got {type(query).__name__}")
        opts = parse_retrieve_options(**options)
        top_k = opts.top_k if opts.top_k is not None else self.config.top_k
        min_similarity = (
            opts.min_similarity if opts.min_similarity is not None else self.config.min_similarity
        )

        started = time.perf_counter()
        tracer = get_tracer()
        capture = get_tracing_config().capture_content
        with tracer.start_span(
            "rag.retrieve",
            attributes=attrs.retrieve_attributes(
                top_k, min_similarity, opts.category, query if capture else None
            ),
        ) as span:
            query_vector = await self.embeddings.embed(query)

            async with self._lock.read():
                candidates = self.index.search(query_vector, k=top_k * 2)
                span.set_attribute(attrs.RAG_CANDIDATE_COUNT, len(candidates))

                if opts.category is not None:
                    candidates = [c for c in candidates if c.metadata.get("category") == opts.category]
                candidates = [c for c in candidates if c.similarity >= min_similarity]

                results = [
                    RetrievedDocument(id=c.id, similarity=c.similarity, metadata=c.metadata)
                    for c in candidates[:top_k]
                ]
                if opts.include_metadata:
                    for result in results:
                        stored = await self.store.get(result.id)
                        if stored is not None:
                            result.full_text = stored.text
                            result.source = stored.source
                            result.timestamp = stored.timestamp

            elapsed_ms = (time.perf_counter() - started) * 1000
            self._stats.record_query(elapsed_ms)
            for key, value in attrs.hit_attributes(
                [r.id for r in results], [r.similarity for r in results], elapsed_ms
            ).items():
                span.set_attribute(key, value)

        logger.debug(f"Retrieved {len(results)} documents in {elapsed_ms:.2f}ms")
        return results

    async def generate_context(self, query: str, **options: Any) -> str | None:
        """Retrieve and render a prompt-ready context block, or None when nothing matched."""
        tracer = get_tracer()
        with tracer.start_span("rag.generate_context") as span:
            hits = await self.retrieve(query, **options)
            context = format_context(hits)
            span.set_attribute(attrs.RAG_CONTEXT_FOUND, context is not None)
            span.set_attribute(attrs.RAG_CONTEXT_LENGTH, len(context or ""))
        return context

    # ------------------------------------------------------------------ #
    # Removal
    # ------------------------------------------------------------------ #

    async def remove_document(self, doc_id: str) -> bool:
        """Delete one chunk from the store and the index. False if unknown."""
        self._require_initialized()
        async with self._lock.write():
            stored = await self.store.delete(doc_id)
            indexed = self.index.remove(doc_id)
            if stored or indexed:
                self._stats.documents_indexed = max(0, self._stats.documents_indexed - 1)

        if stored or indexed:
            logger.info(f"Removed document: {doc_id}")
        else:
            logger.debug(f"Remove ignored, unknown document: {doc_id}")
        return stored or indexed

    async def clear(self) -> None:
        """Delete every document and empty the index."""
        self._require_initialized()
        async with self._lock.write():
            await self.store.clear()
            self.index.clear()
            self._stats.documents_indexed = 0
        logger.info("Index cleared")

    # ------------------------------------------------------------------ #
    # Reporting
    # ------------------------------------------------------------------ #

    def get_stats(self) -> EngineStats:
        cache = getattr(self.embeddings, "cache", None)
        return EngineStats(
            documents_indexed=self._stats.documents_indexed,
            queries_processed=self._stats.queries_processed,
            avg_retrieval_ms=self._stats.avg_retrieval_ms,
            index_size=len(self.index),
            embedding_cache_size=len(cache) if cache is not None else 0,
        )

    async def export(self) -> dict[str, Any]:
        """Dump every stored document (embeddings as lists) plus stats."""
        self._require_initialized()
        async with self._lock.read():
            documents = await self.store.get_all()
        return {
            "documents": [doc.to_dict() for doc in documents],
            "stats": self.get_stats().to_dict(),
            "exported_at": datetime.now(timezone.utc).isoformat(),
        }
