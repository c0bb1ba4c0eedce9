"""
Span Attribute Keys

Custom `rag.*` namespace for engine spans. Remote embedding calls get the
standard `gen_ai.*` keys from the OpenInference OpenAI instrumentor instead.
"""

# ---------------------------------------------------------------------------
# RAG NAMESPACE (custom)
# ---------------------------------------------------------------------------

# Ingestion
RAG_DOCUMENT_CATEGORY = "rag.document.category"
RAG_DOCUMENT_SOURCE = "rag.document.source"
RAG_DOCUMENT_LENGTH = "rag.document.length"  # chars
RAG_CHUNK_COUNT = "rag.chunk.count"

# Retrieval
RAG_QUERY = "rag.query"  # only when capture_content is on
RAG_TOP_K = "rag.retrieve.top_k"
RAG_MIN_SIMILARITY = "rag.retrieve.min_similarity"
RAG_CATEGORY_FILTER = "rag.retrieve.category"
RAG_CANDIDATE_COUNT = "rag.retrieve.candidate_count"
RAG_HIT_COUNT = "rag.retrieve.hit_count"
RAG_HIT_IDS = "rag.retrieve.hit_ids"
RAG_TOP_SIMILARITY = "rag.retrieve.top_similarity"

# Shared
RAG_LATENCY_MS = "rag.latency_ms"
RAG_INDEX_SIZE = "rag.index.size"

# Context formatting
RAG_CONTEXT_FOUND = "rag.context.found"  # bool
RAG_CONTEXT_LENGTH = "rag.context.length"  # chars


# ---------------------------------------------------------------------------
# HELPER FUNCTIONS
# ---------------------------------------------------------------------------


def ingest_attributes(category: str, source: str, length: int) -> dict:
    """Create attributes dict for an add_document span."""
    return {
        RAG_DOCUMENT_CATEGORY: category,
        RAG_DOCUMENT_SOURCE: source,
        RAG_DOCUMENT_LENGTH: length,
    }


def retrieve_attributes(
    top_k: int,
    min_similarity: float,
    category: str | None = None,
    query: str | None = None,
) -> dict:
    """Create attributes dict for a retrieve span."""
    attrs = {
        RAG_TOP_K: top_k,
        RAG_MIN_SIMILARITY: min_similarity,
    }
    if category is not None:
        attrs[RAG_CATEGORY_FILTER] = category
    if query is not None:
        attrs[RAG_QUERY] = query
    return attrs


def hit_attributes(ids: list[str], similarities: list[float], latency_ms: float) -> dict:
    """Create result attributes for a finished retrieve span."""
    attrs = {
        RAG_HIT_COUNT: len(ids),
        RAG_HIT_IDS: list(ids),
        RAG_LATENCY_MS: latency_ms,
    }
    if similarities:
        attrs[RAG_TOP_SIMILARITY] = max(similarities)
    return attrs
