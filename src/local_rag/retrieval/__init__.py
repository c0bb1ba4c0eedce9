"""
Retrieval module - durable document storage.

Follows the project-wide pattern:
1. Protocol (VectorStore) defines the interface
2. Production implementations (PgVectorStore, FileVectorStore)
3. Test double (InMemoryVectorStore)
4. Factory function (get_vector_store)
"""

from local_rag.core.protocols import VectorStore
from local_rag.retrieval.document import Document
from local_rag.retrieval.store import (
    PGVECTOR_AVAILABLE,
    FileVectorStore,
    InMemoryVectorStore,
    PgVectorStore,
    VectorStoreConfig,
    get_vector_store,
)

__all__ = [
    "VectorStore",
    "Document",
    "PGVECTOR_AVAILABLE",
    "FileVectorStore",
    "InMemoryVectorStore",
    "PgVectorStore",
    "VectorStoreConfig",
    "get_vector_store",
]
