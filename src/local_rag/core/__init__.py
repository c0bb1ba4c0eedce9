"""
Core module - shared protocols, result types and errors.

USAGE:
------
from local_rag.core import VectorStore, EmbeddingProvider

class MyVectorStore:
    '''Implements VectorStore protocol.'''
    ...
"""

from local_rag.core.errors import (
    RAGError,
    ValidationError,
    ProviderError,
    StorageError,
    EngineNotInitializedError,
    IndexConsistencyWarning,
)
from local_rag.core.protocols import (
    # Protocols
    EmbeddingProvider,
    VectorStore,
    # Data classes
    SearchHit,
    RetrievedDocument,
)

__all__ = [
    # Protocols
    "EmbeddingProvider",
    "VectorStore",
    # Data classes
    "SearchHit",
    "RetrievedDocument",
    # Errors
    "RAGError",
    "ValidationError",
    "ProviderError",
    "StorageError",
    "EngineNotInitializedError",
    "IndexConsistencyWarning",
]
