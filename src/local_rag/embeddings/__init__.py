"""
Embeddings module - text embedding generation.

Follows the project-wide pattern:
1. Protocol (EmbeddingProvider) defines the interface
2. Remote implementations (OpenAIEmbeddings, BackendEmbeddings)
3. Deterministic local implementation (HashingEmbeddings) doubling as test double
4. EmbeddingService + factory function (get_embedding_provider)
"""

from local_rag.core.protocols import EmbeddingProvider
from local_rag.embeddings.cache import EmbeddingCache, cache_key
from local_rag.embeddings.providers import (
    BackendEmbeddings,
    HashingEmbeddings,
    OpenAIEmbeddings,
    tokenize,
)
from local_rag.embeddings.service import EmbeddingService, get_embedding_provider

__all__ = [
    "EmbeddingProvider",
    "EmbeddingCache",
    "cache_key",
    "BackendEmbeddings",
    "HashingEmbeddings",
    "OpenAIEmbeddings",
    "tokenize",
    "EmbeddingService",
    "get_embedding_provider",
]
