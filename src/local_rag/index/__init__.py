"""
Index module - approximate nearest neighbor search.

The HNSW index is a derived, rebuildable mirror of the vector store:
RAGEngine replays every stored embedding into it on startup.
"""

from local_rag.index.distance import (
    batch_cosine_distance,
    cosine_distance,
    cosine_similarity,
)
from local_rag.index.hnsw import HNSWIndex

__all__ = [
    "HNSWIndex",
    "cosine_similarity",
    "cosine_distance",
    "batch_cosine_distance",
]
