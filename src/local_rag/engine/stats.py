"""Engine statistics."""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass
class EngineStats:
    """
    Counters reported by RAGEngine.get_stats().

    documents_indexed counts stored chunks, not submitted documents.
    avg_retrieval_ms is a running mean over every retrieve() call.
    """

    documents_indexed: int = 0
    queries_processed: int = 0
    avg_retrieval_ms: float = 0.0
    index_size: int = 0
    embedding_cache_size: int = 0

    def record_query(self, elapsed_ms: float) -> None:
        self.queries_processed += 1
        n = self.queries_processed
        self.avg_retrieval_ms = (self.avg_retrieval_ms * (n - 1) + elapsed_ms) / n

    def to_dict(self) -> dict:
        """Convert to dictionary, with latency rendered like '12.34ms'."""
        data = asdict(self)
        data.pop("avg_retrieval_ms")
        data["avg_retrieval_time"] = f"{self.avg_retrieval_ms:.2f}ms"
        return data
