"""
Document model for the retrieval system.

Single responsibility: Define the structure of the records
stored in vector stores (one record per chunk).
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import numpy as np


@dataclass
class Document:
    """
    A stored chunk with its embedding.

    Records are immutable once stored: re-ingesting text creates new
    chunk ids instead of editing existing records.
    """
    id: str
    text: str
    embedding: np.ndarray | None
    category: str = "general"
    source: str = "manual"
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self, include_embedding: bool = True) -> dict:
        """Convert to dictionary for serialization."""
        data = {
            "id": self.id,
            "text": self.text,
            "category": self.category,
            "source": self.source,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
        }
        if include_embedding:
            data["embedding"] = (
                self.embedding.tolist() if self.embedding is not None else None
            )
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Document":
        """Build a Document from to_dict() output.

        A missing embedding is kept as None so the engine can report it
        instead of the store silently dropping the record.
        """
        embedding = data.get("embedding")
        return cls(
            id=str(data["id"]),
            text=data["text"],
            embedding=np.asarray(embedding, dtype=np.float32) if embedding is not None else None,
            category=data.get("category") or "general",
            source=data.get("source") or "manual",
            metadata=dict(data.get("metadata") or {}),
            timestamp=float(data.get("timestamp") or 0.0),
        )
