"""
Error types shared across the engine.

Each failure kind maps to one class so callers can decide what to do:
- ValidationError: rejected input, nothing was written, do not retry
- ProviderError: an embedding provider failed (recovered by the fallback chain)
- StorageError: persistence I/O failed, surfaced to the caller
- IndexConsistencyWarning: a persisted record was skipped while rebuilding
"""


class RAGError(Exception):
    """Base class for all engine errors."""


class ValidationError(RAGError, ValueError):
    """Input was malformed (text too short, bad parameters, wrong dimension)."""


class ProviderError(RAGError):
    """An embedding provider could not produce a vector."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"[{provider}] {message}")
        self.provider = provider


class StorageError(RAGError):
    """The vector store backend failed to read or write."""


class EngineNotInitializedError(RAGError):
    """A public engine operation was called before initialize()."""


class IndexConsistencyWarning(UserWarning):
    """A persisted record could not be replayed into the ANN index."""
