"""
Engine Configuration

Loads engine settings from environment variables.
Every value has a default, so RAGConfig() works fully offline.
"""

import os
from dataclasses import dataclass, field

KNOWN_PROVIDERS = ("openai", "backend", "local")
KNOWN_STORE_BACKENDS = ("memory", "file", "postgres")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in ("true", "1", "yes")


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


@dataclass
class HNSWConfig:
    """Parameters of the layered proximity graph.

    m: max neighbors per node per level
    ef_construction: candidate list width while inserting
    ef_search: candidate list width while querying
    max_level: hard cap on the number of layers
    seed: seed for level draws (None = nondeterministic)
    """

    m: int = 16
    ef_construction: int = 200
    ef_search: int = 50
    max_level: int = 8
    seed: int | None = None


@dataclass
class RAGConfig:
    """Configuration for the retrieval engine.

    Environment Variables:
        RAG_DIMENSION: Embedding dimension (default: 384)
        RAG_CHUNK_SIZE / RAG_CHUNK_OVERLAP: Chunking window (default: 500 / 50)
        RAG_TOP_K / RAG_MIN_SIMILARITY: Retrieval defaults (default: 5 / 0.65)
        RAG_EMBEDDING_CACHE_SIZE: Max cached vectors (default: 1000)
        RAG_EMBEDDING_PROVIDERS: Comma-separated preference order (default: local)
        RAG_OPENAI_MODEL / OPENAI_API_KEY: OpenAI provider settings
        RAG_BACKEND_URL: Base URL of the embedding backend
        RAG_PROVIDER_TIMEOUT: Seconds before a remote provider call is abandoned
        RAG_STORE_BACKEND: memory, file or postgres (default: memory)
        RAG_STORE_PATH: JSON file used by the file backend
        DATABASE_URL: Connection string used by the postgres backend
        RAG_HNSW_M / RAG_HNSW_EF_CONSTRUCTION / RAG_HNSW_EF_SEARCH /
        RAG_HNSW_MAX_LEVEL / RAG_HNSW_SEED: Graph parameters
    """

    dimension: int = 384
    chunk_size: int = 500
    chunk_overlap: int = 50
    min_text_length: int = 10
    top_k: int = 5
    min_similarity: float = 0.65
    embedding_cache_size: int = 1000
    providers: tuple[str, ...] = ("local",)
    openai_model: str = "text-embedding-3-small"
    openai_api_key: str | None = None
    backend_url: str = "http://localhost:3000"
    provider_timeout_s: float = 10.0
    max_embedding_chars: int = 8000
    store_backend: str = "memory"
    store_path: str = ".rag_vectors.json"
    database_url: str = "postgresql://localhost/local_rag"
    table_name: str = "rag_embeddings"
    hnsw: HNSWConfig = field(default_factory=HNSWConfig)

    @classmethod
    def from_env(cls) -> "RAGConfig":
        """Load config from environment variables."""
        providers = os.environ.get("RAG_EMBEDDING_PROVIDERS", "local")
        seed = os.environ.get("RAG_HNSW_SEED")
        return cls(
            dimension=_env_int("RAG_DIMENSION", 384),
            chunk_size=_env_int("RAG_CHUNK_SIZE", 500),
            chunk_overlap=_env_int("RAG_CHUNK_OVERLAP", 50),
            min_text_length=_env_int("RAG_MIN_TEXT_LENGTH", 10),
            top_k=_env_int("RAG_TOP_K", 5),
            min_similarity=_env_float("RAG_MIN_SIMILARITY", 0.65),
            embedding_cache_size=_env_int("RAG_EMBEDDING_CACHE_SIZE", 1000),
            providers=tuple(p.strip().lower() for p in providers.split(",") if p.strip()),
            openai_model=os.environ.get("RAG_OPENAI_MODEL", "text-embedding-3-small"),
            openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
            backend_url=os.environ.get("RAG_BACKEND_URL", "http://localhost:3000"),
            provider_timeout_s=_env_float("RAG_PROVIDER_TIMEOUT", 10.0),
            store_backend=os.environ.get("RAG_STORE_BACKEND", "memory").lower(),
            store_path=os.environ.get("RAG_STORE_PATH", ".rag_vectors.json"),
            database_url=os.environ.get("DATABASE_URL", "postgresql://localhost/local_rag"),
            table_name=os.environ.get("RAG_TABLE_NAME", "rag_embeddings"),
            hnsw=HNSWConfig(
                m=_env_int("RAG_HNSW_M", 16),
                ef_construction=_env_int("RAG_HNSW_EF_CONSTRUCTION", 200),
                ef_search=_env_int("RAG_HNSW_EF_SEARCH", 50),
                max_level=_env_int("RAG_HNSW_MAX_LEVEL", 8),
                seed=int(seed) if seed else None,
            ),
        )

    def validate(self) -> list[str]:
        """Return a list of configuration problems (empty when valid)."""
        errors = []

        if self.dimension <= 0:
            errors.append(f"dimension must be positive, got {self.dimension}")

        if self.chunk_size <= 0:
            errors.append(f"chunk_size must be positive, got {self.chunk_size}")

        if not 0 <= self.chunk_overlap < self.chunk_size:
            errors.append(
                f"chunk_overlap must be in [0, chunk_size), got {self.chunk_overlap}"
            )

        if not 0 <= self.min_similarity <= 1:
            errors.append(f"min_similarity must be between 0 and 1, got {self.min_similarity}")

        if self.top_k <= 0:
            errors.append(f"top_k must be positive, got {self.top_k}")

        if self.embedding_cache_size <= 0:
            errors.append(
                f"embedding_cache_size must be positive, got {self.embedding_cache_size}"
            )

        unknown = [p for p in self.providers if p not in KNOWN_PROVIDERS]
        if unknown:
            errors.append(f"unknown embedding providers: {', '.join(unknown)}")

        if self.store_backend not in KNOWN_STORE_BACKENDS:
            errors.append(f"unknown store backend: {self.store_backend}")

        if self.hnsw.m < 2:
            errors.append(f"hnsw.m must be at least 2, got {self.hnsw.m}")

        if self.hnsw.ef_construction < 1 or self.hnsw.ef_search < 1:
            errors.append("hnsw ef values must be at least 1")

        if self.hnsw.max_level < 0:
            errors.append(f"hnsw.max_level must be >= 0, got {self.hnsw.max_level}")

        return errors


# Global config singleton
_config: RAGConfig | None = None


def get_config() -> RAGConfig:
    """Get the global engine config (lazy-loaded from env)."""
    global _config
    if _config is None:
        _config = RAGConfig.from_env()
    return _config


def reset_config() -> None:
    """Reset config (useful for testing)."""
    global _config
    _config = None
