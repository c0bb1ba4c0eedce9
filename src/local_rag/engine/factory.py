"""
Engine factory.

Builds a RAGEngine with its own store, index and embedding chain. Nothing is
shared between engines built here, so tests can run several side by side.
"""

from __future__ import annotations

import logging

from dotenv import load_dotenv

from local_rag.config import RAGConfig, get_config, reset_config
from local_rag.core.errors import ValidationError
from local_rag.core.protocols import EmbeddingProvider, VectorStore
from local_rag.embeddings import get_embedding_provider
from local_rag.engine.rag_engine import RAGEngine
from local_rag.index import HNSWIndex
from local_rag.retrieval import get_vector_store

logger = logging.getLogger(__name__)


def create_engine(
    config: RAGConfig | None = None,
    load_env: bool = False,
    embeddings: EmbeddingProvider | None = None,
    store: VectorStore | None = None,
    index: HNSWIndex | None = None,
) -> RAGEngine:
    """
    Create an engine (not yet initialized).

    Args:
        config: Engine configuration (default: from environment)
        load_env: Load a .env file before reading the environment
        embeddings: Override the configured embedding chain
        store: Override the configured vector store
        index: Override the index built from config.hnsw

    Raises:
        ValidationError: config.validate() reported problems
    """
    if load_env:
        load_dotenv()
        reset_config()
    config = config or get_config()

    errors = config.validate()
    if errors:
        raise ValidationError("invalid engine configuration: " + "; ".join(errors))

    embeddings = embeddings or get_embedding_provider(config)
    store = store or get_vector_store(config=config)
    logger.debug(
        f"Creating engine: store={type(store).__name__}, "
        f"providers={getattr(embeddings, 'provider_names', [embeddings.name])}"
    )
    return RAGEngine(config, embeddings=embeddings, store=store, index=index)
