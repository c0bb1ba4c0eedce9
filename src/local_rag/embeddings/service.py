"""
EmbeddingService - cached fallback chain over embedding providers.

Providers are tried in preference order. Any failure (ProviderError, timeout,
unexpected exception) is logged and the next provider is tried. The chain
always ends with HashingEmbeddings, which cannot fail, so embed() always
returns a vector of the configured dimension.

INTERVIEW TALKING POINT:
------------------------
"Embedding is the one place we talk to the network during retrieval, so it is
also the one place that must never take the engine down. The service wraps
every remote call in a timeout, falls through to a deterministic local
vectorizer, and shares in-flight requests so two callers asking for the same
text pay for one API call."
"""

from __future__ import annotations

import asyncio
import logging

import numpy as np

from local_rag.config import RAGConfig
from local_rag.core.errors import ProviderError
from local_rag.core.protocols import EmbeddingProvider
from local_rag.embeddings.cache import EmbeddingCache, cache_key
from local_rag.embeddings.providers import (
    BackendEmbeddings,
    HashingEmbeddings,
    OpenAIEmbeddings,
)

logger = logging.getLogger(__name__)


class EmbeddingService:
    """
    Fallback chain + cache, exposed as a single EmbeddingProvider.

    Args:
        providers: Remote/local providers in preference order
        dimensions: Vector length every provider must honor
        cache_size: Max cached vectors
        timeout: Seconds allowed per remote provider call
    """

    name = "service"

    def __init__(
        self,
        providers: list[EmbeddingProvider] | None = None,
        dimensions: int = 384,
        cache_size: int = 1000,
        timeout: float = 10.0,
    ):
        self._dimensions = dimensions
        self._timeout = timeout
        self.cache = EmbeddingCache(max_size=cache_size)
        self._inflight: dict[str, asyncio.Future] = {}

        chain = list(providers or [])
        for provider in chain:
            if provider.dimensions != dimensions:
                raise ValueError(
                    f"provider '{provider.name}' has {provider.dimensions} dimensions, "
                    f"expected {dimensions}"
                )
        if not any(isinstance(p, HashingEmbeddings) for p in chain):
            chain.append(HashingEmbeddings(dimensions))
        self._fallback = next(p for p in chain if isinstance(p, HashingEmbeddings))
        # Nothing after the local fallback can ever run
        self.providers = chain[: chain.index(self._fallback) + 1]

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def provider_names(self) -> list[str]:
        return [p.name for p in self.providers]

    async def _call(self, provider: EmbeddingProvider, text: str) -> np.ndarray:
        if provider is self._fallback:
            return self._fallback.embed_sync(text)
        return await asyncio.wait_for(provider.embed(text), timeout=self._timeout)

    async def _compute(self, text: str, key: str) -> np.ndarray:
        try:
            for provider in self.providers:
                try:
                    vector = await self._call(provider, text)
                except ProviderError as e:
                    logger.warning(f"Embedding provider failed, falling back: {e}")
                    continue
                except asyncio.TimeoutError:
                    logger.warning(
                        f"Embedding provider '{provider.name}' timed out after "
                        f"{self._timeout}s, falling back"
                    )
                    continue
                except Exception as e:
                    logger.warning(
                        f"Embedding provider '{provider.name}' raised "
                        f"{type(e).__name__}: {e}, falling back"
                    )
                    continue

                logger.debug(f"Embedded {len(text)} chars with '{provider.name}'")
                return self.cache.put(key, vector)

            # Unreachable while the hashing fallback terminates the chain
            raise ProviderError(self.name, "all embedding providers failed")
        finally:
            self._inflight.pop(key, None)

    async def embed(self, text: str) -> np.ndarray:
        """Embed text, using the cache and sharing identical in-flight requests."""
        key = cache_key(text)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._compute(text, key))
            self._inflight[key] = task
        # A cancelled caller leaves the computation running so the cache still fills
        return await asyncio.shield(task)

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """Embed independent texts concurrently."""
        return list(await asyncio.gather(*(self.embed(text) for text in texts)))

    async def aclose(self) -> None:
        """Close HTTP clients held by remote providers."""
        for provider in self.providers:
            close = getattr(provider, "aclose", None)
            if close is not None:
                await close()


# ---------------------------------------------------------------------------
# FACTORY FUNCTION
# ---------------------------------------------------------------------------


def get_embedding_provider(
    config: RAGConfig | None = None,
    use_local_only: bool = False,
) -> EmbeddingService:
    """
    Factory function to build the embedding chain from configuration.

    Args:
        config: Engine configuration (defaults to RAGConfig())
        use_local_only: Skip remote providers entirely (tests, offline use)
    """
    config = config or RAGConfig()
    providers: list[EmbeddingProvider] = []

    names = ("local",) if use_local_only else config.providers
    for name in names:
        if name == "openai":
            providers.append(
                OpenAIEmbeddings(
                    model=config.openai_model,
                    api_key=config.openai_api_key,
                    dimensions=config.dimension,
                    max_chars=config.max_embedding_chars,
                    timeout=config.provider_timeout_s,
                )
            )
        elif name == "backend":
            providers.append(
                BackendEmbeddings(
                    base_url=config.backend_url,
                    dimensions=config.dimension,
                    timeout=config.provider_timeout_s,
                )
            )
        elif name == "local":
            providers.append(HashingEmbeddings(config.dimension))
        else:
            raise ValueError(f"Unknown embedding provider: {name}")

    return EmbeddingService(
        providers=providers,
        dimensions=config.dimension,
        cache_size=config.embedding_cache_size,
        timeout=config.provider_timeout_s,
    )
