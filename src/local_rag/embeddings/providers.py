"""
Embedding Providers - Single Responsibility: turn text into vectors.

Three interchangeable providers share the EmbeddingProvider protocol:
- OpenAIEmbeddings: remote API (AsyncOpenAI)
- BackendEmbeddings: self-hosted HTTP embedding service (httpx)
- HashingEmbeddings: deterministic hashing-trick bag-of-words, never fails

Remote providers raise ProviderError on every failure path (missing key,
transport error, malformed payload, wrong dimension). Degrading to the next
provider is the job of EmbeddingService, not of the providers themselves.
"""

from __future__ import annotations

import hashlib
import re

import httpx
import numpy as np
from openai import AsyncOpenAI, OpenAIError

from local_rag.core.errors import ProviderError

# Models that accept the `dimensions` request parameter
_SHORTENABLE_MODELS = ("text-embedding-3-small", "text-embedding-3-large")

_NON_WORD = re.compile(r"[^\w\s]")
MIN_TOKEN_LENGTH = 3


def _as_vector(values, dimensions: int, provider: str) -> np.ndarray:
    """Convert a payload to a float32 vector, checking its length."""
    try:
        vector = np.asarray(values, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise ProviderError(provider, f"malformed embedding payload: {e}") from e
    if vector.ndim != 1 or vector.shape[0] != dimensions:
        raise ProviderError(
            provider,
            f"expected {dimensions} dimensions, got shape {vector.shape}",
        )
    if not np.all(np.isfinite(vector)):
        raise ProviderError(provider, "embedding contains non-finite values")
    return vector


# ---------------------------------------------------------------------------
# LOCAL FALLBACK
# ---------------------------------------------------------------------------


def tokenize(text: str) -> list[str]:
    """Case-fold, strip punctuation, split on whitespace, drop short tokens."""
    cleaned = _NON_WORD.sub("", text.lower())
    return [token for token in cleaned.split() if len(token) >= MIN_TOKEN_LENGTH]


def _stable_bucket(token: str, dimensions: int) -> int:
    # Python's hash() is salted per process; blake2b is not
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dimensions


class HashingEmbeddings:
    """
    Hashing-trick bag-of-words vectorizer.

    Each token is hashed to a bucket in [0, dimensions), counts are
    accumulated and the result is L2-normalized. Identical normalized input
    yields bit-identical vectors across calls and across processes.
    Text without usable tokens maps to the zero vector.
    """

    name = "local"

    def __init__(self, dimensions: int = 384):
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed_sync(self, text: str) -> np.ndarray:
        """Synchronous embedding (pure CPU, bounded by text length)."""
        vector = np.zeros(self._dimensions, dtype=np.float32)
        for token in tokenize(text):
            vector[_stable_bucket(token, self._dimensions)] += 1.0

        norm = float(np.linalg.norm(vector))
        if norm > 0:
            vector /= norm
        return vector

    async def embed(self, text: str) -> np.ndarray:
        return self.embed_sync(text)

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        return [self.embed_sync(text) for text in texts]


# ---------------------------------------------------------------------------
# OPENAI
# ---------------------------------------------------------------------------


class OpenAIEmbeddings:
    """
    OpenAI-based embedding provider.

    Uses text-embedding-3-small by default and asks the API for exactly
    `dimensions` components so remote vectors fit the same index as the
    local fallback.
    """

    name = "openai"

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: str | None = None,
        dimensions: int = 384,
        max_chars: int = 8000,
        timeout: float = 10.0,
        client: AsyncOpenAI | None = None,
    ):
        self.model = model
        self._api_key = api_key
        self._dimensions = dimensions
        self._max_chars = max_chars
        self._timeout = timeout
        self._client = client

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise ProviderError(self.name, "OPENAI_API_KEY is not configured")
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                timeout=self._timeout,
                max_retries=0,
            )
        return self._client

    def _request_kwargs(self, payload) -> dict:
        kwargs = {"input": payload, "model": self.model}
        if self.model in _SHORTENABLE_MODELS:
            kwargs["dimensions"] = self._dimensions
        return kwargs

    async def embed(self, text: str) -> np.ndarray:
        """Generate embedding for a single text."""
        client = self._get_client()
        try:
            response = await client.embeddings.create(
                **self._request_kwargs(text[:self._max_chars])
            )
            values = response.data[0].embedding
        except OpenAIError as e:
            raise ProviderError(self.name, f"API error: {e}") from e
        except (AttributeError, IndexError) as e:
            raise ProviderError(self.name, f"malformed response: {e}") from e
        return _as_vector(values, self._dimensions, self.name)

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """Generate embeddings for multiple texts in one request."""
        if not texts:
            return []

        client = self._get_client()
        try:
            response = await client.embeddings.create(
                **self._request_kwargs([t[:self._max_chars] for t in texts])
            )
            rows = [item.embedding for item in response.data]
        except OpenAIError as e:
            raise ProviderError(self.name, f"API error: {e}") from e
        except AttributeError as e:
            raise ProviderError(self.name, f"malformed response: {e}") from e

        if len(rows) != len(texts):
            raise ProviderError(
                self.name, f"asked for {len(texts)} embeddings, got {len(rows)}"
            )
        return [_as_vector(row, self._dimensions, self.name) for row in rows]

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


# ---------------------------------------------------------------------------
# SELF-HOSTED BACKEND
# ---------------------------------------------------------------------------


class BackendEmbeddings:
    """
    Embedding provider backed by an HTTP service.

    POST {base_url}/api/v1/embeddings with {"text": ...}
    and reads {"embedding": [...]} from the response.
    """

    name = "backend"

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        dimensions: int = 384,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._dimensions = dimensions
        self._timeout = timeout
        self._client = client

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/api/v1/embeddings"

    async def embed(self, text: str) -> np.ndarray:
        try:
            if self._client is not None:
                response = await self._client.post(self.endpoint, json={"text": text})
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self.endpoint, json={"text": text})
            response.raise_for_status()
            values = response.json()["embedding"]
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"request failed: {e}") from e
        except (ValueError, KeyError, TypeError) as e:
            raise ProviderError(self.name, f"malformed response: {e}") from e
        return _as_vector(values, self._dimensions, self.name)

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        return [await self.embed(text) for text in texts]

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
