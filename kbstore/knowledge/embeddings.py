"""
Embedding Service

Generate vector embeddings for text.
Abstracts different embedding providers.

Design decisions:
- Provider-agnostic interface
- Batch embedding for efficiency
- Caching for repeated texts
- Retries live here, not in the store
"""

import asyncio
import hashlib
import logging
import math
import re
from abc import ABC, abstractmethod
from typing import Any

from kbstore.config.settings import EmbeddingSettings
from kbstore.core.exceptions import (
    EmbeddingConnectionError,
    EmbeddingError,
    EmbeddingRateLimitError,
    EmbeddingTimeoutError,
)

logger = logging.getLogger(__name__)

# Lazy import to avoid requiring openai if not used
_openai_module = None


def _get_openai():
    global _openai_module
    if _openai_module is None:
        try:
            import openai

            _openai_module = openai
        except ImportError:
            raise ImportError("openai package required. Install with: pip install openai")
    return _openai_module


class EmbeddingService(ABC):
    """
    Abstract embedding service.

    Generates dense vector representations of text
    for semantic similarity search.
    """

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Embedding dimension."""
        pass

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Generate embedding for single text."""
        pass

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts."""
        pass

    async def close(self) -> None:
        """Release provider resources."""
        return None


class OpenAIEmbeddings(EmbeddingService):
    """
    OpenAI embedding service.

    Uses text-embedding-3-small/large or ada-002. Works with any
    OpenAI-compatible endpoint through openai_base_url.
    """

    def __init__(self, settings: EmbeddingSettings | None = None, client: Any = None):
        self.settings = settings or EmbeddingSettings()
        self._model = self.settings.model
        self._dimensions = self.settings.dimensions
        self._retry_count = self.settings.max_retries
        self._retry_delay = self.settings.retry_delay
        self._timeout = self.settings.request_timeout
        self._client = client

        # Cache for repeated embeddings
        self._cache: dict[str, list[float]] = {}
        self._cache_enabled = self.settings.cache_enabled

    def _get_client(self):
        if self._client is None:
            openai = _get_openai()

            kwargs: dict[str, Any] = {
                "timeout": self._timeout,
                "max_retries": 0,  # We handle retries ourselves
            }
            if self.settings.openai_api_key:
                kwargs["api_key"] = self.settings.openai_api_key.get_secret_value()
            if self.settings.openai_base_url:
                kwargs["base_url"] = self.settings.openai_base_url

            self._client = openai.AsyncOpenAI(**kwargs)
        return self._client

    @property
    def dimension(self) -> int:
        if self._dimensions:
            return self._dimensions

        # Default dimensions by model
        if "3-large" in self._model:
            return 3072
        return 1536

    def _cache_key(self, text: str) -> str:
        """Generate cache key for text."""
        return hashlib.md5(text.encode()).hexdigest()

    async def _do_create(self, inputs: str | list[str]) -> list[list[float]]:
        """Single provider request, mapped onto the embedding error family."""
        openai = _get_openai()
        client = self._get_client()

        kwargs: dict[str, Any] = {
            "model": self._model,
            "input": inputs,
            "encoding_format": "float",
        }
        if self._dimensions:
            kwargs["dimensions"] = self._dimensions

        try:
            response = await client.embeddings.create(**kwargs)
        except openai.RateLimitError as e:
            retry_after = None
            headers = getattr(getattr(e, "response", None), "headers", None)
            if headers and headers.get("retry-after"):
                retry_after = float(headers["retry-after"])
            raise EmbeddingRateLimitError(str(e), retry_after=retry_after, cause=e)
        except openai.APITimeoutError as e:
            raise EmbeddingTimeoutError(str(e), cause=e)
        except openai.APIConnectionError as e:
            raise EmbeddingConnectionError(str(e), cause=e)
        except openai.APIError as e:
            raise EmbeddingError(str(e), cause=e)

        return [item.embedding for item in response.data]

    async def _create(self, inputs: str | list[str]) -> list[list[float]]:
        """
        Provider request with exponential backoff.

        Retries rate limits, timeouts and connection failures; anything
        else propagates immediately.
        """
        last_error: EmbeddingError | None = None

        for attempt in range(self._retry_count + 1):
            try:
                return await self._do_create(inputs)
            except EmbeddingRateLimitError as e:
                last_error = e
                delay = e.retry_after or (self._retry_delay * (2**attempt))
            except (EmbeddingConnectionError, EmbeddingTimeoutError) as e:
                last_error = e
                delay = self._retry_delay * (2**attempt)

            if attempt < self._retry_count:
                logger.warning(
                    "Embedding request failed, retrying",
                    extra={"attempt": attempt + 1, "delay": delay, "error": str(last_error)},
                )
                await asyncio.sleep(delay)

        # All retries exhausted
        if last_error:
            raise last_error
        raise EmbeddingConnectionError("Embedding request failed after all retries")

    async def embed(self, text: str) -> list[float]:
        """Generate embedding for text."""
        if self._cache_enabled:
            cache_key = self._cache_key(text)
            if cache_key in self._cache:
                return self._cache[cache_key]

        embedding = (await self._create(text))[0]

        if self._cache_enabled:
            self._cache[cache_key] = embedding

        return embedding

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for batch."""
        if not texts:
            return []

        results: list[list[float] | None] = [None] * len(texts)
        uncached_indices = []
        uncached_texts = []

        for i, text in enumerate(texts):
            if self._cache_enabled and self._cache_key(text) in self._cache:
                results[i] = self._cache[self._cache_key(text)]
            else:
                uncached_indices.append(i)
                uncached_texts.append(text)

        if uncached_texts:
            embeddings = await self._create(uncached_texts)
            for original_idx, text, embedding in zip(uncached_indices, uncached_texts, embeddings):
                results[original_idx] = embedding
                if self._cache_enabled:
                    self._cache[self._cache_key(text)] = embedding

        return [r for r in results if r is not None]

    async def close(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
        self._client = None


class LocalEmbeddings(EmbeddingService):
    """
    Local embedding service using sentence-transformers.

    Runs on CPU/GPU locally, no API calls needed.
    """

    def __init__(
        self,
        model_name: str = "all-MiniLM-L6-v2",
        device: str = "cpu",
    ):
        self._model_name = model_name
        self._device = device
        self._model = None

    def _get_model(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError:
                raise ImportError(
                    "sentence-transformers required. Install with: "
                    "pip install 'kbstore[local]'"
                )

            self._model = SentenceTransformer(self._model_name, device=self._device)
        return self._model

    @property
    def dimension(self) -> int:
        return self._get_model().get_sentence_embedding_dimension()

    async def embed(self, text: str) -> list[float]:
        """Generate embedding locally."""
        model = self._get_model()
        try:
            embedding = await asyncio.to_thread(model.encode, text, convert_to_numpy=True)
        except Exception as e:
            raise EmbeddingError(f"Local embedding failed: {e}", cause=e)
        return embedding.astype("float64").tolist()

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        model = self._get_model()
        try:
            embeddings = await asyncio.to_thread(model.encode, texts, convert_to_numpy=True)
        except Exception as e:
            raise EmbeddingError(f"Local embedding failed: {e}", cause=e)
        return embeddings.astype("float64").tolist()


class HashEmbeddings(EmbeddingService):
    """
    Deterministic hashing embedder.

    Each word is hashed into a signed bucket and the result is L2
    normalized. Identical texts embed identically and texts sharing
    vocabulary land close together. No model, no network; used for
    offline mode and tests.
    """

    _TOKEN = re.compile(r"\w+")

    def __init__(self, dimension: int = 256):
        if dimension < 1:
            raise ValueError("dimension must be positive")
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def _embed_sync(self, text: str) -> list[float]:
        vector = [0.0] * self._dimension
        for token in self._TOKEN.findall(text.lower()):
            digest = hashlib.md5(token.encode()).digest()
            bucket = int.from_bytes(digest[:8], "little") % self._dimension
            sign = 1.0 if digest[8] & 1 else -1.0
            vector[bucket] += sign

        norm = math.sqrt(sum(x * x for x in vector))
        if norm > 0:
            vector = [x / norm for x in vector]
        return vector

    async def embed(self, text: str) -> list[float]:
        return self._embed_sync(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self._embed_sync(t) for t in texts]


def create_embedding_service(settings: EmbeddingSettings) -> EmbeddingService:
    """Build the embedding service named by settings.provider."""
    if settings.provider == "openai":
        return OpenAIEmbeddings(settings)
    if settings.provider == "local":
        return LocalEmbeddings(model_name=settings.local_model_name, device=settings.device)
    if settings.provider == "hash":
        return HashEmbeddings(dimension=settings.hash_dimension)
    raise ValueError(f"Unknown embedding provider: {settings.provider}")
