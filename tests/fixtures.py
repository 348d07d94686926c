"""
Test Fixtures

Test doubles shared by unit and integration tests.
"""

import math
from datetime import datetime, timedelta, timezone

from kbstore.core.exceptions import EmbeddingConnectionError
from kbstore.core.types import KnowledgeMetadata, KnowledgeRecord
from kbstore.knowledge.embeddings import EmbeddingService

FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def unit_vector(similarity: float, sign: float = 1.0, dimension: int = 4) -> list[float]:
    """Vector whose cosine similarity to [1, 0, 0, ...] is `similarity`."""
    vector = [0.0] * dimension
    vector[0] = similarity
    vector[1] = sign * math.sqrt(1.0 - similarity**2)
    return vector


def make_record(
    content: str,
    vector: list[float],
    created_at: datetime = FIXED_NOW,
    **metadata,
) -> KnowledgeRecord:
    return KnowledgeRecord(
        content=content,
        vector=tuple(vector),
        metadata=KnowledgeMetadata(**metadata),
        created_at=created_at,
    )


class ManualClock:
    """Settable clock for deterministic created_at values."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class ScriptedEmbeddings(EmbeddingService):
    """
    Embedder returning preset vectors.

    Texts without a preset vector get a one-hot vector, so distinct
    unscripted texts are orthogonal until the dimensions run out.
    Texts listed in `failing` raise EmbeddingConnectionError.
    """

    def __init__(self, vectors: dict[str, list[float]] | None = None, dimension: int = 4):
        self.vectors = dict(vectors or {})
        self.failing: set[str] = set()
        self.calls: list[str] = []
        self._dimension = dimension
        self._auto: dict[str, list[float]] = {}

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if text in self.failing:
            raise EmbeddingConnectionError(f"provider unavailable for {text!r}")
        if text in self.vectors:
            return list(self.vectors[text])
        if text not in self._auto:
            vector = [0.0] * self._dimension
            vector[len(self._auto) % self._dimension] = 1.0
            self._auto[text] = vector
        return list(self._auto[text])

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(t) for t in texts]
