"""
Core Interfaces and Protocols

Defines the contracts between modules to prevent circular dependencies.

Design decisions:
- Protocol-based for structural subtyping
- Minimal interface surface
- No implementation details leak through
"""

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from kbstore.core.types import IngestResult, KnowledgeMetadata, KnowledgeStats


# =============================================================================
# EMBEDDING PROTOCOL
# =============================================================================

@runtime_checkable
class EmbeddingProtocol(Protocol):
    """
    Interface for embedding providers.

    Implemented by: OpenAIEmbeddings, LocalEmbeddings, HashEmbeddings
    Used by: KnowledgeStore
    """

    async def embed(self, text: str) -> list[float]:
        """Map text to a fixed-length vector."""
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts in one request."""
        ...


# =============================================================================
# KNOWLEDGE STORE PROTOCOL
# =============================================================================

@runtime_checkable
class KnowledgeStoreProtocol(Protocol):
    """
    Query surface consumed by prompt construction and maintenance jobs.

    Implemented by: KnowledgeStore
    Used by: CLI, agents
    """

    async def add_knowledge(
        self,
        content: str,
        metadata: KnowledgeMetadata | dict[str, Any] | None = None,
    ) -> IngestResult:
        """Chunk, embed, deduplicate and persist content."""
        ...

    async def search(
        self,
        query: str,
        limit: int | None = None,
        threshold: float | None = None,
        category: str | None = None,
    ) -> str:
        """Return formatted passages or the no-results sentinel."""
        ...

    async def stats(self) -> KnowledgeStats:
        """Aggregate over active records."""
        ...

    async def cleanup(
        self,
        max_age_days: float | None = None,
        now: datetime | None = None,
    ) -> int:
        """Delete records older than the retention window."""
        ...
