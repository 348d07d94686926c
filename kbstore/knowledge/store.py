"""
Knowledge Store

The public face of the knowledge layer: ingest text, retrieve the most
relevant passages, and keep the collection tidy.

Design decisions:
- Backend and embedder are injected; the store owns policy only
- Embedding happens outside the write lock; the guard re-runs inside it
- One failed chunk never aborts an ingest
- Empty results are a sentinel string, not an exception
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from kbstore.config.settings import KnowledgeStoreSettings
from kbstore.core.exceptions import (
    EmbeddingError,
    EmptyContentError,
    KBStoreError,
    RecordNotFoundError,
)
from kbstore.core.interfaces import EmbeddingProtocol
from kbstore.core.types import (
    DuplicateGroup,
    IngestResult,
    KnowledgeMetadata,
    KnowledgeRecord,
    KnowledgeStats,
    SearchHit,
    to_utc,
    utc_now,
)
from kbstore.knowledge.chunking import SentenceChunker
from kbstore.knowledge.dedup import DuplicateGuard, find_duplicate_groups
from kbstore.knowledge.similarity import rank
from kbstore.knowledge.vector_store import KnowledgeBackend

logger = logging.getLogger(__name__)

NO_RESULTS = "No relevant knowledge found."
RESULT_SEPARATOR = "\n\n---\n\n"

# Multiplier for records younger than a day when recency weighting is on
FRESHNESS_BOOST = 1.5


def recency_score(age_days: float) -> float:
    """Step-function decay by record age."""
    if age_days <= 1:
        return 1.0
    if age_days <= 3:
        return 0.8
    if age_days <= 7:
        return 0.6
    if age_days <= 14:
        return 0.3
    if age_days <= 30:
        return 0.1
    return 0.05


def format_hit(hit: SearchHit) -> str:
    metadata = hit.record.metadata
    return f"[Source: {metadata.label} ({metadata.date})]\n{hit.content}"


def format_results(hits: list[SearchHit]) -> str:
    """Render hits as prompt-ready passages, or the no-results sentinel."""
    if not hits:
        return NO_RESULTS
    return RESULT_SEPARATOR.join(format_hit(hit) for hit in hits)


class KnowledgeStore:
    """
    Embedding-backed knowledge store.

    Usage:
        store = KnowledgeStore(backend, embeddings)
        await store.add_knowledge(text, {"source": "feed", "date": "2024-05-01"})
        context = await store.search("what changed in the release?")
    """

    def __init__(
        self,
        backend: KnowledgeBackend,
        embeddings: EmbeddingProtocol,
        settings: KnowledgeStoreSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or KnowledgeStoreSettings()
        self._backend = backend
        self._embeddings = embeddings
        self._clock = clock

        self._chunker = SentenceChunker(
            chunk_size=self.settings.chunk_size,
            overlap=self.settings.chunk_overlap,
        )
        self._guard = DuplicateGuard(self.settings.duplicate_threshold)
        self._write_lock = asyncio.Lock()

    @property
    def backend(self) -> KnowledgeBackend:
        return self._backend

    @property
    def dimension(self) -> int | None:
        return self._backend.dimension

    async def __aenter__(self) -> "KnowledgeStore":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def add_knowledge(
        self,
        content: str,
        metadata: KnowledgeMetadata | dict[str, Any] | None = None,
    ) -> IngestResult:
        """
        Chunk, embed, deduplicate and persist content.

        Chunks whose exact text is already stored are skipped without an
        embedding call. A chunk whose embedding fails is logged and
        counted in `failed`; the remaining chunks still go through.

        Raises:
            EmptyContentError: content is empty or whitespace only
            DimensionMismatchError: embedder disagrees with the store
        """
        if not content or not content.strip():
            raise EmptyContentError("Cannot add empty content")

        if metadata is None:
            metadata = KnowledgeMetadata()
        elif isinstance(metadata, dict):
            metadata = KnowledgeMetadata.model_validate(metadata)

        max_length = self.settings.max_content_length
        chunks = [chunk[:max_length].strip() for chunk in self._chunker.split(content)]

        result = IngestResult(chunk_count=len(chunks))

        # Texts already stored, plus those stored by this call
        known = {record.content for record in await self._backend.all()}

        for index, chunk in enumerate(chunks):
            if chunk in known:
                result.duplicates += 1
                continue

            try:
                vector = await self._embeddings.embed(chunk)
            except Exception as e:
                logger.warning(
                    "Skipping chunk %d of %d: embedding failed: %s",
                    index + 1,
                    len(chunks),
                    e,
                    extra={"source": metadata.source, "error_type": type(e).__name__},
                )
                result.failed += 1
                continue

            async with self._write_lock:
                # Snapshot again: another ingest may have stored this chunk meanwhile
                existing = await self._backend.all()
                if self._guard.find_match(chunk, vector, existing) is not None:
                    result.duplicates += 1
                    continue

                record = KnowledgeRecord(
                    content=chunk,
                    vector=tuple(vector),
                    metadata=metadata,
                    created_at=self._clock(),
                )
                await self._backend.add(record)
                result.record_ids.append(record.id)
                known.add(chunk)

        logger.info(
            "Ingested %d of %d chunks (%d duplicates, %d failed)",
            result.stored,
            result.chunk_count,
            result.duplicates,
            result.failed,
            extra={"source": metadata.source, "category": metadata.category},
        )
        return result

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def search_records(
        self,
        query: str,
        limit: int | None = None,
        threshold: float | None = None,
        category: str | None = None,
        filter: dict[str, Any] | None = None,
    ) -> list[SearchHit]:
        """
        Rank stored records against a query.

        Args:
            query: Free text to embed
            limit: Maximum hits (default from settings)
            threshold: Minimum cosine similarity (default from settings)
            category: Shortcut for filter={"category": ...}
            filter: Metadata equality filter

        A blank query matches nothing and is never embedded.

        Raises:
            EmbeddingError: the query could not be embedded
        """
        if not query or not query.strip():
            logger.debug("Blank query, returning no hits")
            return []

        limit = self.settings.default_limit if limit is None else limit
        if threshold is None:
            threshold = self.settings.default_threshold

        merged = dict(filter or {})
        if category is not None:
            merged["category"] = category

        try:
            vector = await self._embeddings.embed(query)
        except KBStoreError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Failed to embed query: {e}", cause=e)

        records = await self._backend.all(filter=merged or None)

        weight = None
        if self.settings.recency_weighting:
            now = to_utc(self._clock())
            weight = lambda record: self._recency_weight(record, now)  # noqa: E731

        hits = rank(vector, records, limit, threshold=threshold, weight=weight)
        logger.debug("Search returned %d of %d candidates", len(hits), len(records))
        return hits

    async def search(
        self,
        query: str,
        limit: int | None = None,
        threshold: float | None = None,
        category: str | None = None,
        filter: dict[str, Any] | None = None,
    ) -> str:
        """Search and render hits as `[Source: title (date)]` passages."""
        hits = await self.search_records(
            query, limit=limit, threshold=threshold, category=category, filter=filter
        )
        return format_results(hits)

    @staticmethod
    def _recency_weight(record: KnowledgeRecord, now: datetime) -> float:
        age_days = (now - record.created_at).total_seconds() / 86400
        weight = recency_score(age_days)
        if age_days < 1:
            weight *= FRESHNESS_BOOST
        return weight

    async def get(self, record_id: str) -> KnowledgeRecord:
        record = await self._backend.get(record_id)
        if record is None:
            raise RecordNotFoundError(
                f"Record not found: {record_id}",
                context={"record_id": record_id},
            )
        return record

    async def recent(self, limit: int = 10, category: str | None = None) -> list[KnowledgeRecord]:
        """Newest records first."""
        filter = {"category": category} if category is not None else None
        records = await self._backend.all(filter=filter)
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit]

    async def search_content(self, text: str, limit: int = 10) -> list[KnowledgeRecord]:
        """Case-insensitive substring match over content, newest first."""
        needle = text.lower()
        records = [r for r in await self._backend.all() if needle in r.content.lower()]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit]

    async def stats(self) -> KnowledgeStats:
        return await self._backend.stats()

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def delete(self, record_id: str) -> bool:
        async with self._write_lock:
            deleted = await self._backend.delete(record_id)
        if deleted:
            logger.info("Deleted record %s", record_id)
        return deleted

    async def cleanup(
        self,
        max_age_days: float | None = None,
        now: datetime | None = None,
    ) -> int:
        """
        Delete records created strictly before now - max_age_days.

        A record exactly at the cutoff is kept.
        """
        if max_age_days is None:
            max_age_days = self.settings.retention_days
        if max_age_days < 0:
            raise ValueError(f"max_age_days must not be negative, got {max_age_days}")

        now = to_utc(now or self._clock())
        cutoff = now - timedelta(days=max_age_days)

        async with self._write_lock:
            removed = await self._backend.delete_older_than(cutoff)

        logger.info(
            "Cleanup removed %d records older than %s days",
            removed,
            max_age_days,
            extra={"cutoff": cutoff.isoformat()},
        )
        return removed

    async def find_duplicates(self, threshold: float | None = None) -> list[DuplicateGroup]:
        """Groups of near-identical records, each newest first."""
        if threshold is None:
            threshold = self.settings.duplicate_threshold
        return find_duplicate_groups(await self._backend.all(), threshold)

    async def remove_duplicates(self, threshold: float | None = None) -> int:
        """Delete all but the newest record of every duplicate group."""
        if threshold is None:
            threshold = self.settings.duplicate_threshold

        removed = 0
        async with self._write_lock:
            groups = find_duplicate_groups(await self._backend.all(), threshold)
            for group in groups:
                for record in group.redundant:
                    if await self._backend.delete(record.id):
                        removed += 1

        logger.info("Removed %d duplicates across %d groups", removed, len(groups))
        return removed

    async def compact(self) -> int:
        async with self._write_lock:
            return await self._backend.compact()

    async def close(self) -> None:
        await self._backend.close()
        close = getattr(self._embeddings, "close", None)
        if close is not None:
            await close()
