"""
Core Types and Data Structures

Defines the fundamental types used throughout the knowledge store.
These are intentionally simple, immutable where possible, and serializable.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """
    Fixed-width ISO-8601 form used on disk.

    Every stored timestamp has the same width and offset, so string
    comparison orders them chronologically (SQLite relies on this).
    """
    return to_utc(value).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    return to_utc(datetime.fromisoformat(value))


def new_record_id() -> str:
    return str(uuid4())


class KnowledgeMetadata(BaseModel):
    """Caller-supplied description of where a piece of knowledge came from."""

    model_config = ConfigDict(frozen=True)

    source: str = ""  # Free-form origin (URL, feed name, file path)
    date: str = ""  # ISO date string supplied by the caller
    category: str = "general"
    title: str | None = None

    @property
    def label(self) -> str:
        """Display label: title, falling back to source."""
        return self.title or self.source


class KnowledgeRecord(BaseModel):
    """
    The unit of storage: one embedded chunk.

    Immutable by design. Updates are modeled as delete + re-add.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_record_id)
    content: str
    vector: tuple[float, ...]
    metadata: KnowledgeMetadata = Field(default_factory=KnowledgeMetadata)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("content must not be empty")
        return value

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, value: datetime) -> datetime:
        return to_utc(value)

    @property
    def dimension(self) -> int:
        return len(self.vector)


@dataclass
class SearchHit:
    """A ranked candidate: the record and its score."""

    record: KnowledgeRecord
    score: float
    similarity: float | None = None  # Raw cosine when score is weighted

    @property
    def content(self) -> str:
        return self.record.content


@dataclass
class IngestResult:
    """Outcome of one add_knowledge call."""

    record_ids: list[str] = field(default_factory=list)
    chunk_count: int = 0
    duplicates: int = 0
    failed: int = 0

    @property
    def stored(self) -> int:
        return len(self.record_ids)

    @property
    def record_id(self) -> str | None:
        """Id of the first stored chunk, if any."""
        return self.record_ids[0] if self.record_ids else None


class KnowledgeStats(BaseModel):
    """Read-only aggregate over the active records."""

    record_count: int = 0
    distinct_sources: int = 0
    sources: list[str] = Field(default_factory=list)
    by_category: dict[str, int] = Field(default_factory=dict)
    oldest: datetime | None = None
    newest: datetime | None = None
    dimension: int | None = None

    @classmethod
    def from_records(
        cls,
        records: list[KnowledgeRecord],
        dimension: int | None = None,
    ) -> "KnowledgeStats":
        if not records:
            return cls(dimension=dimension)

        sources = sorted({r.metadata.source for r in records if r.metadata.source})
        by_category: dict[str, int] = {}
        for record in records:
            key = record.metadata.category or "unknown"
            by_category[key] = by_category.get(key, 0) + 1

        return cls(
            record_count=len(records),
            distinct_sources=len(sources),
            sources=sources,
            by_category=by_category,
            oldest=min(r.created_at for r in records),
            newest=max(r.created_at for r in records),
            dimension=dimension,
        )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


@dataclass
class DuplicateGroup:
    """Records judged near-identical, newest first."""

    records: list[KnowledgeRecord]
    mean_similarity: float

    @property
    def keep(self) -> KnowledgeRecord:
        return self.records[0]

    @property
    def redundant(self) -> list[KnowledgeRecord]:
        return self.records[1:]
