"""
Vector Store Abstraction

Persist knowledge records and hand back working-set snapshots.
Supports two backends (append-only file, SQLite).

Design decisions:
- Abstract interface for backend independence
- Both backends store the same codec bytes for vectors
- Filtering by metadata equality only
- Ranking is not a backend concern; backends return snapshots
"""

import base64
import binascii
import json
import logging
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from kbstore.core.exceptions import (
    CorruptRecordError,
    DimensionMismatchError,
    VectorStoreError,
)
from kbstore.core.types import (
    KnowledgeMetadata,
    KnowledgeRecord,
    KnowledgeStats,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from kbstore.knowledge.codec import decode_vector, encode_vector, vector_length

logger = logging.getLogger(__name__)

# Metadata fields a filter may name
FILTER_FIELDS = frozenset({"source", "date", "category", "title"})


def _check_filter(filter: dict[str, Any] | None) -> dict[str, Any]:
    if not filter:
        return {}
    unknown = set(filter) - FILTER_FIELDS
    if unknown:
        raise ValueError(f"Unsupported filter fields: {sorted(unknown)}")
    return filter


def _matches(record: KnowledgeRecord, filter: dict[str, Any]) -> bool:
    return all(getattr(record.metadata, key) == value for key, value in filter.items())


class KnowledgeBackend(ABC):
    """
    Abstract knowledge backend.

    Stores records durably and returns consistent snapshots of the
    active set in insertion order.

    A deleted record's id is retired: it never names a new record.
    """

    def __init__(self) -> None:
        self._dimension: int | None = None

    @property
    def dimension(self) -> int | None:
        """Established vector length, None until the first record."""
        return self._dimension

    def _check_dimension(self, record: KnowledgeRecord) -> None:
        if self._dimension is None:
            self._dimension = record.dimension
            return
        if record.dimension != self._dimension:
            raise DimensionMismatchError(
                f"Store holds {self._dimension}-dimensional vectors, "
                f"got {record.dimension}",
                expected=self._dimension,
                actual=record.dimension,
                context={"record_id": record.id},
            )

    @abstractmethod
    async def add(self, record: KnowledgeRecord) -> None:
        """Persist a single record."""
        pass

    @abstractmethod
    async def get(self, record_id: str) -> KnowledgeRecord | None:
        """Get an active record by ID."""
        pass

    @abstractmethod
    async def all(self, filter: dict[str, Any] | None = None) -> list[KnowledgeRecord]:
        """Snapshot of active records, oldest insert first."""
        pass

    @abstractmethod
    async def delete(self, record_id: str) -> bool:
        """Delete a record by ID."""
        pass

    @abstractmethod
    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete records created strictly before cutoff."""
        pass

    @abstractmethod
    async def count(self) -> int:
        """Count active records."""
        pass

    async def stats(self) -> KnowledgeStats:
        """Aggregate counts over the active records."""
        return KnowledgeStats.from_records(await self.all(), dimension=self._dimension)

    async def compact(self) -> int:
        """Reclaim space held by deleted records. Returns units reclaimed."""
        return 0

    async def close(self) -> None:
        return None


class FileKnowledgeBackend(KnowledgeBackend):
    """
    Append-only JSON Lines backend.

    Every add is one line; every delete appends a tombstone line. The
    file is replayed into memory on open, so the working set is always
    resident. compact() rewrites the live records plus one tombstone per
    retired id, dropping everything else.

    Line shapes:
        {"op": "add", "id": ..., "content": ..., "vector": <base64>,
         "source": ..., "date": ..., "category": ..., "title": ...,
         "created_at": ...}
        {"op": "delete", "id": ..., "deleted_at": ...}
    """

    def __init__(self, path: str | Path):
        super().__init__()
        self._path = Path(path)
        self._records: dict[str, KnowledgeRecord] = {}
        self._retired: dict[str, str] = {}  # id -> deleted_at
        self._line_count = 0
        self._lock = threading.Lock()

        self._load()

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Line codec
    # ------------------------------------------------------------------

    @staticmethod
    def _encode_add(record: KnowledgeRecord) -> str:
        return json.dumps(
            {
                "op": "add",
                "id": record.id,
                "content": record.content,
                "vector": base64.b64encode(encode_vector(record.vector)).decode("ascii"),
                "source": record.metadata.source,
                "date": record.metadata.date,
                "category": record.metadata.category,
                "title": record.metadata.title,
                "created_at": format_timestamp(record.created_at),
            },
            ensure_ascii=False,
        )

    @staticmethod
    def _encode_delete(record_id: str, deleted_at: str | None = None) -> str:
        if deleted_at is None:
            deleted_at = format_timestamp(utc_now())
        return json.dumps({"op": "delete", "id": record_id, "deleted_at": deleted_at})

    @staticmethod
    def _decode_add(entry: dict[str, Any]) -> KnowledgeRecord:
        blob = base64.b64decode(entry["vector"], validate=True)
        return KnowledgeRecord(
            id=entry["id"],
            content=entry["content"],
            vector=tuple(decode_vector(blob)),
            metadata=KnowledgeMetadata(
                source=entry.get("source") or "",
                date=entry.get("date") or "",
                category=entry.get("category") or "general",
                title=entry.get("title"),
            ),
            created_at=parse_timestamp(entry["created_at"]),
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        """Replay the log into the in-memory working set."""
        if not self._path.exists():
            return

        try:
            data = self._path.read_bytes()
        except OSError as e:
            raise VectorStoreError(f"Cannot read {self._path}: {e}", cause=e)

        lines = data.split(b"\n")
        tail = lines.pop()  # Empty when the file ends with a newline

        for number, line in enumerate(lines, start=1):
            if line.strip():
                self._apply(line, number)

        if tail.strip():
            try:
                self._apply(tail, len(lines) + 1)
            except CorruptRecordError:
                # Interrupted append; drop it so the next write starts clean
                logger.warning("Discarding partial trailing line in %s", self._path)
                with open(self._path, "r+b") as f:
                    f.truncate(len(data) - len(tail))
            else:
                with open(self._path, "ab") as f:
                    f.write(b"\n")

        logger.debug("Loaded %d records from %s", len(self._records), self._path)

    def _apply(self, line: bytes, number: int) -> None:
        try:
            entry = json.loads(line)
            op = entry["op"]
            if op == "add":
                record = self._decode_add(entry)
            elif op == "delete":
                record = None
                record_id = entry["id"]
                deleted_at = entry.get("deleted_at") or ""
            else:
                raise ValueError(f"unknown op {op!r}")
        except (ValueError, KeyError, TypeError, binascii.Error, ValidationError) as e:
            raise CorruptRecordError(
                f"Cannot decode line {number} of {self._path}: {e}",
                context={"path": str(self._path), "line": number},
                cause=e,
            )
        except CorruptRecordError as e:
            e.context.update({"path": str(self._path), "line": number})
            raise

        if record is not None and record.id in self._retired:
            raise CorruptRecordError(
                f"Line {number} of {self._path} reuses deleted id {record.id}",
                context={"path": str(self._path), "line": number, "record_id": record.id},
            )

        self._line_count += 1
        if record is None:
            self._records.pop(record_id, None)
            self._retired[record_id] = deleted_at
            return

        self._check_dimension(record)
        self._records[record.id] = record

    def _append(self, lines: list[str]) -> None:
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with open(self._path, "a", encoding="utf-8") as f:
                    f.write("".join(line + "\n" for line in lines))
                    f.flush()
            except OSError as e:
                raise VectorStoreError(f"Cannot write {self._path}: {e}", cause=e)
            self._line_count += len(lines)

    # ------------------------------------------------------------------
    # KnowledgeBackend
    # ------------------------------------------------------------------

    async def add(self, record: KnowledgeRecord) -> None:
        if record.id in self._retired:
            raise VectorStoreError(
                f"Record id {record.id} was deleted and cannot be reused",
                context={"record_id": record.id},
            )
        if record.id in self._records:
            raise VectorStoreError(f"Record {record.id} already exists")
        self._check_dimension(record)

        self._append([self._encode_add(record)])
        self._records[record.id] = record

    async def get(self, record_id: str) -> KnowledgeRecord | None:
        return self._records.get(record_id)

    async def all(self, filter: dict[str, Any] | None = None) -> list[KnowledgeRecord]:
        filter = _check_filter(filter)
        snapshot = list(self._records.values())
        if not filter:
            return snapshot
        return [r for r in snapshot if _matches(r, filter)]

    async def delete(self, record_id: str) -> bool:
        if record_id not in self._records:
            return False

        deleted_at = format_timestamp(utc_now())
        self._append([self._encode_delete(record_id, deleted_at)])
        del self._records[record_id]
        self._retired[record_id] = deleted_at
        return True

    async def delete_older_than(self, cutoff: datetime) -> int:
        expired = [r.id for r in self._records.values() if r.created_at < cutoff]
        if not expired:
            return 0

        deleted_at = format_timestamp(utc_now())
        self._append([self._encode_delete(record_id, deleted_at) for record_id in expired])
        for record_id in expired:
            del self._records[record_id]
            self._retired[record_id] = deleted_at
        return len(expired)

    async def count(self) -> int:
        return len(self._records)

    async def compact(self) -> int:
        """Rewrite the file with live records and retired ids. Returns lines dropped."""
        tmp_path = self._path.with_name(self._path.name + ".tmp")

        with self._lock:
            before = self._line_count
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, "w", encoding="utf-8") as f:
                    for record in self._records.values():
                        f.write(self._encode_add(record) + "\n")
                    for record_id, deleted_at in self._retired.items():
                        f.write(self._encode_delete(record_id, deleted_at) + "\n")
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self._path)
            except OSError as e:
                raise VectorStoreError(f"Cannot compact {self._path}: {e}", cause=e)
            self._line_count = len(self._records) + len(self._retired)

        dropped = before - self._line_count
        logger.info("Compacted %s, dropped %d lines", self._path, dropped)
        return dropped


class SQLiteKnowledgeBackend(KnowledgeBackend):
    """
    SQLite backend.

    Table schema:
      knowledge(
        id TEXT PRIMARY KEY,
        content TEXT NOT NULL,
        vector BLOB NOT NULL,
        source TEXT, date TEXT, category TEXT, title TEXT,
        created_at TEXT NOT NULL
      )
      deleted_ids(id TEXT PRIMARY KEY, deleted_at TEXT NOT NULL)

    created_at is stored in a fixed-width UTC form, so age cleanup is a
    plain string comparison on an indexed column.
    """

    _COLUMNS = "id, content, vector, source, date, category, title, created_at"

    def __init__(self, db_path: str | Path):
        super().__init__()
        self._db_path = Path(db_path)
        self._lock = threading.Lock()

        self._ensure_schema()
        self._dimension = self._stored_dimension()

    @property
    def path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = None
        try:
            conn = sqlite3.connect(self._db_path)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            raise VectorStoreError(f"SQLite error on {self._db_path}: {e}", cause=e)
        finally:
            if conn is not None:
                conn.close()

    def _ensure_schema(self) -> None:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise VectorStoreError(f"Cannot create {self._db_path.parent}: {e}", cause=e)

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS knowledge (
                    id TEXT PRIMARY KEY,
                    content TEXT NOT NULL,
                    vector BLOB NOT NULL,
                    source TEXT NOT NULL DEFAULT '',
                    date TEXT NOT NULL DEFAULT '',
                    category TEXT NOT NULL DEFAULT 'general',
                    title TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_knowledge_category ON knowledge(category)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_knowledge_created ON knowledge(created_at)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS deleted_ids (
                    id TEXT PRIMARY KEY,
                    deleted_at TEXT NOT NULL
                )
                """
            )

    def _stored_dimension(self) -> int | None:
        with self._connect() as conn:
            row = conn.execute("SELECT vector FROM knowledge ORDER BY rowid LIMIT 1").fetchone()
        if row is None:
            return None
        return vector_length(row["vector"])

    def _row_to_record(self, row: sqlite3.Row) -> KnowledgeRecord:
        try:
            vector = decode_vector(row["vector"], length=self._dimension)
            return KnowledgeRecord(
                id=row["id"],
                content=row["content"],
                vector=tuple(vector),
                metadata=KnowledgeMetadata(
                    source=row["source"] or "",
                    date=row["date"] or "",
                    category=row["category"] or "general",
                    title=row["title"],
                ),
                created_at=parse_timestamp(row["created_at"]),
            )
        except (ValueError, ValidationError) as e:
            raise CorruptRecordError(
                f"Cannot decode record {row['id']}: {e}",
                context={"record_id": row["id"]},
                cause=e,
            )

    async def add(self, record: KnowledgeRecord) -> None:
        self._check_dimension(record)

        with self._lock, self._connect() as conn:
            retired = conn.execute(
                "SELECT 1 FROM deleted_ids WHERE id = ?", (record.id,)
            ).fetchone()
            if retired is not None:
                raise VectorStoreError(
                    f"Record id {record.id} was deleted and cannot be reused",
                    context={"record_id": record.id},
                )
            conn.execute(
                f"INSERT INTO knowledge({self._COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.content,
                    encode_vector(record.vector),
                    record.metadata.source,
                    record.metadata.date,
                    record.metadata.category,
                    record.metadata.title,
                    format_timestamp(record.created_at),
                ),
            )

    async def get(self, record_id: str) -> KnowledgeRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {self._COLUMNS} FROM knowledge WHERE id = ?",
                (record_id,),
            ).fetchone()
        return self._row_to_record(row) if row else None

    async def all(self, filter: dict[str, Any] | None = None) -> list[KnowledgeRecord]:
        filter = _check_filter(filter)

        # Column names come from FILTER_FIELDS only; values are bound
        clauses = []
        params: list[Any] = []
        for key, value in filter.items():
            if value is None:
                clauses.append(f"{key} IS NULL")
            else:
                clauses.append(f"{key} = ?")
                params.append(value)

        sql = f"SELECT {self._COLUMNS} FROM knowledge"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY rowid"

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    async def delete(self, record_id: str) -> bool:
        with self._lock, self._connect() as conn:
            cursor = conn.execute("DELETE FROM knowledge WHERE id = ?", (record_id,))
            deleted = cursor.rowcount
            if deleted > 0:
                conn.execute(
                    "INSERT OR IGNORE INTO deleted_ids(id, deleted_at) VALUES (?, ?)",
                    (record_id, format_timestamp(utc_now())),
                )
        return deleted > 0

    async def delete_older_than(self, cutoff: datetime) -> int:
        threshold = format_timestamp(cutoff)
        with self._lock, self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO deleted_ids(id, deleted_at) "
                "SELECT id, ? FROM knowledge WHERE created_at < ?",
                (format_timestamp(utc_now()), threshold),
            )
            cursor = conn.execute("DELETE FROM knowledge WHERE created_at < ?", (threshold,))
            deleted = cursor.rowcount
        return deleted

    async def count(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM knowledge").fetchone()
        return int(row["n"])

    async def stats(self) -> KnowledgeStats:
        """Aggregates computed in SQL; no vector is decoded."""
        with self._connect() as conn:
            totals = conn.execute(
                "SELECT COUNT(*) AS n, MIN(created_at) AS oldest, MAX(created_at) AS newest "
                "FROM knowledge"
            ).fetchone()
            sources = [
                row["source"]
                for row in conn.execute(
                    "SELECT DISTINCT source FROM knowledge WHERE source != '' ORDER BY source"
                )
            ]
            categories = conn.execute(
                "SELECT COALESCE(NULLIF(category, ''), 'general') AS category, COUNT(*) AS n "
                "FROM knowledge GROUP BY 1 ORDER BY MIN(rowid)"
            ).fetchall()

        if not totals["n"]:
            return KnowledgeStats(dimension=self._dimension)

        return KnowledgeStats(
            record_count=totals["n"],
            distinct_sources=len(sources),
            sources=sources,
            by_category={row["category"]: row["n"] for row in categories},
            oldest=parse_timestamp(totals["oldest"]),
            newest=parse_timestamp(totals["newest"]),
            dimension=self._dimension,
        )

    async def compact(self) -> int:
        """VACUUM the database. Returns bytes reclaimed."""
        before = self._file_size()
        with self._lock, self._connect() as conn:
            conn.execute("VACUUM")
        reclaimed = max(0, before - self._file_size())
        logger.info("Vacuumed %s, reclaimed %d bytes", self._db_path, reclaimed)
        return reclaimed

    def _file_size(self) -> int:
        try:
            return self._db_path.stat().st_size
        except OSError:
            return 0
