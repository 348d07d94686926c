"""
Unit Tests - Knowledge Backends

Every behaviour here runs against both the JSON Lines file backend and
the SQLite backend through the parametrized `backend` fixture.
"""

import base64
import json
import sqlite3
from datetime import timedelta

import pytest

from kbstore.core.exceptions import (
    CorruptRecordError,
    DimensionMismatchError,
    VectorStoreError,
)
from kbstore.core.types import KnowledgeStats
from kbstore.knowledge.codec import encode_vector
from kbstore.knowledge.vector_store import FileKnowledgeBackend, SQLiteKnowledgeBackend
from tests.fixtures import FIXED_NOW, make_record


def reopen(backend):
    return type(backend)(backend.path)


class TestKnowledgeBackend:
    """Behaviour shared by both backends."""

    @pytest.mark.asyncio
    async def test_add_and_get(self, backend):
        record = make_record("Stored fact.", [0.5, -1.0, 2.0], source="unit", title="T")
        await backend.add(record)

        fetched = await backend.get(record.id)
        assert fetched == record
        assert await backend.count() == 1
        assert await backend.get("missing") is None

    @pytest.mark.asyncio
    async def test_all_keeps_insertion_order(self, backend):
        records = [make_record(f"Fact {i}.", [float(i), 1.0]) for i in range(5)]
        for record in records:
            await backend.add(record)

        assert [r.id for r in await backend.all()] == [r.id for r in records]

    @pytest.mark.asyncio
    async def test_snapshot_is_a_copy(self, backend):
        await backend.add(make_record("Fact.", [1.0, 0.0]))
        snapshot = await backend.all()
        snapshot.clear()
        assert await backend.count() == 1

    @pytest.mark.asyncio
    async def test_dimension_is_fixed_by_first_record(self, backend):
        assert backend.dimension is None
        await backend.add(make_record("Three.", [1.0, 2.0, 3.0]))
        assert backend.dimension == 3

        with pytest.raises(DimensionMismatchError):
            await backend.add(make_record("Two.", [1.0, 2.0]))
        assert await backend.count() == 1

    @pytest.mark.asyncio
    async def test_duplicate_id_is_rejected(self, backend):
        record = make_record("Once.", [1.0, 0.0])
        await backend.add(record)
        with pytest.raises(VectorStoreError):
            await backend.add(record)

        await backend.delete(record.id)
        with pytest.raises(VectorStoreError):
            await backend.add(record)
        assert await backend.count() == 0

        reopened = reopen(backend)
        with pytest.raises(VectorStoreError):
            await reopened.add(record)
        assert await reopened.all() == []

    @pytest.mark.asyncio
    async def test_id_expired_by_cleanup_is_not_reused(self, backend):
        old = make_record("Old.", [1.0, 0.0], created_at=FIXED_NOW - timedelta(days=40))
        await backend.add(old)
        assert await backend.delete_older_than(FIXED_NOW - timedelta(days=30)) == 1

        with pytest.raises(VectorStoreError):
            await backend.add(old)
        with pytest.raises(VectorStoreError):
            await reopen(backend).add(old)

    @pytest.mark.asyncio
    async def test_stats_match_active_records(self, backend):
        assert await backend.stats() == KnowledgeStats()

        await backend.add(make_record("A.", [1.0, 0.0], source="feed", category="news"))
        await backend.add(
            make_record(
                "B.",
                [0.0, 1.0],
                source="manual",
                category="docs",
                created_at=FIXED_NOW - timedelta(days=2),
            )
        )
        await backend.add(make_record("C.", [1.0, 1.0], source="feed", category="news"))
        gone = make_record("D.", [2.0, 1.0], source="gone", category="misc")
        await backend.add(gone)
        await backend.delete(gone.id)

        stats = await backend.stats()
        assert stats == KnowledgeStats.from_records(await backend.all(), dimension=2)
        assert stats.record_count == 3
        assert stats.sources == ["feed", "manual"]
        assert stats.by_category == {"news": 2, "docs": 1}
        assert stats.oldest == FIXED_NOW - timedelta(days=2)

    @pytest.mark.asyncio
    async def test_delete(self, backend):
        record = make_record("Doomed.", [1.0, 0.0])
        await backend.add(record)

        assert await backend.delete(record.id) is True
        assert await backend.delete(record.id) is False
        assert await backend.get(record.id) is None
        assert await backend.all() == []

    @pytest.mark.asyncio
    async def test_delete_older_than_is_strict(self, backend):
        at_cutoff = make_record("At cutoff.", [1.0, 0.0], created_at=FIXED_NOW)
        before = make_record(
            "Before.", [0.0, 1.0], created_at=FIXED_NOW - timedelta(microseconds=1)
        )
        await backend.add(at_cutoff)
        await backend.add(before)

        assert await backend.delete_older_than(FIXED_NOW) == 1
        assert [r.id for r in await backend.all()] == [at_cutoff.id]

    @pytest.mark.asyncio
    async def test_filter_by_metadata(self, backend):
        await backend.add(make_record("News.", [1.0, 0.0], category="news"))
        await backend.add(make_record("Docs.", [0.0, 1.0], category="docs", source="manual"))

        news = await backend.all(filter={"category": "news"})
        assert [r.content for r in news] == ["News."]

        docs = await backend.all(filter={"category": "docs", "source": "manual"})
        assert [r.content for r in docs] == ["Docs."]

        assert await backend.all(filter={"category": "none"}) == []

    @pytest.mark.asyncio
    async def test_unknown_filter_field(self, backend):
        with pytest.raises(ValueError):
            await backend.all(filter={"colour": "blue"})

    @pytest.mark.asyncio
    async def test_reopen_restores_records_and_dimension(self, backend):
        kept = make_record("Kept.", [1.0, 2.0], source="s", date="2024-05-01", title=None)
        gone = make_record("Gone.", [3.0, 4.0])
        await backend.add(kept)
        await backend.add(gone)
        await backend.delete(gone.id)

        reopened = reopen(backend)
        assert await reopened.all() == [kept]
        assert reopened.dimension == 2


class TestFileKnowledgeBackend:
    """File backend specifics."""

    @pytest.mark.asyncio
    async def test_lines_hold_codec_bytes(self, tmp_path):
        path = tmp_path / "kb.jsonl"
        backend = FileKnowledgeBackend(path)
        record = make_record("Fact.", [0.25, -8.0], source="src", category="docs")
        await backend.add(record)
        await backend.delete(record.id)

        lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        assert lines[0]["op"] == "add"
        assert base64.b64decode(lines[0]["vector"]) == encode_vector([0.25, -8.0])
        assert lines[0]["category"] == "docs"
        assert lines[1] == {"op": "delete", "id": record.id, "deleted_at": lines[1]["deleted_at"]}

    @pytest.mark.asyncio
    async def test_compact_drops_deleted_records(self, tmp_path):
        path = tmp_path / "kb.jsonl"
        backend = FileKnowledgeBackend(path)
        records = [make_record(f"Fact {i}.", [float(i), 1.0]) for i in range(3)]
        for record in records:
            await backend.add(record)
        await backend.delete(records[1].id)

        # The deleted add line goes; its tombstone stays to retire the id
        assert await backend.compact() == 1
        lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        assert [line["op"] for line in lines] == ["add", "add", "delete"]
        assert lines[2]["id"] == records[1].id

        reopened = FileKnowledgeBackend(path)
        assert [r.id for r in await reopened.all()] == [records[0].id, records[2].id]
        with pytest.raises(VectorStoreError):
            await reopened.add(records[1])
        assert await reopened.compact() == 0

    def test_add_after_delete_of_same_id_is_corrupt(self, tmp_path):
        path = tmp_path / "kb.jsonl"
        add = FileKnowledgeBackend._encode_add(make_record("Fact.", [1.0, 0.0]))
        entry_id = json.loads(add)["id"]
        delete = FileKnowledgeBackend._encode_delete(entry_id)
        path.write_text(add + "\n" + delete + "\n" + add + "\n" + delete + "\n", encoding="utf-8")

        with pytest.raises(CorruptRecordError) as exc_info:
            FileKnowledgeBackend(path)
        assert exc_info.value.context["line"] == 3

    def test_corrupt_line_is_reported(self, tmp_path):
        path = tmp_path / "kb.jsonl"
        path.write_text('{"op": "add", "id": "x"}\n{"op": "delete", "id": "x"}\n', encoding="utf-8")

        with pytest.raises(CorruptRecordError) as exc_info:
            FileKnowledgeBackend(path)
        assert exc_info.value.context["line"] == 1

    def test_truncated_vector_is_corrupt(self, tmp_path):
        path = tmp_path / "kb.jsonl"
        line = {
            "op": "add",
            "id": "x",
            "content": "Fact.",
            "vector": base64.b64encode(b"\x00" * 9).decode(),
            "created_at": "2024-06-01T12:00:00.000000+00:00",
        }
        path.write_text(json.dumps(line) + "\n", encoding="utf-8")

        with pytest.raises(CorruptRecordError):
            FileKnowledgeBackend(path)

    @pytest.mark.asyncio
    async def test_partial_trailing_line_is_discarded(self, tmp_path):
        path = tmp_path / "kb.jsonl"
        backend = FileKnowledgeBackend(path)
        record = make_record("Whole.", [1.0, 0.0])
        await backend.add(record)
        with open(path, "a", encoding="utf-8") as f:
            f.write('{"op": "add", "id": "half')

        recovered = FileKnowledgeBackend(path)
        assert [r.id for r in await recovered.all()] == [record.id]

        await recovered.add(make_record("After.", [0.0, 1.0]))
        assert await FileKnowledgeBackend(path).count() == 2

    @pytest.mark.asyncio
    async def test_missing_file_is_empty_store(self, tmp_path):
        backend = FileKnowledgeBackend(tmp_path / "nested" / "kb.jsonl")
        assert await backend.count() == 0
        await backend.add(make_record("First.", [1.0]))
        assert (tmp_path / "nested" / "kb.jsonl").exists()


class TestSQLiteKnowledgeBackend:
    """SQLite backend specifics."""

    @pytest.mark.asyncio
    async def test_vector_column_holds_codec_bytes(self, tmp_path):
        path = tmp_path / "kb.sqlite"
        backend = SQLiteKnowledgeBackend(path)
        record = make_record("Fact.", [0.25, -8.0])
        await backend.add(record)

        conn = sqlite3.connect(path)
        try:
            (blob,) = conn.execute("SELECT vector FROM knowledge").fetchone()
        finally:
            conn.close()
        assert blob == encode_vector([0.25, -8.0])

    @pytest.mark.asyncio
    async def test_corrupt_blob_is_reported(self, tmp_path):
        path = tmp_path / "kb.sqlite"
        backend = SQLiteKnowledgeBackend(path)

        conn = sqlite3.connect(path)
        try:
            conn.execute(
                "INSERT INTO knowledge(id, content, vector, created_at) VALUES (?, ?, ?, ?)",
                ("bad", "Fact.", b"\x00" * 9, "2024-06-01T12:00:00.000000+00:00"),
            )
            conn.commit()
        finally:
            conn.close()

        with pytest.raises(CorruptRecordError):
            await backend.all()

    @pytest.mark.asyncio
    async def test_compact_vacuums(self, tmp_path):
        backend = SQLiteKnowledgeBackend(tmp_path / "kb.sqlite")
        await backend.add(make_record("Fact.", [1.0, 0.0]))
        assert await backend.compact() >= 0
        assert await backend.count() == 1
