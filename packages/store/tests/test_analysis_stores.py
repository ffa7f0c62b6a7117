"""Tests for the durable and side store backends."""

from __future__ import annotations

import threading

import pytest

from beetle_store.memory import MemorySideStore, MemoryStore
from beetle_store.models import (
    AnalysisRecord,
    AnalysisStatus,
    AnalysisType,
    PRMetadata,
    compress_logs,
    decompress_logs,
)
from beetle_store.sqlite import SQLiteSideStore, SQLiteStore


def _make_record(id="a1", repo="acme/shop", type=AnalysisType.PR, status=AnalysisStatus.DRAFT, created_at=None):
    record = AnalysisRecord(
        id=id,
        type=type,
        status=status,
        repo=repo,
        model="gemini-2.5-pro",
        prompt="Analyze this Pull Request",
        pr=PRMetadata(number=7, url="https://github.com/acme/shop/pull/7", title="Fix auth", head_sha="a" * 40),
    )
    if created_at:
        record.created_at = created_at
    return record


@pytest.fixture(params=["sqlite", "memory"])
def store(request, tmp_path):
    s = SQLiteStore(db_path=str(tmp_path / "test.db")) if request.param == "sqlite" else MemoryStore()
    yield s
    s.close()


@pytest.fixture(params=["sqlite", "memory"])
def side_store(request, tmp_path):
    s = SQLiteSideStore(db_path=str(tmp_path / "side.db")) if request.param == "sqlite" else MemorySideStore()
    yield s
    s.close()


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class TestModels:
    @pytest.mark.parametrize(
        "status,terminal",
        [
            (AnalysisStatus.DRAFT, False),
            (AnalysisStatus.RUNNING, False),
            (AnalysisStatus.COMPLETED, True),
            (AnalysisStatus.INTERRUPTED, True),
            (AnalysisStatus.ERROR, True),
            (AnalysisStatus.SKIPPED, True),
        ],
    )
    def test_is_terminal(self, status, terminal):
        assert status.is_terminal is terminal

    def test_compress_logs(self):
        data, meta = compress_logs("hello\n" * 100)
        assert meta["algorithm"] == "gzip"
        assert meta["original_bytes"] == 600
        assert meta["compressed_bytes"] == len(data)
        assert decompress_logs(data, meta) == "hello\n" * 100

    def test_decompress_empty(self):
        assert decompress_logs(None) == ""

    def test_decompress_unknown_algorithm(self):
        with pytest.raises(ValueError):
            decompress_logs(b"x", {"algorithm": "zstd"})


# ---------------------------------------------------------------------------
# Durable store
# ---------------------------------------------------------------------------


class TestStore:
    def test_create_and_get(self, store):
        store.create(_make_record())
        record = store.get("a1")
        assert record.status is AnalysisStatus.DRAFT
        assert record.pr == PRMetadata(7, "https://github.com/acme/shop/pull/7", "Fix auth", "a" * 40)
        assert record.exit_code is None

    def test_get_missing_returns_none(self, store):
        assert store.get("nope") is None

    def test_duplicate_id_rejected(self, store):
        store.create(_make_record())
        with pytest.raises(ValueError):
            store.create(_make_record())

    def test_update_fields(self, store):
        store.create(_make_record())
        data, meta = compress_logs("log text")
        updated = store.update(
            "a1",
            status=AnalysisStatus.COMPLETED,
            exit_code=0,
            comments_posted=3,
            logs_compressed=data,
            compression=meta,
        )
        assert updated.status is AnalysisStatus.COMPLETED
        record = store.get("a1")
        assert record.exit_code == 0
        assert record.comments_posted == 3
        assert decompress_logs(record.logs_compressed, record.compression) == "log text"
        assert record.updated_at >= record.created_at

    def test_update_missing_raises_key_error(self, store):
        with pytest.raises(KeyError):
            store.update("nope", status=AnalysisStatus.ERROR)

    def test_update_if_status_applies_when_status_matches(self, store):
        store.create(_make_record(status=AnalysisStatus.RUNNING))
        updated = store.update_if_status("a1", AnalysisStatus.RUNNING, status=AnalysisStatus.ERROR, exit_code=1)
        assert updated.status is AnalysisStatus.ERROR
        assert store.get("a1").exit_code == 1

    def test_update_if_status_leaves_finished_record_alone(self, store):
        store.create(_make_record(status=AnalysisStatus.RUNNING))
        data, meta = compress_logs("INFO line one")
        store.update("a1", status=AnalysisStatus.ERROR, logs_compressed=data, compression=meta)

        empty, empty_meta = compress_logs("")
        result = store.update_if_status(
            "a1",
            AnalysisStatus.RUNNING,
            status=AnalysisStatus.INTERRUPTED,
            logs_compressed=empty,
            compression=empty_meta,
        )

        assert result is None
        record = store.get("a1")
        assert record.status is AnalysisStatus.ERROR
        assert decompress_logs(record.logs_compressed, record.compression) == "INFO line one"

    def test_update_if_status_missing_raises_key_error(self, store):
        with pytest.raises(KeyError):
            store.update_if_status("nope", AnalysisStatus.RUNNING, status=AnalysisStatus.ERROR)

    def test_sqlite_update_if_status_sees_other_connection(self, tmp_path):
        path = str(tmp_path / "shared.db")
        owner, stopper = SQLiteStore(db_path=path), SQLiteStore(db_path=path)
        owner.create(_make_record(status=AnalysisStatus.RUNNING))
        assert owner.update_if_status("a1", AnalysisStatus.RUNNING, status=AnalysisStatus.COMPLETED)
        assert stopper.update_if_status("a1", AnalysisStatus.RUNNING, status=AnalysisStatus.INTERRUPTED) is None
        assert stopper.get("a1").status is AnalysisStatus.COMPLETED
        owner.close()
        stopper.close()

    def test_list_filters_repo_and_type(self, store):
        store.create(_make_record(id="1", created_at="2025-01-01T00:00:00+00:00"))
        store.create(_make_record(id="2", type=AnalysisType.FULL_REPO, created_at="2025-01-02T00:00:00+00:00"))
        store.create(_make_record(id="3", repo="other/repo"))
        assert [r.id for r in store.list_analyses("acme/shop")] == ["1", "2"]
        assert [r.id for r in store.list_analyses("acme/shop", AnalysisType.PR)] == ["1"]
        assert store.list_analyses("missing/repo") == []

    def test_count_since(self, store):
        store.create(_make_record(id="old", created_at="2025-01-01T00:00:00+00:00"))
        store.create(_make_record(id="new", created_at="2025-01-02T10:00:00+00:00"))
        store.create(_make_record(id="repo", type=AnalysisType.FULL_REPO, created_at="2025-01-02T11:00:00+00:00"))
        assert store.count_since("acme/shop", AnalysisType.PR, "2025-01-02T00:00:00+00:00") == 1

    def test_sqlite_persists_across_connections(self, tmp_path):
        path = str(tmp_path / "p.db")
        first = SQLiteStore(db_path=path)
        first.create(_make_record())
        first.close()
        second = SQLiteStore(db_path=path)
        assert second.get("a1").repo == "acme/shop"
        second.close()


# ---------------------------------------------------------------------------
# Side store
# ---------------------------------------------------------------------------


class TestSideStore:
    def test_buffer_append_adds_newlines(self, side_store):
        side_store.init_buffer("a1")
        side_store.append_buffer("a1", "first")
        side_store.append_buffer("a1", "second\n")
        assert side_store.read_buffer("a1") == "first\nsecond\n"

    def test_init_buffer_keeps_existing_content(self, side_store):
        side_store.append_buffer("a1", "kept")
        side_store.init_buffer("a1")
        assert side_store.read_buffer("a1") == "kept\n"

    def test_read_missing_buffer(self, side_store):
        assert side_store.read_buffer("nope") == ""

    def test_counter_init_only_if_absent(self, side_store):
        side_store.init_counter("a1")
        side_store.increment("a1", 2)
        side_store.init_counter("a1")
        assert side_store.pop_counter("a1") == 2

    def test_increment_returns_new_value(self, side_store):
        side_store.init_counter("a1")
        assert side_store.increment("a1") == 1
        assert side_store.increment("a1", 3) == 4

    def test_increment_without_init(self, side_store):
        assert side_store.increment("a1", 5) == 5

    def test_pop_counter_deletes(self, side_store):
        side_store.increment("a1", 2)
        assert side_store.pop_counter("a1") == 2
        assert side_store.pop_counter("a1") == 0

    def test_clear(self, side_store):
        side_store.append_buffer("a1", "x")
        side_store.increment("a1")
        side_store.clear("a1")
        assert side_store.read_buffer("a1") == ""
        assert side_store.pop_counter("a1") == 0

    def test_keys_are_isolated_per_analysis(self, side_store):
        side_store.append_buffer("a1", "one")
        side_store.append_buffer("a2", "two")
        side_store.increment("a1")
        assert side_store.read_buffer("a2") == "two\n"
        assert side_store.pop_counter("a2") == 0

    def test_expired_keys_vanish(self, side_store):
        side_store.init_buffer("a1", ttl=-1)
        side_store.init_counter("a1", ttl=-1)
        assert side_store.read_buffer("a1") == ""
        assert side_store.pop_counter("a1") == 0

    def test_concurrent_increments_are_not_lost(self, side_store):
        side_store.init_counter("a1")

        def bump():
            for _ in range(50):
                side_store.increment("a1")

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert side_store.pop_counter("a1") == 200
