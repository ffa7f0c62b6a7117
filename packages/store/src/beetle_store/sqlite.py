"""SQLite backends for the durable store and the side store.

Both stores can share one database file (``.beetle.db`` by default). The
lifecycle controller calls the stores from worker threads, so connections
are opened with ``check_same_thread=False`` and every statement runs under a
per-store lock.

Schema:
  analyses  — one row per analysis run.
  side_kv   — expiring side-store keys; text buffers use text_value,
              counters use int_value.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import sqlite3
import threading
import time

from beetle_store.base import DEFAULT_TTL_SECONDS, BaseSideStore, BaseStore, buffer_key, counter_key
from beetle_store.models import AnalysisRecord, AnalysisStatus, AnalysisType, PRMetadata, utcnow_iso

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS analyses (
    id                TEXT PRIMARY KEY,
    type              TEXT NOT NULL,
    status            TEXT NOT NULL,
    repo              TEXT NOT NULL,
    model             TEXT,
    prompt            TEXT,
    sandbox_ref       TEXT,
    exit_code         INTEGER,
    pr_json           TEXT,
    comments_posted   INTEGER DEFAULT 0,
    logs_compressed   BLOB,
    compression_json  TEXT,
    error             TEXT,
    skip_reason       TEXT,
    created_at        TEXT,
    updated_at        TEXT
);
CREATE INDEX IF NOT EXISTS idx_analyses_repo ON analyses (repo, type, created_at);
"""

_SIDE_SCHEMA = """
CREATE TABLE IF NOT EXISTS side_kv (
    key         TEXT PRIMARY KEY,
    text_value  TEXT,
    int_value   INTEGER,
    expires_at  REAL NOT NULL
);
"""

_COLUMNS = (
    "id",
    "type",
    "status",
    "repo",
    "model",
    "prompt",
    "sandbox_ref",
    "exit_code",
    "pr_json",
    "comments_posted",
    "logs_compressed",
    "compression_json",
    "error",
    "skip_reason",
    "created_at",
    "updated_at",
)


class SQLiteStore(BaseStore):
    """Stores analysis records in a local SQLite database file.

    The database file path defaults to `.beetle.db` in the current working
    directory. Configure via .beetle.yml: `store_path: /path/to/beetle.db`.
    """

    def __init__(self, db_path: str = ".beetle.db"):
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def create(self, record: AnalysisRecord) -> None:
        placeholders = ", ".join("?" for _ in _COLUMNS)
        with self._lock:
            try:
                self._conn.execute(
                    f"INSERT INTO analyses ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                    self._record_to_row(record),
                )
            except sqlite3.IntegrityError:
                raise ValueError(f"Analysis {record.id!r} already exists.")
            self._conn.commit()

    def get(self, analysis_id: str) -> AnalysisRecord | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM analyses WHERE id=?", (analysis_id,)).fetchone()
        return self._row_to_record(row) if row else None

    def update(self, analysis_id: str, **fields) -> AnalysisRecord:
        with self._lock:
            row = self._conn.execute("SELECT * FROM analyses WHERE id=?", (analysis_id,)).fetchone()
            if row is None:
                raise KeyError(analysis_id)
            record = dataclasses.replace(self._row_to_record(row), **fields, updated_at=utcnow_iso())
            assignments = ", ".join(f"{c}=?" for c in _COLUMNS[1:])
            values = self._record_to_row(record)
            self._conn.execute(f"UPDATE analyses SET {assignments} WHERE id=?", (*values[1:], analysis_id))
            self._conn.commit()
        return record

    def update_if_status(self, analysis_id: str, expected: AnalysisStatus, **fields) -> AnalysisRecord | None:
        # Status check and write happen in one statement.
        with self._lock:
            row = self._conn.execute("SELECT * FROM analyses WHERE id=?", (analysis_id,)).fetchone()
            if row is None:
                raise KeyError(analysis_id)
            record = dataclasses.replace(self._row_to_record(row), **fields, updated_at=utcnow_iso())
            assignments = ", ".join(f"{c}=?" for c in _COLUMNS[1:])
            values = self._record_to_row(record)
            cursor = self._conn.execute(
                f"UPDATE analyses SET {assignments} WHERE id=? AND status=?",
                (*values[1:], analysis_id, expected.value),
            )
            self._conn.commit()
        return record if cursor.rowcount else None

    def list_analyses(self, repo: str, analysis_type: AnalysisType | None = None) -> list[AnalysisRecord]:
        with self._lock:
            if analysis_type is not None:
                rows = self._conn.execute(
                    "SELECT * FROM analyses WHERE repo=? AND type=? ORDER BY created_at",
                    (repo, analysis_type.value),
                ).fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT * FROM analyses WHERE repo=? ORDER BY created_at",
                    (repo,),
                ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def count_since(self, repo: str, analysis_type: AnalysisType, since_iso: str) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM analyses WHERE repo=? AND type=? AND created_at >= ?",
                (repo, analysis_type.value, since_iso),
            ).fetchone()
        return row[0]

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _record_to_row(record: AnalysisRecord) -> tuple:
        return (
            record.id,
            record.type.value,
            record.status.value,
            record.repo,
            record.model,
            record.prompt,
            record.sandbox_ref,
            record.exit_code,
            json.dumps(record.pr.to_dict()) if record.pr else None,
            record.comments_posted,
            record.logs_compressed,
            json.dumps(record.compression) if record.compression else None,
            record.error,
            record.skip_reason,
            record.created_at,
            record.updated_at,
        )

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> AnalysisRecord:
        return AnalysisRecord(
            id=row["id"],
            type=AnalysisType(row["type"]),
            status=AnalysisStatus(row["status"]),
            repo=row["repo"],
            model=row["model"] or "",
            prompt=row["prompt"] or "",
            sandbox_ref=row["sandbox_ref"] or "",
            exit_code=row["exit_code"],
            pr=PRMetadata.from_dict(json.loads(row["pr_json"])) if row["pr_json"] else None,
            comments_posted=row["comments_posted"] or 0,
            logs_compressed=row["logs_compressed"],
            compression=json.loads(row["compression_json"]) if row["compression_json"] else None,
            error=row["error"],
            skip_reason=row["skip_reason"],
            created_at=row["created_at"] or "",
            updated_at=row["updated_at"] or "",
        )


class SQLiteSideStore(BaseSideStore):
    """Side store on SQLite.

    Increments are a single upsert statement, so concurrent writers can
    never lose an update. Expired keys are purged lazily before each call.
    """

    def __init__(self, db_path: str = ".beetle.db", default_ttl: int = DEFAULT_TTL_SECONDS):
        self.default_ttl = default_ttl
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.executescript(_SIDE_SCHEMA)
        self._conn.commit()

    def _purge(self) -> None:
        self._conn.execute("DELETE FROM side_kv WHERE expires_at <= ?", (time.time(),))

    def init_buffer(self, analysis_id: str, ttl: int = DEFAULT_TTL_SECONDS) -> None:
        with self._lock:
            self._purge()
            self._conn.execute(
                """
                INSERT INTO side_kv (key, text_value, expires_at) VALUES (?, '', ?)
                ON CONFLICT(key) DO UPDATE SET expires_at = excluded.expires_at
                """,
                (buffer_key(analysis_id), time.time() + ttl),
            )
            self._conn.commit()

    def append_buffer(self, analysis_id: str, text: str) -> None:
        if not text.endswith("\n"):
            text += "\n"
        with self._lock:
            self._purge()
            self._conn.execute(
                """
                INSERT INTO side_kv (key, text_value, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    text_value = COALESCE(text_value, '') || excluded.text_value,
                    expires_at = excluded.expires_at
                """,
                (buffer_key(analysis_id), text, time.time() + self.default_ttl),
            )
            self._conn.commit()

    def read_buffer(self, analysis_id: str) -> str:
        with self._lock:
            self._purge()
            row = self._conn.execute(
                "SELECT text_value FROM side_kv WHERE key=?", (buffer_key(analysis_id),)
            ).fetchone()
        return (row[0] or "") if row else ""

    def init_counter(self, analysis_id: str, ttl: int = DEFAULT_TTL_SECONDS) -> None:
        with self._lock:
            self._purge()
            self._conn.execute(
                "INSERT INTO side_kv (key, int_value, expires_at) VALUES (?, 0, ?) ON CONFLICT(key) DO NOTHING",
                (counter_key(analysis_id), time.time() + ttl),
            )
            self._conn.commit()

    def increment(self, analysis_id: str, amount: int = 1) -> int:
        key = counter_key(analysis_id)
        with self._lock:
            self._purge()
            self._conn.execute(
                """
                INSERT INTO side_kv (key, int_value, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET int_value = COALESCE(int_value, 0) + excluded.int_value
                """,
                (key, amount, time.time() + self.default_ttl),
            )
            row = self._conn.execute("SELECT int_value FROM side_kv WHERE key=?", (key,)).fetchone()
            self._conn.commit()
        return row[0]

    def pop_counter(self, analysis_id: str) -> int:
        key = counter_key(analysis_id)
        with self._lock:
            self._purge()
            row = self._conn.execute("SELECT int_value FROM side_kv WHERE key=?", (key,)).fetchone()
            self._conn.execute("DELETE FROM side_kv WHERE key=?", (key,))
            self._conn.commit()
        return (row[0] or 0) if row else 0

    def clear(self, analysis_id: str) -> None:
        with self._lock:
            self._conn.execute(
                "DELETE FROM side_kv WHERE key IN (?, ?)",
                (buffer_key(analysis_id), counter_key(analysis_id)),
            )
            self._conn.commit()

    def close(self) -> None:
        self._conn.close()
