"""In-memory backends, used by tests and one-shot CLI runs (`store: memory`)."""

from __future__ import annotations

import dataclasses
import threading
import time

from beetle_store.base import DEFAULT_TTL_SECONDS, BaseSideStore, BaseStore, buffer_key, counter_key
from beetle_store.models import AnalysisRecord, AnalysisStatus, AnalysisType, utcnow_iso


class MemoryStore(BaseStore):
    def __init__(self):
        self._records: dict[str, AnalysisRecord] = {}
        self._lock = threading.Lock()

    def create(self, record: AnalysisRecord) -> None:
        with self._lock:
            if record.id in self._records:
                raise ValueError(f"Analysis {record.id!r} already exists.")
            self._records[record.id] = dataclasses.replace(record)

    def get(self, analysis_id: str) -> AnalysisRecord | None:
        with self._lock:
            record = self._records.get(analysis_id)
            return dataclasses.replace(record) if record else None

    def update(self, analysis_id: str, **fields) -> AnalysisRecord:
        with self._lock:
            if analysis_id not in self._records:
                raise KeyError(analysis_id)
            record = dataclasses.replace(self._records[analysis_id], **fields, updated_at=utcnow_iso())
            self._records[analysis_id] = record
            return dataclasses.replace(record)

    def update_if_status(self, analysis_id: str, expected: AnalysisStatus, **fields) -> AnalysisRecord | None:
        with self._lock:
            if analysis_id not in self._records:
                raise KeyError(analysis_id)
            if self._records[analysis_id].status is not expected:
                return None
            record = dataclasses.replace(self._records[analysis_id], **fields, updated_at=utcnow_iso())
            self._records[analysis_id] = record
            return dataclasses.replace(record)

    def list_analyses(self, repo: str, analysis_type: AnalysisType | None = None) -> list[AnalysisRecord]:
        with self._lock:
            records = [
                dataclasses.replace(r)
                for r in self._records.values()
                if r.repo == repo and (analysis_type is None or r.type is analysis_type)
            ]
        return sorted(records, key=lambda r: r.created_at)

    def count_since(self, repo: str, analysis_type: AnalysisType, since_iso: str) -> int:
        with self._lock:
            return sum(
                1
                for r in self._records.values()
                if r.repo == repo and r.type is analysis_type and r.created_at >= since_iso
            )


class MemorySideStore(BaseSideStore):
    """Side store kept in a dict of ``key -> (value, expires_at)``."""

    def __init__(self, default_ttl: int = DEFAULT_TTL_SECONDS):
        self.default_ttl = default_ttl
        self._data: dict[str, tuple[object, float]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str):
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[1] <= time.monotonic():
            del self._data[key]
            return None
        return entry

    def init_buffer(self, analysis_id: str, ttl: int = DEFAULT_TTL_SECONDS) -> None:
        key = buffer_key(analysis_id)
        with self._lock:
            entry = self._live(key)
            self._data[key] = (entry[0] if entry else "", time.monotonic() + ttl)

    def append_buffer(self, analysis_id: str, text: str) -> None:
        if not text.endswith("\n"):
            text += "\n"
        key = buffer_key(analysis_id)
        with self._lock:
            entry = self._live(key)
            self._data[key] = ((entry[0] if entry else "") + text, time.monotonic() + self.default_ttl)

    def read_buffer(self, analysis_id: str) -> str:
        with self._lock:
            entry = self._live(buffer_key(analysis_id))
            return entry[0] if entry else ""

    def init_counter(self, analysis_id: str, ttl: int = DEFAULT_TTL_SECONDS) -> None:
        key = counter_key(analysis_id)
        with self._lock:
            if self._live(key) is None:
                self._data[key] = (0, time.monotonic() + ttl)

    def increment(self, analysis_id: str, amount: int = 1) -> int:
        key = counter_key(analysis_id)
        with self._lock:
            entry = self._live(key)
            if entry is None:
                entry = (0, time.monotonic() + self.default_ttl)
            value = entry[0] + amount
            self._data[key] = (value, entry[1])
            return value

    def pop_counter(self, analysis_id: str) -> int:
        key = counter_key(analysis_id)
        with self._lock:
            entry = self._live(key)
            self._data.pop(key, None)
            return entry[0] if entry else 0

    def clear(self, analysis_id: str) -> None:
        with self._lock:
            self._data.pop(buffer_key(analysis_id), None)
            self._data.pop(counter_key(analysis_id), None)
