"""Abstract store interfaces.

Two stores back an analysis. The durable store keeps one AnalysisRecord per
run. The side store holds short-lived per-run state: the raw output buffer
that lets a reconnecting client catch up, and the posted-comment counter.
Side-store keys always expire, so an abandoned run cannot leak storage.

Callers depend on these interfaces, not on a concrete backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from beetle_store.models import AnalysisRecord, AnalysisStatus, AnalysisType

DEFAULT_TTL_SECONDS = 4 * 60 * 60


def buffer_key(analysis_id: str) -> str:
    return f"analysis:{analysis_id}:buffer"


def counter_key(analysis_id: str) -> str:
    return f"analysis:{analysis_id}:comments_count"


class BaseStore(ABC):
    """Durable persistence for analysis records."""

    @abstractmethod
    def create(self, record: AnalysisRecord) -> None:
        """Persist a new record. Raises ValueError if the id already exists."""

    @abstractmethod
    def get(self, analysis_id: str) -> AnalysisRecord | None:
        """Return the record, or None if it does not exist."""

    @abstractmethod
    def update(self, analysis_id: str, **fields) -> AnalysisRecord:
        """Apply field changes and bump ``updated_at``. Raises KeyError if missing."""

    @abstractmethod
    def update_if_status(self, analysis_id: str, expected: AnalysisStatus, **fields) -> AnalysisRecord | None:
        """Like ``update``, but only while the record is in ``expected``.

        The check and the write are one atomic step. Returns None, leaving
        the record untouched, when its status has moved on.
        """

    @abstractmethod
    def list_analyses(self, repo: str, analysis_type: AnalysisType | None = None) -> list[AnalysisRecord]:
        """Return records for a repo, oldest first. Never raises for an unknown repo."""

    @abstractmethod
    def count_since(self, repo: str, analysis_type: AnalysisType, since_iso: str) -> int:
        """Count records of a type created at or after ``since_iso``."""

    def close(self) -> None:
        """Release any resources held by the store.

        Default is a no-op so callers can always call close() safely.
        """


class BaseSideStore(ABC):
    """Expiring counters and append-only text buffers keyed by analysis id."""

    @abstractmethod
    def init_buffer(self, analysis_id: str, ttl: int = DEFAULT_TTL_SECONDS) -> None:
        """Create the buffer if absent and (re)set its expiry."""

    @abstractmethod
    def append_buffer(self, analysis_id: str, text: str) -> None:
        """Append text, always terminated by a newline."""

    @abstractmethod
    def read_buffer(self, analysis_id: str) -> str:
        """Return the buffer contents, or "" when absent or expired."""

    @abstractmethod
    def init_counter(self, analysis_id: str, ttl: int = DEFAULT_TTL_SECONDS) -> None:
        """Create the counter at zero only if it does not exist yet."""

    @abstractmethod
    def increment(self, analysis_id: str, amount: int = 1) -> int:
        """Atomically add ``amount`` and return the new value."""

    @abstractmethod
    def pop_counter(self, analysis_id: str) -> int:
        """Return the counter value (0 if absent) and delete it."""

    @abstractmethod
    def clear(self, analysis_id: str) -> None:
        """Delete the buffer and counter."""

    def close(self) -> None:
        """Release any resources held by the store."""
