"""Analysis record data models.

Decoupled from beetle_core so the store layer can be used on its own; the
lifecycle controller is the only writer of these records.
"""

from __future__ import annotations

import gzip
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_analysis_id() -> str:
    return uuid.uuid4().hex


class AnalysisType(str, Enum):
    FULL_REPO = "full_repo"
    PR = "pr"


class AnalysisStatus(str, Enum):
    DRAFT = "draft"
    RUNNING = "running"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    ERROR = "error"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self not in (AnalysisStatus.DRAFT, AnalysisStatus.RUNNING)


@dataclass
class PRMetadata:
    number: int
    url: str = ""
    title: str = ""
    head_sha: str = ""

    def to_dict(self) -> dict:
        return {"number": self.number, "url": self.url, "title": self.title, "head_sha": self.head_sha}

    @classmethod
    def from_dict(cls, data: dict) -> "PRMetadata":
        return cls(
            number=data["number"],
            url=data.get("url", ""),
            title=data.get("title", ""),
            head_sha=data.get("head_sha", ""),
        )


@dataclass
class AnalysisRecord:
    """One analysis run, full-repository or pull request."""

    id: str
    type: AnalysisType
    status: AnalysisStatus
    repo: str  # "owner/name"
    model: str = ""
    prompt: str = ""
    sandbox_ref: str = ""
    exit_code: int | None = None
    pr: PRMetadata | None = None
    comments_posted: int = 0
    logs_compressed: bytes | None = None
    compression: dict | None = None  # {"algorithm", "original_bytes", "compressed_bytes"}
    error: str | None = None
    skip_reason: str | None = None
    created_at: str = field(default_factory=utcnow_iso)  # ISO-8601 UTC timestamp
    updated_at: str = field(default_factory=utcnow_iso)


def compress_logs(text: str) -> tuple[bytes, dict]:
    raw = text.encode("utf-8")
    data = gzip.compress(raw)
    return data, {"algorithm": "gzip", "original_bytes": len(raw), "compressed_bytes": len(data)}


def decompress_logs(data: bytes | None, compression: dict | None = None) -> str:
    if not data:
        return ""
    algorithm = (compression or {}).get("algorithm", "gzip")
    if algorithm != "gzip":
        raise ValueError(f"Unsupported log compression: {algorithm!r}")
    return gzip.decompress(data).decode("utf-8", errors="replace")
