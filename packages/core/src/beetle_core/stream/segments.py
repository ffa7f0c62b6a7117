"""Split the lines of one agent response span into typed segments."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class SegmentKind(str, Enum):
    TEXT = "text"
    ISSUE = "issue"
    PATCH = "patch"
    WARNING = "warning"
    FILE_STATUS = "file_status"


class CaptureState(str, Enum):
    IDLE = "idle"
    IN_ISSUE = "in_issue"
    IN_PATCH = "in_patch"
    IN_WARNING = "in_warning"
    IN_FILE_STATUS = "in_file_status"


@dataclass(frozen=True)
class Segment:
    kind: SegmentKind
    content: str

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict) -> "Segment":
        return cls(kind=SegmentKind(data["kind"]), content=data["content"])


# (capture state, segment kind, start marker, end marker)
_CAPTURES = (
    (CaptureState.IN_ISSUE, SegmentKind.ISSUE, "[GITHUB_ISSUE_START]", "[GITHUB_ISSUE_END]"),
    (CaptureState.IN_PATCH, SegmentKind.PATCH, "[PATCH_START]", "[PATCH_END]"),
    (CaptureState.IN_WARNING, SegmentKind.WARNING, "[WARNING_START]", "[WARNING_END]"),
    (CaptureState.IN_FILE_STATUS, SegmentKind.FILE_STATUS, "[FILE_STATUS]", "[FILE_STATUS_END]"),
)
_KIND_FOR_STATE = {state: kind for state, kind, _, _ in _CAPTURES}


def match_start(line: str) -> CaptureState | None:
    """Return the capture a line opens, or None."""
    for state, _, start, _ in _CAPTURES:
        if start in line:
            return state
    return None


def match_end(line: str) -> CaptureState | None:
    """Return the capture a line closes, or None."""
    for state, _, _, end in _CAPTURES:
        if end in line:
            return state
    return None


class SegmentBuilder:
    """Incremental segment builder.

    Lines are pushed one at a time; each push returns the segments it
    completed. Only one capture can be open at a time. A start marker seen
    while another capture is open force-closes the previous capture, emitting
    whatever it accumulated, so content never bleeds between segments. An end
    marker that does not match the open capture is ignored.
    """

    def __init__(
        self,
        state: CaptureState = CaptureState.IDLE,
        text_lines: list[str] | None = None,
        capture_lines: list[str] | None = None,
    ):
        self.state = state
        self.text_lines: list[str] = list(text_lines or [])
        self.capture_lines: list[str] = list(capture_lines or [])

    @property
    def capturing(self) -> bool:
        return self.state is not CaptureState.IDLE

    def push(self, line: str) -> list[Segment]:
        ended = match_end(line)
        if ended is not None:
            if ended is self.state:
                return [self._close_capture()]
            logger.debug("Ignoring unmatched end marker %r while %s", line, self.state.value)
            return []

        started = match_start(line)
        if started is not None:
            completed = self._flush_text()
            if self.capturing:
                logger.warning(
                    "Start marker %r arrived while %s was open; closing the open capture",
                    line,
                    self.state.value,
                )
                completed.append(self._close_capture())
            self.state = started
            self.capture_lines = []
            return completed

        if self.capturing:
            self.capture_lines.append(line)
        else:
            self.text_lines.append(line)
        return []

    def flush(self) -> list[Segment]:
        """End of input: emit any open capture and the pending text."""
        completed: list[Segment] = []
        if self.capturing:
            logger.debug("Flushing unterminated %s capture", self.state.value)
            completed.append(self._close_capture())
        completed.extend(self._flush_text())
        return completed

    def _close_capture(self) -> Segment:
        segment = Segment(_KIND_FOR_STATE[self.state], "\n".join(self.capture_lines))
        self.state = CaptureState.IDLE
        self.capture_lines = []
        return segment

    def _flush_text(self) -> list[Segment]:
        if not self.text_lines:
            return []
        segment = Segment(SegmentKind.TEXT, "\n".join(self.text_lines))
        self.text_lines = []
        return [segment]

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "text_lines": list(self.text_lines),
            "capture_lines": list(self.capture_lines),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SegmentBuilder":
        return cls(
            state=CaptureState(data.get("state", CaptureState.IDLE.value)),
            text_lines=data.get("text_lines"),
            capture_lines=data.get("capture_lines"),
        )


def build_segments(lines: list[str]) -> list[Segment]:
    """Segment a complete span in one pass."""
    builder = SegmentBuilder()
    segments: list[Segment] = []
    for line in lines:
        segments.extend(builder.push(line))
    segments.extend(builder.flush())
    return segments
