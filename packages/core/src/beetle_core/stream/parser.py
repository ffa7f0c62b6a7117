"""Incremental parser for the analysis agent's output stream.

The agent writes a plain-text log to stdout. Most lines are progress records
(``INFO``, ``TOOL_CALL``, ``INITIALISATION``); model output is wrapped in
``LLM_RESPONSE - [LLM RESPONSE START]`` / ``LLM_RESPONSE - [LLM RESPONSE END]``
and may contain marker-delimited issue, patch, warning and file-status blocks.

Chunks arrive with arbitrary boundaries. The parser holds back the trailing
partial line, so feeding a payload in one chunk or many yields the same
records and segments. All mutable state lives in ParserState, which can be
serialised and handed to a fresh parser to resume mid-stream.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum

from beetle_core.stream.segments import Segment, SegmentBuilder, match_start
from beetle_core.stream.tool_call import ToolCall, parse_tool_call

logger = logging.getLogger(__name__)

SPAN_START_MARKER = "LLM_RESPONSE - [LLM RESPONSE START]"
SPAN_END_MARKER = "LLM_RESPONSE - [LLM RESPONSE END]"

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")
_INIT_PREFIX_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2} - \S+ - INITIALISATION -\s*")


class LogKind(str, Enum):
    INFO = "INFO"
    TOOL_CALL = "TOOL_CALL"
    INITIALISATION = "INITIALISATION"
    LLM_RESPONSE = "LLM_RESPONSE"
    DEFAULT = "DEFAULT"


# Checked in order; first match wins.
_CLASSIFIERS = (
    (LogKind.INFO, re.compile(r"\bINFO\b")),
    (LogKind.TOOL_CALL, re.compile(r"\bTOOL_CALL\b")),
    (LogKind.INITIALISATION, re.compile(r"\bINITIALISATION\b")),
)


def classify(line: str) -> LogKind:
    for kind, pattern in _CLASSIFIERS:
        if pattern.search(line):
            return kind
    return LogKind.DEFAULT


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


@dataclass
class LogRecord:
    kind: LogKind
    lines: list[str] = field(default_factory=list)
    segments: list[Segment] = field(default_factory=list)

    def tool_calls(self) -> list[ToolCall]:
        """Normalised tool calls for a TOOL_CALL record; empty for other kinds."""
        if self.kind is not LogKind.TOOL_CALL:
            return []
        calls = []
        for line in self.lines:
            call = parse_tool_call(line)
            if call is not None:
                calls.append(call)
        return calls

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "lines": list(self.lines),
            "segments": [s.to_dict() for s in self.segments],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LogRecord":
        return cls(
            kind=LogKind(data["kind"]),
            lines=list(data.get("lines", [])),
            segments=[Segment.from_dict(s) for s in data.get("segments", [])],
        )


@dataclass
class ParserState:
    partial: str = ""
    capturing_llm: bool = False
    # Span opened by a block marker without the outer response wrapper.
    implicit_span: bool = False
    span_lines: list[str] = field(default_factory=list)
    span_segments: list[Segment] = field(default_factory=list)
    last_captured: str | None = None
    builder: SegmentBuilder = field(default_factory=SegmentBuilder)

    def open_span(self, implicit: bool) -> None:
        self.capturing_llm = True
        self.implicit_span = implicit
        self.span_lines = []
        self.span_segments = []
        self.last_captured = None
        self.builder = SegmentBuilder()

    def reset_span(self) -> None:
        self.capturing_llm = False
        self.implicit_span = False
        self.span_lines = []
        self.span_segments = []
        self.last_captured = None
        self.builder = SegmentBuilder()

    def to_dict(self) -> dict:
        return {
            "partial": self.partial,
            "capturing_llm": self.capturing_llm,
            "implicit_span": self.implicit_span,
            "span_lines": list(self.span_lines),
            "span_segments": [s.to_dict() for s in self.span_segments],
            "last_captured": self.last_captured,
            "builder": self.builder.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ParserState":
        return cls(
            partial=data.get("partial", ""),
            capturing_llm=data.get("capturing_llm", False),
            implicit_span=data.get("implicit_span", False),
            span_lines=list(data.get("span_lines", [])),
            span_segments=[Segment.from_dict(s) for s in data.get("span_segments", [])],
            last_captured=data.get("last_captured"),
            builder=SegmentBuilder.from_dict(data.get("builder", {})),
        )


class StreamParser:
    """Turns raw output chunks into LogRecords and completed Segments.

    ``records`` accumulates every record seen so far. ``feed`` and ``finish``
    return only the segments completed by that call, in emission order, which
    is what the delivery engine consumes.
    """

    def __init__(self, state: ParserState | None = None, records: list[LogRecord] | None = None):
        self.state = state if state is not None else ParserState()
        self.records: list[LogRecord] = records if records is not None else []

    def feed(self, chunk: str) -> list[Segment]:
        if not chunk:
            return []
        lines = (self.state.partial + chunk).split("\n")
        self.state.partial = lines.pop()
        completed: list[Segment] = []
        for line in lines:
            completed.extend(self._process_line(line))
        return completed

    def finish(self, flush_as_text: bool = True) -> list[Segment]:
        """Process the held-back partial line at end of stream.

        With ``flush_as_text`` an unterminated span is closed and whatever it
        captured is emitted. Otherwise the span stays open in ``state``.
        """
        completed: list[Segment] = []
        if self.state.partial:
            line, self.state.partial = self.state.partial, ""
            completed.extend(self._process_line(line))
        if flush_as_text and self.state.capturing_llm:
            logger.info("Stream ended inside an unterminated response span; flushing partial content")
            completed.extend(self._close_span())
        return completed

    def segments(self) -> list[Segment]:
        return [s for record in self.records for s in record.segments]

    def _process_line(self, raw: str) -> list[Segment]:
        line = raw.strip()
        if not line:
            return []

        if SPAN_START_MARKER in line:
            completed = self._close_span() if self.state.capturing_llm else []
            self.state.open_span(implicit=False)
            return completed

        if SPAN_END_MARKER in line:
            if not self.state.capturing_llm:
                logger.debug("Ignoring response end marker outside of a span")
                return []
            return self._close_span()

        # Inside a span indentation is kept; suggestion code depends on it.
        if self.state.capturing_llm:
            return self._capture(raw.rstrip())

        kind = classify(line)
        if kind is LogKind.DEFAULT and match_start(line) is not None:
            self.state.open_span(implicit=True)
            return self._capture(raw.rstrip())

        if kind is LogKind.INITIALISATION:
            line = _INIT_PREFIX_RE.sub("", line)
        self._append(kind, line)
        return []

    def _capture(self, line: str) -> list[Segment]:
        state = self.state
        if line == state.last_captured:
            return []
        state.last_captured = line
        state.span_lines.append(line)

        was_capturing = state.builder.capturing
        completed = state.builder.push(line)
        state.span_segments.extend(completed)

        if state.implicit_span and was_capturing and not state.builder.capturing:
            completed = completed + self._close_span()
        return completed

    def _close_span(self) -> list[Segment]:
        state = self.state
        completed = state.builder.flush()
        state.span_segments.extend(completed)
        if state.span_lines:
            last = self.records[-1] if self.records else None
            if last is not None and last.kind is LogKind.LLM_RESPONSE:
                last.lines.extend(state.span_lines)
                last.segments.extend(state.span_segments)
            else:
                self.records.append(
                    LogRecord(LogKind.LLM_RESPONSE, list(state.span_lines), list(state.span_segments))
                )
        state.reset_span()
        return completed

    def _append(self, kind: LogKind, line: str) -> None:
        last = self.records[-1] if self.records else None
        if last is not None and last.kind is kind:
            if not last.lines or last.lines[-1] != line:
                last.lines.append(line)
            return
        self.records.append(LogRecord(kind, [line]))


def parse_full_log_text(text: str, flush_as_text: bool = True) -> list[LogRecord]:
    """Replay a persisted log through the streaming parser."""
    parser = StreamParser()
    parser.feed(strip_ansi(text))
    parser.finish(flush_as_text=flush_as_text)
    return parser.records
