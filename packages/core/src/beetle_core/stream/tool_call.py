"""Normalizer for tool-call lines emitted by the analysis agent.

The agent logs each tool invocation as a bracketed type followed by a Python
repr of its arguments or result, e.g.::

    [READ_FILE] {'file_path': 'src/app.ts', 'ok': True}

Python reprs are not JSON: they use single quotes, True/False/None, and the
values are often source snippets carrying their own quotes. The payload is
re-tokenised into strict JSON before parsing. Anything that still does not
parse (progress strings such as "Scanning repository...") is passed through
verbatim.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

_TYPE_RE = re.compile(r"\[(.*?)\]")
_PAYLOAD_RE = re.compile(r"\] (.*)$", re.DOTALL)

_PY_LITERALS = {"True": "true", "False": "false", "None": "null"}
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"'}
# A quote only terminates a string literal when the next non-blank
# character is structural. Quotes inside code snippets are kept.
_STRUCTURAL = ",:}]"


@dataclass(frozen=True)
class ToolCall:
    type: str
    result: Any


def parse_tool_call(line: str) -> ToolCall | None:
    """Parse a ``[TYPE] payload`` line into a ToolCall.

    Returns None when the line has no bracketed type. Never raises: internal
    failures are logged and reported as ``ToolCall(type, None)``.
    """
    type_match = _TYPE_RE.search(line)
    if not type_match:
        return None
    tool_type = type_match.group(1)

    try:
        payload_match = _PAYLOAD_RE.search(line)
        if not payload_match:
            return ToolCall(tool_type, None)
        payload = payload_match.group(1).strip()
        if not payload:
            return ToolCall(tool_type, None)
        if payload == "[]":
            return ToolCall(tool_type, [])

        try:
            return ToolCall(tool_type, json.loads(normalize_literal(payload)))
        except json.JSONDecodeError:
            # Descriptive progress text rather than a literal.
            return ToolCall(tool_type, payload)
    except Exception as e:
        logger.error("Failed to parse tool call line %r: %s", line[:200], e)
        return ToolCall(tool_type, None)


def normalize_literal(text: str) -> str:
    """Rewrite a Python-style literal into JSON text.

    String literals (either quote style) are re-emitted with json.dumps so
    embedded quotes are escaped; bare True/False/None become JSON tokens.
    Everything else is copied through unchanged.
    """
    out: list[str] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in ("'", '"'):
            value, i = _read_string(text, i)
            out.append(json.dumps(value))
            continue
        if ch.isalpha() or ch == "_":
            j = i
            while j < n and (text[j].isalnum() or text[j] == "_"):
                j += 1
            word = text[i:j]
            out.append(_PY_LITERALS.get(word, word))
            i = j
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _read_string(text: str, start: int) -> tuple[str, int]:
    quote = text[start]
    chars: list[str] = []
    i = start + 1
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\" and i + 1 < n:
            nxt = text[i + 1]
            chars.append(_ESCAPES.get(nxt, "\\" + nxt))
            i += 2
            continue
        if ch == quote and _at_boundary(text, i + 1):
            return "".join(chars), i + 1
        chars.append(ch)
        i += 1
    # Unterminated literal: keep what we have.
    return "".join(chars), n


def _at_boundary(text: str, pos: int) -> bool:
    while pos < len(text) and text[pos].isspace():
        pos += 1
    return pos >= len(text) or text[pos] in _STRUCTURAL
