"""Extract structured metadata from issue and patch segments.

Agent blocks carry their metadata as labelled lines, e.g.::

    **File**: `src/db.ts`
    **Line_Start**: 10
    **Line_End**: 12
    **Severity**: High

followed by an optional fenced ``suggestion`` block with the replacement
code. A block without a file and a start line is informational only.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import IntEnum

logger = logging.getLogger(__name__)


class Severity(IntEnum):
    MEDIUM = 1
    HIGH = 2
    CRITICAL = 3

    @classmethod
    def parse(cls, token: str | None) -> "Severity | None":
        """Case-insensitive lookup; anything outside the known set is None."""
        if not token:
            return None
        word = re.search(r"[A-Za-z]+", token)
        if not word:
            return None
        return cls.__members__.get(word.group(0).upper())


# Minimum severity level a suggestion needs at each threshold.
# Threshold 2 means "critical only": HIGH does not pass it.
_MIN_LEVEL = {0: 0, 1: int(Severity.MEDIUM), 2: int(Severity.CRITICAL)}


def should_post(threshold: int, severity: Severity | str | None) -> bool:
    """Return True if a suggestion of this severity passes the threshold.

    A suggestion without a severity is always posted.
    """
    if isinstance(severity, str):
        severity = Severity.parse(severity)
    if severity is None:
        return True
    if threshold not in _MIN_LEVEL:
        logger.warning("Unknown severity threshold %r; posting everything", threshold)
    return int(severity) >= _MIN_LEVEL.get(threshold, 0)


@dataclass(frozen=True)
class ParsedSuggestion:
    file_path: str
    line_start: int
    line_end: int | None = None
    replacement_code: str | None = None
    severity: Severity | None = None
    confidence: str | None = None
    raw_content: str = ""

    @property
    def is_multiline(self) -> bool:
        return self.line_end is not None and self.line_end != self.line_start


def _label(name: str) -> re.Pattern:
    # Matches "**Name**:", "**Name:**" and a bare "Name:" at the start of a line.
    return re.compile(rf"^[ \t]*(?:[-*][ \t]+)?\**{name}\**:\**[ \t]*(.*?)[ \t]*$", re.MULTILINE | re.IGNORECASE)


_FILE_RE = _label("File")
_LINE_START_RE = _label("Line_Start")
_LINE_END_RE = _label("Line_End")
_SEVERITY_RE = _label("Severity")
_CONFIDENCE_RE = _label("Confidence")
_LINE_RANGE_RE = _label("Line_Range")
_LINE_RE = _label("Line")
_LANGUAGE_RE = _label("Language")
_TYPE_RE = _label("Type")

_SUGGESTION_FENCE_RE = re.compile(r"```suggestion[^\n]*\n([\s\S]*?)\n[ \t]*```")
_ANY_FENCE_RE = re.compile(r"```[^\n]*\n([\s\S]*?)\n[ \t]*```")
_INT_RE = re.compile(r"\d+")


def _field(pattern: re.Pattern, content: str) -> str | None:
    match = pattern.search(content)
    if not match:
        return None
    value = match.group(1).strip().strip("`").strip()
    return value or None


def _int_field(pattern: re.Pattern, content: str) -> int | None:
    value = _field(pattern, content)
    if value is None:
        return None
    number = _INT_RE.search(value)
    return int(number.group(0)) if number else None


def extract_replacement_code(content: str) -> str | None:
    """Code from the first ``suggestion`` fence, else from the first fence."""
    match = _SUGGESTION_FENCE_RE.search(content) or _ANY_FENCE_RE.search(content)
    if not match:
        return None
    return match.group(1).strip("\n")


def parse_suggestion(content: str) -> ParsedSuggestion | None:
    """Parse an issue or patch segment into a ParsedSuggestion.

    Returns None when the file path or start line is missing. Never raises.
    """
    try:
        file_path = _field(_FILE_RE, content)
        line_start = _int_field(_LINE_START_RE, content)
        if not file_path or line_start is None:
            return None
        return ParsedSuggestion(
            file_path=file_path,
            line_start=line_start,
            line_end=_int_field(_LINE_END_RE, content),
            replacement_code=extract_replacement_code(content),
            severity=Severity.parse(_field(_SEVERITY_RE, content)),
            confidence=_field(_CONFIDENCE_RE, content),
            raw_content=content,
        )
    except Exception as e:
        logger.error("Failed to parse suggestion segment: %s", e)
        return None


# ---------------------------------------------------------------------------
# Informational extractors used when rendering logs
# ---------------------------------------------------------------------------


@dataclass
class IssueDetails:
    title: str = ""
    issue_id: str = ""
    description: str = ""


@dataclass
class PatchDetails:
    file: str | None = None
    line_range: str | None = None
    issue: str | None = None
    language: str | None = None
    before: str | None = None
    after: str | None = None
    explanation: str | None = None
    issue_id: str | None = None
    patch_id: str | None = None


@dataclass
class WarningDetails:
    file: str | None = None
    line: str | None = None
    type: str | None = None
    language: str | None = None
    warning: str | None = None
    current_code: str | None = None
    suggestion: str | None = None
    example_fix: str | None = None
    why_this_matters: str | None = None


def _section(content: str, pattern: str) -> str | None:
    match = re.search(pattern, content)
    if not match:
        return None
    return match.group(1).strip() or None


def parse_issue(content: str) -> IssueDetails:
    lines = content.split("\n")
    title_line = next((line for line in lines if line.startswith("# ")), None)
    id_line = next((line for line in lines if line.startswith("ISSUE_ID:")), None)
    description = "\n".join(line for line in lines if line not in (title_line, id_line)).strip()
    return IssueDetails(
        title=title_line[2:].strip() if title_line else "",
        issue_id=id_line[len("ISSUE_ID:") :].strip() if id_line else "",
        description=description,
    )


def parse_patch(content: str) -> PatchDetails:
    return PatchDetails(
        file=_field(_FILE_RE, content),
        line_range=_field(_LINE_RANGE_RE, content),
        issue=_section(content, r"\*\*Issue:?\*\*:?\s*([\s\S]*?)(?=\*\*Language|\n###|$)"),
        language=_field(_LANGUAGE_RE, content),
        before=_section(content, r"### Before[^\n]*\n([\s\S]*?)\n### After"),
        after=_section(content, r"### After[^\n]*\n([\s\S]*?)\n### Explanation"),
        explanation=_section(content, r"### Explanation\s*([\s\S]*)"),
        issue_id=_section(content, r"(?m)^ISSUE_ID:[ \t]*(.*)$"),
        patch_id=_section(content, r"(?m)^PATCH_ID:[ \t]*(.*)$"),
    )


def parse_warning(content: str) -> WarningDetails:
    return WarningDetails(
        file=_field(_FILE_RE, content),
        line=_field(_LINE_RE, content),
        type=_field(_TYPE_RE, content),
        language=_field(_LANGUAGE_RE, content),
        warning=_section(content, r"### Warning\s*([\s\S]*?)(?=### Current Code|$)"),
        current_code=_section(content, r"### Current Code\s*([\s\S]*?)\n### Suggestion"),
        suggestion=_section(content, r"### Suggestion\s*([\s\S]*?)(?=### Example Fix|$)"),
        example_fix=_section(content, r"### Example Fix\s*([\s\S]*?)\n### Why This Matters"),
        why_this_matters=_section(content, r"### Why This Matters\s*([\s\S]*)"),
    )
