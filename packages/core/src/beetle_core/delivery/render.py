"""Turn an agent suggestion block into a GitHub review comment body."""

from __future__ import annotations

import re

from beetle_core.delivery.suggestions import ParsedSuggestion

_PROBLEM_RE = re.compile(r"(### Problem[\s\S]*)")
_METADATA_RE = re.compile(
    r"^[ \t]*(?:\**(?:File|Line_Start|Line_End|Severity|Confidence)\**:\**.*|##\s*\[.*?\]:.*)$",
    re.MULTILINE,
)
_FENCE_RE = re.compile(r"```[\s\S]*?```")
_LINE_NUMBER_RE = re.compile(r"^[ \t]*\d+\| ?", re.MULTILINE)
_SUGGESTION_BLOCK_RE = re.compile(r"```suggestion[^\n]*\n[\s\S]*?\n[ \t]*```")
_SUMMARY_GAP_RE = re.compile(r"(</summary>)\s*(```|\|)")
_BLANK_RUN_RE = re.compile(r"\n\s*\n\s*\n")


def strip_line_numbers(code: str) -> str:
    return _LINE_NUMBER_RE.sub("", code)


def _space_tables(text: str) -> str:
    """Insert a blank line before a markdown table that follows a text line."""
    out: list[str] = []
    in_fence = False
    prev = ""
    for line in text.split("\n"):
        stripped = line.lstrip()
        if stripped.startswith("```"):
            in_fence = not in_fence
        elif not in_fence and stripped.startswith("|"):
            prev_stripped = prev.strip()
            if prev_stripped and not prev_stripped.startswith("|"):
                out.append("")
        out.append(line)
        prev = line
    return "\n".join(out)


def render_comment_body(suggestion: ParsedSuggestion) -> str:
    """Build the review comment body for a suggestion.

    Internal metadata is removed, ``N|`` line annotations are stripped from
    code blocks, and the suggestion block is rewritten with the cleaned
    replacement code. Multi-line suggestions get a line-range note.
    """
    content = suggestion.raw_content
    problem = _PROBLEM_RE.search(content)
    body = problem.group(1) if problem else content

    body = _METADATA_RE.sub("", body)
    body = _FENCE_RE.sub(lambda m: strip_line_numbers(m.group(0)), body)

    if suggestion.replacement_code:
        code = strip_line_numbers(suggestion.replacement_code).strip("\n")
        # Function replacement so backslashes in code are not treated as group references.
        body = _SUGGESTION_BLOCK_RE.sub(lambda _: f"```suggestion\n{code}\n```", body, count=1)

    body = _SUMMARY_GAP_RE.sub(r"\1\n\n\2", body)
    body = _space_tables(body)
    body = _BLANK_RUN_RE.sub("\n\n", body).strip()

    if suggestion.is_multiline:
        body += f"\n\n*📍 This suggestion applies to lines {suggestion.line_start}-{suggestion.line_end}*"
    return body
