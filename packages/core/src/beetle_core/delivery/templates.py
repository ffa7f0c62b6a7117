"""Bodies for the run-level status comment and error comment.

Every status comment carries STATUS_MARKER so a later run (or a restarted
engine) can find and update it instead of creating another one.
"""

from __future__ import annotations

STATUS_MARKER = "<!-- beetle-status -->"
SHA_MARKER = "<!-- beetle-sha: {sha} -->"

_MAX_LISTED_FILES = 25


def _commit_line(commit) -> str:
    message = (commit.commit.message or "").strip().splitlines()
    subject = message[0] if message else ""
    return f"- `{commit.sha[:7]}` {subject}"


def _file_list(paths: list[str]) -> list[str]:
    lines = [f"- `{p}`" for p in paths[:_MAX_LISTED_FILES]]
    if len(paths) > _MAX_LISTED_FILES:
        lines.append(f"- _…and {len(paths) - _MAX_LISTED_FILES} more_")
    return lines


def started_comment(commits: list, files: list[str], ignored_files: list[str], head_sha: str | None = None) -> str:
    lines = [
        STATUS_MARKER,
        "## 🪲 Beetle is reviewing this pull request",
        "",
        f"Analyzing **{len(commits)}** new commit(s) across **{len(files)}** file(s). "
        "Suggestions will appear inline as they are found.",
    ]
    if commits:
        lines += ["", "<details>", "<summary>Commits</summary>", ""]
        lines += [_commit_line(c) for c in commits]
        lines += ["", "</details>"]
    if files:
        lines += ["", "<details>", "<summary>Files under review</summary>", ""]
        lines += _file_list(files)
        lines += ["", "</details>"]
    if ignored_files:
        lines += ["", "<details>", "<summary>Ignored files (binary, media or no diff)</summary>", ""]
        lines += _file_list(ignored_files)
        lines += ["", "</details>"]
    if head_sha:
        lines += ["", SHA_MARKER.format(sha=head_sha)]
    return "\n".join(lines)


def daily_limit_comment(message: str) -> str:
    return "\n".join([STATUS_MARKER, "## ⏳ Beetle analysis limit reached", "", message])


def bot_skipped_comment() -> str:
    return "\n".join(
        [
            STATUS_MARKER,
            "## 🤖 Beetle skipped this pull request",
            "",
            "This pull request was authored by a bot, so it was not reviewed automatically.",
            "Comment `@beetle-ai review` to request a review anyway.",
        ]
    )


def summary_comment(content: str) -> str:
    return f"{STATUS_MARKER}\n{content}"


def analysis_error_comment(error: str) -> str:
    return (
        "❌ **Beetle Analysis Error**\n\n"
        "I encountered an error while analyzing this pull request:\n\n"
        f"```\n{error}\n```\n\n"
        "Please try again or contact support if the issue persists."
    )
