from __future__ import annotations

import logging
import re

from github import Github, GithubException

from beetle_core.delivery.templates import STATUS_MARKER

logger = logging.getLogger(__name__)

_SHA_MARKER_RE = re.compile(r"<!-- beetle-sha: ([0-9a-f]{40}) -->")
_BOT_LOGIN_RES = (
    re.compile(r"\[bot\]$", re.IGNORECASE),
    re.compile(r"^bot-", re.IGNORECASE),
    re.compile(r"-bot$", re.IGNORECASE),
)
_BOT_COAUTHOR_RE = re.compile(r"Co-authored-by:.*(\[bot\]|beetle)", re.IGNORECASE)


def get_repo(repo_name: str, token: str):
    return Github(token).get_repo(repo_name)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


def find_status_comment(pr):
    """Return the most recent issue comment carrying the status marker, or None."""
    found = None
    for comment in pr.get_issue_comments():
        if STATUS_MARKER in (comment.body or ""):
            found = comment
    return found


def get_last_analyzed_sha(pr) -> str | None:
    """Return the most recent head SHA recorded by a started comment, or None."""
    last_sha = None
    for comment in pr.get_issue_comments():
        match = _SHA_MARKER_RE.search(comment.body or "")
        if match:
            last_sha = match.group(1)
    return last_sha


def get_new_commits(pr, last_sha: str | None) -> list:
    """Commits after ``last_sha``; all commits when it is unknown or gone (force push)."""
    commits = list(pr.get_commits())
    if not last_sha:
        return commits
    for index, commit in enumerate(commits):
        if commit.sha == last_sha:
            return commits[index + 1 :]
    return commits


def get_commit_files(commits: list) -> list:
    """Files touched by each commit, in commit order."""
    files = []
    for commit in commits:
        try:
            files.extend(commit.files)
        except GithubException as e:
            logger.warning("Could not fetch files for commit %s: %s", commit.sha, e)
    return files


def is_bot_login(login: str | None, user_type: str | None = None) -> bool:
    if user_type and user_type.lower() == "bot":
        return True
    return any(pattern.search(login or "") for pattern in _BOT_LOGIN_RES)


def is_bot_commit(commit) -> bool:
    """True if a commit is authored, committed or co-authored by a bot."""
    author = getattr(commit.author, "login", None) if commit.author else None
    committer = getattr(commit.committer, "login", None) if commit.committer else None
    message = commit.commit.message or ""
    return is_bot_login(author) or is_bot_login(committer) or bool(_BOT_COAUTHOR_RE.search(message))
