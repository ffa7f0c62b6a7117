"""Deliver parsed segments to a pull request.

One DeliveryEngine serves one analysis run. It posts inline review comments
for actionable suggestions, keeps a single status comment up to date, and
drives the check run that surfaces the run's state on the head commit.

Every GitHub call is best-effort: failures are logged and reported as a
result value, never raised, so a flaky API cannot abort the stream.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from beetle_core.delivery.render import render_comment_body
from beetle_core.delivery.results import DeliveryResult, Failed, Posted, Skipped, SkipReason
from beetle_core.delivery.suggestions import parse_suggestion, should_post
from beetle_core.delivery.templates import (
    analysis_error_comment,
    bot_skipped_comment,
    daily_limit_comment,
    started_comment,
    summary_comment,
)
from beetle_core.gh.pull_request import find_status_comment, get_pull, get_repo
from beetle_core.stream.segments import Segment, SegmentKind
from beetle_core.utils.code import normalize_path

logger = logging.getLogger(__name__)

SUMMARY_PREFIX = "## Summary by"


@dataclass
class DeliveryContext:
    """Everything the engine needs to know about the pull request under analysis."""

    owner: str
    repo: str
    pr_number: int
    head_sha: str
    changed_file_paths: set[str] = field(default_factory=set)
    analysis_id: str | None = None
    severity_threshold: int = 0
    installation_ref: str | None = None

    def __post_init__(self):
        self.changed_file_paths = {normalize_path(p) for p in self.changed_file_paths if p}

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass
class DeliveryState:
    """Per-run delivery state. Not persisted; a new engine starts empty."""

    posted_hashes: set[str] = field(default_factory=set)
    status_comment_id: int | None = None
    check_run_id: int | None = None
    used_status_fallback: bool = False


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def is_summary(segment: Segment) -> bool:
    return segment.kind is SegmentKind.TEXT and segment.content.strip().startswith(SUMMARY_PREFIX)


def is_deliverable(segment: Segment) -> bool:
    """Issue and patch blocks, plus the run summary, go to the pull request."""
    return segment.kind in (SegmentKind.ISSUE, SegmentKind.PATCH) or is_summary(segment)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryEngine:
    def __init__(
        self,
        repo,
        pull,
        context: DeliveryContext,
        state: DeliveryState | None = None,
        side_store=None,
        comment_delay: float = 1.0,
        check_run_name: str = "Beetle",
        details_url: str | None = None,
    ):
        self.repo = repo
        self.pull = pull
        self.context = context
        self.state = state if state is not None else DeliveryState()
        self.side_store = side_store
        self.comment_delay = comment_delay
        self.check_run_name = check_run_name
        self.details_url = details_url
        self._head_commit = None
        self._check_run = None

    @classmethod
    def from_github(cls, token: str, context: DeliveryContext, **kwargs) -> "DeliveryEngine":
        repo = get_repo(context.full_name, token=token)
        return cls(repo, get_pull(repo, context.pr_number), context, **kwargs)

    # ------------------------------------------------------------------
    # Segment delivery
    # ------------------------------------------------------------------

    def deliver(self, segment: Segment) -> DeliveryResult:
        if is_summary(segment):
            return self._upsert_summary(segment.content)

        suggestion = parse_suggestion(segment.content)
        if suggestion is None:
            logger.warning("Segment has no file/line metadata; not posting it (%s)", segment.kind.value)
            return Skipped(SkipReason.NOT_A_SUGGESTION)

        digest = content_hash(segment.content)
        if digest in self.state.posted_hashes:
            logger.debug("Skipping duplicate suggestion for %s", suggestion.file_path)
            return Skipped(SkipReason.DUPLICATE)

        if not should_post(self.context.severity_threshold, suggestion.severity):
            logger.info(
                "Skipping %s suggestion for %s (threshold %d)",
                suggestion.severity.name if suggestion.severity else "unrated",
                suggestion.file_path,
                self.context.severity_threshold,
            )
            return Skipped(SkipReason.BELOW_SEVERITY)

        if normalize_path(suggestion.file_path) not in self.context.changed_file_paths:
            logger.warning(
                "File %s is not part of PR #%d changes; not posting", suggestion.file_path, self.context.pr_number
            )
            return Skipped(SkipReason.NOT_IN_PR)

        body = render_comment_body(suggestion)
        kwargs = {"line": suggestion.line_end or suggestion.line_start, "side": "RIGHT"}
        if suggestion.is_multiline:
            kwargs["start_line"] = suggestion.line_start
            kwargs["start_side"] = "RIGHT"

        try:
            comment = self.pull.create_review_comment(
                body, self._get_head_commit(), normalize_path(suggestion.file_path), **kwargs
            )
        except Exception as e:
            logger.warning(
                "Failed to post review comment on %s:%d in PR #%d: %s",
                suggestion.file_path,
                suggestion.line_start,
                self.context.pr_number,
                e,
            )
            return Failed(str(e))

        self.state.posted_hashes.add(digest)
        logger.info("Posted review comment on %s:%d", suggestion.file_path, suggestion.line_start)
        return Posted(getattr(comment, "id", None))

    def deliver_batch(self, segments: list[Segment]) -> int:
        """Deliver segments in order; return how many were posted.

        Waits ``comment_delay`` seconds after each successful post to stay
        under GitHub's secondary rate limits.
        """
        posted = 0
        for segment in segments:
            result = self.deliver(segment)
            if result.posted:
                posted += 1
                if self.comment_delay:
                    time.sleep(self.comment_delay)

        if posted and self.side_store is not None and self.context.analysis_id:
            try:
                self.side_store.increment(self.context.analysis_id, posted)
            except Exception as e:
                logger.warning("Failed to increment comment counter for %s: %s", self.context.analysis_id, e)
        return posted

    def _upsert_summary(self, content: str) -> DeliveryResult:
        digest = content_hash(content)
        if digest in self.state.posted_hashes:
            return Skipped(SkipReason.DUPLICATE)

        body = summary_comment(content)
        try:
            if self.state.status_comment_id is None:
                existing = find_status_comment(self.pull)
                if existing is not None:
                    self.state.status_comment_id = existing.id

            if self.state.status_comment_id is not None:
                comment = self.pull.get_issue_comment(self.state.status_comment_id)
                comment.edit(body)
            else:
                comment = self.pull.create_issue_comment(body)
                self.state.status_comment_id = comment.id
        except Exception as e:
            logger.warning("Failed to upsert summary comment on PR #%d: %s", self.context.pr_number, e)
            return Failed(str(e))

        self.state.posted_hashes.add(digest)
        logger.info("Summary comment %s updated on PR #%d", self.state.status_comment_id, self.context.pr_number)
        return Posted(self.state.status_comment_id)

    # ------------------------------------------------------------------
    # Status comments
    # ------------------------------------------------------------------

    def post_started(
        self, commits: list, files: list[str], ignored_files: list[str], head_sha: str | None = None
    ) -> bool:
        return self._create_status_comment(started_comment(commits, files, ignored_files, head_sha))

    def post_daily_limit_reached(self, message: str) -> bool:
        return self._create_status_comment(daily_limit_comment(message))

    def post_bot_author_skipped(self) -> bool:
        return self._create_status_comment(bot_skipped_comment())

    def post_analysis_error(self, error: str) -> bool:
        try:
            self.pull.create_issue_comment(analysis_error_comment(error))
        except Exception as e:
            logger.warning("Failed to post analysis error comment on PR #%d: %s", self.context.pr_number, e)
            return False
        return True

    def _create_status_comment(self, body: str) -> bool:
        try:
            comment = self.pull.create_issue_comment(body)
        except Exception as e:
            logger.warning("Failed to post status comment on PR #%d: %s", self.context.pr_number, e)
            return False
        self.state.status_comment_id = comment.id
        return True

    # ------------------------------------------------------------------
    # Check run
    # ------------------------------------------------------------------

    def open_check_run(self, external_id: str | None = None) -> bool:
        """Create an in-progress check run, or fall back to a pending commit status.

        Creating check runs needs the ``checks: write`` permission; plain
        tokens often lack it, in which case a classic status is used instead.
        """
        kwargs = {
            "status": "in_progress",
            "started_at": _now(),
            "output": {
                "title": "Beetle AI is reviewing…",
                "summary": f"Analyzing PR #{self.context.pr_number} for issues and suggestions.",
                "text": "Streaming analysis in progress. Comments will appear as suggestions on the PR.",
            },
        }
        if external_id:
            kwargs["external_id"] = external_id
        if self.details_url:
            kwargs["details_url"] = self.details_url

        try:
            self._check_run = self.repo.create_check_run(self.check_run_name, self.context.head_sha, **kwargs)
            self.state.check_run_id = self._check_run.id
            logger.info("Created check run %s for PR #%d", self.state.check_run_id, self.context.pr_number)
            return True
        except Exception as e:
            logger.warning("Failed to create check run (is checks:write granted?): %s", e)

        if self._create_status("pending", "Beetle AI is reviewing…"):
            self.state.used_status_fallback = True
            return True
        return False

    def complete_check_run(self, success: bool, text: str = "") -> bool:
        if self.state.check_run_id is not None:
            if success:
                output = {
                    "title": "Beetle AI review completed",
                    "summary": f"Beetle AI finished analyzing PR #{self.context.pr_number}.",
                    "text": text,
                }
            else:
                output = {
                    "title": "Beetle AI review failed",
                    "summary": f"Analysis encountered an error for PR #{self.context.pr_number}.",
                    "text": text or "Unknown error.",
                }
            try:
                if self._check_run is None:
                    self._check_run = self.repo.get_check_run(self.state.check_run_id)
                self._check_run.edit(
                    status="completed",
                    conclusion="success" if success else "failure",
                    completed_at=_now(),
                    output=output,
                )
                return True
            except Exception as e:
                logger.warning("Failed to complete check run %s: %s", self.state.check_run_id, e)
                return False

        if self.state.used_status_fallback:
            if success:
                return self._create_status("success", "Beetle AI review completed")
            return self._create_status("failure", "Beetle AI review failed")
        return False

    def _create_status(self, state: str, description: str) -> bool:
        kwargs = {"context": self.check_run_name, "description": description}
        if self.details_url:
            kwargs["target_url"] = self.details_url
        try:
            self._get_head_commit().create_status(state, **kwargs)
        except Exception as e:
            logger.warning("Failed to set %s commit status: %s", state, e)
            return False
        return True

    def _get_head_commit(self):
        if self._head_commit is None:
            self._head_commit = self.repo.get_commit(self.context.head_sha)
        return self._head_commit
