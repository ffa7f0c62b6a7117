"""Pull request analysis orchestration."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import datetime, timezone

from github import GithubException
from rich.console import Console

from beetle_core.config import load_prompt
from beetle_core.delivery.engine import DeliveryContext, DeliveryEngine
from beetle_core.gh.pull_request import (
    get_commit_files,
    get_last_analyzed_sha,
    get_new_commits,
    get_pull,
    get_repo,
    is_bot_commit,
    is_bot_login,
)
from beetle_core.lifecycle import AnalysisController, AnalysisOutcome, AnalysisParams
from beetle_core.transport import BaseTransport
from beetle_core.utils.code import normalize_path, partition_files
from beetle_store.models import AnalysisStatus, AnalysisType, PRMetadata

console = Console()
logger = logging.getLogger(__name__)

DAILY_LIMIT_MESSAGE = (
    "You've hit the daily limits of PR analysis. Consider updating the plan: https://beetleai.dev/dashboard"
)


def _start_of_day() -> str:
    now = datetime.now(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0).isoformat()


async def _skip(controller: AnalysisController, params: AnalysisParams, reason: str) -> AnalysisOutcome:
    analysis_id = await asyncio.to_thread(controller.skip, params, reason)
    return AnalysisOutcome(analysis_id=analysis_id, status=AnalysisStatus.SKIPPED)


async def run_pr_analysis(
    controller: AnalysisController,
    repo_name: str,
    pr_number: int,
    config: dict,
    token: str | None = None,
    transport: BaseTransport | None = None,
    repo_obj=None,
) -> AnalysisOutcome | None:
    """Analyze the commits pushed to a pull request since its last analysis.

    Returns None when there is nothing new to analyze. Bot-authored pull
    requests and runs over the daily quota produce a ``skipped`` record and
    a status comment instead of an analysis.
    """
    token = token or config.get("github_token")
    this_repo = repo_obj if repo_obj is not None else await asyncio.to_thread(get_repo, repo_name, token)

    try:
        this_pr = await asyncio.to_thread(get_pull, this_repo, pr_number)
    except GithubException:
        raise ValueError(f"PR #{pr_number} not found in {repo_name}.")

    owner, name = repo_name.split("/", 1)
    head_sha = this_pr.head.sha
    params = AnalysisParams(
        repo=repo_name,
        analysis_type=AnalysisType.PR,
        model=config["model"],
        prompt=load_prompt(config, AnalysisType.PR),
        pr=PRMetadata(number=pr_number, url=this_pr.html_url or "", title=this_pr.title or "", head_sha=head_sha),
    )
    context = DeliveryContext(owner, name, pr_number, head_sha, severity_threshold=config["severity_threshold"])
    engine = DeliveryEngine(
        this_repo,
        this_pr,
        context,
        side_store=controller.side_store,
        comment_delay=config.get("comment_delay", 1.0),
        check_run_name=config.get("check_run_name", "Beetle"),
        details_url=config.get("details_url"),
    )
    review_bots = config.get("review_bot_prs", False)

    author = this_pr.user
    if not review_bots and is_bot_login(getattr(author, "login", None), getattr(author, "type", None)):
        console.print(
            "[yellow]Skipping PR opened by a bot. Set review_bot_prs: true in .beetle.yml to analyze it.[/yellow]"
        )
        await asyncio.to_thread(engine.post_bot_author_skipped)
        return await _skip(controller, params, "Pull request opened by a bot")

    limit = config.get("max_pr_analyses_per_day") or 0
    if limit:
        used = await asyncio.to_thread(controller.store.count_since, repo_name, AnalysisType.PR, _start_of_day())
        if used >= limit:
            console.print(f"[yellow]Daily limit of {limit} PR analyses reached for {repo_name}.[/yellow]")
            await asyncio.to_thread(engine.post_daily_limit_reached, DAILY_LIMIT_MESSAGE)
            return await _skip(controller, params, "Daily PR analysis limit reached")

    last_sha = await asyncio.to_thread(get_last_analyzed_sha, this_pr)
    commits = await asyncio.to_thread(get_new_commits, this_pr, last_sha)
    if not commits:
        console.print("[yellow]No new commits since the last analysis. Nothing to do.[/yellow]")
        return None

    all_bots = await asyncio.to_thread(lambda: all(is_bot_commit(c) for c in commits))
    if not review_bots and all_bots:
        console.print("[yellow]All new commits are from bots. Skipping.[/yellow]")
        await asyncio.to_thread(engine.post_bot_author_skipped)
        return await _skip(controller, params, "All new commits are from bots")

    files = await asyncio.to_thread(get_commit_files, commits)
    analyzable, ignored = partition_files(files, config.get("exclude", []))
    context.changed_file_paths = {normalize_path(p) for p in analyzable}
    if last_sha:
        console.print(
            f"[cyan]Incremental analysis: {last_sha[:7]} → {head_sha[:7]} ({len(commits)} new commit(s))[/cyan]"
        )
    console.print(f"[dim]{len(analyzable)} file(s) to analyze, {len(ignored)} ignored.[/dim]")

    params = dataclasses.replace(
        params,
        data={
            "pr_number": pr_number,
            "head_sha": head_sha,
            "last_analyzed_sha": last_sha,
            "commits": [c.sha for c in commits],
            "files": analyzable,
            "ignored_files": ignored,
        },
    )
    analysis_id = await asyncio.to_thread(controller.create, params, True)
    context.analysis_id = analysis_id

    await asyncio.to_thread(engine.open_check_run, analysis_id)
    await asyncio.to_thread(engine.post_started, commits, analyzable, ignored, head_sha)

    try:
        outcome = await controller.start(analysis_id, transport, delivery=engine)
    except Exception as e:
        logger.error("PR analysis %s could not run: %s", analysis_id, e)
        await asyncio.to_thread(engine.post_analysis_error, str(e))
        await asyncio.to_thread(engine.complete_check_run, False, str(e))
        raise

    if outcome.error:
        await asyncio.to_thread(engine.post_analysis_error, outcome.error)
    return outcome
