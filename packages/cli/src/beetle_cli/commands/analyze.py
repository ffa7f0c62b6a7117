"""analyze command — run an analysis and stream the agent output."""

from __future__ import annotations

import click
from rich.console import Console

from beetle_cli.runtime import build_controller, run_streaming, styled_status
from beetle_core.config import apply_overrides, load_prompt
from beetle_core.errors import BeetleError
from beetle_core.lifecycle import AnalysisOutcome, AnalysisParams
from beetle_core.pr_analysis import run_pr_analysis
from beetle_core.transport import ConsoleTransport
from beetle_store.models import AnalysisStatus, AnalysisType

console = Console()


def report_outcome(outcome: AnalysisOutcome) -> None:
    console.print(
        f"\nAnalysis [bold]{outcome.analysis_id}[/bold]: {styled_status(outcome.status)}"
        f" — {outcome.comments_posted} comment(s) posted"
    )
    if outcome.error:
        console.print(f"[red]{outcome.error}[/red]")
    if outcome.status is AnalysisStatus.ERROR:
        raise click.exceptions.Exit(1)


@click.command("analyze")
@click.option("--repo", required=True, help="GitHub repository (owner/name).")
@click.option(
    "--pr", "pr_number", type=int, default=None, help="Pull request number. Omit to analyze the whole repository."
)
@click.option("--model", default=None, help="Model for the agent (overrides .beetle.yml).")
@click.option("--prompt", default=None, help="Analysis prompt (overrides .beetle.yml).")
@click.option(
    "--draft",
    is_flag=True,
    default=False,
    help="Only create the analysis; run it later with `beetle start`.",
)
@click.pass_context
def analyze_cmd(ctx, repo: str, pr_number: int | None, model: str | None, prompt: str | None, draft: bool):
    """Analyze a repository or a pull request.

    The agent output is streamed to the terminal. For pull requests,
    suggestions are posted as review comments while the agent runs.
    Press Ctrl-C to stop the analysis.

    \b
    Required for --pr:
      GITHUB_TOKEN         GitHub token (or use gh CLI)
    """
    config = apply_overrides(ctx.obj["config"], {"model": model, "prompt": prompt})
    if "/" not in repo:
        raise click.UsageError("--repo must look like owner/name.")

    controller = build_controller(ctx)
    transport = ConsoleTransport(console)

    if pr_number is not None:
        if draft:
            raise click.UsageError("--draft is only supported for full repository analyses.")
        token = config.get("github_token")
        if not token:
            raise click.UsageError(
                "No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.\n"
                "Create a token at https://github.com/settings/tokens"
            )
        try:
            outcome = run_streaming(
                controller, run_pr_analysis(controller, repo, pr_number, config, token=token, transport=transport)
            )
        except (BeetleError, ValueError, FileNotFoundError) as e:
            raise click.ClickException(str(e))
        if outcome is None:
            return
        report_outcome(outcome)
        return

    try:
        prompt_text = load_prompt(config, AnalysisType.FULL_REPO)
    except FileNotFoundError as e:
        raise click.ClickException(str(e))
    params = AnalysisParams(
        repo=repo,
        analysis_type=AnalysisType.FULL_REPO,
        model=config["model"],
        prompt=prompt_text,
    )
    analysis_id = controller.create(params)
    if draft:
        console.print(f"Created draft analysis [bold]{analysis_id}[/bold]. Run `beetle start {analysis_id}` to begin.")
        return

    try:
        outcome = run_streaming(controller, controller.start(analysis_id, transport))
    except BeetleError as e:
        raise click.ClickException(str(e))
    report_outcome(outcome)
