"""history command — list past analyses from the store."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from beetle_cli.runtime import styled_status
from beetle_store.models import AnalysisType

console = Console()


@click.command("history")
@click.option("--repo", required=True, help="GitHub repository (owner/name).")
@click.option(
    "--type",
    "analysis_type",
    type=click.Choice([t.value for t in AnalysisType]),
    default=None,
    help="Only show one kind of analysis.",
)
@click.option("--limit", default=20, show_default=True, help="Maximum number of records to show.")
@click.pass_context
def history_cmd(ctx, repo: str, analysis_type: str | None, limit: int):
    """Show past analyses for a repository, most recent first."""
    store = ctx.obj["store"]
    records = store.list_analyses(repo, AnalysisType(analysis_type) if analysis_type else None)
    if not records:
        console.print("[yellow]No analyses found.[/yellow]")
        return

    # Show most recent first, capped at --limit.
    records = list(reversed(records))[:limit]

    table = Table(title=f"Analysis History — {repo}", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold", width=10)
    table.add_column("Type", width=9)
    table.add_column("PR", width=6)
    table.add_column("Status", width=12)
    table.add_column("Model", max_width=20)
    table.add_column("Comments", justify="right", width=10)
    table.add_column("Created At", width=20)

    for r in records:
        table.add_row(
            r.id[:8],
            r.type.value,
            f"#{r.pr.number}" if r.pr else "",
            styled_status(r.status),
            r.model,
            str(r.comments_posted),
            r.created_at[:19].replace("T", " "),
        )

    console.print(table)
