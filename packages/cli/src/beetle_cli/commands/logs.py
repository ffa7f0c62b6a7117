"""logs command — show the output of an analysis, live or finished."""

from __future__ import annotations

import click
from rich.console import Console

from beetle_cli.runtime import build_controller, styled_status
from beetle_core.delivery.suggestions import parse_issue, parse_patch, parse_suggestion, parse_warning
from beetle_core.errors import BeetleError
from beetle_core.stream.parser import LogKind, LogRecord
from beetle_core.stream.segments import Segment, SegmentKind

console = Console()

_KIND_STYLE = {
    LogKind.INFO: "dim",
    LogKind.INITIALISATION: "blue",
    LogKind.DEFAULT: "white",
}


def _location(content: str) -> str:
    suggestion = parse_suggestion(content)
    if suggestion is None:
        return ""
    lines = f"{suggestion.line_start}"
    if suggestion.is_multiline:
        lines += f"-{suggestion.line_end}"
    return f"[bold cyan]{suggestion.file_path}[/bold cyan]:{lines}"


def _print_segment(segment: Segment) -> None:
    if segment.kind is SegmentKind.TEXT:
        console.print(segment.content, markup=False, highlight=False)
        return

    location = _location(segment.content)
    if segment.kind is SegmentKind.ISSUE:
        issue = parse_issue(segment.content)
        console.print(f"\n[bold red]ISSUE[/bold red] {issue.title or issue.issue_id}  {location}")
        console.print(issue.description, markup=False)
    elif segment.kind is SegmentKind.PATCH:
        patch = parse_patch(segment.content)
        console.print(f"\n[bold green]PATCH[/bold green] {patch.patch_id or ''}  {location}")
        if patch.explanation:
            console.print(patch.explanation, markup=False)
        if patch.after:
            console.print(patch.after, markup=False, style="green")
    elif segment.kind is SegmentKind.WARNING:
        warning = parse_warning(segment.content)
        console.print(f"\n[bold yellow]WARNING[/bold yellow] {warning.type or ''}  {location}")
        console.print(warning.warning or segment.content, markup=False)
    else:
        console.print("\n[bold magenta]FILE STATUS[/bold magenta]")
        console.print(segment.content, markup=False)
    console.print()


def _print_record(record: LogRecord) -> None:
    if record.kind is LogKind.LLM_RESPONSE:
        for segment in record.segments:
            _print_segment(segment)
        return

    if record.kind is LogKind.TOOL_CALL:
        for call in record.tool_calls():
            console.print(f"[bold]🔧 {call.type}[/bold] [dim]{call.result!r}[/dim]")
        return

    style = _KIND_STYLE.get(record.kind, "white")
    for line in record.lines:
        console.print(line, style=style, markup=False, highlight=False)


@click.command("logs")
@click.argument("analysis_id")
@click.option("--raw", is_flag=True, default=False, help="Print the captured output as-is.")
@click.pass_context
def logs_cmd(ctx, analysis_id: str, raw: bool):
    """Show the output of an analysis.

    Running analyses show what has been captured so far; finished ones show
    the stored copy. Without --raw, issues, patches and warnings found by the
    agent are rendered as sections.
    """
    controller = build_controller(ctx)
    try:
        logs = controller.get_logs(analysis_id)
    except BeetleError as e:
        raise click.ClickException(str(e))

    record = logs.record
    console.print(f"[bold]{record.id}[/bold]  {record.repo}  {styled_status(record.status)}")
    if record.skip_reason:
        console.print(f"[magenta]Skipped: {record.skip_reason}[/magenta]")
    if not logs.text:
        console.print("[yellow]No output captured.[/yellow]")
        return

    if raw:
        console.print(logs.text, end="", markup=False, highlight=False)
        return

    for log_record in logs.records:
        _print_record(log_record)
