"""stop command — stop a running analysis, possibly started by another process."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console

from beetle_cli.runtime import build_controller, styled_status
from beetle_core.errors import BeetleError

console = Console()


@click.command("stop")
@click.argument("analysis_id")
@click.pass_context
def stop_cmd(ctx, analysis_id: str):
    """Stop a running analysis and keep the output captured so far."""
    controller = build_controller(ctx)
    try:
        result = asyncio.run(controller.stop(analysis_id))
    except BeetleError as e:
        raise click.ClickException(str(e))

    if result.stopped:
        console.print(f"[green]{result.message}[/green] Status: {styled_status(result.status)}")
    else:
        console.print(f"[yellow]{result.message}[/yellow]")
