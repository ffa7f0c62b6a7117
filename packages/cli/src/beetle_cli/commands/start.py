"""start command — run a draft analysis."""

from __future__ import annotations

import click

from beetle_cli.commands.analyze import report_outcome
from beetle_cli.runtime import build_controller, console, run_streaming
from beetle_core.errors import BeetleError
from beetle_core.transport import ConsoleTransport


@click.command("start")
@click.argument("analysis_id")
@click.pass_context
def start_cmd(ctx, analysis_id: str):
    """Start a draft analysis created with `beetle analyze --draft`."""
    controller = build_controller(ctx)
    try:
        outcome = run_streaming(controller, controller.start(analysis_id, ConsoleTransport(console)))
    except BeetleError as e:
        raise click.ClickException(str(e))
    report_outcome(outcome)
