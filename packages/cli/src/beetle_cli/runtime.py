"""Shared plumbing for commands that drive the lifecycle controller."""

from __future__ import annotations

import asyncio
import signal
from typing import Awaitable, TypeVar

import click
from rich.console import Console

from beetle_core.lifecycle import AnalysisController, Signal
from beetle_core.sandbox import LocalProcessSandbox
from beetle_store.models import AnalysisStatus

console = Console()

T = TypeVar("T")

STATUS_STYLE = {
    AnalysisStatus.DRAFT: "dim",
    AnalysisStatus.RUNNING: "cyan",
    AnalysisStatus.COMPLETED: "green",
    AnalysisStatus.INTERRUPTED: "yellow",
    AnalysisStatus.ERROR: "red",
    AnalysisStatus.SKIPPED: "magenta",
}


def styled_status(status: AnalysisStatus) -> str:
    style = STATUS_STYLE.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def build_controller(ctx: click.Context) -> AnalysisController:
    config = ctx.obj["config"]
    return AnalysisController(
        ctx.obj["store"],
        ctx.obj["side_store"],
        LocalProcessSandbox(),
        command_template=config["analysis_command"],
        buffer_ttl=config["buffer_ttl"],
    )


def run_streaming(controller: AnalysisController, coro: Awaitable[T]) -> T:
    """Run ``coro`` to completion; Ctrl-C cancels the analyses it started."""

    async def runner() -> T:
        loop = asyncio.get_running_loop()

        def on_interrupt() -> None:
            console.print("\n[yellow]Stopping analysis…[/yellow]")
            for analysis_id in controller.active_analyses:
                controller.signal(analysis_id, Signal.CANCEL_REQUESTED)

        try:
            loop.add_signal_handler(signal.SIGINT, on_interrupt)
            installed = True
        except (NotImplementedError, RuntimeError):
            # No signal handlers on Windows loops or outside the main thread.
            installed = False
        try:
            return await coro
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)

    return asyncio.run(runner())
