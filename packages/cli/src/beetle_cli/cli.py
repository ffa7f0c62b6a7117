"""CLI entry point for beetle.

Commands:
  analyze  — analyze a repository or a pull request, streaming the agent output
  start    — start a draft analysis
  stop     — stop a running analysis
  logs     — show the output of an analysis
  history  — list past analyses from the configured store
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from beetle_cli.commands.analyze import analyze_cmd
from beetle_cli.commands.history import history_cmd
from beetle_cli.commands.logs import logs_cmd
from beetle_cli.commands.start import start_cmd
from beetle_cli.commands.stop import stop_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the durable store from .beetle.yml settings.

    Store selection:
      store: sqlite → SQLiteStore (store_path, default .beetle.db)
      store: memory → MemoryStore (nothing survives the process)

    This factory lives in cli.py so neither beetle_core nor beetle_store
    know about the CLI config format.
    """
    store_type = config.get("store", "sqlite")

    if store_type == "memory":
        from beetle_store.memory import MemoryStore

        return MemoryStore()

    if store_type != "sqlite":
        raise click.UsageError(f"Unknown store {store_type!r}. Choose 'sqlite' or 'memory'.")

    from beetle_store.sqlite import SQLiteStore

    return SQLiteStore(db_path=config.get("store_path", ".beetle.db"))


def _build_side_store(config: dict):
    """Side store matching the durable store; both share the SQLite file."""
    ttl = config.get("buffer_ttl")

    if config.get("store", "sqlite") == "memory":
        from beetle_store.memory import MemorySideStore

        return MemorySideStore(default_ttl=ttl) if ttl else MemorySideStore()

    from beetle_store.sqlite import SQLiteSideStore

    db_path = config.get("store_path", ".beetle.db")
    return SQLiteSideStore(db_path=db_path, default_ttl=ttl) if ttl else SQLiteSideStore(db_path=db_path)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=verbose, show_path=verbose)],
        force=True,
    )


@click.group()
@click.version_option(
    version=importlib.metadata.version("beetle"),
    prog_name="beetle",
)
@click.option(
    "--config",
    "config_path",
    default=".beetle.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="BEETLE_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Show debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Stream AI code analysis of repositories and pull requests."""
    from beetle_cli.auth import resolve_github_token
    from beetle_core.config import load_config

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.UsageError(str(e))

    # Resolve token early so all subcommands share the same resolution.
    token = resolve_github_token()
    if token:
        config["github_token"] = token

    store = _build_store(config)
    side_store = _build_side_store(config)
    ctx.obj["config"] = config
    ctx.obj["store"] = store
    ctx.obj["side_store"] = side_store
    ctx.call_on_close(store.close)
    ctx.call_on_close(side_store.close)


main.add_command(analyze_cmd)
main.add_command(start_cmd)
main.add_command(stop_cmd)
main.add_command(logs_cmd)
main.add_command(history_cmd)
