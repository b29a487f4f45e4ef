"""CLI entry point for prtalk.

Commands:
  fetch   : load a pull request from GitHub into the store
  import  : load a pull request exported as JSON into the store
  session : create, list and delete chat sessions
  ask     : ask one question in a session
  chat    : interactive conversation about a pull request
  history : show the turns of a session
  stats   : per-session analytics (question types, context usage, confidence)
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prtalk_cli.commands.ask import ask_cmd
from prtalk_cli.commands.chat import chat_cmd
from prtalk_cli.commands.fetch import fetch_cmd
from prtalk_cli.commands.history import history_cmd
from prtalk_cli.commands.import_ import import_cmd
from prtalk_cli.commands.session import session_cmd
from prtalk_cli.commands.stats import stats_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the configured store from .prtalk.yml settings.

    Store selection:
      store: sqlite → SQLiteStore (store_path, default .prtalk.db)
      store: memory → MemoryStore (nothing survives the command; useful with `chat`)

    This factory lives in cli.py so neither prtalk_core nor prtalk_store
    know about the CLI config format.
    """
    store_type = config.get("store", "sqlite")

    if store_type == "memory":
        from prtalk_store.memory import MemoryStore

        return MemoryStore()

    if store_type != "sqlite":
        console.print(f"[yellow]Unknown store {store_type!r}. Falling back to sqlite.[/yellow]")

    from prtalk_store.sqlite import SQLiteStore

    return SQLiteStore(db_path=config.get("store_path", ".prtalk.db"))


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


@click.group()
@click.version_option(
    version=importlib.metadata.version("prtalk"),
    prog_name="prtalk",
)
@click.option(
    "--config",
    "config_path",
    default=".prtalk.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRTALK_CONFIG",
)
@click.option("--user", "user", default=None, help="Who is asking. Defaults to PRTALK_USER or your gh login.")
@click.option(
    "--provider",
    type=click.Choice(["openai", "anthropic"]),
    default=None,
    help="Language model provider. Overrides config file.",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def main(ctx: click.Context, config_path: str, user: str | None, provider: str | None, verbose: bool):
    """Ask questions about GitHub pull requests and get answers grounded in their data."""
    from prtalk_core.config import load_config
    from prtalk_cli.auth import resolve_github_token

    ctx.ensure_object(dict)

    try:
        config = load_config(config_path, cli_overrides={"user": user, "provider": provider})
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    _setup_logging("DEBUG" if verbose else config.get("log_level", "WARNING"))

    # Resolve token early so all subcommands share the same resolution.
    token = resolve_github_token()
    if token:
        config["github_token"] = token

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(fetch_cmd)
main.add_command(import_cmd)
main.add_command(session_cmd)
main.add_command(ask_cmd)
main.add_command(chat_cmd)
main.add_command(history_cmd)
main.add_command(stats_cmd)
