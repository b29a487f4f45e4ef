"""Shared plumbing for commands: store access, assistant wiring, rendering."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax

from prtalk_store.models import ContentKind

if TYPE_CHECKING:
    from prtalk_core.assistant import ChatAssistant
    from prtalk_core.broadcast import SessionBroadcaster
    from prtalk_store.base import BaseStore

console = Console()


def get_store(ctx: click.Context) -> BaseStore:
    store = ctx.obj.get("store") if ctx.obj else None
    if store is None:
        raise click.UsageError("No store configured. Add 'store: sqlite' to .prtalk.yml.")
    return store


def get_user(ctx: click.Context) -> str:
    from prtalk_cli.auth import resolve_user

    return resolve_user(ctx.obj["config"])


def build_assistant(ctx: click.Context, broadcaster: SessionBroadcaster | None = None) -> ChatAssistant:
    from prtalk_core.assistant import ChatAssistant

    config = ctx.obj["config"]
    provider = config.get("provider", "openai")
    if provider == "anthropic" and not config.get("anthropic_api_key"):
        raise click.UsageError("ANTHROPIC_API_KEY environment variable is not set.")
    if provider == "openai" and not config.get("openai_api_key"):
        raise click.UsageError("OPENAI_API_KEY environment variable is not set.")
    try:
        return ChatAssistant.from_config(get_store(ctx), config, broadcaster=broadcaster)
    except ValueError as e:
        raise click.UsageError(str(e)) from e


def run(coro):
    """Run a coroutine to completion, turning protocol errors into CLI errors."""
    from prtalk_core.errors import ChatError

    try:
        return asyncio.run(coro)
    except ChatError as e:
        raise click.ClickException(f"{e.message} ({e.code})") from e


def render_answer(content: str, content_kind: ContentKind | str, followups: list[str], meta: str = "") -> None:
    kind = ContentKind(content_kind)
    if kind is ContentKind.FORMATTED:
        body = Markdown(content)
    elif kind is ContentKind.CODE:
        body = Syntax(content, "text", word_wrap=True)
    else:
        body = content
    console.print(Panel(body, title="prtalk", title_align="left", subtitle=meta or None, subtitle_align="right"))
    if followups:
        console.print("[dim]You could also ask:[/dim]")
        for question in followups:
            console.print(f"  [cyan]›[/cyan] {question}")
