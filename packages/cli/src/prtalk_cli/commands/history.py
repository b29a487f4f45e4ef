"""history command: display the turns of a session."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from prtalk_cli.runtime import get_store, get_user, run

console = Console()


@click.command("history")
@click.argument("session_id")
@click.option("--limit", default=20, show_default=True, help="Maximum number of turns to show.")
@click.pass_context
def history_cmd(ctx, session_id: str, limit: int):
    """Show the most recent turns of a session, oldest first."""
    from prtalk_core.assistant import ChatAssistant

    assistant = ChatAssistant(get_store(ctx))
    turns = run(assistant.history(session_id, get_user(ctx), limit=limit))
    if not turns:
        console.print("[yellow]No messages in this session yet.[/yellow]")
        return

    table = Table(title=f"Session {session_id}", show_header=True, header_style="bold cyan")
    table.add_column("When", width=20)
    table.add_column("From", width=10)
    table.add_column("Type", width=16)
    table.add_column("Message", max_width=80)

    _sender_style = {"asker": "bold", "assistant": "green"}

    for t in turns:
        style = _sender_style.get(t.sender.value, "white")
        origin = (t.metadata or {}).get("origin")
        label = t.classification or ""
        if origin == "fallback":
            label += " [yellow](fallback)[/yellow]"
        content = t.content if len(t.content) <= 200 else t.content[:197] + "..."
        table.add_row(
            t.created_at.isoformat()[:19].replace("T", " "),
            f"[{style}]{t.sender.value}[/{style}]",
            label,
            content,
        )

    console.print(table)
