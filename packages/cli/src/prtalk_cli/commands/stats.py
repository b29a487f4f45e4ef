"""stats command: analytics for one session."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from prtalk_cli.runtime import get_store, get_user, run

console = Console()


@click.command("stats")
@click.argument("session_id")
@click.pass_context
def stats_cmd(ctx, session_id: str):
    """Show what a session asked about and which context answered it.

    Reports question types, how often each context category was retrieved,
    the average answer confidence and how many answers were fallbacks.
    """
    from prtalk_core.assistant import ChatAssistant

    assistant = ChatAssistant(get_store(ctx))
    analytics = run(assistant.session_analytics(session_id, get_user(ctx)))
    if not analytics.message_count:
        console.print("[yellow]No answers in this session yet.[/yellow]")
        return

    # --- Summary ---
    console.print(f"\n[bold]Stats for session [cyan]{session_id}[/cyan][/bold]")
    console.print(f"  Answers:        {analytics.message_count}")
    console.print(f"  Avg confidence: {analytics.avg_confidence:.2f}")
    console.print(f"  Fallbacks:      {analytics.fallback_count}")

    # --- Question types ---
    if analytics.query_types:
        type_table = Table(title="Question Types", show_header=True)
        type_table.add_column("Type", style="bold")
        type_table.add_column("Count", justify="right")
        type_table.add_column("% of total", justify="right")
        for category, count in sorted(analytics.query_types.items(), key=lambda kv: (-kv[1], kv[0])):
            pct = f"{count / analytics.message_count * 100:.1f}%"
            type_table.add_row(category, str(count), pct)
        console.print(type_table)

    # --- Context usage ---
    if analytics.context_usage:
        usage_table = Table(title="Context Retrieved", show_header=True)
        usage_table.add_column("Category")
        usage_table.add_column("Times", justify="right")
        for category, count in sorted(analytics.context_usage.items(), key=lambda kv: (-kv[1], kv[0])):
            usage_table.add_row(category, str(count))
        console.print(usage_table)
