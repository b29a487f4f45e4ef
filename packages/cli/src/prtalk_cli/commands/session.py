"""session commands: create, list and delete chat sessions."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from prtalk_cli.runtime import build_assistant, get_store, get_user, run

console = Console()


@click.group("session")
def session_cmd():
    """Manage chat sessions."""


@session_cmd.command("new")
@click.option("--repo", required=True, help="GitHub repository (owner/name).")
@click.option("--pr", "pr_number", type=int, default=None, help="Pull request number. Omit for a repository chat.")
@click.option("--title", default=None, help="Session title.")
@click.option("--grant", "granted", multiple=True, help="Another user allowed to read the session (repeatable).")
@click.pass_context
def new_cmd(ctx, repo: str, pr_number: int | None, title: str | None, granted: tuple[str, ...]):
    """Open a session on a pull request or a repository."""
    assistant = build_assistant(ctx)
    session = run(assistant.create_session(get_user(ctx), repo, pr_number, title, set(granted)))
    console.print(f"[green]Created session[/green] [bold]{session.session_id}[/bold]  {session.title}")


@session_cmd.command("list")
@click.pass_context
def list_cmd(ctx):
    """List your open sessions, most recent first."""
    user = get_user(ctx)
    sessions = get_store(ctx).list_sessions(user)
    if not sessions:
        console.print("[yellow]No open sessions.[/yellow]")
        return

    table = Table(title=f"Sessions for {user}", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold", width=32)
    table.add_column("Title", max_width=50)
    table.add_column("Scope", width=24)
    table.add_column("Last Activity", width=20)
    for s in sessions:
        table.add_row(
            s.session_id,
            s.title,
            s.scope.artifact_ref or s.scope.repo,
            s.last_activity.isoformat()[:19].replace("T", " "),
        )
    console.print(table)


@session_cmd.command("delete")
@click.argument("session_id")
@click.pass_context
def delete_cmd(ctx, session_id: str):
    """Close a session you own. Its history is kept."""
    from prtalk_core.assistant import ChatAssistant

    assistant = ChatAssistant(get_store(ctx))
    run(assistant.delete_session(session_id, get_user(ctx)))
    console.print(f"[green]Closed session[/green] {session_id}")
