"""chat command: interactive conversation about a pull request."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console

from prtalk_cli.runtime import build_assistant, get_user, render_answer, run

console = Console()

_EXIT_WORDS = {"exit", "quit", ":q"}


async def _chat_loop(assistant, broadcaster, user: str, session_id: str) -> None:
    from prtalk_core.broadcast import MESSAGE_NEW, QueueConnection

    connection = broadcaster.register(QueueConnection(user))
    await broadcaster.join(connection.connection_id, session_id)
    try:
        while True:
            question = await asyncio.to_thread(
                click.prompt, "you", prompt_suffix=" › ", default="", show_default=False
            )
            if question.strip().lower() in _EXIT_WORDS:
                break
            if not question.strip():
                continue
            with console.status("Thinking..."):
                await assistant.submit(connection.connection_id, session_id, question)

            # Everything the session's observers saw, in order.
            for event, payload in connection.drain():
                if event == MESSAGE_NEW:
                    message, meta = payload["message"], payload["response_metadata"]
                    subtitle = f"{message['classification']} · confidence {meta['confidence']:.2f}"
                    render_answer(message["content"], message["content_kind"], meta["followups"], subtitle)
                elif event == "error":
                    console.print(f"[red]{payload['message']}[/red] [dim]({payload['code']})[/dim]")
    finally:
        await broadcaster.disconnect(connection.connection_id)


@click.command("chat")
@click.option("--session", "session_id", default=None, help="Resume an existing session.")
@click.option("--repo", default=None, help="GitHub repository (owner/name) for a new session.")
@click.option("--pr", "pr_number", type=int, default=None, help="Pull request number for a new session.")
@click.pass_context
def chat_cmd(ctx, session_id: str | None, repo: str | None, pr_number: int | None):
    """Chat about a pull request. Type 'exit' to leave.

    Resumes --session, or opens a new session on --repo/--pr.
    """
    from prtalk_core.broadcast import SessionBroadcaster

    if session_id is None and repo is None:
        raise click.UsageError("Pass --session to resume a chat or --repo (and --pr) to start one.")

    store = ctx.obj["store"]
    broadcaster = SessionBroadcaster(store)
    assistant = build_assistant(ctx, broadcaster=broadcaster)
    user = get_user(ctx)

    if session_id is None:
        session = run(assistant.create_session(user, repo, pr_number))
        session_id = session.session_id
        console.print(f"[bold]{session.title}[/bold] [dim](session {session_id})[/dim]")

    run(_chat_loop(assistant, broadcaster, user, session_id))
