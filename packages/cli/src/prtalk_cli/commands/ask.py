"""ask command: one question, one answer."""

from __future__ import annotations

import json

import click
from rich.console import Console

from prtalk_cli.runtime import build_assistant, get_user, render_answer, run

console = Console()


@click.command("ask")
@click.argument("session_id")
@click.argument("question")
@click.option("--json", "as_json", is_flag=True, help="Print the answer and its metadata as JSON.")
@click.pass_context
def ask_cmd(ctx, session_id: str, question: str, as_json: bool):
    """Ask QUESTION in session SESSION_ID.

    \b
    Required environment variables:
      OPENAI_API_KEY       Required with provider openai (the default)
      ANTHROPIC_API_KEY    Required with provider anthropic
    """
    assistant = build_assistant(ctx)
    with console.status("Thinking..."):
        response = run(assistant.ask_question(session_id, get_user(ctx), question))

    answer = response.answer
    if as_json:
        click.echo(
            json.dumps(
                {
                    "message_id": response.message_id,
                    "answer": answer.answer,
                    "content_kind": answer.content_kind.value,
                    "classification": response.classification.category.value,
                    "confidence": answer.confidence,
                    "context_used": answer.context_used,
                    "context_sources": response.context_sources,
                    "followups": answer.followups,
                    "sources": answer.sources,
                    "origin": answer.origin,
                    "state": response.state.value,
                },
                indent=2,
                default=str,
            )
        )
        return

    meta = f"{response.classification.category.value} · confidence {answer.confidence:.2f}"
    if response.is_fallback:
        meta += " · fallback"
    render_answer(answer.text, answer.content_kind, answer.followups, meta)
