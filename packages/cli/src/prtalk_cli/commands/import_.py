"""import command: load pull requests exported as JSON."""

from __future__ import annotations

import json

import click
from rich.console import Console

from prtalk_cli.runtime import get_store
from prtalk_store.codec import snapshot_from_dict

console = Console()


@click.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_cmd(ctx, path: str):
    """Load one pull request (a JSON object) or several (a JSON list) from PATH.

    Each object needs a "pull" entry and may carry "repository", "summary"
    (an automated analysis), "files", "reviews", "comments" and "commits".
    """
    store = get_store(ctx)
    with open(path) as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise click.UsageError(f"{path} is not valid JSON: {e}") from e

    items = data if isinstance(data, list) else [data]
    for index, item in enumerate(items):
        try:
            snapshot = snapshot_from_dict(item)
        except (KeyError, TypeError, ValueError) as e:
            raise click.UsageError(f"Entry {index} of {path} is not a pull request export: {e!r}") from e
        store.save_snapshot(snapshot)
        extra = " with automated summary" if snapshot.summary else ""
        console.print(f"[green]Imported {snapshot.pull.repo}#{snapshot.pull.number}[/green]{extra}")
