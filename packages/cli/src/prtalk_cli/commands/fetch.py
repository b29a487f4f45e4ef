"""fetch command: load pull requests from GitHub into the store."""

from __future__ import annotations

import click
from github import GithubException
from rich.console import Console

from prtalk_cli.runtime import get_store
from prtalk_core.gh.pull_request import build_snapshot, get_pull, get_pull_requests, get_repo
from prtalk_store.models import ScopeKind, SessionScope

console = Console()


@click.command("fetch")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option(
    "--pr",
    "pr_numbers",
    type=int,
    multiple=True,
    help="Pull request number (repeatable). Omit to pick from the open PRs.",
)
@click.option("--all-open", is_flag=True, help="Fetch every open pull request.")
@click.pass_context
def fetch_cmd(ctx, repo: str, pr_numbers: tuple[int, ...], all_open: bool):
    """Load pull requests from GitHub so sessions can be opened on them.

    Reads metadata, changed files, reviews, comments and commits. An automated
    summary imported earlier with `prtalk import` is kept.

    \b
    Required environment variables:
      GITHUB_TOKEN         GitHub personal access token (or use gh CLI)
    """
    config = ctx.obj["config"]
    token = config.get("github_token")
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.\n"
            "Create a token at https://github.com/settings/tokens"
        )
    store = get_store(ctx)

    try:
        this_repo = get_repo(repo, token=token)
        if all_open or not pr_numbers:
            prs = list(get_pull_requests(this_repo))
            if not prs:
                console.print("[yellow]No open pull requests found.[/yellow]")
                return
            if not all_open:
                console.print("\nOpen pull requests:")
                for pr in prs:
                    console.print(f"  [bold]#{pr.number}[/bold]  {pr.title}")
                number = click.prompt("\nEnter the pull request number", type=int)
                prs = [get_pull(this_repo, number)]
        else:
            prs = [get_pull(this_repo, n) for n in pr_numbers]

        for pr in prs:
            with console.status(f"Fetching {repo}#{pr.number}..."):
                snapshot = build_snapshot(this_repo, pr)
            scope = SessionScope(kind=ScopeKind.ARTIFACT, repo=repo, pr_number=pr.number)
            snapshot.summary = store.get_automated_summary(scope)
            store.save_snapshot(snapshot)
            console.print(
                f"[green]Loaded {repo}#{pr.number}[/green] {snapshot.pull.title} "
                f"[dim]({len(snapshot.files)} files, {len(snapshot.reviews)} reviews, "
                f"{len(snapshot.comments)} comments, {len(snapshot.commits)} commits)[/dim]"
            )
    except GithubException as e:
        raise click.ClickException(f"GitHub request failed: {e.status} {e.data}") from e
