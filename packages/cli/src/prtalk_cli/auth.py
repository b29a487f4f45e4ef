"""GitHub token and user resolution with gh CLI fallback.

Token resolution order (stops at first success):
  1. GITHUB_TOKEN environment variable (CI / explicit override)
  2. `gh auth token` (GitHub CLI session, works after `gh auth login`)

User resolution order:
  1. --user / `user:` in .prtalk.yml / PRTALK_USER
  2. `gh api user --jq .login`
  3. the local account name
"""

from __future__ import annotations

import getpass
import logging
import os
import subprocess

logger = logging.getLogger(__name__)


def _gh(*args: str) -> str | None:
    try:
        result = subprocess.run(["gh", *args], capture_output=True, text=True, timeout=5)
    except (FileNotFoundError, subprocess.TimeoutExpired):
        # gh is not installed or timed out.
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def resolve_github_token() -> str | None:
    """Return a GitHub token or None if no valid source is available.

    Never raises; callers should check for None and emit a UsageError.
    """
    token = os.environ.get("GITHUB_TOKEN")
    if token:
        return token

    gh_token = _gh("auth", "token")
    if gh_token:
        logger.debug("Resolved GitHub token via gh CLI session.")
    return gh_token


def resolve_user(config: dict) -> str:
    """Return the id sessions are owned by. Never raises."""
    if config.get("user"):
        return config["user"]
    login = _gh("api", "user", "--jq", ".login")
    if login:
        logger.debug("Resolved user %s via gh CLI session.", login)
        return login
    return getpass.getuser()
