"""Shared fixtures: one loaded pull request in a MemoryStore and a session on it."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from prtalk_store.memory import MemoryStore
from prtalk_store.models import (
    AutomatedSummary,
    CommentEntry,
    CommitEntry,
    FileChange,
    PullRequestRecord,
    PullRequestSnapshot,
    RepositoryRecord,
    ReviewEntry,
    ScopeKind,
    Session,
    SessionScope,
    UserRef,
)

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_snapshot(number: int = 7, summary: bool = True) -> PullRequestSnapshot:
    return PullRequestSnapshot(
        pull=PullRequestRecord(
            repo="acme/api",
            number=number,
            title="Add token refresh to the login flow",
            author=UserRef(login="alice"),
            body="Refreshes expired tokens transparently.",
            base_ref="main",
            head_ref="feature/refresh",
            created_at=T0,
            updated_at=T0 + timedelta(days=2),
        ),
        repository=RepositoryRecord(owner="acme", name="api", description="Public API"),
        summary=AutomatedSummary(
            summary="Adds token refresh to the login flow.",
            overall_score=6,
            issues_found=["Token stored in plain text (high)", "Slow retry loop in refresh"],
            suggestions=["Encrypt the stored token", "Cache the refresh result to avoid slow retries"],
            security_concerns=["Token stored in plain text (high)"],
            test_recommendations=["Test expired token refresh"],
        )
        if summary
        else None,
        files=[
            FileChange(filename="src/login.py", additions=40, deletions=10, language="Python", patch="+def refresh():"),
            FileChange(filename="src/token_store.py", additions=5, deletions=1, language="Python"),
            FileChange(filename="README.md", change_type="modified", additions=2, deletions=0, language="Markdown"),
        ],
        reviews=[
            ReviewEntry(review_id="r1", reviewer=UserRef(login="bob"), state="CHANGES_REQUESTED", body="Encrypt it.")
        ],
        comments=[
            CommentEntry(
                comment_id="c1",
                author=UserRef(login="bob"),
                body="Why plain text here?",
                path="src/token_store.py",
                line=3,
                created_at=T0 + timedelta(days=1),
            )
        ],
        commits=[CommitEntry(sha="a" * 40, message="Add refresh", author="Alice", committed_at=T0)],
    )


@pytest.fixture
def snapshot():
    return make_snapshot()


@pytest.fixture
def store(snapshot):
    s = MemoryStore()
    s.save_snapshot(snapshot)
    return s


@pytest.fixture
def session(store):
    s = Session(
        session_id="s1",
        user_id="alice",
        scope=SessionScope(kind=ScopeKind.ARTIFACT, repo="acme/api", pr_number=7),
        title="Chat about PR #7",
        granted_user_ids={"carol"},
    )
    store.create_session(s)
    return s
