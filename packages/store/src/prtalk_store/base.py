"""Abstract store interface.

The assistant reads pull request context and persists conversation turns
through BaseStore only. Concrete backends (in-memory, SQLite) implement it;
the pipeline never depends on a concrete backend, so a team can plug in
Postgres or an HTTP API without touching prtalk_core.

Every read method is side-effect free and returns None (or an empty list for
listings) when there is no data. "No data" is never an exception.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prtalk_store.models import (
        AutomatedSummary,
        CommentEntry,
        CommitEntry,
        FileChange,
        PullRequestRecord,
        PullRequestSnapshot,
        RepositoryOverview,
        ReviewEntry,
        Session,
        SessionScope,
        Turn,
    )


class BaseStore(ABC):
    """Pluggable persistence for sessions, turns and PR context.

    Methods are synchronous. The context aggregator calls them from worker
    threads, so implementations must tolerate concurrent calls.
    """

    # ------------------------------------------------------------------ #
    # Sessions and turns                                                   #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def create_session(self, session: Session) -> None:
        """Persist a new session."""

    @abstractmethod
    def get_session(self, session_id: str) -> Session | None:
        """Return the session, including soft-closed ones, or None."""

    @abstractmethod
    def list_sessions(self, user_id: str) -> list[Session]:
        """Return the user's open sessions, most recently active first."""

    @abstractmethod
    def touch_session(self, session_id: str, when: datetime) -> None:
        """Update the session's last-activity timestamp."""

    @abstractmethod
    def close_session(self, session_id: str, when: datetime) -> None:
        """Soft-close the session. Its turns are kept."""

    @abstractmethod
    def append_turn(self, turn: Turn) -> None:
        """Append a turn. Turns are never updated in place."""

    @abstractmethod
    def list_turns(self, session_id: str, limit: int | None = None) -> list[Turn]:
        """Return turns oldest first; with ``limit``, only the most recent ``limit``."""

    def user_can_access(self, session_id: str, user_id: str) -> bool:
        """True if the user owns or was granted the (open) session."""
        session = self.get_session(session_id)
        if session is None or session.is_closed:
            return False
        return session.can_be_read_by(user_id)

    # ------------------------------------------------------------------ #
    # Pull request context (read side)                                     #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def get_artifact_metadata(self, scope: SessionScope) -> PullRequestRecord | None:
        """PR metadata for an artifact scope; None for collection scopes."""

    @abstractmethod
    def get_repository_overview(self, repo: str) -> RepositoryOverview | None:
        """Repository record plus its known PRs."""

    @abstractmethod
    def get_automated_summary(self, scope: SessionScope) -> AutomatedSummary | None:
        """Most recent automated analysis of the PR."""

    @abstractmethod
    def get_files(self, scope: SessionScope, file_hints: list[str] | None = None) -> list[FileChange] | None:
        """Changed files; when hints are given only paths containing one of them."""

    @abstractmethod
    def get_reviews(self, scope: SessionScope) -> list[ReviewEntry] | None:
        """Reviews, newest first."""

    @abstractmethod
    def get_comments(self, scope: SessionScope, limit: int | None = None) -> list[CommentEntry] | None:
        """Review comments, newest first, at most ``limit``."""

    @abstractmethod
    def get_commits(self, scope: SessionScope) -> list[CommitEntry] | None:
        """Commits, newest first."""

    # ------------------------------------------------------------------ #
    # Loading                                                              #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def save_snapshot(self, snapshot: PullRequestSnapshot) -> None:
        """Store (or replace) everything known about one PR."""

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Subclasses that need cleanup override this.
        Default is a no-op so callers can always call close() safely.
        """


_RECENT_PULLS = 10


def _newest_first(items: list, attr: str) -> list:
    # Entries without a timestamp sort last.
    return sorted(items, key=lambda i: (getattr(i, attr) is not None, getattr(i, attr) or 0), reverse=True)


class SnapshotBackedStore(BaseStore):
    """Serves the PR read side from whole-PR snapshots.

    Backends only need to load snapshots; filtering, ordering and the
    repository overview are shared here so every backend answers the same
    question the same way.
    """

    @abstractmethod
    def _load_snapshot(self, repo: str, number: int) -> PullRequestSnapshot | None:
        """Return the stored snapshot for one PR."""

    @abstractmethod
    def _load_repo_snapshots(self, repo: str) -> list[PullRequestSnapshot]:
        """Return every stored snapshot for a repository."""

    def _snapshot_for(self, scope: SessionScope) -> PullRequestSnapshot | None:
        if scope.pr_number is None:
            return None
        return self._load_snapshot(scope.repo, scope.pr_number)

    def get_artifact_metadata(self, scope: SessionScope) -> PullRequestRecord | None:
        snapshot = self._snapshot_for(scope)
        return snapshot.pull if snapshot else None

    def get_repository_overview(self, repo: str) -> RepositoryOverview | None:
        from prtalk_store.models import RepositoryOverview, RepositoryRecord

        snapshots = self._load_repo_snapshots(repo)
        if not snapshots:
            return None
        record = next((s.repository for s in snapshots if s.repository is not None), None)
        if record is None:
            owner, _, name = repo.partition("/")
            record = RepositoryRecord(owner=owner, name=name)
        pulls = [s.pull for s in snapshots]
        return RepositoryOverview(
            repository=record,
            recent_pulls=_newest_first(pulls, "updated_at")[:_RECENT_PULLS],
            total_pulls=len(pulls),
            open_pulls=sum(1 for p in pulls if p.state == "open"),
            merged_pulls=sum(1 for p in pulls if p.state == "merged" or p.merged_at is not None),
        )

    def get_automated_summary(self, scope: SessionScope) -> AutomatedSummary | None:
        snapshot = self._snapshot_for(scope)
        return snapshot.summary if snapshot else None

    def get_files(self, scope: SessionScope, file_hints: list[str] | None = None) -> list[FileChange] | None:
        snapshot = self._snapshot_for(scope)
        if snapshot is None or not snapshot.files:
            return None
        files = list(snapshot.files)
        if file_hints:
            hints = [h.lower() for h in file_hints]
            files = [f for f in files if any(h in f.filename.lower() for h in hints)]
        return files or None

    def get_reviews(self, scope: SessionScope) -> list[ReviewEntry] | None:
        snapshot = self._snapshot_for(scope)
        if snapshot is None or not snapshot.reviews:
            return None
        return _newest_first(snapshot.reviews, "submitted_at")

    def get_comments(self, scope: SessionScope, limit: int | None = None) -> list[CommentEntry] | None:
        snapshot = self._snapshot_for(scope)
        if snapshot is None or not snapshot.comments:
            return None
        comments = _newest_first(snapshot.comments, "created_at")
        return comments[:limit] if limit is not None else comments

    def get_commits(self, scope: SessionScope) -> list[CommitEntry] | None:
        snapshot = self._snapshot_for(scope)
        if snapshot is None or not snapshot.commits:
            return None
        return _newest_first(snapshot.commits, "committed_at")
