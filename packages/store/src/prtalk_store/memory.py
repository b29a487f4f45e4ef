"""In-memory store: the default for tests and throwaway sessions.

Nothing survives the process. Using a MemoryStore rather than None lets the
assistant always call store methods without conditional checks.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import TYPE_CHECKING

from prtalk_store.base import SnapshotBackedStore

if TYPE_CHECKING:
    from prtalk_store.models import PullRequestSnapshot, Session, Turn


class MemoryStore(SnapshotBackedStore):
    """Keeps sessions, turns and PR snapshots in dicts guarded by one lock.

    The lock only protects the dicts during a single call; it is never held
    across calls, so concurrent sessions do not serialize on it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}
        self._turns: dict[str, list[Turn]] = {}
        self._snapshots: dict[tuple[str, int], PullRequestSnapshot] = {}

    def create_session(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.session_id] = session
            self._turns.setdefault(session.session_id, [])

    def get_session(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def list_sessions(self, user_id: str) -> list[Session]:
        with self._lock:
            sessions = [s for s in self._sessions.values() if s.user_id == user_id and not s.is_closed]
        return sorted(sessions, key=lambda s: s.last_activity, reverse=True)

    def touch_session(self, session_id: str, when: datetime) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.last_activity = when

    def close_session(self, session_id: str, when: datetime) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.closed_at = when

    def append_turn(self, turn: Turn) -> None:
        with self._lock:
            self._turns.setdefault(turn.session_id, []).append(turn)

    def list_turns(self, session_id: str, limit: int | None = None) -> list[Turn]:
        with self._lock:
            turns = list(self._turns.get(session_id, []))
        return turns[-limit:] if limit else turns

    def save_snapshot(self, snapshot: PullRequestSnapshot) -> None:
        with self._lock:
            self._snapshots[(snapshot.pull.repo, snapshot.pull.number)] = snapshot

    def _load_snapshot(self, repo: str, number: int) -> PullRequestSnapshot | None:
        with self._lock:
            return self._snapshots.get((repo, number))

    def _load_repo_snapshots(self, repo: str) -> list[PullRequestSnapshot]:
        with self._lock:
            return [s for (r, _), s in self._snapshots.items() if r == repo]
