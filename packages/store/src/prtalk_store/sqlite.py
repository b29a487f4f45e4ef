"""SQLiteStore: local file-based store for sessions, turns and PR snapshots.

Why SQLite as the local store:
- Batteries included: ships with Python, no extra dependencies.
- Indexed lookups on session_id and (repo, pr_number) stay fast as the
  conversation history grows.
- A single file that `prtalk fetch` writes and `prtalk chat` reads.

Schema:
  sessions   : one row per conversation; soft-closed via closed_at.
  turns      : append-only messages; metadata kept as a JSON column.
  snapshots  : one row per PR holding the whole snapshot as JSON, so the read
               side needs no JOINs.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime

from prtalk_store.base import SnapshotBackedStore
from prtalk_store.codec import snapshot_from_dict, snapshot_to_dict
from prtalk_store.models import (
    ContentKind,
    PullRequestSnapshot,
    ScopeKind,
    SenderKind,
    Session,
    SessionScope,
    Turn,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    session_id      TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    scope_kind      TEXT NOT NULL,
    repo            TEXT NOT NULL,
    pr_number       INTEGER,
    title           TEXT,
    created_at      TEXT NOT NULL,
    last_activity   TEXT NOT NULL,
    closed_at       TEXT,
    granted_json    TEXT DEFAULT '[]'
);
CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions (user_id);

CREATE TABLE IF NOT EXISTS turns (
    seq             INTEGER PRIMARY KEY AUTOINCREMENT,
    turn_id         TEXT NOT NULL UNIQUE,
    session_id      TEXT NOT NULL,
    sender          TEXT NOT NULL,
    content         TEXT NOT NULL,
    content_kind    TEXT NOT NULL,
    classification  TEXT,
    metadata_json   TEXT,
    created_at      TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_turns_session ON turns (session_id, seq);

CREATE TABLE IF NOT EXISTS snapshots (
    repo            TEXT NOT NULL,
    pr_number       INTEGER NOT NULL,
    snapshot_json   TEXT NOT NULL,
    PRIMARY KEY (repo, pr_number)
);
"""


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteStore(SnapshotBackedStore):
    """Stores everything in a local SQLite database file.

    The database file path defaults to `.prtalk.db` in the current working
    directory. Configure via .prtalk.yml: `store_path: /path/to/prtalk.db`.

    The connection is shared across the aggregator's worker threads, so it is
    opened with check_same_thread=False and every statement runs under a lock.
    """

    def __init__(self, db_path: str = ".prtalk.db"):
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    # ------------------------------------------------------------------ #
    # Sessions                                                             #
    # ------------------------------------------------------------------ #

    def create_session(self, session: Session) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO sessions
                  (session_id, user_id, scope_kind, repo, pr_number, title,
                   created_at, last_activity, closed_at, granted_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.session_id,
                    session.user_id,
                    session.scope.kind.value,
                    session.scope.repo,
                    session.scope.pr_number,
                    session.title,
                    _ts(session.created_at),
                    _ts(session.last_activity),
                    _ts(session.closed_at),
                    json.dumps(sorted(session.granted_user_ids)),
                ),
            )
            self._conn.commit()

    def get_session(self, session_id: str) -> Session | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM sessions WHERE session_id=?", (session_id,)).fetchone()
        return self._row_to_session(row) if row else None

    def list_sessions(self, user_id: str) -> list[Session]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM sessions WHERE user_id=? AND closed_at IS NULL ORDER BY last_activity DESC",
                (user_id,),
            ).fetchall()
        return [self._row_to_session(r) for r in rows]

    def touch_session(self, session_id: str, when: datetime) -> None:
        with self._lock:
            self._conn.execute("UPDATE sessions SET last_activity=? WHERE session_id=?", (_ts(when), session_id))
            self._conn.commit()

    def close_session(self, session_id: str, when: datetime) -> None:
        with self._lock:
            self._conn.execute("UPDATE sessions SET closed_at=? WHERE session_id=?", (_ts(when), session_id))
            self._conn.commit()

    # ------------------------------------------------------------------ #
    # Turns                                                                #
    # ------------------------------------------------------------------ #

    def append_turn(self, turn: Turn) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO turns
                  (turn_id, session_id, sender, content, content_kind,
                   classification, metadata_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    turn.turn_id,
                    turn.session_id,
                    turn.sender.value,
                    turn.content,
                    turn.content_kind.value,
                    turn.classification,
                    json.dumps(turn.metadata) if turn.metadata is not None else None,
                    _ts(turn.created_at),
                ),
            )
            self._conn.commit()

    def list_turns(self, session_id: str, limit: int | None = None) -> list[Turn]:
        with self._lock:
            if limit:
                rows = self._conn.execute(
                    "SELECT * FROM turns WHERE session_id=? ORDER BY seq DESC LIMIT ?",
                    (session_id, limit),
                ).fetchall()
                rows = list(reversed(rows))
            else:
                rows = self._conn.execute(
                    "SELECT * FROM turns WHERE session_id=? ORDER BY seq",
                    (session_id,),
                ).fetchall()
        return [self._row_to_turn(r) for r in rows]

    # ------------------------------------------------------------------ #
    # Snapshots                                                            #
    # ------------------------------------------------------------------ #

    def save_snapshot(self, snapshot: PullRequestSnapshot) -> None:
        payload = json.dumps(snapshot_to_dict(snapshot))
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO snapshots (repo, pr_number, snapshot_json) VALUES (?, ?, ?)",
                (snapshot.pull.repo, snapshot.pull.number, payload),
            )
            self._conn.commit()
        logger.debug("Saved snapshot for %s#%d", snapshot.pull.repo, snapshot.pull.number)

    def _load_snapshot(self, repo: str, number: int) -> PullRequestSnapshot | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT snapshot_json FROM snapshots WHERE repo=? AND pr_number=?",
                (repo, number),
            ).fetchone()
        return snapshot_from_dict(json.loads(row["snapshot_json"])) if row else None

    def _load_repo_snapshots(self, repo: str) -> list[PullRequestSnapshot]:
        with self._lock:
            rows = self._conn.execute("SELECT snapshot_json FROM snapshots WHERE repo=?", (repo,)).fetchall()
        return [snapshot_from_dict(json.loads(r["snapshot_json"])) for r in rows]

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------ #
    # Row mapping                                                          #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        return Session(
            session_id=row["session_id"],
            user_id=row["user_id"],
            scope=SessionScope(
                kind=ScopeKind(row["scope_kind"]),
                repo=row["repo"],
                pr_number=row["pr_number"],
            ),
            title=row["title"] or "",
            created_at=_dt(row["created_at"]),
            last_activity=_dt(row["last_activity"]),
            closed_at=_dt(row["closed_at"]),
            granted_user_ids=set(json.loads(row["granted_json"] or "[]")),
        )

    @staticmethod
    def _row_to_turn(row: sqlite3.Row) -> Turn:
        return Turn(
            turn_id=row["turn_id"],
            session_id=row["session_id"],
            sender=SenderKind(row["sender"]),
            content=row["content"],
            content_kind=ContentKind(row["content_kind"]),
            classification=row["classification"],
            metadata=json.loads(row["metadata_json"]) if row["metadata_json"] else None,
            created_at=_dt(row["created_at"]),
        )
