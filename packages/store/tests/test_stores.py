"""Tests for prtalk-store implementations."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from prtalk_store.codec import snapshot_from_dict, snapshot_to_dict
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
    SenderKind,
    Session,
    SessionScope,
    Turn,
    UserRef,
)
from prtalk_store.sqlite import SQLiteStore

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
SCOPE = SessionScope(kind=ScopeKind.ARTIFACT, repo="owner/repo", pr_number=1)


def _make_snapshot(number=1, state="open", updated_at=T0, with_repository=True):
    return PullRequestSnapshot(
        pull=PullRequestRecord(
            repo="owner/repo",
            number=number,
            title=f"PR {number}",
            author=UserRef(login="alice"),
            state=state,
            created_at=T0,
            updated_at=updated_at,
        ),
        repository=RepositoryRecord(owner="owner", name="repo", topics=["auth"]) if with_repository else None,
        summary=AutomatedSummary(summary="Fixes auth.", overall_score=7, issues_found=["Missing null check"]),
        files=[
            FileChange(filename="src/auth.py", additions=10, deletions=2, language="Python"),
            FileChange(filename="docs/auth.md", additions=3),
        ],
        reviews=[
            ReviewEntry(review_id="r1", reviewer=UserRef(login="bob"), state="COMMENTED", submitted_at=T0),
            ReviewEntry(
                review_id="r2", reviewer=UserRef(login="carol"), state="APPROVED", submitted_at=T0 + timedelta(hours=1)
            ),
        ],
        comments=[
            CommentEntry(comment_id=str(i), author=UserRef(login="bob"), body=f"c{i}", created_at=T0 + timedelta(i))
            for i in range(3)
        ],
        commits=[
            CommitEntry(sha="a" * 40, message="first", author="Alice", committed_at=T0),
            CommitEntry(sha="b" * 40, message="undated", author="Alice"),
        ],
    )


def _session(session_id="s1", user_id="alice", last_activity=T0, granted=()):
    return Session(
        session_id=session_id,
        user_id=user_id,
        scope=SCOPE,
        title="Chat",
        created_at=T0,
        last_activity=last_activity,
        granted_user_ids=set(granted),
    )


def _turn(turn_id, session_id="s1", sender=SenderKind.ASKER, metadata=None):
    return Turn(
        turn_id=turn_id, session_id=session_id, sender=sender, content=f"turn {turn_id}", metadata=metadata
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        s = MemoryStore()
    else:
        s = SQLiteStore(str(tmp_path / "prtalk.db"))
    yield s
    s.close()


# ---------------------------------------------------------------------------
# Sessions and turns (both backends)
# ---------------------------------------------------------------------------


class TestSessions:
    def test_create_and_get(self, store):
        store.create_session(_session(granted=["carol"]))
        session = store.get_session("s1")
        assert session.user_id == "alice"
        assert session.scope == SCOPE
        assert session.granted_user_ids == {"carol"}
        assert not session.is_closed

    def test_get_unknown_returns_none(self, store):
        assert store.get_session("missing") is None

    def test_list_sessions_newest_activity_first(self, store):
        store.create_session(_session("old", last_activity=T0))
        store.create_session(_session("new", last_activity=T0 + timedelta(hours=1)))
        store.create_session(_session("other", user_id="bob"))
        assert [s.session_id for s in store.list_sessions("alice")] == ["new", "old"]

    def test_touch_moves_session_up(self, store):
        store.create_session(_session("a", last_activity=T0))
        store.create_session(_session("b", last_activity=T0 + timedelta(hours=1)))
        store.touch_session("a", T0 + timedelta(hours=2))
        assert [s.session_id for s in store.list_sessions("alice")] == ["a", "b"]

    def test_closed_sessions_are_not_listed(self, store):
        store.create_session(_session())
        store.close_session("s1", T0 + timedelta(days=1))
        assert store.list_sessions("alice") == []
        assert store.get_session("s1").is_closed

    def test_user_can_access(self, store):
        store.create_session(_session(granted=["carol"]))
        assert store.user_can_access("s1", "alice")
        assert store.user_can_access("s1", "carol")
        assert not store.user_can_access("s1", "mallory")
        assert not store.user_can_access("missing", "alice")


class TestTurns:
    def test_turns_in_insertion_order(self, store):
        store.create_session(_session())
        for i in range(4):
            store.append_turn(_turn(f"t{i}"))
        assert [t.turn_id for t in store.list_turns("s1")] == ["t0", "t1", "t2", "t3"]

    def test_limit_keeps_most_recent_in_order(self, store):
        store.create_session(_session())
        for i in range(4):
            store.append_turn(_turn(f"t{i}"))
        assert [t.turn_id for t in store.list_turns("s1", limit=2)] == ["t2", "t3"]

    def test_metadata_round_trips(self, store):
        store.create_session(_session())
        store.append_turn(_turn("t0", sender=SenderKind.ASSISTANT, metadata={"confidence": 0.8, "followups": ["x?"]}))
        [turn] = store.list_turns("s1")
        assert turn.sender is SenderKind.ASSISTANT
        assert turn.metadata == {"confidence": 0.8, "followups": ["x?"]}

    def test_sessions_do_not_share_turns(self, store):
        store.create_session(_session("s1"))
        store.create_session(_session("s2"))
        store.append_turn(_turn("t0", session_id="s2"))
        assert store.list_turns("s1") == []


# ---------------------------------------------------------------------------
# Pull request read side (both backends)
# ---------------------------------------------------------------------------


class TestSnapshots:
    def test_nothing_loaded(self, store):
        assert store.get_artifact_metadata(SCOPE) is None
        assert store.get_files(SCOPE) is None
        assert store.get_repository_overview("owner/repo") is None

    def test_metadata_and_summary(self, store):
        store.save_snapshot(_make_snapshot())
        assert store.get_artifact_metadata(SCOPE).title == "PR 1"
        assert store.get_automated_summary(SCOPE).overall_score == 7

    def test_file_hints_filter_case_insensitively(self, store):
        store.save_snapshot(_make_snapshot())
        assert [f.filename for f in store.get_files(SCOPE, ["AUTH.PY"])] == ["src/auth.py"]
        assert store.get_files(SCOPE, ["nothing"]) is None

    def test_reviews_newest_first(self, store):
        store.save_snapshot(_make_snapshot())
        assert [r.review_id for r in store.get_reviews(SCOPE)] == ["r2", "r1"]

    def test_comments_newest_first_with_limit(self, store):
        store.save_snapshot(_make_snapshot())
        assert [c.comment_id for c in store.get_comments(SCOPE, limit=2)] == ["2", "1"]

    def test_undated_commits_sort_last(self, store):
        store.save_snapshot(_make_snapshot())
        assert [c.message for c in store.get_commits(SCOPE)] == ["first", "undated"]

    def test_save_replaces_existing(self, store):
        store.save_snapshot(_make_snapshot())
        updated = _make_snapshot()
        updated.pull.title = "Renamed"
        store.save_snapshot(updated)
        assert store.get_artifact_metadata(SCOPE).title == "Renamed"

    def test_collection_scope_has_no_artifact(self, store):
        store.save_snapshot(_make_snapshot())
        assert store.get_files(SessionScope(kind=ScopeKind.COLLECTION, repo="owner/repo")) is None

    def test_repository_overview(self, store):
        store.save_snapshot(_make_snapshot(1, updated_at=T0))
        store.save_snapshot(_make_snapshot(2, state="merged", updated_at=T0 + timedelta(days=1)))
        overview = store.get_repository_overview("owner/repo")
        assert overview.repository.full_name == "owner/repo"
        assert overview.total_pulls == 2
        assert overview.open_pulls == 1
        assert overview.merged_pulls == 1
        assert [p.number for p in overview.recent_pulls] == [2, 1]

    def test_overview_without_repository_record(self, store):
        store.save_snapshot(_make_snapshot(with_repository=False))
        assert store.get_repository_overview("owner/repo").repository.full_name == "owner/repo"


# ---------------------------------------------------------------------------
# SQLiteStore specifics
# ---------------------------------------------------------------------------


class TestSQLiteStore:
    def test_data_survives_reopen(self, tmp_path):
        path = str(tmp_path / "prtalk.db")
        first = SQLiteStore(path)
        first.create_session(_session())
        first.append_turn(_turn("t0"))
        first.save_snapshot(_make_snapshot())
        first.close()

        second = SQLiteStore(path)
        try:
            assert second.get_session("s1").created_at == T0
            assert [t.turn_id for t in second.list_turns("s1")] == ["t0"]
            assert second.get_reviews(SCOPE)[0].submitted_at == T0 + timedelta(hours=1)
        finally:
            second.close()


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


class TestCodec:
    def test_snapshot_survives_json(self):
        snapshot = _make_snapshot()
        assert snapshot_from_dict(json.loads(json.dumps(snapshot_to_dict(snapshot)))) == snapshot

    def test_minimal_export(self):
        snapshot = snapshot_from_dict(
            {
                "pull": {
                    "repo": "owner/repo",
                    "number": 3,
                    "title": "T",
                    "author": "dana",
                    "created_at": "2024-03-01T09:00:00Z",
                },
                "reviews": [{"review_id": "r", "reviewer": {"login": "bob"}, "state": "APPROVED", "extra": 1}],
            }
        )
        assert snapshot.pull.author.login == "dana"
        assert snapshot.pull.created_at == T0
        assert snapshot.reviews[0].reviewer.login == "bob"
        assert snapshot.files == []
        assert snapshot.summary is None

    def test_missing_pull_raises(self):
        with pytest.raises(KeyError):
            snapshot_from_dict({"files": []})
