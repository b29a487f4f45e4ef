"""Tests for the CLI entry point."""

import json

from click.testing import CliRunner

from prtalk_cli.cli import _build_store, main
from prtalk_core.config import DEFAULT_CONFIG
from prtalk_core.providers.base import BaseModelClient
from prtalk_store.codec import snapshot_to_dict
from prtalk_store.memory import MemoryStore
from prtalk_store.models import (
    AutomatedSummary,
    FileChange,
    PullRequestRecord,
    PullRequestSnapshot,
    ScopeKind,
    SenderKind,
    Session,
    SessionScope,
    Turn,
    UserRef,
)
from prtalk_store.sqlite import SQLiteStore

SCOPE = SessionScope(kind=ScopeKind.ARTIFACT, repo="owner/repo", pr_number=1)
REPLY = json.dumps(
    {
        "answer": "The files changed are src/auth.py and docs/auth.md.",
        "message_type": "text",
        "context_used": ["files"],
        "followup_questions": ["Which tests cover src/auth.py?"],
        "confidence_score": 0.8,
        "sources": ["File: src/auth.py"],
    }
)


class _CannedClient(BaseModelClient):
    def __init__(self, reply=REPLY):
        super().__init__()
        self.reply = reply

    async def _call_api(self, system_prompt, user_prompt, model, options):
        return self.reply


def _make_config(github_token="tok", provider="openai", openai_key="sk", anthropic_key=None):
    return dict(
        DEFAULT_CONFIG,
        github_token=github_token,
        provider=provider,
        openai_api_key=openai_key,
        anthropic_api_key=anthropic_key,
        user=None,
        store="memory",
    )


def _make_snapshot(summary=None):
    return PullRequestSnapshot(
        pull=PullRequestRecord(repo="owner/repo", number=1, title="Fix auth bug", author=UserRef(login="alice")),
        summary=summary,
        files=[
            FileChange(filename="src/auth.py", additions=10, deletions=2),
            FileChange(filename="docs/auth.md", additions=3),
        ],
    )


def _add_session(store, session_id="s1", user_id="alice"):
    store.create_session(Session(session_id=session_id, user_id=user_id, scope=SCOPE, title="Auth chat"))


def _patch_common(mocker, config=None, token="tok", store=None, user="alice"):
    """Patch load_config, token and user resolution, and _build_store for most tests."""
    cfg = config or _make_config()
    store = store if store is not None else MemoryStore()
    mocker.patch("prtalk_core.config.load_config", return_value=cfg)
    mocker.patch("prtalk_cli.auth.resolve_github_token", return_value=token)
    mocker.patch("prtalk_cli.auth.resolve_user", return_value=user)
    mocker.patch("prtalk_cli.cli._build_store", return_value=store)
    mocker.patch("prtalk_core.assistant.get_model_client", return_value=_CannedClient())
    return cfg, store


# ---------------------------------------------------------------------------
# Store selection
# ---------------------------------------------------------------------------


class TestBuildStore:
    def test_memory(self):
        assert isinstance(_build_store({"store": "memory"}), MemoryStore)

    def test_sqlite(self, tmp_path):
        store = _build_store({"store": "sqlite", "store_path": str(tmp_path / "x.db")})
        try:
            assert isinstance(store, SQLiteStore)
        finally:
            store.close()

    def test_unknown_falls_back_to_sqlite(self, tmp_path):
        store = _build_store({"store": "redis", "store_path": str(tmp_path / "x.db")})
        try:
            assert isinstance(store, SQLiteStore)
        finally:
            store.close()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestCLIValidation:
    def test_bad_config_file(self, mocker):
        mocker.patch("prtalk_core.config.load_config", side_effect=ValueError(".prtalk.yml must contain a mapping"))
        result = CliRunner().invoke(main, ["session", "list"])
        assert result.exit_code == 2
        assert "must contain a mapping" in result.output

    def test_fetch_without_github_token(self, mocker):
        _patch_common(mocker, config=_make_config(github_token=None), token=None)
        result = CliRunner().invoke(main, ["fetch", "--repo", "owner/repo", "--pr", "1"])
        assert result.exit_code != 0
        assert "GITHUB_TOKEN" in result.output

    def test_ask_without_openai_key(self, mocker):
        _, store = _patch_common(mocker, config=_make_config(openai_key=None))
        _add_session(store)
        result = CliRunner().invoke(main, ["ask", "s1", "What changed?"])
        assert result.exit_code != 0
        assert "OPENAI_API_KEY" in result.output

    def test_ask_without_anthropic_key(self, mocker):
        _, store = _patch_common(mocker, config=_make_config(provider="anthropic"))
        _add_session(store)
        result = CliRunner().invoke(main, ["ask", "s1", "What changed?"])
        assert result.exit_code != 0
        assert "ANTHROPIC_API_KEY" in result.output


# ---------------------------------------------------------------------------
# Loading pull requests
# ---------------------------------------------------------------------------


class TestImport:
    def test_imports_object_and_list(self, mocker, tmp_path):
        _, store = _patch_common(mocker)
        path = tmp_path / "prs.json"
        second = snapshot_to_dict(_make_snapshot())
        second["pull"]["number"] = 2
        path.write_text(json.dumps([snapshot_to_dict(_make_snapshot(AutomatedSummary(summary="ok"))), second]))

        result = CliRunner().invoke(main, ["import", str(path)])

        assert result.exit_code == 0, result.output
        assert "Imported owner/repo#1 with automated summary" in result.output
        assert store.get_automated_summary(SCOPE).summary == "ok"
        assert store.get_repository_overview("owner/repo").total_pulls == 2

    def test_invalid_json(self, mocker, tmp_path):
        _patch_common(mocker)
        path = tmp_path / "prs.json"
        path.write_text("{not json")
        result = CliRunner().invoke(main, ["import", str(path)])
        assert result.exit_code == 2
        assert "not valid JSON" in result.output

    def test_entry_without_pull(self, mocker, tmp_path):
        _patch_common(mocker)
        path = tmp_path / "prs.json"
        path.write_text(json.dumps({"files": []}))
        result = CliRunner().invoke(main, ["import", str(path)])
        assert result.exit_code == 2
        assert "Entry 0" in result.output


class TestFetch:
    def test_fetch_keeps_imported_summary(self, mocker):
        _, store = _patch_common(mocker)
        store.save_snapshot(_make_snapshot(AutomatedSummary(summary="earlier analysis")))
        mocker.patch("prtalk_cli.commands.fetch.get_repo", return_value=mocker.MagicMock())
        mocker.patch("prtalk_cli.commands.fetch.get_pull", return_value=mocker.MagicMock(number=1))
        mocker.patch("prtalk_cli.commands.fetch.build_snapshot", return_value=_make_snapshot())

        result = CliRunner().invoke(main, ["fetch", "--repo", "owner/repo", "--pr", "1"])

        assert result.exit_code == 0, result.output
        assert "Loaded owner/repo#1" in result.output
        assert store.get_automated_summary(SCOPE).summary == "earlier analysis"

    def test_all_open_with_no_pull_requests(self, mocker):
        _patch_common(mocker)
        mocker.patch("prtalk_cli.commands.fetch.get_repo", return_value=mocker.MagicMock())
        mocker.patch("prtalk_cli.commands.fetch.get_pull_requests", return_value=[])
        result = CliRunner().invoke(main, ["fetch", "--repo", "owner/repo", "--all-open"])
        assert result.exit_code == 0
        assert "No open pull requests found" in result.output


# ---------------------------------------------------------------------------
# Sessions and questions
# ---------------------------------------------------------------------------


class TestSessionCommands:
    def test_new_session(self, mocker):
        _, store = _patch_common(mocker)
        store.save_snapshot(_make_snapshot())

        result = CliRunner().invoke(main, ["session", "new", "--repo", "owner/repo", "--pr", "1", "--grant", "bob"])

        assert result.exit_code == 0, result.output
        [session] = store.list_sessions("alice")
        assert session.title == "Chat about PR #1: Fix auth bug"
        assert session.granted_user_ids == {"bob"}

    def test_new_session_for_unloaded_pull_request(self, mocker):
        _patch_common(mocker)
        result = CliRunner().invoke(main, ["session", "new", "--repo", "owner/repo", "--pr", "9"])
        assert result.exit_code == 1
        assert "ARTIFACT_NOT_FOUND" in result.output

    def test_list_sessions(self, mocker):
        _, store = _patch_common(mocker)
        _add_session(store)
        result = CliRunner().invoke(main, ["session", "list"])
        assert result.exit_code == 0
        assert "s1" in result.output

    def test_list_without_sessions(self, mocker):
        _patch_common(mocker)
        result = CliRunner().invoke(main, ["session", "list"])
        assert "No open sessions" in result.output

    def test_delete_needs_no_api_key(self, mocker):
        _, store = _patch_common(mocker, config=_make_config(openai_key=None))
        _add_session(store)
        result = CliRunner().invoke(main, ["session", "delete", "s1"])
        assert result.exit_code == 0, result.output
        assert store.get_session("s1").is_closed

    def test_delete_someone_elses_session(self, mocker):
        _, store = _patch_common(mocker, user="mallory")
        _add_session(store)
        result = CliRunner().invoke(main, ["session", "delete", "s1"])
        assert result.exit_code == 1
        assert "UNAUTHORIZED" in result.output
        assert not store.get_session("s1").is_closed


class TestAsk:
    def test_json_output(self, mocker):
        _, store = _patch_common(mocker)
        store.save_snapshot(_make_snapshot())
        _add_session(store)

        result = CliRunner().invoke(main, ["ask", "s1", "What files changed?", "--json"])

        assert result.exit_code == 0, result.output
        payload = json.loads(result.output[result.output.index("{") :])
        assert payload["classification"] == "file-listing"
        assert payload["origin"] == "model"
        assert payload["state"] == "delivered"
        assert [t.sender for t in store.list_turns("s1")] == [SenderKind.ASKER, SenderKind.ASSISTANT]

    def test_rendered_answer(self, mocker):
        _, store = _patch_common(mocker)
        store.save_snapshot(_make_snapshot())
        _add_session(store)
        result = CliRunner().invoke(main, ["ask", "s1", "What files changed?"])
        assert result.exit_code == 0, result.output
        assert "src/auth.py" in result.output

    def test_unknown_session(self, mocker):
        _patch_common(mocker)
        result = CliRunner().invoke(main, ["ask", "missing", "What changed?"])
        assert result.exit_code == 1
        assert "SESSION_NOT_FOUND" in result.output

    def test_empty_question(self, mocker):
        _, store = _patch_common(mocker)
        _add_session(store)
        result = CliRunner().invoke(main, ["ask", "s1", "   "])
        assert result.exit_code == 1
        assert "INVALID_QUESTION" in result.output


# ---------------------------------------------------------------------------
# History and stats
# ---------------------------------------------------------------------------


def _add_answer(store, turn_id, classification, confidence, origin="model"):
    store.append_turn(
        Turn(
            turn_id=turn_id,
            session_id="s1",
            sender=SenderKind.ASSISTANT,
            content=f"answer {turn_id}",
            classification=classification,
            metadata={"confidence": confidence, "origin": origin, "context_sources": ["files"]},
        )
    )


class TestHistory:
    def test_shows_turns(self, mocker):
        _, store = _patch_common(mocker)
        _add_session(store)
        store.append_turn(Turn(turn_id="q1", session_id="s1", sender=SenderKind.ASKER, content="What changed?"))
        _add_answer(store, "a1", "summary", 0.8)

        result = CliRunner().invoke(main, ["history", "s1"])

        assert result.exit_code == 0, result.output
        assert "What changed?" in result.output
        assert "assistant" in result.output

    def test_empty_session(self, mocker):
        _, store = _patch_common(mocker)
        _add_session(store)
        result = CliRunner().invoke(main, ["history", "s1"])
        assert "No messages in this session yet" in result.output


class TestStats:
    def test_summary_and_tables(self, mocker):
        _, store = _patch_common(mocker)
        _add_session(store)
        _add_answer(store, "a1", "file-listing", 0.8)
        _add_answer(store, "a2", "file-listing", 0.9, origin="fallback")

        result = CliRunner().invoke(main, ["stats", "s1"])

        assert result.exit_code == 0, result.output
        assert "Answers:        2" in result.output
        assert "Avg confidence: 0.85" in result.output
        assert "Fallbacks:      1" in result.output
        assert "file-listing" in result.output

    def test_no_answers(self, mocker):
        _, store = _patch_common(mocker)
        _add_session(store)
        result = CliRunner().invoke(main, ["stats", "s1"])
        assert "No answers in this session yet" in result.output

    def test_stranger_cannot_read_stats(self, mocker):
        _, store = _patch_common(mocker, user="mallory")
        _add_session(store)
        result = CliRunner().invoke(main, ["stats", "s1"])
        assert result.exit_code == 1
        assert "UNAUTHORIZED" in result.output


class TestChat:
    def test_needs_session_or_repo(self, mocker):
        _patch_common(mocker)
        result = CliRunner().invoke(main, ["chat"])
        assert result.exit_code == 2
        assert "--session" in result.output

    def test_new_session_answers_until_exit(self, mocker):
        _, store = _patch_common(mocker)
        store.save_snapshot(_make_snapshot())

        result = CliRunner().invoke(
            main, ["chat", "--repo", "owner/repo", "--pr", "1"], input="What files changed?\n\nexit\n"
        )

        assert result.exit_code == 0, result.output
        assert "Chat about PR #1: Fix auth bug" in result.output
        assert "src/auth.py" in result.output
        [session] = store.list_sessions("alice")
        assert len(store.list_turns(session.session_id)) == 2

    def test_unknown_session(self, mocker):
        _patch_common(mocker)
        result = CliRunner().invoke(main, ["chat", "--session", "missing"], input="exit\n")
        assert result.exit_code == 1
        assert "SESSION_NOT_FOUND" in result.output
