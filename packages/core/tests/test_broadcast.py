"""Tests for session rooms and event fan-out."""

import logging

import pytest

from prtalk_core.broadcast import (
    ERROR,
    MESSAGE_NEW,
    Connection,
    QueueConnection,
    SessionBroadcaster,
)
from prtalk_core.errors import SessionNotFound, Unauthorized
from prtalk_store.models import Session, utcnow


class _BrokenConnection(Connection):
    async def send(self, event, payload):
        raise ConnectionResetError("socket closed")


@pytest.fixture
def broadcaster(store, session):
    return SessionBroadcaster(store)


async def _joined(broadcaster, user_id, connection_id, session_id="s1"):
    connection = broadcaster.register(QueueConnection(user_id, connection_id))
    await broadcaster.join(connection_id, session_id)
    return connection


class TestJoin:
    async def test_owner_and_granted_user_can_join(self, broadcaster):
        await _joined(broadcaster, "alice", "c-alice")
        await _joined(broadcaster, "carol", "c-carol")
        assert broadcaster.session_users("s1") == ["alice", "carol"]
        assert broadcaster.session_user_count("s1") == 2
        assert broadcaster.active_sessions == ["s1"]

    async def test_stranger_is_rejected(self, broadcaster):
        broadcaster.register(QueueConnection("mallory", "c-mallory"))
        with pytest.raises(Unauthorized):
            await broadcaster.join("c-mallory", "s1")
        assert broadcaster.active_sessions == []

    async def test_unknown_session(self, broadcaster):
        broadcaster.register(QueueConnection("alice", "c-alice"))
        with pytest.raises(SessionNotFound):
            await broadcaster.join("c-alice", "missing")

    async def test_closed_session(self, broadcaster, store):
        store.close_session("s1", utcnow())
        broadcaster.register(QueueConnection("alice", "c-alice"))
        with pytest.raises(SessionNotFound):
            await broadcaster.join("c-alice", "s1")

    async def test_unregistered_connection(self, broadcaster):
        with pytest.raises(KeyError):
            await broadcaster.join("nobody", "s1")


class TestBroadcast:
    async def test_every_member_receives_event(self, broadcaster):
        alice = await _joined(broadcaster, "alice", "c-alice")
        carol = await _joined(broadcaster, "carol", "c-carol")

        delivered = await broadcaster.broadcast("s1", MESSAGE_NEW, {"text": "hi"})

        assert delivered == 2
        assert alice.drain() == [(MESSAGE_NEW, {"text": "hi"})]
        assert carol.drain() == [(MESSAGE_NEW, {"text": "hi"})]

    async def test_excluded_connection_skipped(self, broadcaster):
        alice = await _joined(broadcaster, "alice", "c-alice")
        carol = await _joined(broadcaster, "carol", "c-carol")

        delivered = await broadcaster.broadcast("s1", MESSAGE_NEW, {}, exclude_ids=["c-alice"])

        assert delivered == 1
        assert alice.drain() == []
        assert len(carol.drain()) == 1

    async def test_failing_connection_does_not_stop_others(self, broadcaster):
        broadcaster.register(_BrokenConnection("alice", "c-broken"))
        await broadcaster.join("c-broken", "s1")
        carol = await _joined(broadcaster, "carol", "c-carol")

        assert await broadcaster.broadcast("s1", MESSAGE_NEW, {}) == 1
        assert len(carol.drain()) == 1

    async def test_no_observers_returns_zero_and_warns(self, broadcaster, caplog):
        with caplog.at_level(logging.WARNING, logger="prtalk_core.broadcast"):
            assert await broadcaster.broadcast("s1", MESSAGE_NEW, {}) == 0
        assert "no observers" in caplog.text

    async def test_sessions_are_isolated(self, broadcaster, store, session):
        other = Session(session_id="s2", user_id="alice", scope=session.scope, title="Other")
        store.create_session(other)
        in_s1 = await _joined(broadcaster, "alice", "c-1")
        await _joined(broadcaster, "alice", "c-2", session_id="s2")

        await broadcaster.broadcast("s2", MESSAGE_NEW, {})

        assert in_s1.drain() == []


class TestLeaveAndDisconnect:
    async def test_leave_removes_empty_room(self, broadcaster):
        await _joined(broadcaster, "alice", "c-alice")
        await broadcaster.leave("c-alice", "s1")
        assert broadcaster.active_sessions == []
        assert await broadcaster.broadcast("s1", MESSAGE_NEW, {}) == 0

    async def test_disconnect_forgets_connection(self, broadcaster):
        await _joined(broadcaster, "alice", "c-alice")
        await _joined(broadcaster, "carol", "c-carol")

        await broadcaster.disconnect("c-alice")

        assert broadcaster.connection("c-alice") is None
        assert broadcaster.session_users("s1") == ["carol"]


class TestSendError:
    async def test_error_goes_to_one_connection(self, broadcaster):
        alice = await _joined(broadcaster, "alice", "c-alice")
        carol = await _joined(broadcaster, "carol", "c-carol")

        await broadcaster.send_error("c-alice", "UNAUTHORIZED", "no access")

        assert alice.drain() == [(ERROR, {"code": "UNAUTHORIZED", "message": "no access"})]
        assert carol.drain() == []

    async def test_unknown_connection_is_ignored(self, broadcaster):
        await broadcaster.send_error("nobody", "MESSAGE_FAILED", "x")

    async def test_broken_connection_is_logged(self, broadcaster, caplog):
        broadcaster.register(_BrokenConnection("alice", "c-broken"))
        with caplog.at_level(logging.WARNING, logger="prtalk_core.broadcast"):
            await broadcaster.send_error("c-broken", "MESSAGE_FAILED", "x")
        assert "Could not deliver error" in caplog.text
