"""Session rooms: who is watching which conversation, and fan-out to them.

Holds routing only, never business data. Rooms are keyed by session id and
each room has its own lock, so joining or broadcasting in one session never
waits on another.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Iterable

from prtalk_core.errors import SessionNotFound, Unauthorized
from prtalk_core.utils.locks import KeyedLock

if TYPE_CHECKING:
    from prtalk_store.base import BaseStore

logger = logging.getLogger(__name__)

MESSAGE_NEW = "message:new"
MESSAGE_TYPING = "message:typing"
SESSION_UPDATED = "session:updated"
ERROR = "error"


class Connection(ABC):
    """One observer attached to the assistant (a terminal, a socket, a test)."""

    def __init__(self, user_id: str, connection_id: str | None = None):
        self.user_id = user_id
        self.connection_id = connection_id or uuid.uuid4().hex

    @abstractmethod
    async def send(self, event: str, payload: dict) -> None:
        """Deliver one event. May raise; the broadcaster logs and skips."""


class QueueConnection(Connection):
    """Connection backed by an asyncio.Queue; readers await receive()."""

    def __init__(self, user_id: str, connection_id: str | None = None, maxsize: int = 1000):
        super().__init__(user_id, connection_id)
        self.queue: asyncio.Queue[tuple[str, dict]] = asyncio.Queue(maxsize=maxsize)

    async def send(self, event: str, payload: dict) -> None:
        # put_nowait raises QueueFull for a reader that fell behind.
        self.queue.put_nowait((event, payload))

    async def receive(self, timeout: float | None = None) -> tuple[str, dict]:
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)

    def drain(self) -> list[tuple[str, dict]]:
        events = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events


class SessionBroadcaster:
    def __init__(self, store: BaseStore):
        self.store = store
        self._connections: dict[str, Connection] = {}
        self._rooms: dict[str, set[str]] = {}
        self._memberships: dict[str, set[str]] = {}  # connection id -> session ids
        self._locks = KeyedLock()

    # ------------------------------------------------------------------ #
    # Connections and rooms                                                #
    # ------------------------------------------------------------------ #

    def register(self, connection: Connection) -> Connection:
        self._connections[connection.connection_id] = connection
        self._memberships.setdefault(connection.connection_id, set())
        return connection

    async def join(self, connection_id: str, session_id: str) -> None:
        """Add the connection to the session's room once its user may read the session.

        Raises SessionNotFound for unknown or closed sessions and Unauthorized
        when the user neither owns nor was granted the session.
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            raise KeyError(f"Unknown connection {connection_id!r}; register it first")

        session = await asyncio.to_thread(self.store.get_session, session_id)
        if session is None or session.is_closed:
            raise SessionNotFound(f"Session {session_id} not found")
        if not session.can_be_read_by(connection.user_id):
            raise Unauthorized(f"{connection.user_id} may not observe session {session_id}")

        async with self._locks.hold(session_id):
            self._rooms.setdefault(session_id, set()).add(connection_id)
            self._memberships.setdefault(connection_id, set()).add(session_id)
        logger.debug("Connection %s joined session %s", connection_id, session_id)

    async def leave(self, connection_id: str, session_id: str) -> None:
        async with self._locks.hold(session_id):
            room = self._rooms.get(session_id)
            if room is not None:
                room.discard(connection_id)
                if not room:
                    del self._rooms[session_id]
            self._memberships.get(connection_id, set()).discard(session_id)

    async def disconnect(self, connection_id: str) -> None:
        for session_id in list(self._memberships.get(connection_id, ())):
            await self.leave(connection_id, session_id)
        self._memberships.pop(connection_id, None)
        self._connections.pop(connection_id, None)

    # ------------------------------------------------------------------ #
    # Fan-out                                                              #
    # ------------------------------------------------------------------ #

    async def broadcast(
        self,
        session_id: str,
        event: str,
        payload: dict[str, Any],
        exclude_ids: Iterable[str] = (),
    ) -> int:
        """Send an event to every observer of the session; returns how many received it."""
        excluded = set(exclude_ids)
        async with self._locks.hold(session_id):
            members = self._rooms.get(session_id)
            if not members:
                logger.warning("Broadcast of %s to session %s with no observers", event, session_id)
                return 0
            delivered = 0
            for connection_id in sorted(members - excluded):
                connection = self._connections.get(connection_id)
                if connection is None:
                    continue
                try:
                    await connection.send(event, payload)
                    delivered += 1
                except Exception as e:
                    logger.warning("Dropping %s for connection %s: %s", event, connection_id, e)
            return delivered

    async def send_error(self, connection_id: str, code: str, message: str) -> None:
        connection = self._connections.get(connection_id)
        if connection is None:
            return
        try:
            await connection.send(ERROR, {"code": code, "message": message})
        except Exception as e:
            logger.warning("Could not deliver error to connection %s: %s", connection_id, e)

    # ------------------------------------------------------------------ #
    # Introspection                                                        #
    # ------------------------------------------------------------------ #

    def connection(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def session_users(self, session_id: str) -> list[str]:
        users = {self._connections[c].user_id for c in self._rooms.get(session_id, ()) if c in self._connections}
        return sorted(users)

    def session_user_count(self, session_id: str) -> int:
        return len(self.session_users(session_id))

    @property
    def active_sessions(self) -> list[str]:
        return sorted(self._rooms)
