"""Presence registry: the source of truth for who is online where.

The registry maps a connection ID to its session. It is keyed by connection,
not identity, so one identity may hold several sessions (multi-device).

Thread Safety:
    Designed for a single asyncio event loop. Only the session coordinator
    mutates it; the fan-out gateway reads it to resolve room audiences.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional

from chathub.errors import NotAuthenticated

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """An authenticated connection.

    Attributes:
        connection_id: Transport connection identifier.
        identity: Authenticated username.
        room: Current room name.
        joined_at: When the session was installed (UTC).
    """
    connection_id: str
    identity: str
    room: str
    joined_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class RoomMove:
    """Result of moving a session between rooms."""
    old_room: str
    new_room: str

    @property
    def changed(self) -> bool:
        return self.old_room != self.new_room


class PresenceRegistry:
    """Owns every live session, keyed by connection ID.

    Sessions are kept in room-entry order: installing or moving a session
    re-inserts it at the end, so ``users_in`` lists identities in the order
    they entered the room.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}

    def put(self, connection_id: str, identity: str, room: str) -> Session:
        """Install or overwrite the session for a connection."""
        if not identity:
            raise ValueError("identity must not be empty")
        if not room:
            raise ValueError("room must not be empty")
        self._sessions.pop(connection_id, None)
        session = Session(connection_id=connection_id, identity=identity, room=room)
        self._sessions[connection_id] = session
        return session

    def remove(self, connection_id: str) -> Optional[Session]:
        """Remove a connection's session; returns None if there was none."""
        return self._sessions.pop(connection_id, None)

    def get(self, connection_id: str) -> Optional[Session]:
        return self._sessions.get(connection_id)

    def move_room(self, connection_id: str, new_room: str) -> RoomMove:
        """Move a session to another room.

        Returns a ``RoomMove`` whose ``changed`` is False when the session is
        already in ``new_room``; callers treat that as nothing to broadcast.

        Raises:
            NotAuthenticated: If the connection has no session.
        """
        session = self._sessions.get(connection_id)
        if session is None:
            raise NotAuthenticated(connection_id)
        if not new_room:
            raise ValueError("room must not be empty")
        old_room = session.room
        if old_room == new_room:
            return RoomMove(old_room=old_room, new_room=new_room)
        del self._sessions[connection_id]
        session.room = new_room
        self._sessions[connection_id] = session
        return RoomMove(old_room=old_room, new_room=new_room)

    def sessions_in(self, room: str) -> List[Session]:
        return [s for s in self._sessions.values() if s.room == room]

    def connections_in(self, room: str) -> List[str]:
        return [s.connection_id for s in self._sessions.values() if s.room == room]

    def users_in(self, room: str) -> List[str]:
        """Distinct identities in a room, in room-entry order."""
        users: List[str] = []
        for session in self._sessions.values():
            if session.room == room and session.identity not in users:
                users.append(session.identity)
        return users

    def count_in(self, room: str) -> int:
        return len(self.users_in(room))

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))
