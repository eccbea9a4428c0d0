"""Room directory: the room set and its derived occupancy.

Rooms live in an open registry (name -> metadata) seeded from configuration.
Listing order is registration order, never alphabetical or by occupancy, so
client sidebars stay stable across updates.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List

from pydantic import BaseModel, Field

from chathub.errors import UnknownRoom
from chathub.presence.registry import PresenceRegistry

logger = logging.getLogger(__name__)


class RoomInfo(BaseModel):
    """Metadata kept for a registered room."""
    name: str
    description: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RoomSummary(BaseModel):
    """Room name with its current occupant count (wire format)."""
    name: str
    userCount: int = 0


class RoomDirectory:
    """Ordered room registry with occupancy derived from presence.

    Args:
        presence: Registry occupancy is computed from.
        names: Initial room names, in display order.
        default_room: Room used when a join names none.
        allow_dynamic: Register unknown room names on demand instead of
            rejecting them with ``UnknownRoom``.
    """

    def __init__(
        self,
        presence: PresenceRegistry,
        names: Iterable[str],
        default_room: str = "general",
        allow_dynamic: bool = False,
    ) -> None:
        self._presence = presence
        self._rooms: Dict[str, RoomInfo] = {}
        self.allow_dynamic = allow_dynamic
        for name in names:
            self.add(name)
        self.add(default_room)
        self._default_room = default_room

    @property
    def default_room(self) -> str:
        return self._default_room

    def add(self, name: str, description: str = "") -> RoomInfo:
        """Register a room; returns the existing entry if already known."""
        name = name.strip()
        if not name:
            raise ValueError("room name must not be empty")
        if name not in self._rooms:
            self._rooms[name] = RoomInfo(name=name, description=description)
            logger.debug("[Rooms] Registered room %s", name)
        return self._rooms[name]

    def has(self, name: str) -> bool:
        return name in self._rooms

    def names(self) -> List[str]:
        return list(self._rooms)

    def info(self, name: str) -> RoomInfo:
        if name not in self._rooms:
            raise UnknownRoom(name)
        return self._rooms[name]

    def resolve(self, name: str) -> str:
        """Validate a requested room name.

        An empty name resolves to the default room. Unknown names are
        registered when dynamic rooms are allowed.

        Raises:
            UnknownRoom: If the room is not registered and the set is closed.
        """
        name = (name or "").strip() or self._default_room
        if name in self._rooms:
            return name
        if self.allow_dynamic:
            self.add(name)
            logger.info("[Rooms] Created room %s on demand", name)
            return name
        raise UnknownRoom(name)

    def list(self) -> List[RoomSummary]:
        """All rooms with occupant counts, in registration order."""
        return [
            RoomSummary(name=name, userCount=self._presence.count_in(name))
            for name in self._rooms
        ]
