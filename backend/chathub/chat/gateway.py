"""Fan-out gateway: delivers named events to named audiences.

The session coordinator never touches a transport. It asks the gateway to
deliver an event to one connection, to everyone in a room (optionally
excluding one connection), or to everyone connected. Room audiences are
resolved from the presence registry at delivery time.

Frames are JSON objects of the form ``{"event": <name>, "data": <payload>}``.

Performance Notes:
    - Delivery uses asyncio.gather() so one slow socket does not serialize
      the rest of the room
    - Connections whose send fails are detached after the broadcast
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Union

from chathub.presence.registry import PresenceRegistry

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    """Anything that can receive a JSON frame (a FastAPI WebSocket does)."""

    async def send_json(self, data: Any) -> None: ...


@dataclass(frozen=True)
class ToConnection:
    """A single connection, typically the one that sent the event."""
    connection_id: str


@dataclass(frozen=True)
class ToRoom:
    """Every connection in a room, minus ``exclude`` if given."""
    room: str
    exclude: Optional[str] = None


@dataclass(frozen=True)
class ToEveryone:
    """Every attached connection."""


Audience = Union[ToConnection, ToRoom, ToEveryone]


def make_frame(event: str, payload: Any) -> Dict[str, Any]:
    return {"event": event, "data": payload}


class FanoutGateway:
    """Addresses events to audiences and writes them to attached sinks.

    Args:
        presence: Registry used to resolve room audiences.
    """

    def __init__(self, presence: PresenceRegistry) -> None:
        self._presence = presence
        self._sinks: Dict[str, EventSink] = {}

    def attach(self, connection_id: str, sink: EventSink) -> None:
        self._sinks[connection_id] = sink

    def detach(self, connection_id: str) -> Optional[EventSink]:
        return self._sinks.pop(connection_id, None)

    def is_attached(self, connection_id: str) -> bool:
        return connection_id in self._sinks

    @property
    def connection_count(self) -> int:
        return len(self._sinks)

    def resolve(self, audience: Audience) -> List[str]:
        """Return the attached connection IDs an audience currently covers."""
        if isinstance(audience, ToConnection):
            targets = [audience.connection_id]
        elif isinstance(audience, ToRoom):
            targets = [
                conn_id for conn_id in self._presence.connections_in(audience.room)
                if conn_id != audience.exclude
            ]
        elif isinstance(audience, ToEveryone):
            targets = list(self._sinks)
        else:
            raise TypeError(f"Unknown audience: {audience!r}")
        return [conn_id for conn_id in targets if conn_id in self._sinks]

    async def deliver(self, event: str, payload: Any, audience: Audience) -> int:
        """Deliver one event to an audience.

        Args:
            event: Event name, e.g. "receive_message".
            payload: JSON-serializable event data.
            audience: Who should receive it.

        Returns:
            Number of connections the frame was written to.
        """
        targets = self.resolve(audience)
        if not targets:
            return 0

        frame = make_frame(event, payload)
        sinks = [self._sinks[conn_id] for conn_id in targets]
        results = await asyncio.gather(
            *[self._safe_send(sink, frame) for sink in sinks],
            return_exceptions=True
        )

        failed = [
            conn_id for conn_id, success in zip(targets, results)
            if success is not True
        ]
        self._cleanup_connections(failed)
        return len(targets) - len(failed)

    async def send_to(self, connection_id: str, event: str, payload: Any) -> int:
        return await self.deliver(event, payload, ToConnection(connection_id))

    async def to_room(self, room: str, event: str, payload: Any, exclude: Optional[str] = None) -> int:
        return await self.deliver(event, payload, ToRoom(room, exclude))

    async def to_everyone(self, event: str, payload: Any) -> int:
        return await self.deliver(event, payload, ToEveryone())

    async def _safe_send(self, sink: EventSink, frame: dict) -> bool:
        """Write a frame, reporting failure instead of raising."""
        try:
            await sink.send_json(frame)
            return True
        except Exception as e:
            logger.debug(f"[Gateway] Failed to send to connection: {e}")
            return False

    def _cleanup_connections(self, failed: List[str]) -> None:
        for conn_id in failed:
            if self._sinks.pop(conn_id, None) is not None:
                logger.debug(f"[Gateway] Detached dead connection {conn_id}")
