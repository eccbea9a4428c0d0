"""Session coordinator: the per-connection state machine of the chat.

Each connection moves through::

    ANONYMOUS -> AUTHENTICATED(room) -> AUTHENTICATED(other room)* -> CLOSED

The coordinator is the only component that mutates the presence registry and
calls the message store. It never writes to a transport itself; every
outgoing event goes through the fan-out gateway with an explicit audience.

Ordering guarantees:
    - join/switch: presence is installed first, then peers get ``user_joined``
      (excluding the joiner), then the joiner gets its ``room_joined``
      snapshot, then every room's members get ``room_users_update``. The
      joining connection never sees its own ``user_joined``.
    - send_message: room and author are captured before the store call; the
      broadcast goes to whoever is in that room when the store returns.

Error policy:
    Credential and registration errors are answered privately and never
    broadcast. Events from connections that are not authenticated are
    ignored, since late frames after a logout are expected.
"""
import logging
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ValidationError

from chathub.auth.service import CredentialStore
from chathub.errors import (
    DuplicateIdentity,
    InvalidCredential,
    MessageNotFound,
    StorageError,
    UnknownRoom,
)
from chathub.messages.schemas import MessageKind
from chathub.messages.store import DEFAULT_HISTORY_LIMIT, MessageStore
from chathub.presence.registry import PresenceRegistry, Session
from chathub.rooms.directory import RoomDirectory

from .gateway import FanoutGateway
from .schemas import (
    AddReactionRequest,
    JoinRequest,
    MessageReadRequest,
    PresenceNotice,
    ReactionAdded,
    ReadUpdate,
    RegisterRequest,
    RoomJoined,
    RoomUsersUpdate,
    SendMessageRequest,
    SwitchRoomRequest,
    TypingNotice,
)

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


def _dump(model: BaseModel) -> dict:
    return model.model_dump(mode="json")


class SessionCoordinator:
    """Drives connect -> authenticate -> join -> switch* -> disconnect.

    Args:
        store: Durable message store.
        credentials: Credential collaborator for register/verify.
        presence: Registry of live sessions (owned by this coordinator).
        directory: Room set and occupancy.
        gateway: Delivery layer for outgoing events.
        history_limit: Messages replayed in a ``room_joined`` snapshot.
    """

    def __init__(
        self,
        store: MessageStore,
        credentials: CredentialStore,
        presence: PresenceRegistry,
        directory: RoomDirectory,
        gateway: FanoutGateway,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self.store = store
        self.credentials = credentials
        self.presence = presence
        self.directory = directory
        self.gateway = gateway
        self.history_limit = history_limit
        self._states: Dict[str, ConnectionState] = {}

    # =========================================================================
    # Connection state
    # =========================================================================

    def connect(self, connection_id: str) -> None:
        """Register a new transport connection as anonymous."""
        self._states[connection_id] = ConnectionState.ANONYMOUS
        logger.info(f"[Coordinator] Connection opened: {connection_id}")

    def state(self, connection_id: str) -> ConnectionState:
        """Current state; unknown connections are reported as closed."""
        return self._states.get(connection_id, ConnectionState.CLOSED)

    def _session(self, connection_id: str) -> Optional[Session]:
        """Return the session for an authenticated connection, else None."""
        if self.state(connection_id) is not ConnectionState.AUTHENTICATED:
            logger.debug(f"[Coordinator] Ignoring event from unauthenticated connection {connection_id}")
            return None
        return self.presence.get(connection_id)

    # =========================================================================
    # Registration and join
    # =========================================================================

    async def register(self, connection_id: str, identity: str, secret: str) -> bool:
        """Create an identity; the connection stays anonymous either way.

        Returns:
            True if the identity was created.
        """
        if self.state(connection_id) is ConnectionState.CLOSED:
            return False

        identity = (identity or "").strip()
        if not identity or not secret:
            await self.gateway.send_to(connection_id, "register_error", "Username and password required")
            return False

        try:
            await self.credentials.register(identity, secret)
        except DuplicateIdentity as e:
            await self.gateway.send_to(connection_id, "register_error", e.message)
            return False
        except StorageError:
            await self.gateway.send_to(connection_id, "register_error", "Registration failed")
            return False

        await self.gateway.send_to(connection_id, "register_success", "Account created successfully")
        return True

    async def join(
        self,
        connection_id: str,
        identity: str,
        secret: str,
        room: Optional[str] = None,
    ) -> bool:
        """Authenticate a connection and place it in a room.

        Returns:
            True if the connection ended up authenticated in the room.
        """
        if self.state(connection_id) is ConnectionState.CLOSED:
            return False

        try:
            room = self.directory.resolve(room or "")
        except UnknownRoom as e:
            await self.gateway.send_to(connection_id, "auth_error", e.message)
            return False

        identity = (identity or "").strip()
        try:
            verified = bool(identity) and await self.credentials.verify(identity, secret or "")
        except StorageError:
            verified = False
        if not verified:
            await self.gateway.send_to(connection_id, "auth_error", InvalidCredential().message)
            return False

        if self.state(connection_id) is ConnectionState.CLOSED:
            return False

        # A second join on the same connection leaves the previous room first.
        previous = self.presence.remove(connection_id)
        if previous is not None:
            await self._announce_departure(previous)

        # (a) install presence
        self.presence.put(connection_id, identity, room)
        self._states[connection_id] = ConnectionState.AUTHENTICATED

        try:
            history = await self.store.history(room, self.history_limit)
        except StorageError:
            self.presence.remove(connection_id)
            self._states[connection_id] = ConnectionState.ANONYMOUS
            await self.gateway.send_to(connection_id, "auth_error", "Error loading chat history")
            if previous is not None:
                await self._broadcast_occupancy()
            return False

        if self.presence.get(connection_id) is None:
            # Disconnected while history was loading; disconnect() cleaned up.
            return False

        # (b) peers learn about the joiner, (c) joiner gets its snapshot
        await self._announce_arrival(connection_id, identity, room)
        await self._send_snapshot(connection_id, room, history)
        # (d) every room's sidebar counts
        await self._broadcast_occupancy()

        logger.info(f"[Coordinator] {identity} joined room: {room}")
        return True

    async def switch_room(self, connection_id: str, new_room: str) -> bool:
        """Move an authenticated connection to another room.

        Returns:
            True if the connection changed rooms.
        """
        session = self._session(connection_id)
        if session is None:
            return False

        try:
            new_room = self.directory.resolve(new_room)
        except UnknownRoom as e:
            await self.gateway.send_to(connection_id, "room_error", e.message)
            return False

        move = self.presence.move_room(connection_id, new_room)
        if not move.changed:
            return False

        await self.gateway.to_room(
            move.old_room,
            "user_left",
            _dump(PresenceNotice(
                username=session.identity,
                message=f"{session.identity} left the room",
                userCount=self.presence.count_in(move.old_room),
            )),
        )

        try:
            history = await self.store.history(new_room, self.history_limit)
        except StorageError:
            history = None

        await self._announce_arrival(connection_id, session.identity, new_room)
        if history is None:
            await self.gateway.send_to(connection_id, "room_error", "Error loading chat history")
        else:
            await self._send_snapshot(connection_id, new_room, history)
        await self._broadcast_occupancy()

        logger.info(f"[Coordinator] {session.identity} switched from {move.old_room} to {new_room}")
        return True

    # =========================================================================
    # Messages, receipts, reactions
    # =========================================================================

    async def send_message(
        self,
        connection_id: str,
        body: str,
        kind: MessageKind = MessageKind.TEXT,
        file_ref: Optional[str] = None,
    ) -> Optional[int]:
        """Persist a message and echo it to the whole room, sender included.

        Returns:
            The store-assigned message ID, or None if nothing was sent.
        """
        session = self._session(connection_id)
        if session is None:
            return None

        body = body or ""
        if kind == MessageKind.TEXT and not body.strip():
            await self.gateway.send_to(connection_id, "message_error", "Message must not be empty")
            return None

        room, author = session.room, session.identity
        try:
            message = await self.store.append(room, author, body, kind, file_ref)
        except StorageError:
            logger.error(f"[Coordinator] Error saving message from {author} in {room}")
            if self.state(connection_id) is not ConnectionState.CLOSED:
                await self.gateway.send_to(connection_id, "message_error", "Failed to send message")
            return None

        await self.gateway.to_room(room, "receive_message", _dump(message))
        logger.info(f"[Coordinator] Message {message.id} in {room} from {author}")
        return message.id

    async def mark_read(self, connection_id: str, message_id: int) -> bool:
        """Record a read receipt; only the first read is announced.

        Returns:
            True if a ``message_read_update`` was broadcast.
        """
        session = self._session(connection_id)
        if session is None:
            return False

        room, reader = session.room, session.identity
        try:
            result = await self.store.record_read(message_id, reader)
        except MessageNotFound:
            logger.debug(f"[Coordinator] Read receipt for unknown message {message_id}")
            return False
        except StorageError:
            return False

        if result.already_read:
            return False

        await self.gateway.to_room(
            room,
            "message_read_update",
            _dump(ReadUpdate(message_id=message_id, username=reader, read_count=result.read_count)),
            exclude=connection_id,
        )
        return True

    async def react(self, connection_id: str, message_id: int, emoji: str) -> bool:
        """Set the sender's reaction on a message and announce it to the room."""
        session = self._session(connection_id)
        if session is None or not emoji:
            return False

        room, author = session.room, session.identity
        try:
            await self.store.record_reaction(message_id, author, emoji)
        except MessageNotFound:
            logger.debug(f"[Coordinator] Reaction for unknown message {message_id}")
            return False
        except StorageError:
            return False

        await self.gateway.to_room(
            room,
            "reaction_added",
            _dump(ReactionAdded(message_id=message_id, username=author, emoji=emoji)),
        )
        return True

    # =========================================================================
    # Typing indicators
    # =========================================================================

    async def typing_start(self, connection_id: str) -> None:
        await self._typing(connection_id, "user_typing")

    async def typing_stop(self, connection_id: str) -> None:
        await self._typing(connection_id, "user_stopped_typing")

    async def _typing(self, connection_id: str, event: str) -> None:
        session = self._session(connection_id)
        if session is None:
            return
        await self.gateway.to_room(
            session.room,
            event,
            _dump(TypingNotice(username=session.identity, room=session.room)),
            exclude=connection_id,
        )

    # =========================================================================
    # Disconnect
    # =========================================================================

    async def disconnect(self, connection_id: str) -> Optional[Session]:
        """Close a connection from any state.

        Returns:
            The removed session if the connection was authenticated.
        """
        self._states.pop(connection_id, None)
        session = self.presence.remove(connection_id)
        if session is None:
            logger.info(f"[Coordinator] Connection closed: {connection_id}")
            return None

        await self._announce_departure(session)
        await self._broadcast_occupancy()
        logger.info(f"[Coordinator] User disconnected: {session.identity} from {session.room}")
        return session

    # =========================================================================
    # Inbound event routing
    # =========================================================================

    async def dispatch(self, connection_id: str, event: str, data: Any = None) -> None:
        """Route one inbound protocol event to its handler.

        Malformed payloads are answered with a private ``error`` event;
        unknown event names are logged and dropped.
        """
        if self.state(connection_id) is ConnectionState.CLOSED:
            return

        try:
            if event == "register":
                req = RegisterRequest.model_validate(data or {})
                await self.register(connection_id, req.identity, req.secret)
            elif event in ("join", "user_join"):
                req = JoinRequest.model_validate(data or {})
                await self.join(connection_id, req.identity, req.secret, req.room)
            elif event == "switch_room":
                if isinstance(data, str):
                    data = {"room": data}
                req = SwitchRoomRequest.model_validate(data or {})
                await self.switch_room(connection_id, req.room)
            elif event == "send_message":
                req = SendMessageRequest.model_validate(data or {})
                await self.send_message(connection_id, req.message, req.type, req.fileRef)
            elif event == "message_read":
                req = MessageReadRequest.model_validate(data or {})
                await self.mark_read(connection_id, req.message_id)
            elif event == "add_reaction":
                req = AddReactionRequest.model_validate(data or {})
                await self.react(connection_id, req.message_id, req.emoji)
            elif event == "typing_start":
                await self.typing_start(connection_id)
            elif event == "typing_stop":
                await self.typing_stop(connection_id)
            else:
                logger.debug(f"[Coordinator] Unknown event {event!r} from {connection_id}")
        except ValidationError as e:
            logger.debug(f"[Coordinator] Invalid {event} payload from {connection_id}: {e}")
            await self.gateway.send_to(connection_id, "error", f"Invalid payload for {event}")

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _announce_arrival(self, connection_id: str, identity: str, room: str) -> None:
        await self.gateway.to_room(
            room,
            "user_joined",
            _dump(PresenceNotice(
                username=identity,
                message=f"{identity} joined the room",
                userCount=self.presence.count_in(room),
            )),
            exclude=connection_id,
        )

    async def _announce_departure(self, session: Session) -> None:
        await self.gateway.to_room(
            session.room,
            "user_left",
            _dump(PresenceNotice(
                username=session.identity,
                message=f"{session.identity} left the room",
                userCount=self.presence.count_in(session.room),
            )),
        )

    async def _send_snapshot(self, connection_id: str, room: str, history) -> None:
        snapshot = RoomJoined(
            room=room,
            users=self.presence.users_in(room),
            roomList=self.directory.list(),
            messageHistory=history,
        )
        await self.gateway.send_to(connection_id, "room_joined", _dump(snapshot))

    async def _broadcast_occupancy(self) -> None:
        """Send each room's member list to that room's members."""
        for name in self.directory.names():
            users = self.presence.users_in(name)
            if not users:
                continue
            await self.gateway.to_room(
                name,
                "room_users_update",
                _dump(RoomUsersUpdate(room=name, users=users, userCount=len(users))),
            )
