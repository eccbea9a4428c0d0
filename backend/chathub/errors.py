"""Exception hierarchy for the chat coordinator.

Every error the coordinator reacts to derives from ``ChatError`` so callers
can catch the whole family in one place. The ``event`` attribute names the
private event a connection receives when the error is surfaced to it.
"""
from typing import Optional


class ChatError(Exception):
    """Base exception for chat coordination errors."""

    event: Optional[str] = "error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidCredential(ChatError):
    """Raised when an identity/secret pair does not verify."""

    event = "auth_error"

    def __init__(self, message: str = "Invalid username or password"):
        super().__init__(message)


class DuplicateIdentity(ChatError):
    """Raised when registering a username that already exists."""

    event = "register_error"

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__("Username already exists")


class NotAuthenticated(ChatError):
    """Raised when a session operation targets a connection with no session."""

    event = None

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__(f"Connection {connection_id} is not authenticated")


class StorageError(ChatError):
    """Raised when the durable store fails to read or write."""

    def __init__(self, message: str, operation: str = ""):
        self.operation = operation
        super().__init__(message)


class UnknownRoom(ChatError):
    """Raised when joining or switching to a room that is not configured."""

    event = "room_error"

    def __init__(self, room: str):
        self.room = room
        super().__init__(f"Unknown room: {room}")


class MessageNotFound(ChatError):
    """Raised when a read receipt or reaction targets a missing message."""

    event = None

    def __init__(self, message_id: int):
        self.message_id = message_id
        super().__init__(f"Message {message_id} not found")
