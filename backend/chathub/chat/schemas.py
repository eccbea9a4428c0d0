"""Event payload schemas for the chat protocol.

Inbound models validate what clients send; outbound models build what the
coordinator hands to the fan-out gateway. Field names follow the wire
protocol, including its mixed camelCase/snake_case.
"""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field

from chathub.messages.schemas import Message, MessageKind
from chathub.rooms.directory import RoomSummary


def notice_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Inbound
# =============================================================================


class RegisterRequest(BaseModel):
    identity: str = Field(
        default="",
        validation_alias=AliasChoices("identity", "username"),
    )
    secret: str = Field(
        default="",
        validation_alias=AliasChoices("secret", "password"),
    )


class JoinRequest(RegisterRequest):
    room: Optional[str] = Field(default=None, description="Defaults to the configured default room")


class SwitchRoomRequest(BaseModel):
    room: str = Field(..., min_length=1)


class SendMessageRequest(BaseModel):
    message: str = ""
    type: MessageKind = MessageKind.TEXT
    fileRef: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("fileRef", "file_ref", "file_url"),
    )


class MessageReadRequest(BaseModel):
    message_id: int


class AddReactionRequest(BaseModel):
    message_id: int
    emoji: str = ""


# =============================================================================
# Outbound
# =============================================================================


class PresenceNotice(BaseModel):
    """Payload of user_joined / user_left."""
    username: str
    message: str
    timestamp: str = Field(default_factory=notice_timestamp)
    userCount: int


class RoomUsersUpdate(BaseModel):
    room: str
    users: List[str]
    userCount: int


class RoomJoined(BaseModel):
    """Snapshot delivered only to the connection entering a room."""
    room: str
    users: List[str]
    roomList: List[RoomSummary]
    messageHistory: List[Message]


class ReadUpdate(BaseModel):
    message_id: int
    username: str
    read_count: int


class ReactionAdded(BaseModel):
    message_id: int
    username: str
    emoji: str


class TypingNotice(BaseModel):
    username: str
    room: str
