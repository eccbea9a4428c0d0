"""Pydantic schemas for persisted chat messages."""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class MessageKind(str, Enum):
    """Kind of a persisted message.

    Attributes:
        TEXT: Plain chat text.
        FILE: A file reference; ``fileRef`` is passed through untouched.
        SYSTEM: Server-authored notice.
    """
    TEXT = "text"
    FILE = "file"
    SYSTEM = "system"


class Message(BaseModel):
    """A stored message as delivered to clients.

    Field names follow the wire protocol, so ``model_dump()`` is the event
    payload for ``receive_message`` and for history entries.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(..., description="Store-assigned, strictly increasing ID")
    username: str = Field(..., description="Author identity")
    message: str = Field(default="", description="Message body")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation time (UTC)"
    )
    room: str = Field(..., description="Room the message was posted in")
    type: MessageKind = Field(default=MessageKind.TEXT)
    fileRef: Optional[str] = Field(default=None, description="Opaque file reference")
    read_count: int = Field(default=0, ge=0)
    reactions: Optional[List[str]] = Field(
        default=None,
        description="Distinct emoji attached, or None when there are none"
    )

    @field_serializer("timestamp")
    def _serialize_timestamp(self, value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()

    @field_serializer("type")
    def _serialize_type(self, value: MessageKind) -> str:
        return value.value


class ReadResult(BaseModel):
    """Outcome of recording a read receipt."""
    message_id: int
    already_read: bool
    read_count: int
