"""Message persistence: DuckDB store, schemas and search endpoint."""

from .schemas import Message, MessageKind, ReadResult
from .store import MessageStore

__all__ = [
    "Message",
    "MessageKind",
    "MessageStore",
    "ReadResult",
]
