"""DuckDB-backed message store.

This module owns every durable record of the chat: messages, read receipts
and reactions. It knows nothing about live connections.

Database Schema:
    messages table:
        - id: Sequence-backed primary key, strictly increasing across rooms
        - username: Author identity
        - message: Body text
        - room: Room the message was posted in (never changes)
        - type: 'text', 'file' or 'system'
        - file_ref: Opaque file reference (nullable)
        - created_at: Insertion time (UTC)
    read_receipts table:
        - (message_id, username) primary key, one row per reader
    reactions table:
        - (message_id, username) primary key; the emoji column is upserted
        - seq: Sequence value used to order the distinct emoji set

Concurrency:
    DuckDB calls are blocking, so every public operation is a coroutine that
    runs its statement batch in the default executor. A single lock serializes
    access to the connection; an append racing a history fetch is either fully
    visible or not visible at all.

Usage:
    store = MessageStore(db_path=":memory:")
    message = await store.append("general", "alice", "hi")
    history = await store.history("general", limit=50)
"""
import asyncio
import functools
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import duckdb

from chathub.errors import MessageNotFound, StorageError

from .schemas import Message, MessageKind, ReadResult

logger = logging.getLogger(__name__)

# Hard cap for search results, whatever the caller asks for
SEARCH_RESULT_CAP = 20

# Default number of messages replayed on join
DEFAULT_HISTORY_LIMIT = 50

_MESSAGE_COLUMNS = "m.id, m.username, m.message, m.room, m.type, m.file_ref, m.created_at"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageStore:
    """Append-only message log with read-receipt and reaction relations.

    Attributes:
        db_path: Path to the DuckDB file, or ":memory:".
    """

    def __init__(self, db_path: str = "chat.duckdb") -> None:
        """Open the database and create the schema if needed.

        Args:
            db_path: Path to DuckDB file. Defaults to "chat.duckdb".
        """
        self.db_path = db_path
        self._lock = threading.Lock()
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        try:
            self._initialize_db()
        except duckdb.Error as e:
            raise StorageError(f"Could not open message store: {e}", "open") from e
        logger.info("[Store] Initialized with db=%s", db_path)

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """The DuckDB connection, created on first use.

        Shared with the credential store so users and messages live in one
        database file.
        """
        if self._connection is None:
            self._connection = duckdb.connect(self.db_path)
        return self._connection

    @property
    def lock(self) -> threading.Lock:
        return self._lock

    def _initialize_db(self) -> None:
        conn = self.connection
        conn.execute("CREATE SEQUENCE IF NOT EXISTS messages_seq START 1")
        conn.execute("CREATE SEQUENCE IF NOT EXISTS reactions_seq START 1")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id BIGINT DEFAULT nextval('messages_seq') PRIMARY KEY,
                username VARCHAR NOT NULL,
                message VARCHAR NOT NULL DEFAULT '',
                room VARCHAR NOT NULL,
                type VARCHAR NOT NULL DEFAULT 'text',
                file_ref VARCHAR,
                created_at TIMESTAMP NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS read_receipts (
                message_id BIGINT NOT NULL,
                username VARCHAR NOT NULL,
                read_at TIMESTAMP NOT NULL,
                PRIMARY KEY (message_id, username)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS reactions (
                message_id BIGINT NOT NULL,
                username VARCHAR NOT NULL,
                emoji VARCHAR NOT NULL,
                seq BIGINT NOT NULL,
                reacted_at TIMESTAMP NOT NULL,
                PRIMARY KEY (message_id, username)
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_room ON messages(room)")

    async def _run(self, operation: str, fn, *args):
        """Run a blocking store call in the executor under the store lock."""
        loop = asyncio.get_running_loop()
        call = functools.partial(self._locked, operation, fn, *args)
        return await loop.run_in_executor(None, call)

    def _locked(self, operation: str, fn, *args):
        with self._lock:
            try:
                return fn(*args)
            except duckdb.Error as e:
                logger.error("[Store] %s failed: %s", operation, e)
                raise StorageError(f"{operation} failed: {e}", operation) from e

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def append(
        self,
        room: str,
        author: str,
        body: str,
        kind: MessageKind = MessageKind.TEXT,
        file_ref: Optional[str] = None,
    ) -> Message:
        """Persist a new message and return it with its assigned ID.

        Raises:
            StorageError: If the insert fails.
        """
        return await self._run("append", self._append, room, author, body, MessageKind(kind), file_ref)

    async def history(self, room: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[Message]:
        """Return up to ``limit`` most recent messages of a room, oldest first."""
        if limit <= 0:
            return []
        return await self._run("history", self._history, room, limit)

    async def record_read(self, message_id: int, identity: str) -> ReadResult:
        """Record that ``identity`` has read a message.

        Idempotent: the second call for the same pair reports
        ``already_read=True`` and changes nothing.

        Raises:
            MessageNotFound: If the message does not exist.
        """
        return await self._run("record_read", self._record_read, message_id, identity)

    async def record_reaction(self, message_id: int, identity: str, emoji: str) -> List[str]:
        """Set ``identity``'s reaction on a message and return the emoji set.

        A later call by the same identity replaces its earlier emoji.

        Raises:
            MessageNotFound: If the message does not exist.
        """
        return await self._run("record_reaction", self._record_reaction, message_id, identity, emoji)

    async def search(self, room: str, query: str, limit: int = SEARCH_RESULT_CAP) -> List[Message]:
        """Case-insensitive substring search over message bodies, newest first."""
        limit = max(0, min(limit, SEARCH_RESULT_CAP))
        if not query or limit == 0:
            return []
        return await self._run("search", self._search, room, query, limit)

    async def get(self, message_id: int) -> Optional[Message]:
        """Fetch a single annotated message by ID."""
        return await self._run("get", self._get, message_id)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    # -----------------------------------------------------------------------
    # Internal (called with the lock held)
    # -----------------------------------------------------------------------

    def _append(
        self,
        room: str,
        author: str,
        body: str,
        kind: MessageKind,
        file_ref: Optional[str],
    ) -> Message:
        created_at = _utcnow()
        row = self.connection.execute(
            """
            INSERT INTO messages (username, message, room, type, file_ref, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            [author, body, room, kind.value, file_ref, created_at.replace(tzinfo=None)],
        ).fetchone()
        return Message(
            id=row[0],
            username=author,
            message=body,
            timestamp=created_at,
            room=room,
            type=kind,
            fileRef=file_ref,
        )

    def _history(self, room: str, limit: int) -> List[Message]:
        rows = self.connection.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM messages m
            WHERE m.room = ?
            ORDER BY m.id DESC
            LIMIT ?
            """,
            [room, limit],
        ).fetchall()
        messages = self._annotate(rows)
        messages.reverse()
        return messages

    def _search(self, room: str, query: str, limit: int) -> List[Message]:
        rows = self.connection.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM messages m
            WHERE m.room = ? AND contains(lower(m.message), lower(?))
            ORDER BY m.id DESC
            LIMIT ?
            """,
            [room, query, limit],
        ).fetchall()
        return self._annotate(rows)

    def _get(self, message_id: int) -> Optional[Message]:
        rows = self.connection.execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages m WHERE m.id = ?",
            [message_id],
        ).fetchall()
        annotated = self._annotate(rows)
        return annotated[0] if annotated else None

    def _require_message(self, message_id: int) -> None:
        row = self.connection.execute(
            "SELECT 1 FROM messages WHERE id = ?", [message_id]
        ).fetchone()
        if row is None:
            raise MessageNotFound(message_id)

    def _record_read(self, message_id: int, identity: str) -> ReadResult:
        conn = self.connection
        self._require_message(message_id)
        existing = conn.execute(
            "SELECT 1 FROM read_receipts WHERE message_id = ? AND username = ?",
            [message_id, identity],
        ).fetchone()
        if existing is None:
            conn.execute(
                "INSERT INTO read_receipts (message_id, username, read_at) VALUES (?, ?, ?)",
                [message_id, identity, _utcnow().replace(tzinfo=None)],
            )
        count = conn.execute(
            "SELECT COUNT(*) FROM read_receipts WHERE message_id = ?", [message_id]
        ).fetchone()[0]
        return ReadResult(
            message_id=message_id,
            already_read=existing is not None,
            read_count=count,
        )

    def _record_reaction(self, message_id: int, identity: str, emoji: str) -> List[str]:
        conn = self.connection
        self._require_message(message_id)
        current = conn.execute(
            "SELECT emoji FROM reactions WHERE message_id = ? AND username = ?",
            [message_id, identity],
        ).fetchone()
        now = _utcnow().replace(tzinfo=None)
        if current is None:
            conn.execute(
                """
                INSERT INTO reactions (message_id, username, emoji, seq, reacted_at)
                VALUES (?, ?, ?, nextval('reactions_seq'), ?)
                """,
                [message_id, identity, emoji, now],
            )
        elif current[0] != emoji:
            conn.execute(
                """
                UPDATE reactions
                SET emoji = ?, seq = nextval('reactions_seq'), reacted_at = ?
                WHERE message_id = ? AND username = ?
                """,
                [emoji, now, message_id, identity],
            )
        return self._reactions_for([message_id]).get(message_id, [])

    def _reactions_for(self, message_ids: Sequence[int]) -> Dict[int, List[str]]:
        if not message_ids:
            return {}
        placeholders = ", ".join("?" for _ in message_ids)
        rows = self.connection.execute(
            f"""
            SELECT message_id, emoji, MIN(seq) AS first_seq
            FROM reactions
            WHERE message_id IN ({placeholders})
            GROUP BY message_id, emoji
            ORDER BY message_id, first_seq
            """,
            list(message_ids),
        ).fetchall()
        reactions: Dict[int, List[str]] = {}
        for message_id, emoji, _ in rows:
            reactions.setdefault(message_id, []).append(emoji)
        return reactions

    def _read_counts_for(self, message_ids: Sequence[int]) -> Dict[int, int]:
        if not message_ids:
            return {}
        placeholders = ", ".join("?" for _ in message_ids)
        rows = self.connection.execute(
            f"""
            SELECT message_id, COUNT(*)
            FROM read_receipts
            WHERE message_id IN ({placeholders})
            GROUP BY message_id
            """,
            list(message_ids),
        ).fetchall()
        return {message_id: count for message_id, count in rows}

    def _annotate(self, rows) -> List[Message]:
        ids = [row[0] for row in rows]
        read_counts = self._read_counts_for(ids)
        reactions = self._reactions_for(ids)
        return [
            Message(
                id=row[0],
                username=row[1],
                message=row[2],
                room=row[3],
                type=MessageKind(row[4]),
                fileRef=row[5],
                timestamp=row[6].replace(tzinfo=timezone.utc),
                read_count=read_counts.get(row[0], 0),
                reactions=reactions.get(row[0]) or None,
            )
            for row in rows
        ]
