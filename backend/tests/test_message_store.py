"""Unit tests for the DuckDB message store."""
import os
import tempfile
from unittest.mock import patch

import duckdb
import pytest

from chathub.errors import MessageNotFound, StorageError
from chathub.messages.schemas import MessageKind
from chathub.messages.store import SEARCH_RESULT_CAP, MessageStore


@pytest.fixture
def store():
    """Create a message store on an in-memory database."""
    s = MessageStore(db_path=":memory:")
    yield s
    s.close()


@pytest.fixture
def temp_db():
    """Create a temporary database path for testing."""
    # DuckDB creates the file itself
    db_path = tempfile.mktemp(suffix=".duckdb")

    yield db_path

    if os.path.exists(db_path):
        os.remove(db_path)
    wal_path = db_path + ".wal"
    if os.path.exists(wal_path):
        os.remove(wal_path)


class TestAppend:
    """Tests for MessageStore.append."""

    @pytest.mark.asyncio
    async def test_append_returns_message_with_id(self, store):
        message = await store.append("general", "alice", "hi")

        assert message.id == 1
        assert message.username == "alice"
        assert message.message == "hi"
        assert message.room == "general"
        assert message.type == MessageKind.TEXT
        assert message.read_count == 0
        assert message.reactions is None

    @pytest.mark.asyncio
    async def test_ids_strictly_increase_across_rooms(self, store):
        ids = []
        for room in ("general", "random", "general", "tech"):
            ids.append((await store.append(room, "alice", f"in {room}")).id)

        assert ids == sorted(ids)
        assert len(set(ids)) == len(ids)

    @pytest.mark.asyncio
    async def test_file_reference_passed_through(self, store):
        message = await store.append("general", "bob", "report.pdf", MessageKind.FILE, "uploads/abc.pdf")

        assert message.type == MessageKind.FILE
        assert message.fileRef == "uploads/abc.pdf"
        stored = await store.get(message.id)
        assert stored.fileRef == "uploads/abc.pdf"
        assert stored.type == MessageKind.FILE

    @pytest.mark.asyncio
    async def test_append_failure_raises_storage_error(self, store):
        with patch.object(MessageStore, "_append", side_effect=duckdb.IOException("disk full")):
            with pytest.raises(StorageError):
                await store.append("general", "alice", "lost")

    @pytest.mark.asyncio
    async def test_messages_survive_reopen(self, temp_db):
        first = MessageStore(db_path=temp_db)
        await first.append("general", "alice", "persisted")
        first.close()

        second = MessageStore(db_path=temp_db)
        try:
            history = await second.history("general")
            assert [m.message for m in history] == ["persisted"]
            newer = await second.append("general", "alice", "after reopen")
            assert newer.id > history[0].id
        finally:
            second.close()


class TestHistory:
    """Tests for MessageStore.history."""

    @pytest.mark.asyncio
    async def test_empty_room(self, store):
        assert await store.history("general") == []

    @pytest.mark.asyncio
    async def test_chronological_order(self, store):
        for text in ("first", "second", "third"):
            await store.append("general", "alice", text)

        history = await store.history("general")
        assert [m.message for m in history] == ["first", "second", "third"]

    @pytest.mark.asyncio
    async def test_limit_keeps_most_recent(self, store):
        for i in range(10):
            await store.append("general", "alice", f"msg {i}")

        history = await store.history("general", limit=3)
        assert [m.message for m in history] == ["msg 7", "msg 8", "msg 9"]

    @pytest.mark.asyncio
    async def test_rooms_are_isolated(self, store):
        await store.append("general", "alice", "general only")
        await store.append("random", "bob", "random only")

        assert [m.message for m in await store.history("general")] == ["general only"]
        assert [m.message for m in await store.history("random")] == ["random only"]

    @pytest.mark.asyncio
    async def test_annotated_with_reads_and_reactions(self, store):
        msg = await store.append("general", "alice", "hello")
        await store.record_read(msg.id, "bob")
        await store.record_read(msg.id, "carol")
        await store.record_reaction(msg.id, "bob", "👍")

        [annotated] = await store.history("general")
        assert annotated.read_count == 2
        assert annotated.reactions == ["👍"]


class TestReadReceipts:
    """Tests for MessageStore.record_read."""

    @pytest.mark.asyncio
    async def test_first_read_is_not_already_read(self, store):
        msg = await store.append("general", "alice", "hello")

        result = await store.record_read(msg.id, "bob")
        assert result.already_read is False
        assert result.read_count == 1

    @pytest.mark.asyncio
    async def test_second_read_is_idempotent(self, store):
        msg = await store.append("general", "alice", "hello")
        await store.record_read(msg.id, "bob")

        again = await store.record_read(msg.id, "bob")
        assert again.already_read is True
        assert again.read_count == 1

    @pytest.mark.asyncio
    async def test_read_count_never_decreases(self, store):
        msg = await store.append("general", "alice", "hello")
        counts = []
        for reader in ("bob", "carol", "bob", "dave", "carol"):
            counts.append((await store.record_read(msg.id, reader)).read_count)

        assert counts == [1, 2, 2, 3, 3]

    @pytest.mark.asyncio
    async def test_unknown_message(self, store):
        with pytest.raises(MessageNotFound):
            await store.record_read(999, "bob")


class TestReactions:
    """Tests for MessageStore.record_reaction (upsert per identity)."""

    @pytest.mark.asyncio
    async def test_distinct_emoji_set(self, store):
        msg = await store.append("general", "alice", "hello")

        assert await store.record_reaction(msg.id, "bob", "👍") == ["👍"]
        assert await store.record_reaction(msg.id, "carol", "❤️") == ["👍", "❤️"]
        assert await store.record_reaction(msg.id, "dave", "👍") == ["👍", "❤️"]

    @pytest.mark.asyncio
    async def test_same_emoji_twice_is_noop(self, store):
        msg = await store.append("general", "alice", "hello")
        await store.record_reaction(msg.id, "bob", "👍")

        assert await store.record_reaction(msg.id, "bob", "👍") == ["👍"]

    @pytest.mark.asyncio
    async def test_new_emoji_replaces_identity_choice(self, store):
        msg = await store.append("general", "alice", "hello")
        await store.record_reaction(msg.id, "bob", "👍")

        assert await store.record_reaction(msg.id, "bob", "🎉") == ["🎉"]

    @pytest.mark.asyncio
    async def test_unknown_message(self, store):
        with pytest.raises(MessageNotFound):
            await store.record_reaction(42, "bob", "👍")


class TestSearch:
    """Tests for MessageStore.search."""

    @pytest.mark.asyncio
    async def test_case_insensitive_substring(self, store):
        await store.append("general", "alice", "Hello World")
        await store.append("general", "bob", "nothing here")
        await store.append("general", "carol", "say HELLO")

        results = await store.search("general", "hello")
        assert [m.message for m in results] == ["say HELLO", "Hello World"]

    @pytest.mark.asyncio
    async def test_scoped_to_room(self, store):
        await store.append("general", "alice", "deploy today")
        await store.append("tech", "bob", "deploy tomorrow")

        results = await store.search("tech", "deploy")
        assert [m.room for m in results] == ["tech"]

    @pytest.mark.asyncio
    async def test_includes_system_messages(self, store):
        await store.append("general", "server", "maintenance window", MessageKind.SYSTEM)

        results = await store.search("general", "maintenance")
        assert results[0].type == MessageKind.SYSTEM

    @pytest.mark.asyncio
    async def test_capped_regardless_of_limit(self, store):
        for i in range(SEARCH_RESULT_CAP + 5):
            await store.append("general", "alice", f"match {i}")

        results = await store.search("general", "match", limit=100)
        assert len(results) == SEARCH_RESULT_CAP
        assert results[0].message == f"match {SEARCH_RESULT_CAP + 4}"

    @pytest.mark.asyncio
    async def test_wildcards_are_literal(self, store):
        await store.append("general", "alice", "100% done")
        await store.append("general", "alice", "100 done")

        results = await store.search("general", "100%")
        assert [m.message for m in results] == ["100% done"]

    @pytest.mark.asyncio
    async def test_empty_query_returns_nothing(self, store):
        await store.append("general", "alice", "anything")
        assert await store.search("general", "") == []
