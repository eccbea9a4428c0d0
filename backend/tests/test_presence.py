"""Tests for the presence registry and room directory."""
import pytest

from chathub.errors import NotAuthenticated, UnknownRoom
from chathub.presence.registry import PresenceRegistry
from chathub.rooms.directory import RoomDirectory


@pytest.fixture
def registry():
    return PresenceRegistry()


class TestPresenceRegistry:
    """Tests for PresenceRegistry."""

    def test_put_and_get(self, registry):
        session = registry.put("c1", "alice", "general")

        assert registry.get("c1") is session
        assert session.identity == "alice"
        assert session.room == "general"

    def test_put_rejects_empty_identity_or_room(self, registry):
        with pytest.raises(ValueError):
            registry.put("c1", "", "general")
        with pytest.raises(ValueError):
            registry.put("c1", "alice", "")

    def test_put_overwrites_connection(self, registry):
        registry.put("c1", "alice", "general")
        registry.put("c1", "alice", "tech")

        assert registry.users_in("general") == []
        assert registry.users_in("tech") == ["alice"]
        assert len(registry) == 1

    def test_remove_is_idempotent(self, registry):
        registry.put("c1", "alice", "general")

        assert registry.remove("c1").identity == "alice"
        assert registry.remove("c1") is None

    def test_users_in_entry_order(self, registry):
        registry.put("c1", "alice", "general")
        registry.put("c2", "bob", "general")
        registry.put("c3", "carol", "random")

        assert registry.users_in("general") == ["alice", "bob"]
        assert registry.count_in("general") == 2
        assert registry.count_in("random") == 1
        assert registry.count_in("tech") == 0

    def test_multi_device_identity_counted_once(self, registry):
        registry.put("phone", "alice", "general")
        registry.put("laptop", "alice", "general")

        assert registry.users_in("general") == ["alice"]
        assert registry.count_in("general") == 1
        assert sorted(registry.connections_in("general")) == ["laptop", "phone"]

    def test_move_room(self, registry):
        registry.put("c1", "alice", "general")

        move = registry.move_room("c1", "tech")
        assert move.old_room == "general"
        assert move.new_room == "tech"
        assert move.changed
        assert registry.users_in("general") == []
        assert registry.users_in("tech") == ["alice"]

    def test_move_to_same_room_is_noop(self, registry):
        registry.put("c1", "alice", "general")

        move = registry.move_room("c1", "general")
        assert move.old_room == move.new_room == "general"
        assert not move.changed

    def test_move_without_session(self, registry):
        with pytest.raises(NotAuthenticated):
            registry.move_room("ghost", "general")

    def test_moved_user_listed_after_existing_occupants(self, registry):
        registry.put("c1", "alice", "general")
        registry.put("c2", "bob", "tech")
        registry.move_room("c1", "tech")

        assert registry.users_in("tech") == ["bob", "alice"]

    def test_no_session_in_two_rooms(self, registry):
        registry.put("c1", "alice", "general")
        registry.move_room("c1", "random")
        registry.move_room("c1", "tech")

        rooms = [room for room in ("general", "random", "tech") if "alice" in registry.users_in(room)]
        assert rooms == ["tech"]


class TestRoomDirectory:
    """Tests for RoomDirectory."""

    def test_list_keeps_configured_order(self, registry):
        directory = RoomDirectory(registry, ["general", "random", "tech", "gaming"])
        registry.put("c1", "alice", "tech")
        registry.put("c2", "bob", "tech")
        registry.put("c3", "carol", "random")

        summary = [(r.name, r.userCount) for r in directory.list()]
        assert summary == [("general", 0), ("random", 1), ("tech", 2), ("gaming", 0)]

    def test_default_room_always_registered(self, registry):
        directory = RoomDirectory(registry, ["random"], default_room="lobby")

        assert directory.names() == ["random", "lobby"]
        assert directory.default_room == "lobby"

    def test_resolve_empty_name_to_default(self, registry):
        directory = RoomDirectory(registry, ["general", "random"])
        assert directory.resolve("") == "general"
        assert directory.resolve("random") == "random"

    def test_closed_room_set_rejects_unknown(self, registry):
        directory = RoomDirectory(registry, ["general"])

        with pytest.raises(UnknownRoom) as exc:
            directory.resolve("secret-lair")
        assert exc.value.room == "secret-lair"

    def test_dynamic_rooms_registered_on_demand(self, registry):
        directory = RoomDirectory(registry, ["general"], allow_dynamic=True)

        assert directory.resolve("pop-up") == "pop-up"
        assert directory.names() == ["general", "pop-up"]

    def test_add_is_idempotent(self, registry):
        directory = RoomDirectory(registry, ["general"])
        first = directory.add("tech", description="Tech talk")
        second = directory.add("tech")

        assert first is second
        assert directory.info("tech").description == "Tech talk"
