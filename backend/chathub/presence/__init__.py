"""Presence registry of live sessions."""

from .registry import PresenceRegistry, RoomMove, Session

__all__ = ["PresenceRegistry", "RoomMove", "Session"]
