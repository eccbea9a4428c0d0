"""Room directory and room endpoints."""

from .directory import RoomDirectory, RoomInfo, RoomSummary

__all__ = ["RoomDirectory", "RoomInfo", "RoomSummary"]
