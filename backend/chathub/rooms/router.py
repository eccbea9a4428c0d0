"""Room REST API router.

Endpoints:
    GET /api/rooms                 - Rooms with occupant counts
    GET /api/rooms/{room}/history  - Recent messages of a room
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from chathub.errors import StorageError
from chathub.messages.schemas import Message
from chathub.runtime import ChatRuntime, get_runtime

from .directory import RoomSummary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rooms", tags=["rooms"])


class RoomHistoryResponse(BaseModel):
    """Response model for a room's history."""
    room: str
    messages: List[Message]


@router.get("", response_model=List[RoomSummary])
async def list_rooms(runtime: ChatRuntime = Depends(get_runtime)) -> List[RoomSummary]:
    """List rooms in configured order with their occupant counts."""
    return runtime.directory.list()


@router.get("/{room}/history", response_model=RoomHistoryResponse)
async def room_history(
    room: str,
    limit: Optional[int] = Query(None, ge=1, description="Number of messages to return"),
    runtime: ChatRuntime = Depends(get_runtime),
) -> RoomHistoryResponse:
    """Get the most recent messages of a room, oldest first.

    Example:
        GET /api/rooms/general/history?limit=20
    """
    if not runtime.directory.has(room):
        raise HTTPException(status_code=404, detail=f"Unknown room: {room}")

    limit = min(limit or runtime.config.history.limit, runtime.config.history.limit)
    try:
        messages = await runtime.store.history(room, limit)
    except StorageError:
        raise HTTPException(status_code=500, detail="Error loading chat history")

    logger.debug(f"Served {len(messages)} messages of room {room}")
    return RoomHistoryResponse(room=room, messages=messages)
