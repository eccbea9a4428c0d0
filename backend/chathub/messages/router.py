"""Message query API endpoints.

Endpoints:
    GET /api/messages/search: Case-insensitive search within a room

Read-only: messages are only ever written through the WebSocket protocol.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from chathub.errors import StorageError
from chathub.runtime import ChatRuntime, get_runtime

from .store import SEARCH_RESULT_CAP

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["messages"])


@router.get("/search")
async def search_messages(
    room: Optional[str] = Query(None, description="Room to search in"),
    query: Optional[str] = Query(None, description="Substring to look for"),
    limit: int = Query(SEARCH_RESULT_CAP, ge=1, description="Results wanted (capped at 20)"),
    runtime: ChatRuntime = Depends(get_runtime),
) -> JSONResponse:
    """Search a room's messages, newest first.

    Example:
        GET /api/messages/search?room=general&query=hello
    """
    if not room or not query:
        return JSONResponse(
            {"error": "Room and query parameters required"},
            status_code=400
        )

    limit = min(limit, runtime.config.history.search_limit)
    try:
        messages = await runtime.store.search(room, query, limit)
    except StorageError:
        return JSONResponse({"error": "Search failed"}, status_code=500)

    return JSONResponse([msg.model_dump(mode="json") for msg in messages])
