"""Chat router providing the WebSocket endpoint.

This module provides:
    - WebSocket /ws: Real-time chat messaging

Every frame, in both directions, is a JSON object::

    {"event": "<name>", "data": <payload>}

Protocol Events (client -> server):
    - register: Create an identity
    - join: Authenticate and enter a room (``user_join`` is accepted too)
    - switch_room: Move to another room
    - send_message: Post a message to the current room
    - message_read: Read receipt
    - add_reaction: React to a message
    - typing_start / typing_stop: Typing indicator

The endpoint only decodes frames and hands them to the session coordinator;
all outgoing events are written by the fan-out gateway.
"""
import json
import logging
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from .gateway import make_frame

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint handling the full lifecycle of one connection.

    Protocol Flow:
        1. Client connects -> server assigns a connection ID (never sent to,
           nor accepted from, the client)
        2. Client sends join -> server replies room_joined, peers get
           user_joined, all rooms get room_users_update
        3. Client sends events; the coordinator answers through the gateway
        4. On disconnect -> peers get user_left and room_users_update

    Args:
        websocket: The WebSocket connection.
    """
    runtime = websocket.app.state.runtime
    coordinator = runtime.coordinator
    gateway = runtime.gateway

    await websocket.accept()
    connection_id = str(uuid.uuid4())
    gateway.attach(connection_id, websocket)
    coordinator.connect(connection_id)
    logger.info(f"[WS] Connection accepted: {connection_id}. {gateway.connection_count} open")

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                frame = None

            if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                await websocket.send_json(make_frame("error", "Invalid frame: expected {event, data}"))
                continue

            logger.debug("[WS] %s received: event=%s", connection_id, frame["event"])
            await coordinator.dispatch(connection_id, frame["event"], frame.get("data"))

    except WebSocketDisconnect:
        logger.info(f"[WS] Client disconnected: {connection_id}")
    finally:
        gateway.detach(connection_id)
        await coordinator.disconnect(connection_id)
