"""Websocket endpoint for the streaming chat relay.

Frames in both directions are JSON envelopes ``{"event": ..., "data": ...}``.
"""

import asyncio
import json
import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from app.core.config import settings
from app.domains.relay.services import RelayServices, get_relay_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Chat Relay"])

TRY_AGAIN_LATER = 1013


def make_emitter(websocket: WebSocket):
    """Build the send side of a connection.

    The reader loop and the generation task both send on the socket, so
    frames go out one at a time.
    """
    send_lock = asyncio.Lock()

    async def _emit(event: str, data: Any = None) -> None:
        async with send_lock:
            if websocket.client_state != WebSocketState.CONNECTED:
                return
            await websocket.send_json({"event": event, "data": data})

    return _emit


@router.websocket("/ws/chat")
async def chat_socket(websocket: WebSocket, services: RelayServices = Depends(get_relay_services)):
    if len(services.registry) >= settings.websocket_max_connections:
        logger.warning("Refusing websocket connection: connection limit reached")
        await websocket.close(code=TRY_AGAIN_LATER, reason="Too many connections")
        return

    await websocket.accept()
    connection_id = str(uuid.uuid4())

    _emit = make_emitter(websocket)

    session = services.create_session(connection_id, _emit)
    services.registry.add(session)
    logger.info(f"Client connected: {connection_id}")

    try:
        await session.send_models()
        while True:
            raw = await websocket.receive_text()
            try:
                envelope = json.loads(raw)
            except json.JSONDecodeError:
                await _emit("error", {"message": "Malformed message"})
                continue
            if not isinstance(envelope, dict) or not isinstance(envelope.get("event"), str):
                await _emit("error", {"message": "Malformed message"})
                continue

            if envelope["event"] == "disconnect":
                break
            await session.handle(envelope["event"], envelope.get("data"))

    except WebSocketDisconnect:
        pass
    finally:
        services.registry.remove(connection_id)
        await session.on_disconnect()
        logger.info(f"Client disconnected: {connection_id}")

    if websocket.client_state == WebSocketState.CONNECTED:
        await websocket.close()
