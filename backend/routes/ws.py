"""
WebSocket endpoint for shared-state channels.

Accepts connections at /ws/shared-state/{state_id}. On join the server sends
{"type": "joined", "state_id", "version"}; afterwards every change to the
document is pushed as {"type": "update", "payload": {version, delta,
change_ref}}. Clients ask for authoritative state with
{"type": "resync", "ref", "last_known_version"} and get a "reply" frame
carrying the same ref.
"""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from backend.auth import user_id_from_websocket
from backend.config import settings
from backend.services.shared_state_hub import SharedStateHub, WorkspaceNotFound
from engine.sync.messages import ReplyFrame, ResyncRequest, ServerUpdate

logger = logging.getLogger(__name__)

router = APIRouter()

CLOSE_UNAUTHORIZED = 4401
CLOSE_NOT_FOUND = 4404


async def _pump(websocket: WebSocket, outbox: asyncio.Queue[str]) -> None:
    """Single writer: every outgoing frame goes through outbox."""
    while True:
        text = await outbox.get()
        await websocket.send_text(text)


async def _handle_frame(hub: SharedStateHub, user_id: str, state_id: str, raw: str) -> ReplyFrame | None:
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("ws: invalid JSON on %s", state_id)
        return None

    if frame.get("type") != "resync":
        logger.warning("ws: unknown frame type %r on %s", frame.get("type"), state_id)
        return None

    try:
        req = ResyncRequest.model_validate(frame)
    except ValidationError as e:
        return ReplyFrame(ref=str(frame.get("ref", "")), status="error", error=str(e))

    try:
        payload = await hub.resync(user_id, state_id, req.last_known_version)
    except WorkspaceNotFound:
        return ReplyFrame(ref=req.ref, status="error", error="not found")
    return ReplyFrame(ref=req.ref, status="ok", payload=payload.model_dump())


@router.websocket("/ws/shared-state/{state_id}")
async def shared_state_websocket(websocket: WebSocket, state_id: str) -> None:
    hub: SharedStateHub = websocket.app.state.hub
    await websocket.accept()

    user_id = user_id_from_websocket(websocket)
    if user_id is None:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return

    outbox: asyncio.Queue[str] = asyncio.Queue(maxsize=settings.WEBSOCKET_SEND_QUEUE_SIZE)

    def on_update(update: ServerUpdate) -> None:
        try:
            outbox.put_nowait(json.dumps({"type": "update", "payload": update.model_dump()}))
        except asyncio.QueueFull:
            # The client sees a version gap on its next update and resyncs.
            logger.warning("ws: send queue full on %s, dropped v%d", state_id, update.version)

    # Subscribe before reading the version so no change falls between the two.
    unsubscribe = hub.subscribe(state_id, on_update)
    pump: asyncio.Task | None = None
    try:
        try:
            doc = await hub.authorize_state(user_id, state_id)
        except WorkspaceNotFound:
            await websocket.close(code=CLOSE_NOT_FOUND)
            return

        await websocket.send_text(json.dumps({"type": "joined", "state_id": state_id, "version": doc.version}))
        logger.info("ws: user %s joined %s at v%d", user_id, state_id, doc.version)
        pump = asyncio.create_task(_pump(websocket, outbox))

        while True:
            raw = await websocket.receive_text()
            reply = await _handle_frame(hub, user_id, state_id, raw)
            if reply is not None:
                await outbox.put(reply.model_dump_json())
    except WebSocketDisconnect:
        logger.info("ws: disconnected from %s", state_id)
    finally:
        unsubscribe()
        if pump is not None:
            pump.cancel()
