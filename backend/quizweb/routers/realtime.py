"""WebSocket endpoint for real-time notifications and leaderboard updates."""

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from sqlmodel import Session

from ..auth import user_from_token
from ..database import engine
from ..utils.realtime import get_hub, make_event

router = APIRouter()
logger = logging.getLogger("quizweb.realtime")

POLICY_VIOLATION = 1008


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, token: Optional[str] = None):
    """Authenticate with `?token=`, then stream events until the client leaves.

    Clients may send `{"type": "ping"}` and get a `pong` back; any other
    message is ignored.
    """
    if not token:
        await websocket.close(code=POLICY_VIOLATION)
        return
    try:
        with Session(engine) as session:
            user = user_from_token(token, session)
            user_id, role = user.id, user.role
    except HTTPException as exc:
        logger.info("socket_rejected reason=%s", exc.detail)
        await websocket.close(code=POLICY_VIOLATION)
        return

    await websocket.accept()
    hub = get_hub()
    rooms = hub.register(user_id, role, websocket, asyncio.get_running_loop())
    try:
        await websocket.send_json(make_event("connected", user_id=user_id, role=role, rooms=rooms))
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json(make_event("pong"))
    except WebSocketDisconnect:
        pass
    finally:
        hub.unregister(user_id, websocket)
