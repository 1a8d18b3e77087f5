"""
orbit/api/realtime.py
WebSocket endpoint for a room's real-time channel.

Read-only socket: clients receive notifications and presence, and send
"ping" to stay alive. Mutations go through the REST endpoints.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from orbit.core.logging import log_event
from orbit.core.store import get_store
from orbit.realtime.hub import hub

logger = logging.getLogger("orbit.realtime")

router = APIRouter()


@router.websocket("/v1/ws/rooms/{room_id}")
async def room_socket(websocket: WebSocket, room_id: str):
    """
    Room channel.

    Auth: X-User-Id header, or `user_id` query parameter for browser clients.

    Events emitted: task.completed, task.uncompleted, streak.incremented,
    streak.milestone, streak.reset, mvp.decided, appreciation.given,
    nudge.sent, presence.
    """
    await websocket.accept()
    request_id = websocket.headers.get("X-Request-Id") or str(uuid4())
    connection_id = str(uuid4())

    user_id = _authenticate_websocket(websocket)
    if not user_id:
        log_event("info", "ws.unauthorized", request_id=request_id, room_id=room_id, event_type="ws.unauthorized")
        await _reject_and_close(websocket, request_id, "forbidden", "Unauthorized: missing user id")
        return

    room = await run_in_threadpool(get_store().get_room, room_id)
    if room is None or not room.is_member(user_id):
        log_event("info", "ws.not_member", request_id=request_id, user_id=user_id, room_id=room_id, event_type="ws.not_member")
        await _reject_and_close(websocket, request_id, "forbidden", "Not a member of this room")
        return

    await hub.register(room_id, websocket, user_id)
    log_event(
        "info",
        "ws.connected",
        request_id=request_id,
        user_id=user_id,
        room_id=room_id,
        event_type="ws.connected",
        extra={"connection_id": connection_id},
    )

    online = await hub.online_users(room_id)
    await websocket.send_json({
        "type": "connected",
        "room_id": room_id,
        "user_id": user_id,
        "online_users": online,
        "ts": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
        "connection_id": connection_id,
    })
    await hub.broadcast(room_id, {"type": "presence", "payload": {"roomId": room_id, "onlineUsers": online}})

    try:
        while True:
            raw_message = await websocket.receive_text()
            await hub.touch(websocket)
            try:
                data = json.loads(raw_message)
            except ValueError:
                log_event("debug", "ws.invalid_json", request_id=request_id, user_id=user_id, room_id=room_id, event_type="ws.invalid_json")
                continue

            if isinstance(data, dict) and data.get("type") == "ping":
                await websocket.send_json({
                    "type": "pong",
                    "ts": datetime.now(timezone.utc).isoformat(),
                    "request_id": request_id,
                })
    except WebSocketDisconnect:
        log_event(
            "info",
            "ws.disconnected",
            request_id=request_id,
            user_id=user_id,
            room_id=room_id,
            event_type="ws.disconnected",
            extra={"connection_id": connection_id},
        )
    except Exception as e:
        log_event(
            "error",
            "ws.loop_error",
            request_id=request_id,
            user_id=user_id,
            room_id=room_id,
            event_type="ws.loop_error",
            extra={"error": str(e), "connection_id": connection_id},
        )
    finally:
        await hub.unregister(websocket)
        online = await hub.online_users(room_id)
        await hub.broadcast(room_id, {"type": "presence", "payload": {"roomId": room_id, "onlineUsers": online}})


def _authenticate_websocket(websocket: WebSocket) -> Optional[str]:
    user_id = websocket.headers.get("X-User-Id") or websocket.query_params.get("user_id")
    if user_id:
        logger.debug(f"[WS] Authenticated user {user_id}")
    return user_id or None


async def _reject_and_close(websocket: WebSocket, request_id: str, code: str, message: str):
    try:
        await websocket.send_json({
            "type": "error",
            "code": code,
            "message": message,
            "request_id": request_id,
        })
        await websocket.close(code=1008, reason=message)
    except Exception as e:
        logger.debug(f"[WS] reject failed: {e}")
