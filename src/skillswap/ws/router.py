"""WebSocket endpoint with JWT authentication and presence tracking."""

import asyncio
import json
import uuid

import jwt
import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from skillswap.auth.jwt import verify_token
from skillswap.config import get_settings
from skillswap.middleware.cors import WS_FORBIDDEN_ORIGIN, websocket_origin_allowed
from skillswap.ws.hub import NotificationHub

logger = structlog.get_logger()

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(...),
) -> None:
    """Single notification socket per browser tab.

    Protocol:
        Client -> Server:
            {"action": "ping"}
            {"action": "online_users"}

        Server -> Client:
            {"type": "OnlineUsersList", "payload": [...]}   (on connect)
            {"type": "UserOnline" | "UserOffline" | "MessageReceived" | ..., "payload": {...}}
            {"type": "pong"}
            {"type": "error", "message": "..."}

    A client that sends nothing for ``ws_idle_timeout_seconds`` is treated as
    gone and closed. Sockets opened from an origin outside ``cors_origins``
    are closed with 4003 before authentication.
    """
    settings = get_settings()
    origin = websocket.headers.get("origin")
    if not websocket_origin_allowed(origin, settings):
        logger.info("ws_origin_rejected", origin=origin)
        await websocket.close(code=WS_FORBIDDEN_ORIGIN, reason="Origin not allowed")
        return

    try:
        identity = verify_token(token)
    except jwt.InvalidTokenError as e:
        await websocket.close(code=4001, reason=f"Authentication failed: {e}")
        return

    hub: NotificationHub = websocket.app.state.hub
    idle_timeout = settings.ws_idle_timeout_seconds
    conn_id = str(uuid.uuid4())

    try:
        await hub.connect(websocket, conn_id, identity)
        while True:
            try:
                raw = await asyncio.wait_for(websocket.receive_text(), idle_timeout)
            except TimeoutError:
                logger.info("ws_idle_timeout", conn_id=conn_id, user_id=identity.user_id)
                await websocket.close(code=1001, reason="Idle timeout")
                break

            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue

            action = msg.get("action") if isinstance(msg, dict) else None

            if action == "ping":
                hub.registry.touch(conn_id)
                await websocket.send_json({"type": "pong"})

            elif action == "online_users":
                hub.registry.touch(conn_id)
                await hub.send_online_users(conn_id)

            else:
                await websocket.send_json({
                    "type": "error",
                    "message": f"Unknown action: {action}",
                })

    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("ws_error", conn_id=conn_id, user_id=identity.user_id)
    finally:
        await hub.disconnect(conn_id)
