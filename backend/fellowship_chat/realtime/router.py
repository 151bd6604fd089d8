"""WebSocket transport for realtime chat.

Bridges one WebSocket to one ChatSession:
    - the credential is checked before the handshake is accepted
    - a writer task drains the session outbox to the socket
    - the receive loop decodes ``{"event", "data"}`` frames and hands them
      to the session manager

Example:
    ws://localhost:8000/ws/chat?token=<jwt>
"""
import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from fellowship_chat.deps import get_services
from fellowship_chat.errors import AuthenticationError, ValidationError

from .hub import ChatSession

logger = logging.getLogger(__name__)

router = APIRouter()

REJECT_REASON = "Authentication error"


def _handshake_token(websocket: WebSocket, token: Optional[str]) -> Optional[str]:
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


async def _writer(websocket: WebSocket, session: ChatSession) -> None:
    """Send queued envelopes until the session is closed."""
    while True:
        item = await session.next_envelope()
        if item is None:
            break
        try:
            await websocket.send_json(item)
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"[WS] Send to session {session.id} failed: {e}")
            return

    if websocket.client_state == WebSocketState.CONNECTED:
        try:
            await websocket.close()
        except RuntimeError as e:
            logger.debug(f"[WS] Close of session {session.id} failed: {e}")


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Bearer credential"),
) -> None:
    """Realtime chat connection for one client.

    Protocol Flow:
        1. Client connects with ``?token=`` (or an Authorization header)
           → rejected with close code 4401 if the credential is invalid
           → others receive: {event: "user-online", data: {userId, userName}}
           → client receives: {event: "online-users-list", data: [...]}
        2. Client sends: {event: "join-room", data: "community"}
        3. Client sends: {event: "send-message", data: {scope, content, recipientId?}}
           → room receives: {event: "new-message", data: {...message}}
        4. On disconnect → others receive: {event: "user-offline", data: {userId}}

    Args:
        websocket: The WebSocket connection.
        token: Credential from the query string.
    """
    services = get_services(websocket)
    manager = services.sessions

    try:
        session = await manager.connect(_handshake_token(websocket, token))
    except AuthenticationError as e:
        logger.info(f"[WS] Rejected connection: {e.message}")
        await websocket.close(
            code=services.config.realtime.reject_close_code,
            reason=REJECT_REASON,
        )
        return

    await websocket.accept()
    writer = asyncio.create_task(_writer(websocket, session))

    try:
        while session.is_open and websocket.application_state == WebSocketState.CONNECTED:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                manager.report(session, ValidationError("Malformed frame."))
                continue
            if not isinstance(frame, dict):
                manager.report(session, ValidationError("Frames must be JSON objects."))
                continue
            await manager.handle(session, frame.get("event"), frame.get("data"))
    except WebSocketDisconnect:
        logger.info(f"[WS] Session {session.id} closed by client")
    finally:
        await manager.disconnect(session)
        try:
            await asyncio.wait_for(writer, timeout=1.0)
        except asyncio.TimeoutError:
            writer.cancel()
