"""HTTP endpoints for chat messages.

The same operations are available over the realtime connection; both
surfaces go through MessagingService, so they store and broadcast the
same way.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from fellowship_chat.deps import ChatServices, current_identity, get_services
from fellowship_chat.errors import NotFoundError
from fellowship_chat.identity.schemas import Identity

from .schemas import ChatScope, MessageCreate, ReactionRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])

MAX_LIST_LIMIT = 100


@router.get("/community")
async def list_community(
    limit: Optional[int] = Query(None, ge=1, le=MAX_LIST_LIMIT),
    identity: Identity = Depends(current_identity),
    services: ChatServices = Depends(get_services),
) -> list:
    """Most recent community messages, oldest first."""
    return [m.to_wire() for m in services.messaging.community(limit)]


@router.get("/admin")
async def list_admin(
    limit: Optional[int] = Query(None, ge=1, le=MAX_LIST_LIMIT),
    identity: Identity = Depends(current_identity),
    services: ChatServices = Depends(get_services),
) -> list:
    """Most recent admin messages, oldest first. Admin and Super-Admin only."""
    return [m.to_wire() for m in services.messaging.admin(identity, limit)]


@router.get("/private")
async def list_private(
    userId: Optional[str] = Query(None, description="The other participant"),
    identity: Identity = Depends(current_identity),
    services: ChatServices = Depends(get_services),
) -> list:
    """Full conversation between the caller and ``userId``, oldest first.

    Example:
        GET /messages/private?userId=u-42
    """
    return [m.to_wire() for m in services.messaging.private(identity, userId)]


@router.get("/online-users")
async def online_users(
    identity: Identity = Depends(current_identity),
    services: ChatServices = Depends(get_services),
) -> list:
    return services.presence.list().to_wire()


@router.get("/unread-counts")
async def unread_counts(
    identity: Identity = Depends(current_identity),
    services: ChatServices = Depends(get_services),
) -> dict:
    return services.messaging.unread_counts(identity).model_dump()


@router.post("", status_code=201)
async def create_message(
    draft: MessageCreate,
    identity: Identity = Depends(current_identity),
    services: ChatServices = Depends(get_services),
) -> dict:
    """Send a message and publish it to its room.

    Community and admin messages come back already delivered.

    Example:
        POST /messages
        {"scope": "private", "recipientId": "u-42", "content": "Blessings!"}
    """
    return services.messaging.send(identity, draft).to_wire()


@router.put("/watermarks/{scope}")
async def mark_scope_read(
    scope: ChatScope,
    identity: Identity = Depends(current_identity),
    services: ChatServices = Depends(get_services),
) -> dict:
    """Mark every community or admin message up to now as seen by the caller."""
    return services.messaging.mark_scope_read(identity, scope).model_dump(mode="json")


@router.put("/{message_id}/delivered")
async def mark_delivered(
    message_id: str,
    identity: Identity = Depends(current_identity),
    services: ChatServices = Depends(get_services),
) -> JSONResponse:
    """Acknowledge delivery. Unknown ids are ignored.

    Any authenticated caller may acknowledge; standing is not checked.
    """
    try:
        services.messaging.mark_delivered(message_id)
    except NotFoundError:
        logger.info(f"[messages] delivered ack from {identity.id} for unknown message {message_id}")
    return JSONResponse({"success": True})


@router.put("/{message_id}/read")
async def mark_read(
    message_id: str,
    identity: Identity = Depends(current_identity),
    services: ChatServices = Depends(get_services),
) -> JSONResponse:
    services.messaging.mark_read(message_id, identity)
    return JSONResponse({"success": True})


@router.post("/{message_id}/react")
async def react(
    message_id: str,
    body: ReactionRequest,
    identity: Identity = Depends(current_identity),
    services: ChatServices = Depends(get_services),
) -> dict:
    """Toggle the caller's reaction and return the message's reactions."""
    message, added = services.messaging.react(message_id, body.emoji, identity)
    return {
        "success": True,
        "added": added,
        "reactions": {emoji: r.model_dump() for emoji, r in message.reactions.items()},
    }
