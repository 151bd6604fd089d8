"""Delivery/read state machine.

    SENT ──mark_delivered──▶ DELIVERED ──mark_read──▶ READ
      └──────────────mark_read──────────────────────▶ READ

Transitions only move forward. Re-applying a transition is a no-op that
keeps the timestamps recorded the first time, so duplicate client retries
leave the message exactly as a single call would.
"""
from datetime import datetime
from typing import Optional

from fellowship_chat.errors import AuthorizationError
from fellowship_chat.identity.schemas import Identity, is_admin

from .schemas import ChatScope, DeliveryState, Message, StatusUpdate, utcnow


def state_of(message: Message) -> DeliveryState:
    if message.read:
        return DeliveryState.READ
    if message.delivered:
        return DeliveryState.DELIVERED
    return DeliveryState.SENT


def apply_delivered(message: Message, at: Optional[datetime] = None) -> Message:
    """Advance to DELIVERED (no-op when already delivered or read)."""
    if message.delivered:
        return message
    return message.model_copy(update={
        "delivered": True,
        "deliveredAt": at or utcnow(),
    })


def apply_read(message: Message, at: Optional[datetime] = None) -> Message:
    """Advance to READ, implying DELIVERED."""
    at = at or utcnow()
    updated = apply_delivered(message, at)
    if updated.read:
        return updated
    return updated.model_copy(update={"read": True, "readAt": at})


def has_standing(message: Message, identity: Identity) -> bool:
    """Whether ``identity`` takes part in the conversation ``message`` belongs to.

    Private: author or recipient. Community: every identity.
    Admin: Admin and Super-Admin identities.
    """
    if message.scope == ChatScope.PRIVATE:
        return identity.id in (message.authorId, message.recipientId)
    if message.scope == ChatScope.ADMIN:
        return is_admin(identity)
    return True


def ensure_can_read(message: Message, identity: Identity) -> None:
    """Raise AuthorizationError unless ``identity`` may mark ``message`` read."""
    if not has_standing(message, identity):
        raise AuthorizationError("Unauthorized to mark this message as read.")


def delivered_update(message: Message) -> StatusUpdate:
    return StatusUpdate(
        messageId=message.id,
        delivered=message.delivered,
        deliveredAt=message.deliveredAt,
    )


def read_update(message: Message) -> StatusUpdate:
    return StatusUpdate(
        messageId=message.id,
        delivered=message.delivered,
        deliveredAt=message.deliveredAt,
        read=message.read,
        readAt=message.readAt,
    )
