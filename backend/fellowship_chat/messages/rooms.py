"""Room routing: map a message's scope and participants to a fan-out room.

Room IDs are derived, never stored:
    - community -> "community"
    - admin     -> "admin"
    - private   -> the two participant IDs sorted and joined with "-"

Sorting makes the private room symmetric, so both participants compute the
same ID regardless of who authored the message.
"""
from abc import ABC, abstractmethod
from typing import Optional

from fellowship_chat.errors import ValidationError
from fellowship_chat.identity.schemas import Identity, is_admin

from .schemas import ChatScope, Message

COMMUNITY_ROOM = "community"
ADMIN_ROOM = "admin"
PRIVATE_ROOM_SEPARATOR = "-"


def private_room_id(user_a: str, user_b: str) -> str:
    """Canonical room for a pair of users, independent of argument order."""
    first, second = sorted((user_a, user_b))
    return f"{first}{PRIVATE_ROOM_SEPARATOR}{second}"


def route(scope: ChatScope, author_id: Optional[str] = None,
          recipient_id: Optional[str] = None) -> str:
    """Pure scope -> room mapping.

    Raises:
        ValidationError: If a private route is requested without both participants.
    """
    if scope == ChatScope.COMMUNITY:
        return COMMUNITY_ROOM
    if scope == ChatScope.ADMIN:
        return ADMIN_ROOM
    if not author_id or not recipient_id:
        raise ValidationError("A private room needs both participants.")
    return private_room_id(author_id, recipient_id)


class RoomRouter(ABC):
    """Topology seam used by the session manager and messaging service."""

    @abstractmethod
    def room_for(self, message: Message) -> str:
        """Room that receives every event about ``message``."""

    @abstractmethod
    def private_room(self, user_a: str, user_b: str) -> str:
        """Room for a one-to-one conversation."""

    @abstractmethod
    def can_join(self, room_id: str, identity: Identity) -> bool:
        """Whether ``identity`` may subscribe to ``room_id``."""


class CanonicalRoomRouter(RoomRouter):
    """Single-process topology: one room per scope, one per private pair."""

    def room_for(self, message: Message) -> str:
        return route(message.scope, message.authorId, message.recipientId)

    def private_room(self, user_a: str, user_b: str) -> str:
        return private_room_id(user_a, user_b)

    def can_join(self, room_id: str, identity: Identity) -> bool:
        if room_id == COMMUNITY_ROOM:
            return True
        if room_id == ADMIN_ROOM:
            return is_admin(identity)
        # IDs may themselves contain the separator, so match on the
        # caller's own ID at either end instead of splitting.
        prefix = f"{identity.id}{PRIVATE_ROOM_SEPARATOR}"
        suffix = f"{PRIVATE_ROOM_SEPARATOR}{identity.id}"
        if room_id.startswith(prefix) and len(room_id) > len(prefix):
            other = room_id[len(prefix):]
            return private_room_id(identity.id, other) == room_id
        if room_id.endswith(suffix) and len(room_id) > len(suffix):
            other = room_id[: -len(suffix)]
            return private_room_id(identity.id, other) == room_id
        return False
