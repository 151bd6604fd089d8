"""MessagingService: message operations shared by HTTP and realtime.

Both surfaces call the same methods, so a message sent over HTTP and one
sent over the socket produce the same stored state and the same room
broadcasts.

Outbound events published here:
    - new-message(message)
    - message-status-updated({messageId, delivered, deliveredAt, read?, readAt?})
    - message-read({messageId, userId})
    - reaction-added({messageId, emoji, userId, userName, added, count})
"""
import logging
from typing import Any, List, Optional, Protocol, Tuple

from fellowship_chat.errors import AuthorizationError, ValidationError
from fellowship_chat.identity.schemas import Identity, is_admin

from . import receipts
from .rooms import RoomRouter
from .schemas import ChatScope, Message, MessageCreate, UnreadCounts, Watermark
from .store import MessageStore

logger = logging.getLogger(__name__)

ADMIN_REQUIRED_MESSAGE = "Access denied. Admin privileges required."


class Broadcaster(Protocol):
    def broadcast(self, room_id: str, event: str, data: Any,
                  exclude_session_id: Optional[str] = None,
                  exclude_user_id: Optional[str] = None) -> int:
        ...


class MessagingService:
    """Authorize, persist, route and publish chat message operations."""

    def __init__(self, store: MessageStore, rooms: RoomRouter,
                 broadcaster: Optional[Broadcaster] = None) -> None:
        self.store = store
        self.rooms = rooms
        self._broadcaster = broadcaster

    def _publish(self, room_id: str, event: str, data: Any) -> None:
        if self._broadcaster is None:
            return
        count = self._broadcaster.broadcast(room_id, event, data)
        logger.debug("[messages] %s -> %s (%d sessions)", event, room_id, count)

    # -----------------------------------------------------------------------
    # Sending and listing
    # -----------------------------------------------------------------------

    def send(self, author: Identity, draft: MessageCreate) -> Message:
        """Create a message and publish it to its room.

        Every room member, the author included, receives the stored copy
        with the server-assigned id and timestamp.

        Raises:
            AuthorizationError: Admin scope without an admin role.
            ValidationError: Scope-specific fields missing or misplaced.
        """
        if draft.scope == ChatScope.ADMIN and not is_admin(author):
            raise AuthorizationError(ADMIN_REQUIRED_MESSAGE)

        message = self.store.create(
            scope=draft.scope,
            author_id=author.id,
            content=draft.content,
            recipient_id=draft.recipientId,
            author_name=author.display_name,
            author_avatar=draft.authorAvatar,
        )
        room_id = self.rooms.room_for(message)
        self._publish(room_id, "new-message", message.to_wire())
        logger.info("[messages] %s sent %s message %s to %s",
                    author.id, message.scope.value, message.id, room_id)
        return message

    def community(self, limit: Optional[int] = None) -> List[Message]:
        return self.store.list_community(limit)

    def admin(self, viewer: Identity, limit: Optional[int] = None) -> List[Message]:
        if not is_admin(viewer):
            raise AuthorizationError(ADMIN_REQUIRED_MESSAGE)
        return self.store.list_admin(limit)

    def private(self, viewer: Identity, other_user_id: Optional[str]) -> List[Message]:
        if not other_user_id:
            raise ValidationError("User ID is required to fetch private messages.")
        return self.store.list_private(viewer.id, other_user_id)

    def unread_counts(self, viewer: Identity) -> UnreadCounts:
        return self.store.unread_counts(viewer.id, is_admin(viewer))

    def mark_scope_read(self, viewer: Identity, scope: ChatScope) -> Watermark:
        """Advance the viewer's community or admin watermark to now."""
        if scope == ChatScope.ADMIN and not is_admin(viewer):
            raise AuthorizationError(ADMIN_REQUIRED_MESSAGE)
        return self.store.set_watermark(viewer.id, scope)

    # -----------------------------------------------------------------------
    # Acknowledgements and reactions
    # -----------------------------------------------------------------------

    def mark_delivered(self, message_id: str) -> Message:
        """Advance to DELIVERED and publish the status, even if unchanged.

        Raises:
            NotFoundError: Unknown message id.
        """
        message = self.store.mark_delivered(message_id)
        self._publish(
            self.rooms.room_for(message),
            "message-status-updated",
            receipts.delivered_update(message).to_wire(),
        )
        return message

    def mark_read(self, message_id: str, reader: Identity) -> Message:
        """Advance to READ and publish the receipt, even if unchanged.

        Raises:
            NotFoundError: Unknown message id.
            AuthorizationError: Reader has no standing in the message.
        """
        message = self.store.mark_read(message_id, reader)
        room_id = self.rooms.room_for(message)
        self._publish(room_id, "message-read", {"messageId": message.id, "userId": reader.id})
        self._publish(room_id, "message-status-updated", receipts.read_update(message).to_wire())
        return message

    def react(self, message_id: str, emoji: str, reactor: Identity) -> Tuple[Message, bool]:
        """Toggle a reaction and publish the result.

        Raises:
            NotFoundError: Unknown message id.
            AuthorizationError: Reactor has no standing in the message.
        """
        current = self.store.get(message_id)
        if not receipts.has_standing(current, reactor):
            raise AuthorizationError("Unauthorized to react to this message.")

        message, added = self.store.toggle_reaction(message_id, emoji, reactor.id)
        entry = message.reactions.get(emoji)
        self._publish(self.rooms.room_for(message), "reaction-added", {
            "messageId": message.id,
            "emoji": emoji,
            "userId": reactor.id,
            "userName": reactor.display_name,
            "added": added,
            "count": entry.count if entry else 0,
        })
        return message, added
