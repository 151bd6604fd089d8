"""Pydantic schemas for chat messages.

These schemas are used by:
    - POST /messages: MessageCreate request body
    - GET /messages/*: Message lists
    - MessageStore: DuckDB storage layer
    - realtime sessions: new-message and status payloads
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ChatScope(str, Enum):
    """Chat category a message belongs to.

    Attributes:
        COMMUNITY: Visible to every signed-in member.
        ADMIN: Staff-only chat (Admin and Super-Admin).
        PRIVATE: One-to-one conversation between two members.
    """
    COMMUNITY = "community"
    ADMIN = "admin"
    PRIVATE = "private"


class DeliveryState(str, Enum):
    """Acknowledgement lifecycle of a message (see receipts.py)."""
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Reaction(BaseModel):
    """Aggregated reaction for one emoji.

    ``count`` always equals ``len(users)``; users keep the order they reacted in.
    """
    count: int = Field(default=0, ge=0)
    users: List[str] = Field(default_factory=list)


class Message(BaseModel):
    """Stored chat message as returned to clients.

    Attributes:
        id: Unique message identifier (server-assigned UUID).
        scope: community, admin or private.
        authorId: Sender's user ID.
        authorName: Sender's display name at send time.
        authorAvatar: Optional avatar URL of the sender.
        recipientId: Other participant; set only for private messages.
        content: Message body (text, may reference media).
        createdAt: Server timestamp assigned at insertion (UTC).
        delivered / deliveredAt: Reached the room or recipient.
        read / readAt: Acknowledged by a qualifying reader.
        reactions: emoji -> aggregated reaction.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    scope: ChatScope
    authorId: str
    authorName: str = ""
    authorAvatar: Optional[str] = None
    recipientId: Optional[str] = None
    content: str
    createdAt: datetime = Field(default_factory=utcnow)
    delivered: bool = False
    deliveredAt: Optional[datetime] = None
    read: bool = False
    readAt: Optional[datetime] = None
    reactions: Dict[str, Reaction] = Field(default_factory=dict)

    def to_wire(self) -> dict:
        """JSON-safe dict used in HTTP responses and realtime payloads."""
        return self.model_dump(mode="json")


class MessageCreate(BaseModel):
    """Input schema for sending a message.

    Clients send this lightweight structure; the server adds id, author,
    timestamps and status fields. ``chatType`` is accepted as an alias
    for ``scope``.
    """
    model_config = ConfigDict(populate_by_name=True)

    scope: ChatScope = Field(
        ...,
        validation_alias=AliasChoices("scope", "chatType"),
        description="community, admin or private",
    )
    content: str = Field(..., description="Message content")
    recipientId: Optional[str] = Field(default=None, description="Required for private")
    authorAvatar: Optional[str] = Field(default=None, description="Sender avatar URL")


class ReactionRequest(BaseModel):
    """Request body for toggling a reaction."""
    emoji: str = Field(..., min_length=1, max_length=32)


class UnreadCounts(BaseModel):
    """Unread totals for one user.

    Attributes:
        private: sender ID -> unread private messages addressed to the user.
        community: unread community messages since the community watermark.
        admin: unread admin messages since the admin watermark (0 for non-admins).
    """
    private: Dict[str, int] = Field(default_factory=dict)
    community: int = 0
    admin: int = 0


class Watermark(BaseModel):
    """Last time a user caught up on a broadcast scope."""
    userId: str
    scope: ChatScope
    lastReadAt: datetime


class StatusUpdate(BaseModel):
    """Payload of the message-status-updated event.

    Only the fields relevant to the transition are serialized.
    """
    messageId: str
    delivered: Optional[bool] = None
    deliveredAt: Optional[datetime] = None
    read: Optional[bool] = None
    readAt: Optional[datetime] = None

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)
