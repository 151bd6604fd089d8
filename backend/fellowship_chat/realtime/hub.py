"""Session objects and room fan-out for realtime chat.

Each connected client is represented by a ChatSession with its own outbound
queue. Fan-out never touches a socket directly: the hub enqueues an
envelope on every target session without suspending, and a writer task per
connection drains the queue to the transport. Because enqueueing is
synchronous, every member of a room sees events in the order they were
published.

Envelope format (both directions):
    {"event": "<name>", "data": <payload>}

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.
"""
import asyncio
import logging
import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from fellowship_chat.identity.schemas import Identity

logger = logging.getLogger(__name__)

# Pending envelopes a session may hold before it is treated as dead
DEFAULT_OUTBOX_SIZE = 1000


class SessionState(str, Enum):
    """Lifecycle of one realtime connection.

    Attributes:
        CONNECTING: Transport open, credential not yet verified.
        AUTHENTICATED: Identity verified; may join rooms and send events.
        DISCONNECTED: Closed; further sends are dropped.
    """
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    DISCONNECTED = "disconnected"


def envelope(event: str, data: Any) -> dict:
    return {"event": event, "data": data}


class ChatSession:
    """One long-lived client connection.

    Attributes:
        id: Connection handle (UUID), unique per connection.
        identity: The authenticated user behind this connection.
        state: Current SessionState.
        rooms: Fan-out groups this connection has joined.
        outbox: Envelopes waiting to be written to the transport.
    """

    def __init__(self, identity: Identity, max_pending: int = DEFAULT_OUTBOX_SIZE) -> None:
        self.id = str(uuid.uuid4())
        self.identity = identity
        self.state = SessionState.CONNECTING
        self.rooms: Set[str] = set()
        self.connected_at = time.time()
        self.outbox: "asyncio.Queue[Optional[dict]]" = asyncio.Queue(maxsize=max_pending)

    @property
    def user_id(self) -> str:
        return self.identity.id

    @property
    def is_open(self) -> bool:
        return self.state != SessionState.DISCONNECTED

    def send(self, event: str, data: Any) -> bool:
        """Queue an envelope for this client.

        Returns:
            True if queued, False if the session is closed or its queue is full.
        """
        if not self.is_open:
            return False
        try:
            self.outbox.put_nowait(envelope(event, data))
            return True
        except asyncio.QueueFull:
            logger.warning(
                "[Hub] Outbox full for session %s (user %s); dropping %s",
                self.id, self.user_id, event,
            )
            return False

    async def next_envelope(self) -> Optional[dict]:
        """Wait for the next envelope; None means the session was closed."""
        return await self.outbox.get()

    def pending(self) -> List[dict]:
        """Remove and return every queued envelope without waiting."""
        items = []
        while True:
            try:
                item = self.outbox.get_nowait()
            except asyncio.QueueEmpty:
                return items
            if item is not None:
                items.append(item)

    def close(self) -> None:
        """Mark the session disconnected and wake its writer."""
        if self.state == SessionState.DISCONNECTED:
            return
        self.state = SessionState.DISCONNECTED
        while True:
            try:
                self.outbox.put_nowait(None)
                return
            except asyncio.QueueFull:
                # The sentinel must always land; evict the oldest envelope.
                self.outbox.get_nowait()


class ConnectionHub:
    """Tracks live sessions and which rooms each one has joined.

    Failed deliveries (closed session or full queue) remove the session from
    every room, the same way a dead socket would be cleaned up.
    """

    def __init__(self) -> None:
        # session_id -> ChatSession
        self.sessions: Dict[str, ChatSession] = {}

        # room_id -> set of session ids
        self.rooms: Dict[str, Set[str]] = {}

    def add(self, session: ChatSession) -> None:
        self.sessions[session.id] = session

    def remove(self, session: ChatSession) -> Set[str]:
        """Forget a session and return the rooms it had joined."""
        self.sessions.pop(session.id, None)
        left = set(session.rooms)
        for room_id in left:
            self._discard(room_id, session.id)
        session.rooms.clear()
        return left

    def sessions_of(self, user_id: str) -> List[ChatSession]:
        """Live sessions belonging to one user."""
        return [s for s in self.sessions.values() if s.user_id == user_id]

    def join(self, session: ChatSession, room_id: str) -> bool:
        """Add a session to a room. Returns False if it was already a member."""
        members = self.rooms.setdefault(room_id, set())
        if session.id in members:
            return False
        members.add(session.id)
        session.rooms.add(room_id)
        logger.debug("[Hub] Session %s joined %s", session.id, room_id)
        return True

    def leave(self, session: ChatSession, room_id: str) -> bool:
        """Remove a session from a room. Returns False if it was not a member."""
        if room_id not in session.rooms:
            return False
        session.rooms.discard(room_id)
        self._discard(room_id, session.id)
        logger.debug("[Hub] Session %s left %s", session.id, room_id)
        return True

    def _discard(self, room_id: str, session_id: str) -> None:
        members = self.rooms.get(room_id)
        if members is None:
            return
        members.discard(session_id)
        if not members:
            del self.rooms[room_id]

    def members(self, room_id: str) -> List[ChatSession]:
        return [
            self.sessions[sid] for sid in self.rooms.get(room_id, ())
            if sid in self.sessions
        ]

    def room_size(self, room_id: str) -> int:
        return len(self.rooms.get(room_id, ()))

    def _deliver(
        self,
        targets: List[ChatSession],
        event: str,
        data: Any,
        exclude_session_id: Optional[str],
        exclude_user_id: Optional[str],
    ) -> int:
        delivered = 0
        failed = []
        for session in targets:
            if session.id == exclude_session_id or session.user_id == exclude_user_id:
                continue
            if session.send(event, data):
                delivered += 1
            else:
                failed.append(session)
        self._cleanup_sessions(failed)
        return delivered

    def broadcast(
        self,
        room_id: str,
        event: str,
        data: Any,
        exclude_session_id: Optional[str] = None,
        exclude_user_id: Optional[str] = None,
    ) -> int:
        """Queue an event for every session in a room.

        Args:
            room_id: Target room.
            event: Outbound event name.
            data: JSON-serializable payload.
            exclude_session_id: Skip this one connection (e.g. the sender).
            exclude_user_id: Skip every connection of this user.

        Returns:
            Number of sessions the event was queued for.
        """
        return self._deliver(
            self.members(room_id), event, data, exclude_session_id, exclude_user_id
        )

    def broadcast_all(
        self,
        event: str,
        data: Any,
        exclude_session_id: Optional[str] = None,
    ) -> int:
        """Queue an event for every connected session."""
        return self._deliver(
            list(self.sessions.values()), event, data, exclude_session_id, None
        )

    def send_to(self, session_id: str, event: str, data: Any) -> bool:
        session = self.sessions.get(session_id)
        if session is None:
            return False
        if session.send(event, data):
            return True
        self._cleanup_sessions([session])
        return False

    def _cleanup_sessions(self, failed: List[ChatSession]) -> None:
        """Drop sessions that can no longer receive from every room."""
        for session in failed:
            if session.is_open:
                # Queue full: the client is not keeping up.
                session.close()
            for room_id in list(session.rooms):
                self._discard(room_id, session.id)
            session.rooms.clear()
            logger.debug("[Hub] Removed dead session %s from its rooms", session.id)

    def close_all(self) -> None:
        for session in list(self.sessions.values()):
            session.close()
        self.sessions.clear()
        self.rooms.clear()
