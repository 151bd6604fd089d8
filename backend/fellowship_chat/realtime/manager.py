"""Realtime session manager.

Owns the lifecycle of every realtime connection and dispatches inbound
events to the presence registry, typing tracker and messaging service.
The manager never touches a transport: it works on ChatSession objects
and their outbound queues, so it can be driven directly in tests.

Lifecycle per connection:
    CONNECTING -> AUTHENTICATED -> (joined to zero or more rooms) -> DISCONNECTED

Inbound events:
    - join-room(roomId), leave-room(roomId)
    - send-message({scope|chatType, recipientId?, content, authorAvatar?})
    - message-delivered(messageId), message-read(messageId)
    - message-reaction({messageId, emoji})
    - user-typing({chatId, userName}), user-stopped-typing({chatId})
    - user-activity()
    - start-private-chat(targetUserId)
    - ping()

Errors raised while handling an event are reported only to the session
that sent it, as an ``error({status, message})`` event. Storage failures
are logged and the event is dropped.

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from fellowship_chat.errors import ChatError, StorageError, ValidationError
from fellowship_chat.identity.gate import IdentityGate
from fellowship_chat.messages.rooms import RoomRouter
from fellowship_chat.messages.schemas import MessageCreate, ReactionRequest
from fellowship_chat.messages.service import MessagingService

from .hub import ChatSession, ConnectionHub, SessionState
from .presence import PresenceRegistry
from .typing import TypingTracker

logger = logging.getLogger(__name__)

Handler = Callable[[ChatSession, Any], Awaitable[None]]


def _field(data: Any, name: str) -> Optional[str]:
    """Read a string argument sent either bare or wrapped in an object."""
    if isinstance(data, str):
        return data or None
    if isinstance(data, dict):
        value = data.get(name)
        if isinstance(value, str) and value:
            return value
    return None


def _require(data: Any, name: str) -> str:
    value = _field(data, name)
    if value is None:
        raise ValidationError(f"{name} is required.")
    return value


class SessionManager:
    """Connection lifecycle and inbound event dispatch.

    Args:
        gate: Verifies connection credentials.
        presence: Who is online.
        typing: Who is composing in which room.
        hub: Session registry and room fan-out.
        messaging: Message operations shared with the HTTP surface.
        rooms: Room topology and join authorization.
    """

    def __init__(
        self,
        gate: IdentityGate,
        presence: PresenceRegistry,
        typing: TypingTracker,
        hub: ConnectionHub,
        messaging: MessagingService,
        rooms: RoomRouter,
    ) -> None:
        self.gate = gate
        self.presence = presence
        self.typing = typing
        self.hub = hub
        self.messaging = messaging
        self.rooms = rooms
        self.typing.set_expiry_callback(self._on_typing_expired)

        self._handlers: Dict[str, Handler] = {
            "join-room": self._join_room,
            "leave-room": self._leave_room,
            "send-message": self._send_message,
            "message-delivered": self._message_delivered,
            "message-read": self._message_read,
            "message-reaction": self._message_reaction,
            "user-typing": self._user_typing,
            "user-stopped-typing": self._user_stopped_typing,
            "user-activity": self._user_activity,
            "start-private-chat": self._start_private_chat,
            "ping": self._ping,
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self, token: Optional[str]) -> ChatSession:
        """Authenticate a new connection and announce it.

        Nothing is registered anywhere when authentication fails.

        Raises:
            AuthenticationError: Missing, expired or invalid credential.
        """
        identity = self.gate.authenticate(token)

        session = ChatSession(identity)
        session.state = SessionState.AUTHENTICATED
        self.hub.add(session)
        self.presence.register(identity.id, identity.display_name, session.id)

        self.hub.broadcast_all(
            "user-online",
            {"userId": identity.id, "userName": identity.display_name},
            exclude_session_id=session.id,
        )
        session.send("online-users-list", self.presence.list().to_wire())

        logger.info(f"[Session] {identity.display_name} ({identity.id}) connected as {session.id}")
        return session

    async def disconnect(self, session: ChatSession) -> None:
        """Tear down a connection. Safe to call more than once."""
        if session.id not in self.hub.sessions and not session.is_open:
            return

        user_id = session.user_id
        left = self.hub.remove(session)
        session.close()

        remaining = self.hub.sessions_of(user_id)
        if remaining:
            # Rooms still held by another connection of this user keep typing.
            still_joined = set().union(*(s.rooms for s in remaining))
            stopped = [
                room_id for room_id in sorted(left - still_joined)
                if self.typing.stop(room_id, user_id)
            ]
        else:
            stopped = self.typing.clear_user(user_id)
        for room_id in stopped:
            self._announce_stopped(room_id, user_id)

        if self.presence.unregister(user_id, session.id):
            self.hub.broadcast_all("user-offline", {"userId": user_id})

        logger.info(f"[Session] {user_id} disconnected ({session.id})")

    async def shutdown(self) -> None:
        """Cancel typing timers and close every session."""
        self.typing.close()
        self.hub.close_all()
        self.presence.clear()
        logger.info("[Session] Session manager shut down")

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def handle(self, session: ChatSession, event: Any, data: Any = None) -> None:
        """Dispatch one inbound event.

        Failures are reported to ``session`` only and never end the connection.
        """
        if session.state != SessionState.AUTHENTICATED:
            return

        handler = self._handlers.get(event) if isinstance(event, str) else None
        if handler is None:
            self.report(session, ValidationError(f"Unknown event: {event}"))
            return

        try:
            await handler(session, data)
        except StorageError as e:
            logger.error(f"[Session] Storage failure handling {event} for {session.user_id}: {e}")
        except ChatError as e:
            logger.info(f"[Session] {event} from {session.user_id} rejected: {e.message}")
            self.report(session, e)
        except PydanticValidationError as e:
            first = e.errors()[0]
            loc = ".".join(str(part) for part in first.get("loc", ())) or "payload"
            self.report(session, ValidationError(f"Invalid {loc}: {first.get('msg')}"))

    def report(self, session: ChatSession, error: ChatError) -> None:
        session.send("error", {"status": error.status_code, "message": error.message})

    # =========================================================================
    # Rooms
    # =========================================================================

    async def _join_room(self, session: ChatSession, data: Any) -> None:
        room_id = _require(data, "roomId")
        if not self.rooms.can_join(room_id, session.identity):
            raise ValidationError(f"Cannot join room: {room_id}")
        if self.hub.join(session, room_id):
            logger.info(f"[Session] {session.identity.display_name} joined room {room_id}")

    async def _leave_room(self, session: ChatSession, data: Any) -> None:
        room_id = _require(data, "roomId")
        self.hub.leave(session, room_id)
        if self.typing.stop(room_id, session.user_id):
            self._announce_stopped(room_id, session.user_id)

    async def _start_private_chat(self, session: ChatSession, data: Any) -> None:
        target_id = _require(data, "targetUserId")
        if target_id == session.user_id:
            raise ValidationError("Cannot start a private chat with yourself.")

        room_id = self.rooms.private_room(session.user_id, target_id)
        self.hub.join(session, room_id)

        target = self.presence.lookup(target_id)
        if target is not None:
            self.hub.send_to(target.connection_id, "private-chat-started", {
                "roomId": room_id,
                "initiatorId": session.user_id,
                "initiatorName": session.identity.display_name,
            })
        logger.info(f"[Session] Private chat {room_id} started by {session.user_id}")

    # =========================================================================
    # Messages
    # =========================================================================

    async def _send_message(self, session: ChatSession, data: Any) -> None:
        if not isinstance(data, dict):
            raise ValidationError("Message payload must be an object.")
        draft = MessageCreate.model_validate(data)
        self.messaging.send(session.identity, draft)

    async def _message_delivered(self, session: ChatSession, data: Any) -> None:
        self.messaging.mark_delivered(_require(data, "messageId"))

    async def _message_read(self, session: ChatSession, data: Any) -> None:
        self.messaging.mark_read(_require(data, "messageId"), session.identity)

    async def _message_reaction(self, session: ChatSession, data: Any) -> None:
        message_id = _require(data, "messageId")
        request = ReactionRequest.model_validate({"emoji": _field(data, "emoji")})
        self.messaging.react(message_id, request.emoji, session.identity)

    # =========================================================================
    # Typing and activity
    # =========================================================================

    async def _user_typing(self, session: ChatSession, data: Any) -> None:
        room_id = _require(data, "chatId")
        if not self.rooms.can_join(room_id, session.identity):
            raise ValidationError(f"Cannot type in room: {room_id}")

        name = _field(data, "userName") or session.identity.display_name
        if self.typing.start(room_id, session.user_id, name):
            self.hub.broadcast(
                room_id,
                "user-typing",
                {"userId": session.user_id, "userName": name, "chatId": room_id},
                exclude_user_id=session.user_id,
            )

    async def _user_stopped_typing(self, session: ChatSession, data: Any) -> None:
        room_id = _require(data, "chatId")
        if self.typing.stop(room_id, session.user_id):
            self._announce_stopped(room_id, session.user_id)

    async def _user_activity(self, session: ChatSession, data: Any) -> None:
        entry = self.presence.touch(session.user_id)
        if entry is None:
            return
        self.hub.broadcast_all(
            "user-activity",
            {"userId": entry.user_id, "timestamp": entry.last_activity_ms},
            exclude_session_id=session.id,
        )

    async def _ping(self, session: ChatSession, data: Any) -> None:
        session.send("pong", data)

    def _announce_stopped(self, room_id: str, user_id: str) -> None:
        self.hub.broadcast(
            room_id,
            "user-stopped-typing",
            {"userId": user_id, "chatId": room_id},
            exclude_user_id=user_id,
        )

    def _on_typing_expired(self, room_id: str, user_id: str) -> None:
        self._announce_stopped(room_id, user_id)
