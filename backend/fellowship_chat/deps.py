"""Service wiring and FastAPI dependencies.

Every piece of process-wide chat state is constructed once per application
in build_services() and kept on ``app.state.services``. Routes reach it
through get_services(), never through module globals.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.requests import HTTPConnection

from fellowship_chat.config import AppSettings
from fellowship_chat.identity.gate import IdentityGate, JwtIdentityGate
from fellowship_chat.identity.schemas import Identity
from fellowship_chat.messages.rooms import CanonicalRoomRouter, RoomRouter
from fellowship_chat.messages.service import MessagingService
from fellowship_chat.messages.store import MessageStore
from fellowship_chat.realtime.hub import ConnectionHub
from fellowship_chat.realtime.manager import SessionManager
from fellowship_chat.realtime.presence import PresenceRegistry
from fellowship_chat.realtime.typing import TypingTracker

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


@dataclass
class ChatServices:
    """Explicitly owned chat state for one application instance."""
    config: AppSettings
    gate: IdentityGate
    store: MessageStore
    rooms: RoomRouter
    hub: ConnectionHub
    presence: PresenceRegistry
    typing: TypingTracker
    messaging: MessagingService
    sessions: SessionManager

    async def close(self) -> None:
        await self.sessions.shutdown()
        self.store.close()


def build_services(config: AppSettings) -> ChatServices:
    gate = JwtIdentityGate(
        secret_key=config.secrets.jwt.secret_key,
        algorithm=config.secrets.jwt.algorithm,
    )
    store = MessageStore(db_path=config.messages.db_path, page_size=config.messages.page_size)
    rooms = CanonicalRoomRouter()
    hub = ConnectionHub()
    presence = PresenceRegistry()
    typing = TypingTracker(quiescence_seconds=config.typing.quiescence_seconds)
    messaging = MessagingService(store, rooms, hub)
    sessions = SessionManager(gate, presence, typing, hub, messaging, rooms)
    logger.info(f"[Services] Chat services ready (store={config.messages.db_path})")
    return ChatServices(
        config=config,
        gate=gate,
        store=store,
        rooms=rooms,
        hub=hub,
        presence=presence,
        typing=typing,
        messaging=messaging,
        sessions=sessions,
    )


def get_services(connection: HTTPConnection) -> ChatServices:
    return connection.app.state.services


def bearer_token(credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials is None or credentials.scheme.lower() != "bearer":
        return None
    return credentials.credentials or None


def current_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Identity:
    """Resolve the caller from the ``Authorization: Bearer`` header.

    Raises:
        AuthenticationError: Missing or invalid credential (401).
    """
    return get_services(request).gate.authenticate(bearer_token(credentials))
