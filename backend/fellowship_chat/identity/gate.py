"""JWT-backed identity gate.

Tokens are issued by the account service with the claims:
    - id: user identifier (required)
    - fullName / email: used for the display name
    - role: "User", "Admin" or "Super-Admin" (defaults to "User")
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from fellowship_chat.errors import AuthenticationError

from .schemas import Identity, UserRole

logger = logging.getLogger(__name__)

INVALID_TOKEN_MESSAGE = "Invalid token. Please log in again."


class IdentityGate(ABC):
    """Resolves a bearer credential to an Identity or rejects it."""

    @abstractmethod
    def authenticate(self, token: Optional[str]) -> Identity:
        """Return the identity behind ``token``.

        Raises:
            AuthenticationError: If the token is missing or invalid.
        """


class JwtIdentityGate(IdentityGate):
    """Verify HS256 (or other configured algorithm) bearer tokens."""

    def __init__(self, secret_key: str, algorithm: str = "HS256") -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm

    def authenticate(self, token: Optional[str]) -> Identity:
        if not token:
            raise AuthenticationError("You are not logged in. Please log in to get access.")

        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except ExpiredSignatureError:
            logger.debug("[Identity] Rejected expired token")
            raise AuthenticationError("Your session has expired. Please log in again.")
        except InvalidTokenError as exc:
            logger.debug("[Identity] Rejected invalid token: %s", exc)
            raise AuthenticationError(INVALID_TOKEN_MESSAGE)

        user_id = payload.get("id")
        if not isinstance(user_id, str) or not user_id:
            raise AuthenticationError("Invalid token payload.")

        try:
            role = UserRole(payload.get("role") or UserRole.USER.value)
        except ValueError:
            raise AuthenticationError("Invalid token payload.")

        return Identity(
            id=user_id,
            display_name=payload.get("fullName") or payload.get("email") or "Anonymous",
            role=role,
            email=payload.get("email"),
        )

    def issue_token(self, identity: Identity, expires_in: timedelta = timedelta(days=1)) -> str:
        """Sign a token for ``identity`` (development and tests)."""
        now = datetime.now(timezone.utc)
        claims = {
            "id": identity.id,
            "fullName": identity.display_name,
            "role": identity.role.value,
            "iat": now,
            "exp": now + expires_in,
        }
        if identity.email:
            claims["email"] = identity.email
        return jwt.encode(claims, self._secret_key, algorithm=self._algorithm)
