"""Pydantic schemas for authenticated identities."""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class UserRole(str, Enum):
    """Role attached to an account.

    Attributes:
        USER: Regular church member.
        ADMIN: Staff member with access to the admin chat.
        SUPER_ADMIN: Administrator with every admin privilege.
    """
    USER = "User"
    ADMIN = "Admin"
    SUPER_ADMIN = "Super-Admin"


ADMIN_ROLES = frozenset({UserRole.ADMIN, UserRole.SUPER_ADMIN})


class Identity(BaseModel):
    """An authenticated user reference.

    Attributes:
        id: Opaque user identifier.
        display_name: Name shown next to messages and in presence lists.
        role: Account role used for admin checks.
        email: Email address, when the token carries one.
    """
    id: str = Field(..., min_length=1, description="Opaque user ID")
    display_name: str = Field(default="Anonymous", description="Display name")
    role: UserRole = Field(default=UserRole.USER, description="Account role")
    email: Optional[str] = Field(default=None, description="Email address")

    model_config = {"frozen": True}


def has_role(identity: Identity, *roles: UserRole) -> bool:
    return identity.role in roles


def is_admin(identity: Identity) -> bool:
    """True for Admin and Super-Admin identities."""
    return identity.role in ADMIN_ROLES
