"""
identity.py — Caller Identity

The authentication gateway in front of this service verifies the access token
and forwards the resulting (userId, role) pair in the X-User-Id and
X-User-Role headers. The order core trusts that pair as-is.
"""

from typing import Optional

from fastapi import Depends, Header
from pydantic import BaseModel

from .entities import Role
from .errors import ForbiddenError, UnauthorizedError


class Identity(BaseModel):
    user_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def ensure_authenticated(identity: Optional[Identity]) -> Identity:
    if identity is None or not identity.user_id:
        raise UnauthorizedError("Unauthorized")
    return identity


def ensure_role(identity: Identity, *roles: Role, message: str = "Forbidden"):
    ensure_authenticated(identity)
    if identity.role not in roles:
        raise ForbiddenError(message)


def get_identity(
        x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
        x_user_role: Optional[str] = Header(None, alias="X-User-Role")
) -> Identity:
    """FastAPI dependency resolving the verified caller identity from gateway headers."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise UnauthorizedError("No identity provided")
    try:
        role = Role((x_user_role or "").strip().upper())
    except ValueError:
        raise UnauthorizedError("Invalid identity role")
    return Identity(user_id=user_id, role=role)


def require_roles(*roles: Role):
    """Route-level guard: rejects callers whose role is not listed."""
    def dependency(identity: Identity = Depends(get_identity)) -> Identity:
        ensure_role(identity, *roles)
        return identity
    return dependency
