"""Authenticated caller representation handed to route handlers."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..db.models import AuthProvider, User


class Principal(BaseModel):
    """Immutable snapshot of the local user behind a verified token.

    ``realm_roles`` come from the token, not the database. A snapshot served
    from the user directory cache keeps the roles it was stored with, so a
    role change in the identity provider can take up to the cache TTL (five
    minutes by default) to apply.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    external_id: Optional[str] = None
    email: str
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None
    tenant_id: Optional[str] = None
    department: Optional[str] = None
    provider: AuthProvider = AuthProvider.KEYCLOAK
    realm_roles: tuple[str, ...] = Field(default_factory=tuple)

    @classmethod
    def from_user(
        cls,
        user: User,
        *,
        realm_roles: tuple[str, ...] = (),
        subject: Optional[str] = None,
    ) -> "Principal":
        return cls(
            id=user.id,
            external_id=subject or user.external_id,
            email=user.email,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role.value if user.role is not None else None,
            tenant_id=user.tenant_id,
            department=user.department,
            provider=user.provider,
            realm_roles=tuple(realm_roles),
        )

    def has_role(self, role: str) -> bool:
        return role in self.realm_roles


__all__ = ["Principal"]
