"""Pydantic models for the authentication endpoints."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ...db.models import User


class LoginRequest(BaseModel):
    """Request body for ``POST /auth/login``."""

    username: Optional[str] = Field(default=None, max_length=320)
    password: Optional[str] = Field(default=None, max_length=1024)


class VerifyTotpRequest(BaseModel):
    """Request body for ``POST /auth/verify-totp``.

    Both fields are optional at the schema level so that a missing code is
    reported as ``missing_input`` rather than a validation error.
    """

    totp: Optional[str] = None


class TenantSummary(BaseModel):
    tenant_id: str
    company_name: str


class UserProfile(BaseModel):
    """Public view of a user. Never carries the TOTP secret or session tokens."""

    id: str
    username: Optional[str] = None
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None
    department: Optional[str] = None
    tenant: Optional[TenantSummary] = None

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        tenant = None
        if user.tenant is not None:
            tenant = TenantSummary(
                tenant_id=user.tenant.tenant_id,
                company_name=user.tenant.company_name,
            )
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role.value if user.role is not None else None,
            department=user.department,
            tenant=tenant,
        )


class MessageResponse(BaseModel):
    message: str


class LoginResponse(BaseModel):
    """Response schema for ``POST /auth/login``: the TOTP step is still pending."""

    message: str
    totp_required: bool = True


class VerifyTotpResponse(BaseModel):
    message: str
    user: UserProfile


class PrincipalResponse(BaseModel):
    """Response schema for ``GET /auth/me``."""

    id: str
    email: str
    username: Optional[str] = None
    role: Optional[str] = None
    tenant_id: Optional[str] = None
    department: Optional[str] = None
    provider: str
    realm_roles: list[str]
