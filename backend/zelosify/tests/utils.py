"""Testing utilities for Zelosify API tests."""
from __future__ import annotations

from datetime import datetime, timezone

import pyotp
from sqlalchemy.ext.asyncio import AsyncSession

from backend.zelosify.db.models import (
    AuthProvider,
    HiringProfile,
    Opening,
    OpeningStatus,
    Tenant,
    User,
    UserRole,
)


async def create_tenant(session: AsyncSession, *, tenant_id: str, company_name: str = "Acme") -> Tenant:
    tenant = Tenant(tenant_id=tenant_id, company_name=company_name)
    session.add(tenant)
    await session.commit()
    return tenant


async def create_user(
    session: AsyncSession,
    *,
    email: str,
    tenant_id: str | None = None,
    external_id: str | None = None,
    username: str | None = None,
    role: UserRole | None = UserRole.IT_VENDOR,
    provider: AuthProvider = AuthProvider.KEYCLOAK,
    totp_secret: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
) -> User:
    """Create a user row; pass ``totp_secret=pyotp.random_base32()`` to enrol TOTP."""

    user = User(
        email=email,
        external_id=external_id,
        username=username or email.split("@")[0],
        role=role,
        provider=provider,
        tenant_id=tenant_id,
        totp_secret=totp_secret,
        first_name=first_name,
        last_name=last_name,
    )
    session.add(user)
    await session.commit()
    return user


async def create_opening(
    session: AsyncSession,
    *,
    tenant_id: str,
    hiring_manager_id: str,
    title: str,
    status: OpeningStatus = OpeningStatus.OPEN,
    posted_date: datetime | None = None,
) -> Opening:
    opening = Opening(
        tenant_id=tenant_id,
        title=title,
        description=f"{title} role",
        location="Remote",
        contract_type="6 Months",
        experience_min=1,
        experience_max=4,
        status=status,
        hiring_manager_id=hiring_manager_id,
        posted_date=posted_date or datetime.now(timezone.utc),
    )
    session.add(opening)
    await session.commit()
    return opening


async def create_profile(
    session: AsyncSession,
    *,
    opening: Opening,
    uploaded_by: str,
    filename: str = "resume.pdf",
    is_draft: bool = False,
) -> HiringProfile:
    profile = HiringProfile(
        opening_id=opening.id,
        s3_key=f"{opening.tenant_id}/{opening.id}/1700000000000_{filename}",
        uploaded_by=uploaded_by,
        is_draft=is_draft,
        is_deleted=False,
    )
    session.add(profile)
    await session.commit()
    return profile


def current_totp(secret: str) -> str:
    return pyotp.TOTP(secret).now()
