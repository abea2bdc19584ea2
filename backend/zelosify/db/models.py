"""SQLAlchemy ORM models for the Zelosify data store."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class UserRole(str, enum.Enum):
    """Realm role of a user. Names are case-sensitive."""

    ADMIN = "ADMIN"
    BUSINESS_USER = "BUSINESS_USER"
    HIRING_MANAGER = "HIRING_MANAGER"
    IT_VENDOR = "IT_VENDOR"
    VENDOR_MANAGER = "VENDOR_MANAGER"


class AuthProvider(str, enum.Enum):
    """Identity provider that owns the account."""

    KEYCLOAK = "KEYCLOAK"
    GOOGLE = "GOOGLE"
    MICROSOFT = "MICROSOFT"


class OpeningStatus(str, enum.Enum):
    OPEN = "OPEN"
    ON_HOLD = "ON_HOLD"
    CLOSED = "CLOSED"
    FILLED = "FILLED"


class Tenant(Base):
    """Customer organisation. Every user and opening belongs to one."""

    __tablename__ = "tenants"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    users: Mapped[List["User"]] = relationship("User", back_populates="tenant")
    openings: Mapped[List["Opening"]] = relationship("Opening", back_populates="tenant")


class User(Base):
    """Local mirror of an identity provider account."""

    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", "provider"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    external_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    provider: Mapped[AuthProvider] = mapped_column(
        Enum(AuthProvider, name="auth_provider"),
        nullable=False,
        default=AuthProvider.KEYCLOAK,
        server_default=AuthProvider.KEYCLOAK.value,
    )
    username: Mapped[Optional[str]] = mapped_column(String(255))
    first_name: Mapped[Optional[str]] = mapped_column(String(255))
    last_name: Mapped[Optional[str]] = mapped_column(String(255))
    role: Mapped[Optional[UserRole]] = mapped_column(Enum(UserRole, name="user_role"))
    department: Mapped[Optional[str]] = mapped_column(String(255))
    tenant_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("tenants.tenant_id", ondelete="SET NULL")
    )
    totp_secret: Mapped[Optional[str]] = mapped_column(String(255))
    access_token: Mapped[Optional[str]] = mapped_column(Text)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    tenant: Mapped[Optional[Tenant]] = relationship("Tenant", back_populates="users")

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Opening(Base):
    """Job opening published by a tenant's hiring manager."""

    __tablename__ = "openings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tenants.tenant_id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    location: Mapped[Optional[str]] = mapped_column(String(255))
    contract_type: Mapped[Optional[str]] = mapped_column(String(64))
    experience_min: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    experience_max: Mapped[Optional[int]] = mapped_column(Integer)
    posted_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    expected_completion_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    status: Mapped[OpeningStatus] = mapped_column(
        Enum(OpeningStatus, name="opening_status"),
        nullable=False,
        default=OpeningStatus.OPEN,
        server_default=OpeningStatus.OPEN.value,
    )
    hiring_manager_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False
    )

    tenant: Mapped[Tenant] = relationship("Tenant", back_populates="openings")
    hiring_manager: Mapped[User] = relationship("User")
    hiring_profiles: Mapped[List["HiringProfile"]] = relationship(
        "HiringProfile", back_populates="opening", cascade="all, delete-orphan"
    )


class HiringProfile(Base):
    """Candidate profile document uploaded by a vendor against an opening."""

    __tablename__ = "hiring_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    opening_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("openings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    s3_key: Mapped[str] = mapped_column(String(1024), unique=True, nullable=False)
    uploaded_by: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    is_draft: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    opening: Mapped[Opening] = relationship("Opening", back_populates="hiring_profiles")

    @property
    def file_name(self) -> str:
        """Original upload name, i.e. the key's last segment without its timestamp prefix."""

        leaf = self.s3_key.rsplit("/", 1)[-1]
        _, _, name = leaf.partition("_")
        return name or leaf


__all__ = [
    "AuthProvider",
    "HiringProfile",
    "Opening",
    "OpeningStatus",
    "Tenant",
    "User",
    "UserRole",
]
