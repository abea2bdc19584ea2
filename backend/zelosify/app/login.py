"""Two step password + TOTP login and session termination."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import pyotp
from fastapi import Response
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..db.models import AuthProvider, User
from .config import AuthSettings
from .errors import (
    AuthenticationError,
    AuthorizationError,
    InputError,
    InternalError,
    UpstreamError,
)
from .identity_provider import KeycloakClient, ProviderTokens
from .logging import get_logger
from .principal import Principal
from .schemas.auth import UserProfile
from .security import TempTokenSigner, TokenVerificationError
from .user_cache import UserDirectoryCache

logger = get_logger("zelosify.login")

ACCESS_TOKEN_COOKIE = "access_token"
REFRESH_TOKEN_COOKIE = "refresh_token"
TEMP_TOKEN_COOKIE = "temp_token"

LOGIN_SUCCESS_MESSAGE = "TOTP verified successfully. Login successful."
LOGOUT_SUCCESS_MESSAGE = "Logged out successfully"


class LoginState(str, enum.Enum):
    CREDENTIALS_PENDING = "credentials_pending"
    TOTP_PENDING = "totp_pending"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"


@dataclass(frozen=True)
class PendingLogin:
    """Outcome of the password step: the TOTP step is now expected."""

    temp_token: str
    user_id: str


@dataclass(frozen=True)
class CompletedLogin:
    tokens: ProviderTokens
    user: UserProfile


def _clean_totp_code(code: str) -> str:
    return "".join(code.split())


def verify_totp_code(secret: str, code: str) -> bool:
    """Check ``code`` against ``secret`` allowing one step of clock drift."""

    cleaned = _clean_totp_code(code)
    if not cleaned:
        return False
    return pyotp.TOTP(secret).verify(cleaned, valid_window=1)


class MultiFactorLogin:
    """Drive a login through ``CREDENTIALS_PENDING -> TOTP_PENDING -> AUTHENTICATED``.

    One instance serves one request. :attr:`state` ends in ``REJECTED`` when
    a step raises. Cookies are not touched here; callers set them only after
    a method returns, i.e. after the database commit succeeded.
    """

    def __init__(
        self,
        session: AsyncSession,
        identity_provider: KeycloakClient,
        signer: TempTokenSigner,
    ) -> None:
        self._session = session
        self._identity_provider = identity_provider
        self._signer = signer
        self.state = LoginState.CREDENTIALS_PENDING

    def _reject(self, error: Exception) -> Exception:
        self.state = LoginState.REJECTED
        return error

    async def _load_keycloak_user(self, login: str) -> Optional[User]:
        statement = select(User).where(
            User.provider == AuthProvider.KEYCLOAK,
            or_(User.email == login, User.username == login),
        )
        result = await self._session.execute(statement)
        return result.scalars().first()

    async def begin(self, username: Optional[str], password: Optional[str]) -> PendingLogin:
        """Check credentials with the provider and issue the temp token."""

        self.state = LoginState.CREDENTIALS_PENDING
        login = (username or "").strip()
        if not login or not password:
            raise self._reject(InputError("Username and password are required"))

        try:
            tokens = await self._identity_provider.password_grant(login, password)
        except UpstreamError as exc:
            if exc.upstream_status in (400, 401):
                raise self._reject(
                    AuthenticationError("Invalid credentials", error_code="invalid_credentials")
                ) from exc
            raise self._reject(exc)

        user = await self._load_keycloak_user(login)
        if user is None:
            logger.warning("login_user_not_found", login=login)
            raise self._reject(AuthenticationError("User not found", error_code="user_not_found"))
        if not user.totp_secret:
            raise self._reject(
                AuthorizationError(
                    "TOTP is not enrolled for this account", error_code="totp_not_enrolled"
                )
            )

        temp_token = self._signer.issue(user_id=user.id, refresh_token=tokens.refresh_token)
        self.state = LoginState.TOTP_PENDING
        logger.info("login_totp_pending", user_id=user.id)
        return PendingLogin(temp_token=temp_token, user_id=user.id)

    async def verify_totp(self, temp_token: Optional[str], code: Optional[str]) -> CompletedLogin:
        """Finish the login: verify the TOTP, refresh provider tokens, persist them."""

        self.state = LoginState.TOTP_PENDING
        if not temp_token or not code:
            raise self._reject(InputError("Temp token and TOTP are required"))

        try:
            pending = self._signer.verify(temp_token)
        except TokenVerificationError as exc:
            raise self._reject(
                AuthenticationError("Invalid or expired temp token", error_code="invalid_temp_token")
            ) from exc

        result = await self._session.execute(
            select(User).options(selectinload(User.tenant)).where(User.id == pending.user_id)
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise self._reject(AuthenticationError("User not found", error_code="user_not_found"))

        if not user.totp_secret or not verify_totp_code(user.totp_secret, code):
            logger.info("login_totp_rejected", user_id=user.id)
            raise self._reject(AuthenticationError("Invalid TOTP code", error_code="invalid_totp"))

        try:
            tokens = await self._identity_provider.exchange_refresh_token(pending.refresh_token)
        except UpstreamError as exc:
            logger.warning(
                "refresh_token_exchange_failed",
                user_id=user.id,
                upstream_status=exc.upstream_status,
                body=exc.body,
            )
            raise self._reject(
                AuthenticationError("Failed to authenticate", error_code="exchange_failed")
            ) from exc

        user.access_token = tokens.access_token
        user.refresh_token = tokens.refresh_token
        user.updated_at = datetime.now(timezone.utc)
        try:
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.exception("login_token_persist_failed", user_id=user.id)
            raise self._reject(InternalError("Internal server error")) from exc

        self.state = LoginState.AUTHENTICATED
        logger.info("login_succeeded", user_id=user.id)
        return CompletedLogin(tokens=tokens, user=UserProfile.from_user(user))


class SessionTerminator:
    """Revoke the provider session and evict the caller from the user cache."""

    def __init__(self, identity_provider: KeycloakClient, user_cache: UserDirectoryCache) -> None:
        self._identity_provider = identity_provider
        self._user_cache = user_cache

    async def terminate(self, refresh_token: Optional[str], principal: Optional[Principal]) -> None:
        """Raise on failure; on return the caller may clear the session cookies."""

        if not refresh_token:
            logger.info("logout_without_refresh_token")
            raise InputError(
                "No refresh token found, already logged out", error_code="already_logged_out"
            )

        if principal is None:
            logger.warning("logout_without_principal")
        elif principal.provider is AuthProvider.KEYCLOAK:
            try:
                await self._identity_provider.logout(refresh_token)
            except UpstreamError as exc:
                logger.error(
                    "provider_logout_failed",
                    user_id=principal.id,
                    upstream_status=exc.upstream_status,
                    body=exc.body,
                )
                raise InternalError(
                    "Error logging out of Keycloak", error_code="provider_logout_failed"
                ) from exc
            logger.info("provider_session_revoked", user_id=principal.id)
        else:
            logger.info("logout_oauth_principal", user_id=principal.id, provider=principal.provider.value)

        if principal is not None and principal.external_id:
            await self._user_cache.invalidate(principal.external_id)


def set_temp_token_cookie(response: Response, token: str, config: AuthSettings, *, secure: bool) -> None:
    response.set_cookie(
        key=TEMP_TOKEN_COOKIE,
        value=token,
        httponly=True,
        secure=secure,
        samesite="strict",
        max_age=config.temp_token_ttl_seconds,
        path="/",
    )


def set_session_cookies(
    response: Response,
    tokens: ProviderTokens,
    config: AuthSettings,
    *,
    secure: bool,
) -> None:
    """Set the access and refresh cookies and drop the temp token."""

    response.set_cookie(
        key=ACCESS_TOKEN_COOKIE,
        value=tokens.access_token,
        httponly=True,
        secure=secure,
        samesite="strict",
        max_age=config.access_cookie_max_age_seconds,
        path="/",
    )
    response.set_cookie(
        key=REFRESH_TOKEN_COOKIE,
        value=tokens.refresh_token,
        httponly=True,
        secure=secure,
        samesite="strict",
        max_age=config.refresh_cookie_max_age_seconds,
        path="/",
    )
    response.delete_cookie(TEMP_TOKEN_COOKIE, path="/")


def clear_session_cookies(response: Response) -> None:
    for name in (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE):
        response.delete_cookie(name, path="/", secure=True, httponly=True, samesite="strict")


__all__ = [
    "ACCESS_TOKEN_COOKIE",
    "CompletedLogin",
    "LOGIN_SUCCESS_MESSAGE",
    "LOGOUT_SUCCESS_MESSAGE",
    "LoginState",
    "MultiFactorLogin",
    "PendingLogin",
    "REFRESH_TOKEN_COOKIE",
    "SessionTerminator",
    "TEMP_TOKEN_COOKIE",
    "clear_session_cookies",
    "set_session_cookies",
    "set_temp_token_cookie",
    "verify_totp_code",
]
