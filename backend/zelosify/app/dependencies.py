"""FastAPI dependencies: shared services, the authentication gate and role checks."""
from __future__ import annotations

from functools import lru_cache
from typing import Awaitable, Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import AuthProvider, User, UserRole
from ..db.session import get_session
from .cache import build_cache
from .config import settings
from .errors import AuthenticationError, AuthorizationError, InvalidRoleError
from .identity_provider import KeycloakClient
from .jwks import SigningKeyResolver
from .logging import bind_contextvars, get_logger
from .login import ACCESS_TOKEN_COOKIE, MultiFactorLogin, SessionTerminator
from .object_storage import ObjectStorage
from .principal import Principal
from .security import MalformedTokenError, TempTokenSigner, TokenVerificationError, TokenVerifier, decode_header
from .user_cache import UserDirectoryCache

logger = get_logger("zelosify.dependencies")

bearer_scheme = HTTPBearer(auto_error=False)

_ROLE_NAMES = frozenset(role.value for role in UserRole)


@lru_cache(maxsize=1)
def get_token_verifier() -> TokenVerifier:
    config = settings.auth
    resolver = SigningKeyResolver(
        config.jwks_url,
        cache=build_cache(settings.redis_url),
        cache_ttl_seconds=config.jwks_cache_ttl_seconds,
        requests_per_minute=config.jwks_requests_per_minute,
        request_timeout=config.http_timeout_seconds,
    )
    return TokenVerifier.from_settings(config, resolver)


@lru_cache(maxsize=1)
def get_user_cache() -> UserDirectoryCache:
    backend = build_cache(settings.redis_url, max_entries=settings.auth.user_cache_max_entries)
    return UserDirectoryCache(backend, ttl_seconds=settings.auth.user_cache_ttl_seconds)


@lru_cache(maxsize=1)
def get_identity_provider() -> KeycloakClient:
    return KeycloakClient(settings.auth)


@lru_cache(maxsize=1)
def get_temp_token_signer() -> TempTokenSigner:
    return TempTokenSigner(settings.auth.jwt_secret, ttl_seconds=settings.auth.temp_token_ttl_seconds)


@lru_cache(maxsize=1)
def get_object_storage() -> ObjectStorage:
    return ObjectStorage.from_settings(settings.object_storage)


def get_login_flow(
    session: AsyncSession = Depends(get_session),
    identity_provider: KeycloakClient = Depends(get_identity_provider),
    signer: TempTokenSigner = Depends(get_temp_token_signer),
) -> MultiFactorLogin:
    return MultiFactorLogin(session, identity_provider, signer)


def get_session_terminator(
    identity_provider: KeycloakClient = Depends(get_identity_provider),
    user_cache: UserDirectoryCache = Depends(get_user_cache),
) -> SessionTerminator:
    return SessionTerminator(identity_provider, user_cache)


def _candidate_tokens(request: Request, credentials: HTTPAuthorizationCredentials | None) -> list[str]:
    """Bearer header first, then the ``access_token`` cookie."""

    tokens: list[str] = []
    if credentials is not None and credentials.credentials:
        tokens.append(credentials.credentials)
    cookie = request.cookies.get(ACCESS_TOKEN_COOKIE)
    if cookie and cookie not in tokens:
        tokens.append(cookie)
    return tokens


async def _find_user(session: AsyncSession, subject: str, email: Optional[str]) -> Optional[User]:
    result = await session.execute(select(User).where(User.external_id == subject))
    user = result.scalar_one_or_none()
    if user is None and email:
        result = await session.execute(
            select(User).where(User.email == email, User.provider == AuthProvider.KEYCLOAK)
        )
        user = result.scalar_one_or_none()
    return user


async def resolve_principal(
    token: str,
    *,
    session: AsyncSession,
    verifier: TokenVerifier,
    user_cache: UserDirectoryCache,
) -> Principal:
    """Turn a raw access token into a :class:`Principal` or raise a 401."""

    try:
        decode_header(token)
        claims = await verifier.verify(token)
    except MalformedTokenError as exc:
        raise AuthenticationError("Invalid token format", error_code="invalid_token_format") from exc
    except TokenVerificationError as exc:
        logger.info("token_verification_failed", reason=str(exc))
        raise AuthenticationError("Token verification failed", error_code="verification_failed") from exc

    cached = await user_cache.lookup(claims.subject)
    if cached is not None:
        return cached

    user = await _find_user(session, claims.subject, claims.email)
    if user is None:
        logger.warning("authenticated_user_not_found", subject=claims.subject)
        raise AuthenticationError("User not found", error_code="user_not_found")

    principal = Principal.from_user(user, realm_roles=claims.realm_roles, subject=claims.subject)
    await user_cache.store(claims.subject, principal)
    return principal


async def authenticate(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_session),
    verifier: TokenVerifier = Depends(get_token_verifier),
    user_cache: UserDirectoryCache = Depends(get_user_cache),
) -> Principal:
    """Authentication gate: resolve the caller or fail with a typed 401."""

    tokens = _candidate_tokens(request, credentials)
    if not tokens:
        raise AuthenticationError("Authentication required", error_code="no_token")

    principal = await resolve_principal(
        tokens[0], session=session, verifier=verifier, user_cache=user_cache
    )
    bind_contextvars(user_id=principal.id, tenant_id=principal.tenant_id)
    return principal


async def authenticate_optional(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_session),
    verifier: TokenVerifier = Depends(get_token_verifier),
    user_cache: UserDirectoryCache = Depends(get_user_cache),
) -> Optional[Principal]:
    """Like :func:`authenticate` but yields ``None`` instead of failing.

    Used by logout, where an expired access token must not block the user
    from ending the session.
    """

    for token in _candidate_tokens(request, credentials):
        try:
            return await resolve_principal(
                token, session=session, verifier=verifier, user_cache=user_cache
            )
        except AuthenticationError as exc:
            logger.info("optional_authentication_failed", error_code=exc.error_code)
    return None


def require_role(role: str) -> Callable[..., Awaitable[Principal]]:
    """Build a dependency that admits principals holding realm role ``role``.

    The role name is checked before authentication, so a route wired with an
    unknown role answers 400 for every caller.
    """

    def _check_role_name() -> None:
        if role not in _ROLE_NAMES:
            raise InvalidRoleError("Invalid role specified")

    async def _require_role(
        _: None = Depends(_check_role_name),
        principal: Optional[Principal] = Depends(authenticate),
    ) -> Principal:
        if principal is None:
            raise AuthenticationError("Authentication required", error_code="no_principal")
        if not principal.has_role(role):
            logger.info("role_check_failed", user_id=principal.id, required_role=role)
            raise AuthorizationError(f"Access denied: {role} role required")
        return principal

    return _require_role


require_vendor = require_role(UserRole.IT_VENDOR.value)


__all__ = [
    "authenticate",
    "authenticate_optional",
    "get_identity_provider",
    "get_login_flow",
    "get_object_storage",
    "get_session",
    "get_session_terminator",
    "get_temp_token_signer",
    "get_token_verifier",
    "get_user_cache",
    "require_role",
    "require_vendor",
    "resolve_principal",
]
