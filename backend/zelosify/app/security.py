"""Bearer token verification and the short lived MFA hand-off token."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

import jwt

from .config import AuthSettings, TrustPolicy
from .jwks import JWKSFetchError, JWKSKeyNotFoundError, JWKSRateLimitedError, SigningKeyResolver
from .logging import get_logger

logger = get_logger("zelosify.security")

ACCEPTED_ALGORITHM = "RS256"
TEMP_TOKEN_ALGORITHM = "HS256"
TEMP_TOKEN_PURPOSE = "mfa"


class TokenVerificationError(Exception):
    """Base class for every reason a bearer token is rejected."""


class TokenInvalidError(TokenVerificationError):
    pass


class MalformedTokenError(TokenInvalidError):
    """The token could not be decoded at all."""


class TokenExpiredError(TokenVerificationError):
    pass


class SignatureMismatchError(TokenVerificationError):
    pass


class UnknownIssuerError(TokenVerificationError):
    pass


@dataclass(frozen=True)
class TokenClaims:
    """Verified token payload with the fields the gates care about."""

    subject: str
    email: str | None
    username: str | None
    realm_roles: tuple[str, ...]
    issuer: str
    expires_at: datetime | None
    claims: dict[str, Any]


def _extract_realm_roles(claims: dict[str, Any]) -> tuple[str, ...]:
    roles: list[str] = []
    realm_access = claims.get("realm_access")
    if isinstance(realm_access, dict):
        raw_roles = realm_access.get("roles")
        if isinstance(raw_roles, Iterable) and not isinstance(raw_roles, (str, bytes)):
            for item in raw_roles:
                if isinstance(item, str):
                    cleaned = item.strip()
                    if cleaned and cleaned not in roles:
                        roles.append(cleaned)
    return tuple(roles)


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or None
    return None


def decode_header(token: str) -> dict[str, Any]:
    """Return the unverified JOSE header or raise :class:`MalformedTokenError`."""

    try:
        header = jwt.get_unverified_header(token)
    except jwt.InvalidTokenError as exc:
        raise MalformedTokenError("Invalid token format") from exc
    if not isinstance(header, dict):
        raise MalformedTokenError("Invalid token format")
    return header


class TokenVerifier:
    """Validate provider-issued RS256 access tokens.

    Under :attr:`TrustPolicy.VERIFY` the signature is checked against the
    key resolved by ``kid`` and the issuer must equal the configured realm
    issuer. :attr:`TrustPolicy.DECODE_ONLY` only decodes the payload and
    checks expiry; it is meant for local development and logs a warning on
    every call.
    """

    def __init__(
        self,
        resolver: SigningKeyResolver,
        *,
        issuer: str,
        trust_policy: TrustPolicy = TrustPolicy.VERIFY,
    ) -> None:
        self._resolver = resolver
        self._issuer = issuer
        self._trust_policy = trust_policy

    @classmethod
    def from_settings(cls, config: AuthSettings, resolver: SigningKeyResolver) -> "TokenVerifier":
        return cls(resolver, issuer=config.issuer, trust_policy=config.trust_policy)

    @property
    def trust_policy(self) -> TrustPolicy:
        return self._trust_policy

    def _check_header(self, token: str) -> str:
        header = decode_header(token)
        algorithm = header.get("alg")
        if algorithm != ACCEPTED_ALGORITHM:
            raise TokenInvalidError("Unsupported signing algorithm")
        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise TokenInvalidError("Token missing key identifier")
        return kid

    async def _verified_payload(self, token: str) -> dict[str, Any]:
        kid = self._check_header(token)
        try:
            key = await self._resolver.resolve(kid)
        except JWKSKeyNotFoundError as exc:
            raise TokenInvalidError("Unknown signing key") from exc
        except JWKSRateLimitedError as exc:
            raise TokenInvalidError("Signing key lookup is rate limited") from exc
        except JWKSFetchError as exc:
            raise TokenInvalidError("Unable to fetch signing keys") from exc

        try:
            return jwt.decode(
                token,
                key,
                algorithms=[ACCEPTED_ALGORITHM],
                issuer=self._issuer,
                options={"require": ["sub", "exp"], "verify_aud": False},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpiredError("Token expired") from exc
        except jwt.InvalidSignatureError as exc:
            raise SignatureMismatchError("Token signature does not match") from exc
        except jwt.InvalidIssuerError as exc:
            raise UnknownIssuerError("Token issuer is not trusted") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenInvalidError("Invalid token") from exc

    def _decoded_payload(self, token: str) -> dict[str, Any]:
        self._check_header(token)
        logger.warning("token_signature_not_verified", trust_policy=self._trust_policy.value)
        try:
            return jwt.decode(
                token,
                options={"verify_signature": False, "verify_exp": True, "require": ["sub"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpiredError("Token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenInvalidError("Invalid token") from exc

    @staticmethod
    def _to_claims(payload: dict[str, Any]) -> TokenClaims:
        subject = _optional_str(payload.get("sub"))
        if subject is None:
            raise TokenInvalidError("Token subject is missing")

        expires_at = None
        exp_claim = payload.get("exp")
        if isinstance(exp_claim, (int, float)):
            expires_at = datetime.fromtimestamp(int(exp_claim), tz=timezone.utc)

        return TokenClaims(
            subject=subject,
            email=_optional_str(payload.get("email")),
            username=_optional_str(payload.get("preferred_username")),
            realm_roles=_extract_realm_roles(payload),
            issuer=_optional_str(payload.get("iss")) or "",
            expires_at=expires_at,
            claims=dict(payload),
        )

    async def verify(self, token: str) -> TokenClaims:
        """Validate ``token`` and return its claims or raise a :class:`TokenVerificationError`."""

        if self._trust_policy is TrustPolicy.DECODE_ONLY:
            payload = self._decoded_payload(token)
        else:
            payload = await self._verified_payload(token)
        return self._to_claims(payload)


@dataclass(frozen=True)
class TempLoginToken:
    """Decoded MFA hand-off token."""

    user_id: str
    refresh_token: str


class TempTokenSigner:
    """Issue and verify the HS256 token that bridges the password and TOTP steps."""

    def __init__(self, secret: str, *, ttl_seconds: int = 300) -> None:
        if not secret:
            raise ValueError("Temp token secret must be provided")
        self._secret = secret
        self._ttl_seconds = ttl_seconds

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def issue(self, *, user_id: str, refresh_token: str, expires_in: int | None = None) -> str:
        now = datetime.now(timezone.utc)
        ttl = self._ttl_seconds if expires_in is None else expires_in
        payload = {
            "userId": user_id,
            "refreshToken": refresh_token,
            "purpose": TEMP_TOKEN_PURPOSE,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl)).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=TEMP_TOKEN_ALGORITHM)

    def verify(self, token: str) -> TempLoginToken:
        """Decode ``token`` or raise :class:`TokenVerificationError`."""

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[TEMP_TOKEN_ALGORITHM],
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpiredError("Temp token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenInvalidError("Invalid temp token") from exc

        if payload.get("purpose") != TEMP_TOKEN_PURPOSE:
            raise TokenInvalidError("Temp token has the wrong purpose")
        user_id = payload.get("userId")
        refresh_token = payload.get("refreshToken")
        if not isinstance(user_id, str) or not user_id:
            raise TokenInvalidError("Temp token is missing the user id")
        if not isinstance(refresh_token, str) or not refresh_token:
            raise TokenInvalidError("Temp token is missing the refresh token")
        return TempLoginToken(user_id=user_id, refresh_token=refresh_token)


__all__ = [
    "ACCEPTED_ALGORITHM",
    "MalformedTokenError",
    "SignatureMismatchError",
    "TempLoginToken",
    "TempTokenSigner",
    "TokenClaims",
    "TokenExpiredError",
    "TokenInvalidError",
    "TokenVerificationError",
    "TokenVerifier",
    "UnknownIssuerError",
    "decode_header",
]
