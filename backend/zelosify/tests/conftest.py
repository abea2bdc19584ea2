"""Common test fixtures for the Zelosify backend."""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import AsyncIterator, Callable
from typing import Any
from urllib.parse import parse_qsl

import httpx
import jwt
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives.asymmetric import rsa
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from backend.zelosify.app.cache import MemoryCache
from backend.zelosify.app.config import AuthSettings
from backend.zelosify.app.dependencies import (
    get_identity_provider,
    get_object_storage,
    get_session,
    get_temp_token_signer,
    get_token_verifier,
    get_user_cache,
)
from backend.zelosify.app.identity_provider import KeycloakClient
from backend.zelosify.app.jwks import SigningKeyResolver
from backend.zelosify.app.main import create_app
from backend.zelosify.app.object_storage import ObjectStorage
from backend.zelosify.app.security import TempTokenSigner, TokenVerifier
from backend.zelosify.app.user_cache import UserDirectoryCache
from backend.zelosify.db import models  # noqa: F401
from backend.zelosify.db.base import Base, create_session, dispose_engine, init_engine

KEY_ID = "test-signing-key"
TEMP_TOKEN_SECRET = "test-temp-token-secret-0123456789abcdef"


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeIdentityProvider:
    """In-process stand-in for the Keycloak HTTP API, served through ``httpx.MockTransport``."""

    def __init__(self, config: AuthSettings) -> None:
        self.config = config
        self.requests: list[httpx.Request] = []
        self.password_status = 200
        self.refresh_status = 200
        self.logout_status = 204
        self.connect_failures = 0
        self.issued_access_token = "provider-access-token"
        self.issued_refresh_token = "provider-refresh-token"

    @staticmethod
    def form(request: httpx.Request) -> dict[str, str]:
        return dict(parse_qsl(request.content.decode("utf-8")))

    def calls_to(self, suffix: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path.endswith(suffix)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        if path.endswith("/protocol/openid-connect/token"):
            grant_type = self.form(request).get("grant_type")
            status = self.password_status if grant_type == "password" else self.refresh_status
            if status >= 400:
                return httpx.Response(status, json={"error": "invalid_grant"})
            return httpx.Response(
                200,
                json={
                    "access_token": self.issued_access_token,
                    "refresh_token": self.issued_refresh_token,
                    "expires_in": 300,
                    "refresh_expires_in": 1800,
                    "token_type": "Bearer",
                },
            )
        if path.endswith("/protocol/openid-connect/logout"):
            if self.logout_status >= 400:
                return httpx.Response(self.logout_status, json={"error": "invalid_token"})
            return httpx.Response(self.logout_status)
        return httpx.Response(404, json={"error": "not_found"})

    def client(self) -> KeycloakClient:
        return KeycloakClient(self.config, transport=httpx.MockTransport(self.handler))


@pytest.fixture
def auth_config() -> AuthSettings:
    return AuthSettings(
        keycloak_url="https://idp.test/auth",
        realm="Zelosify",
        client_id="zelosify-backend",
        client_secret="client-secret",
        jwt_secret=TEMP_TOKEN_SECRET,
    )


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def jwks_payload(rsa_private_key: rsa.RSAPrivateKey) -> dict[str, Any]:
    jwk = json.loads(jwt.algorithms.RSAAlgorithm.to_jwk(rsa_private_key.public_key()))
    jwk.update({"kid": KEY_ID, "use": "sig", "alg": "RS256"})
    return {"keys": [jwk]}


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def key_fetches() -> list[float]:
    """Timestamps of every key-set fetch made by ``signing_key_resolver``."""

    return []


@pytest.fixture
def signing_key_resolver(
    auth_config: AuthSettings,
    jwks_payload: dict[str, Any],
    fake_clock: FakeClock,
    key_fetches: list[float],
) -> SigningKeyResolver:
    async def key_source() -> dict[str, Any]:
        key_fetches.append(fake_clock())
        return jwks_payload

    return SigningKeyResolver(auth_config.jwks_url, clock=fake_clock, key_source=key_source)


@pytest.fixture
def token_verifier(auth_config: AuthSettings, signing_key_resolver: SigningKeyResolver) -> TokenVerifier:
    return TokenVerifier.from_settings(auth_config, signing_key_resolver)


@pytest.fixture
def issue_token(auth_config: AuthSettings, rsa_private_key: rsa.RSAPrivateKey) -> Callable[..., str]:
    """Mint an RS256 access token the way the identity provider would."""

    def _issue(
        *,
        subject: str = "kc-subject",
        roles: list[str] | None = None,
        email: str | None = None,
        expires_in: int = 300,
        issuer: str | None = None,
        kid: str = KEY_ID,
        **extra: Any,
    ) -> str:
        now = int(time.time())
        payload: dict[str, Any] = {
            "sub": subject,
            "iss": issuer or auth_config.issuer,
            "iat": now,
            "exp": now + expires_in,
            "preferred_username": subject,
            "realm_access": {"roles": list(roles or [])},
        }
        if email:
            payload["email"] = email
        payload.update(extra)
        return jwt.encode(payload, rsa_private_key, algorithm="RS256", headers={"kid": kid})

    return _issue


@pytest.fixture
def user_cache(fake_clock: FakeClock) -> UserDirectoryCache:
    return UserDirectoryCache(MemoryCache(clock=fake_clock), clock=fake_clock)


@pytest.fixture
def identity_provider(auth_config: AuthSettings) -> FakeIdentityProvider:
    return FakeIdentityProvider(auth_config)


@pytest.fixture
def temp_token_signer() -> TempTokenSigner:
    return TempTokenSigner(TEMP_TOKEN_SECRET, ttl_seconds=300)


@pytest.fixture
def object_storage() -> ObjectStorage:
    return ObjectStorage(
        "zelosify-test-profiles",
        region="us-east-1",
        access_key="testing",
        secret_key="testing",
    )


@pytest.fixture
def db_url(tmp_path) -> str:
    """Return a SQLite database URL located in a temporary directory."""

    return f"sqlite+aiosqlite:///{tmp_path / f'zelosify-{uuid.uuid4().hex}.sqlite3'}"


@pytest_asyncio.fixture
async def db_engine(db_url: str) -> AsyncIterator[AsyncEngine]:
    """Initialise the global async engine with a fresh schema."""

    engine = init_engine(db_url, echo=False)
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await dispose_engine()


@pytest_asyncio.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Yield an :class:`AsyncSession` for arranging test data."""

    session = create_session()
    try:
        yield session
    finally:
        await session.close()


@pytest.fixture
def app(
    db_engine: AsyncEngine,
    token_verifier: TokenVerifier,
    user_cache: UserDirectoryCache,
    identity_provider: FakeIdentityProvider,
    temp_token_signer: TempTokenSigner,
    object_storage: ObjectStorage,
):
    """Create a FastAPI test application wired to the fakes above."""

    application = create_app()

    async def _override_session() -> AsyncIterator[AsyncSession]:
        session = create_session()
        try:
            yield session
        finally:
            await session.close()

    application.dependency_overrides[get_session] = _override_session
    application.dependency_overrides[get_token_verifier] = lambda: token_verifier
    application.dependency_overrides[get_user_cache] = lambda: user_cache
    application.dependency_overrides[get_identity_provider] = identity_provider.client
    application.dependency_overrides[get_temp_token_signer] = lambda: temp_token_signer
    application.dependency_overrides[get_object_storage] = lambda: object_storage
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as http:
        yield http
