"""Thin async client for the Keycloak token, logout and admin endpoints."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from .config import AuthSettings
from .errors import UpstreamError
from .logging import get_logger

logger = get_logger("zelosify.identity_provider")

_FORM_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/x-www-form-urlencoded",
}

# Failures raised before the request reached the provider. Anything later may
# already have consumed a single-use refresh token.
_RETRYABLE_ERRORS: tuple[type[httpx.HTTPError], ...] = (httpx.ConnectError, httpx.ConnectTimeout)


@dataclass(frozen=True)
class ProviderTokens:
    access_token: str
    refresh_token: str
    expires_in: int | None = None
    refresh_expires_in: int | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ProviderTokens":
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        if not isinstance(access_token, str) or not access_token:
            raise UpstreamError("Identity provider response is missing access_token")
        if not isinstance(refresh_token, str) or not refresh_token:
            raise UpstreamError("Identity provider response is missing refresh_token")
        expires_in = payload.get("expires_in")
        refresh_expires_in = payload.get("refresh_expires_in")
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=expires_in if isinstance(expires_in, int) else None,
            refresh_expires_in=refresh_expires_in if isinstance(refresh_expires_in, int) else None,
        )


class KeycloakClient:
    """Perform the provider calls needed by login and logout.

    Every failure surfaces as :class:`UpstreamError` carrying the provider's
    status code and body; callers decide which HTTP status the client sees.
    """

    def __init__(
        self,
        config: AuthSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._config.http_timeout_seconds, transport=self._transport)

    async def _post_form(self, url: str, data: Mapping[str, str], *, operation: str) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.post(url, data=dict(data), headers=_FORM_HEADERS)
        except httpx.HTTPError as exc:
            logger.warning("identity_provider_unreachable", operation=operation, error=str(exc))
            raise UpstreamError(f"Identity provider {operation} request failed") from exc

        if response.status_code >= 400:
            logger.warning(
                "identity_provider_rejected",
                operation=operation,
                status_code=response.status_code,
                body=response.text,
            )
            raise UpstreamError(
                f"Identity provider rejected {operation}",
                upstream_status=response.status_code,
                body=response.text,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response, *, operation: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(
                f"Identity provider returned an invalid {operation} response",
                upstream_status=response.status_code,
                body=response.text,
            ) from exc

    async def password_grant(self, username: str, password: str) -> ProviderTokens:
        """Exchange user credentials for a token pair (login step A)."""

        data = {
            "grant_type": "password",
            "client_id": self._config.client_id,
            "username": username,
            "password": password,
            "scope": "openid",
        }
        secret = await self.resolve_client_secret()
        if secret:
            data["client_secret"] = secret
        response = await self._post_form(self._config.token_url, data, operation="password_grant")
        return ProviderTokens.from_payload(self._json(response, operation="password_grant"))

    async def exchange_refresh_token(self, refresh_token: str) -> ProviderTokens:
        """Trade ``refresh_token`` for a fresh token pair.

        Only connection establishment failures are retried, at most
        ``exchange_max_attempts`` times in total.
        """

        data = {
            "grant_type": "refresh_token",
            "client_id": self._config.client_id,
            "refresh_token": refresh_token,
        }
        secret = await self.resolve_client_secret()
        if secret:
            data["client_secret"] = secret

        attempts = self._config.exchange_max_attempts
        for attempt in range(1, attempts + 1):
            try:
                response = await self._post_form(
                    self._config.token_url, data, operation="refresh_token_exchange"
                )
            except UpstreamError as exc:
                if isinstance(exc.__cause__, _RETRYABLE_ERRORS) and attempt < attempts:
                    logger.info("refresh_token_exchange_retry", attempt=attempt, max_attempts=attempts)
                    continue
                raise
            return ProviderTokens.from_payload(self._json(response, operation="refresh_token_exchange"))
        raise UpstreamError("Refresh token exchange was not attempted")  # pragma: no cover

    async def get_admin_token(self) -> str:
        """Obtain a master-realm admin token through the ``admin-cli`` client."""

        if not self._config.admin_username or not self._config.admin_password:
            raise UpstreamError("Identity provider admin credentials are not configured")
        response = await self._post_form(
            self._config.admin_token_url,
            {
                "grant_type": "password",
                "client_id": "admin-cli",
                "username": self._config.admin_username,
                "password": self._config.admin_password,
            },
            operation="admin_token",
        )
        payload = self._json(response, operation="admin_token")
        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise UpstreamError("Identity provider admin token response is missing access_token")
        return token

    async def _admin_get(self, url: str, admin_token: str, *, params: Mapping[str, str] | None = None) -> Any:
        try:
            async with self._client() as client:
                response = await client.get(
                    url,
                    params=dict(params or {}),
                    headers={"Accept": "application/json", "Authorization": f"Bearer {admin_token}"},
                )
        except httpx.HTTPError as exc:
            raise UpstreamError("Identity provider admin request failed") from exc
        if response.status_code >= 400:
            logger.warning(
                "identity_provider_admin_rejected",
                url=url,
                status_code=response.status_code,
                body=response.text,
            )
            raise UpstreamError(
                "Identity provider rejected admin request",
                upstream_status=response.status_code,
                body=response.text,
            )
        return self._json(response, operation="admin")

    async def resolve_client_secret(self) -> str | None:
        """Return the configured client secret, else look it up with an admin token.

        ``None`` means the client is public: no secret configured and no admin
        credentials to fetch one with.
        """

        if self._config.client_secret:
            return self._config.client_secret
        if not self._config.admin_username or not self._config.admin_password:
            return None

        admin_token = await self.get_admin_token()
        clients = await self._admin_get(
            self._config.admin_clients_url,
            admin_token,
            params={"clientId": self._config.client_id},
        )
        if not isinstance(clients, list) or not clients or not isinstance(clients[0], dict):
            raise UpstreamError(f"Client '{self._config.client_id}' was not found in the realm")
        internal_id = clients[0].get("id")
        if not isinstance(internal_id, str) or not internal_id:
            raise UpstreamError(f"Client '{self._config.client_id}' has no internal id")

        secret_payload = await self._admin_get(
            f"{self._config.admin_clients_url}/{internal_id}/client-secret", admin_token
        )
        secret = secret_payload.get("value") if isinstance(secret_payload, dict) else None
        if not isinstance(secret, str) or not secret:
            raise UpstreamError("Identity provider did not return a client secret")
        return secret

    async def logout(self, refresh_token: str) -> None:
        """Revoke the provider session behind ``refresh_token``."""

        data = {"client_id": self._config.client_id, "refresh_token": refresh_token}
        secret = await self.resolve_client_secret()
        if secret:
            data["client_secret"] = secret
        await self._post_form(self._config.logout_url, data, operation="logout")


__all__ = ["KeycloakClient", "ProviderTokens"]
