"""Authentication gate behaviour on a protected endpoint."""
from __future__ import annotations

import pytest

from backend.zelosify.app.principal import Principal

from .utils import create_tenant, create_user

ME_URL = "/api/v1/auth/me"


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_missing_token_is_rejected(client):
    response = await client.get(ME_URL)

    assert response.status_code == 401
    assert response.json() == {"detail": "Authentication required", "code": "no_token"}


@pytest.mark.asyncio
async def test_garbage_token_reports_invalid_format(client, key_fetches):
    response = await client.get(ME_URL, headers=_bearer("definitely-not-a-jwt"))

    assert response.status_code == 401
    assert response.json()["code"] == "invalid_token_format"
    assert key_fetches == []


@pytest.mark.asyncio
async def test_expired_token_fails_verification(client, issue_token):
    response = await client.get(ME_URL, headers=_bearer(issue_token(expires_in=-30)))

    assert response.status_code == 401
    assert response.json()["code"] == "verification_failed"


@pytest.mark.asyncio
async def test_valid_token_without_local_user(client, issue_token):
    response = await client.get(ME_URL, headers=_bearer(issue_token(subject="kc-ghost")))

    assert response.status_code == 401
    assert response.json()["code"] == "user_not_found"


@pytest.mark.asyncio
async def test_valid_token_resolves_principal(client, db_session, issue_token, user_cache):
    await create_tenant(db_session, tenant_id="tenant-a")
    user = await create_user(
        db_session, email="vendor@example.com", external_id="kc-vendor", tenant_id="tenant-a"
    )

    response = await client.get(
        ME_URL, headers=_bearer(issue_token(subject="kc-vendor", roles=["IT_VENDOR"]))
    )

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == user.id
    assert body["tenant_id"] == "tenant-a"
    assert body["provider"] == "KEYCLOAK"
    assert body["realm_roles"] == ["IT_VENDOR"]
    assert (await user_cache.lookup("kc-vendor")).id == user.id


@pytest.mark.asyncio
async def test_access_token_cookie_is_accepted(client, db_session, issue_token):
    await create_user(db_session, email="cookie@example.com", external_id="kc-cookie")
    client.cookies.set("access_token", issue_token(subject="kc-cookie"))

    response = await client.get(ME_URL)

    assert response.status_code == 200
    assert response.json()["email"] == "cookie@example.com"


@pytest.mark.asyncio
async def test_user_is_matched_by_email_when_subject_is_unknown(client, db_session, issue_token, user_cache):
    user = await create_user(db_session, email="legacy@example.com")

    response = await client.get(
        ME_URL, headers=_bearer(issue_token(subject="kc-legacy", email="legacy@example.com"))
    )

    assert response.status_code == 200
    assert response.json()["id"] == user.id
    assert (await user_cache.lookup("kc-legacy")).external_id == "kc-legacy"


@pytest.mark.asyncio
async def test_cached_principal_skips_database(client, issue_token, user_cache):
    await user_cache.store(
        "kc-cached",
        Principal(id="cached-user", external_id="kc-cached", email="cached@example.com"),
    )

    response = await client.get(ME_URL, headers=_bearer(issue_token(subject="kc-cached")))

    assert response.status_code == 200
    assert response.json()["id"] == "cached-user"


@pytest.mark.asyncio
async def test_cache_entry_expires_after_five_minutes(client, db_session, issue_token, user_cache, fake_clock):
    await user_cache.store(
        "kc-stale",
        Principal(id="stale-user", external_id="kc-stale", email="stale@example.com"),
    )
    fake_clock.advance(301)

    response = await client.get(ME_URL, headers=_bearer(issue_token(subject="kc-stale")))

    assert response.status_code == 401
    assert response.json()["code"] == "user_not_found"
