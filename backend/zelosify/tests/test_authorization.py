"""Role authorization gate."""
from __future__ import annotations

import pytest
import pytest_asyncio
from fastapi import Depends

from backend.zelosify.app.dependencies import authenticate, require_role
from backend.zelosify.app.principal import Principal

from .utils import create_tenant, create_user

REQUESTS_URL = "/api/v1/vendor/requests"


@pytest_asyncio.fixture
async def manager_token(db_session, issue_token):
    await create_tenant(db_session, tenant_id="tenant-a")
    await create_user(
        db_session, email="manager@example.com", external_id="kc-manager", tenant_id="tenant-a"
    )

    def _token(roles):
        return issue_token(subject="kc-manager", roles=roles)

    return _token


@pytest.mark.asyncio
async def test_exact_role_is_admitted(client, manager_token):
    response = await client.get(
        REQUESTS_URL, headers={"Authorization": f"Bearer {manager_token(['VENDOR_MANAGER'])}"}
    )

    assert response.status_code == 200
    assert response.json() == {"message": "success", "requests": []}


@pytest.mark.asyncio
async def test_role_match_is_case_sensitive(client, manager_token):
    response = await client.get(
        REQUESTS_URL, headers={"Authorization": f"Bearer {manager_token(['vendor_manager'])}"}
    )

    assert response.status_code == 403
    assert response.json() == {
        "detail": "Access denied: VENDOR_MANAGER role required",
        "code": "role_required",
    }


@pytest.mark.asyncio
async def test_other_roles_are_denied(client, manager_token):
    response = await client.get(
        REQUESTS_URL, headers={"Authorization": f"Bearer {manager_token(['IT_VENDOR', 'ADMIN'])}"}
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_unknown_role_name_fails_before_authentication(app, client):
    @app.get("/probe/unknown-role")
    async def _probe(principal: Principal = Depends(require_role("SUPER_USER"))):
        return {"id": principal.id}

    response = await client.get("/probe/unknown-role")

    assert response.status_code == 400
    assert response.json() == {"detail": "Invalid role specified", "code": "invalid_role"}


@pytest.mark.asyncio
async def test_missing_principal_is_unauthenticated(app, client):
    app.dependency_overrides[authenticate] = lambda: None

    response = await client.get(REQUESTS_URL)

    assert response.status_code == 401
    assert response.json()["code"] == "no_principal"


@pytest.mark.asyncio
async def test_unauthenticated_caller_gets_401_not_403(client):
    response = await client.get(REQUESTS_URL)

    assert response.status_code == 401
    assert response.json()["code"] == "no_token"
