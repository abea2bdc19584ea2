"""Presign, submit, draft, view and delete flows for candidate profiles."""
from __future__ import annotations

import pytest
import pytest_asyncio

from backend.zelosify.db.models import UserRole

from .utils import create_opening, create_profile, create_tenant, create_user

OPENINGS_URL = "/api/v1/vendor/openings"


@pytest_asyncio.fixture
async def opening(db_session):
    await create_tenant(db_session, tenant_id="tenant-a")
    manager = await create_user(
        db_session, email="manager@example.com", role=UserRole.HIRING_MANAGER, tenant_id="tenant-a"
    )
    await create_user(
        db_session, email="vendor@example.com", external_id="kc-vendor", tenant_id="tenant-a"
    )
    return await create_opening(
        db_session, tenant_id="tenant-a", hiring_manager_id=manager.id, title="Platform Engineer"
    )


@pytest.fixture
def headers(issue_token):
    return {"Authorization": f"Bearer {issue_token(subject='kc-vendor', roles=['IT_VENDOR'])}"}


def _key(opening, filename: str) -> str:
    return f"tenant-a/{opening.id}/1700000000000_{filename}"


@pytest.mark.asyncio
async def test_presign_returns_tenant_scoped_upload_url(client, opening, headers):
    response = await client.post(
        f"{OPENINGS_URL}/{opening.id}/profiles/presign",
        json={"filename": "resume.pdf"},
        headers=headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    data = body["data"]
    assert data["filename"] == "resume.pdf"
    assert data["s3_key"].startswith(f"tenant-a/{opening.id}/")
    assert data["s3_key"].endswith("_resume.pdf")
    assert "zelosify-test-profiles" in data["upload_url"]
    assert data["s3_key"] in data["upload_url"]


@pytest.mark.asyncio
async def test_presign_strips_directories_from_filename(client, opening, headers):
    response = await client.post(
        f"{OPENINGS_URL}/{opening.id}/profiles/presign",
        json={"filename": "../../tenant-b/secrets/cv.docx"},
        headers=headers,
    )

    assert response.status_code == 200
    key = response.json()["data"]["s3_key"]
    assert key.startswith(f"tenant-a/{opening.id}/")
    assert key.endswith("_cv.docx")
    assert ".." not in key


@pytest.mark.asyncio
async def test_presign_requires_filename(client, opening, headers):
    response = await client.post(f"{OPENINGS_URL}/{opening.id}/profiles/presign", json={}, headers=headers)

    assert response.status_code == 400
    assert response.json() == {"detail": "filename is required", "code": "missing_input"}


@pytest.mark.asyncio
async def test_draft_then_submit_promotes_the_same_profile(client, opening, headers):
    key = _key(opening, "resume.pdf")
    payload = {"profiles": [{"s3Key": key, "filename": "resume.pdf"}]}

    drafted = await client.post(
        f"{OPENINGS_URL}/{opening.id}/profiles/uploadasdraft", json=payload, headers=headers
    )
    assert drafted.status_code == 200

    detail = (await client.get(f"{OPENINGS_URL}/{opening.id}", headers=headers)).json()
    assert [(p["s3_key"], p["is_draft"]) for p in detail["profiles"]] == [(key, True)]

    submitted = await client.post(
        f"{OPENINGS_URL}/{opening.id}/profiles/upload", json=payload, headers=headers
    )
    assert submitted.status_code == 200
    assert submitted.json()["message"] == "Profiles submitted successfully"

    detail = (await client.get(f"{OPENINGS_URL}/{opening.id}", headers=headers)).json()
    assert detail["profiles_submitted"] == 1
    assert detail["profiles"][0]["is_draft"] is False
    assert detail["profiles"][0]["file_name"] == "resume.pdf"


@pytest.mark.asyncio
async def test_duplicate_draft_is_rejected(client, db_session, opening, headers):
    profile = await create_profile(db_session, opening=opening, uploaded_by=opening.hiring_manager_id)

    response = await client.post(
        f"{OPENINGS_URL}/{opening.id}/profiles/uploadasdraft",
        json={"profiles": [{"s3_key": profile.s3_key}]},
        headers=headers,
    )

    assert response.status_code == 400
    assert response.json()["code"] == "duplicate_profile"


@pytest.mark.asyncio
async def test_submit_requires_profiles(client, opening, headers):
    response = await client.post(
        f"{OPENINGS_URL}/{opening.id}/profiles/upload", json={"profiles": []}, headers=headers
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "profiles are required"


@pytest.mark.asyncio
async def test_view_returns_download_urls(client, opening, headers):
    key = _key(opening, "portfolio.pdf")

    response = await client.post(
        f"{OPENINGS_URL}/{opening.id}/profiles/view",
        json={"profiles": [{"s3Key": key}]},
        headers=headers,
    )

    assert response.status_code == 200
    [entry] = response.json()["data"]["profiles"]
    assert entry["filename"] == "portfolio.pdf"
    assert entry["s3_key"] == key
    assert key in entry["view_url"]


@pytest.mark.asyncio
async def test_delete_soft_deletes_profile(client, db_session, opening, headers):
    profile = await create_profile(db_session, opening=opening, uploaded_by=opening.hiring_manager_id)
    url = f"{OPENINGS_URL}/{opening.id}/profiles/delete/{profile.id}"

    response = await client.post(url, headers=headers)
    assert response.status_code == 200
    assert response.json()["message"] == "Profile deleted successfully"

    detail = (await client.get(f"{OPENINGS_URL}/{opening.id}", headers=headers)).json()
    assert detail["profiles"] == []

    again = await client.post(url, headers=headers)
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_resubmitting_deleted_profile_restores_it(client, db_session, opening, headers):
    profile = await create_profile(db_session, opening=opening, uploaded_by=opening.hiring_manager_id)
    deleted = await client.post(
        f"{OPENINGS_URL}/{opening.id}/profiles/delete/{profile.id}", headers=headers
    )
    assert deleted.status_code == 200

    response = await client.post(
        f"{OPENINGS_URL}/{opening.id}/profiles/upload",
        json={"profiles": [{"s3Key": profile.s3_key}]},
        headers=headers,
    )

    assert response.status_code == 200
    detail = (await client.get(f"{OPENINGS_URL}/{opening.id}", headers=headers)).json()
    assert detail["profiles_submitted"] == 1
    assert [p["s3_key"] for p in detail["profiles"]] == [profile.s3_key]


@pytest.mark.asyncio
async def test_delete_rejects_non_numeric_id(client, opening, headers):
    response = await client.post(
        f"{OPENINGS_URL}/{opening.id}/profiles/delete/not-a-number", headers=headers
    )

    assert response.status_code == 400
    assert response.json() == {"detail": "Invalid profileId", "code": "invalid_profile_id"}


@pytest.mark.asyncio
async def test_vendor_role_is_required(client, opening, issue_token):
    token = issue_token(subject="kc-vendor", roles=["BUSINESS_USER"])

    response = await client.get(OPENINGS_URL, headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 403
    assert response.json()["detail"] == "Access denied: IT_VENDOR role required"
