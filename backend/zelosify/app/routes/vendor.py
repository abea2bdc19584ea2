"""Tenant scoped vendor endpoints for openings and candidate profiles."""
from __future__ import annotations

from typing import Iterable, Optional

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ...db.models import HiringProfile, Opening, OpeningStatus, User, UserRole
from ..dependencies import get_object_storage, get_session, require_role, require_vendor
from ..errors import AuthorizationError, InputError, NotFoundError
from ..logging import get_logger
from ..object_storage import ObjectStorage, build_object_key
from ..principal import Principal
from ..schemas.vendor import (
    HiringManagerSummary,
    OpeningDetail,
    OpeningListResponse,
    OpeningSummary,
    PresignRequest,
    ProfileReference,
    ProfileSummary,
    ProfilesRequest,
    ProfileViewUrl,
    StatusResponse,
    VendorRequestsResponse,
)

logger = get_logger("zelosify.routes.vendor")

router = APIRouter(prefix="/vendor", tags=["vendor"])


def _tenant_of(principal: Principal) -> str:
    if not principal.tenant_id:
        raise AuthorizationError("No tenant is assigned to this account", error_code="tenant_required")
    return principal.tenant_id


async def _get_tenant_opening(db: AsyncSession, opening_id: str, tenant_id: str) -> Opening:
    result = await db.execute(
        select(Opening).where(Opening.id == opening_id, Opening.tenant_id == tenant_id)
    )
    opening = result.scalar_one_or_none()
    if opening is None:
        raise NotFoundError("Opening not found")
    return opening


async def _manager_summaries(db: AsyncSession, manager_ids: Iterable[str]) -> dict[str, HiringManagerSummary]:
    ids = set(manager_ids)
    if not ids:
        return {}
    result = await db.execute(select(User).where(User.id.in_(ids)))
    return {
        user.id: HiringManagerSummary(id=user.id, name=user.full_name, email=user.email)
        for user in result.scalars()
    }


def _check_profile_keys(profiles: list[ProfileReference], tenant_id: str, opening_id: str) -> None:
    prefix = f"{tenant_id}/{opening_id}/"
    for profile in profiles:
        if not profile.s3_key.startswith(prefix):
            raise InputError(
                "Profile key does not belong to this opening", error_code="invalid_profile_key"
            )


def _require_profiles(payload: Optional[ProfilesRequest], tenant_id: str, opening_id: str) -> list[ProfileReference]:
    if payload is None or not payload.profiles:
        raise InputError("profiles are required")
    _check_profile_keys(payload.profiles, tenant_id, opening_id)
    return payload.profiles


def _opening_summary(opening: Opening, managers: dict[str, HiringManagerSummary]) -> OpeningSummary:
    return OpeningSummary(
        id=opening.id,
        title=opening.title,
        location=opening.location,
        contract_type=opening.contract_type,
        posted_date=opening.posted_date,
        status=opening.status.value,
        hiring_manager=managers.get(opening.hiring_manager_id),
    )


@router.get("/requests", response_model=VendorRequestsResponse)
async def list_vendor_requests(
    principal: Principal = Depends(require_role(UserRole.VENDOR_MANAGER.value)),
    db: AsyncSession = Depends(get_session),
) -> VendorRequestsResponse:
    """Open resource requests (openings still accepting profiles) of the caller's tenant."""

    tenant_id = _tenant_of(principal)
    result = await db.execute(
        select(Opening)
        .where(Opening.tenant_id == tenant_id, Opening.status == OpeningStatus.OPEN)
        .order_by(Opening.posted_date.desc())
    )
    openings = list(result.scalars())
    managers = await _manager_summaries(db, (o.hiring_manager_id for o in openings))
    return VendorRequestsResponse(
        message="success",
        requests=[_opening_summary(o, managers).model_dump(mode="json") for o in openings],
    )


@router.get("/openings", response_model=OpeningListResponse)
async def list_openings(
    principal: Principal = Depends(require_vendor),
    db: AsyncSession = Depends(get_session),
) -> OpeningListResponse:
    tenant_id = _tenant_of(principal)
    result = await db.execute(
        select(Opening).where(Opening.tenant_id == tenant_id).order_by(Opening.posted_date.desc())
    )
    openings = list(result.scalars())
    managers = await _manager_summaries(db, (o.hiring_manager_id for o in openings))
    return OpeningListResponse(
        openings=[_opening_summary(o, managers) for o in openings],
        total=len(openings),
    )


@router.get("/openings/{opening_id}", response_model=OpeningDetail)
async def get_opening(
    opening_id: str,
    principal: Principal = Depends(require_vendor),
    db: AsyncSession = Depends(get_session),
) -> OpeningDetail:
    tenant_id = _tenant_of(principal)
    result = await db.execute(
        select(Opening)
        .options(selectinload(Opening.hiring_profiles))
        .where(Opening.id == opening_id, Opening.tenant_id == tenant_id)
    )
    opening = result.scalar_one_or_none()
    if opening is None:
        raise NotFoundError("Opening not found")

    managers = await _manager_summaries(db, [opening.hiring_manager_id])
    profiles = [
        ProfileSummary(id=p.id, file_name=p.file_name, s3_key=p.s3_key, is_draft=p.is_draft)
        for p in sorted(opening.hiring_profiles, key=lambda item: item.id)
        if not p.is_deleted
    ]
    return OpeningDetail(
        id=opening.id,
        title=opening.title,
        description=opening.description,
        location=opening.location,
        contract_type=opening.contract_type,
        experience_min=opening.experience_min,
        experience_max=opening.experience_max,
        posted_date=opening.posted_date,
        expected_completion_date=opening.expected_completion_date,
        status=opening.status.value,
        hiring_manager=managers.get(opening.hiring_manager_id),
        profiles_submitted=len(profiles),
        profiles=profiles,
    )


@router.post("/openings/{opening_id}/profiles/presign", response_model=StatusResponse)
async def presign_profile_upload(
    opening_id: str,
    payload: Optional[PresignRequest] = None,
    principal: Principal = Depends(require_vendor),
    db: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> StatusResponse:
    filename = (payload.filename or "").strip() if payload else ""
    if not filename:
        raise InputError("filename is required")

    tenant_id = _tenant_of(principal)
    await _get_tenant_opening(db, opening_id, tenant_id)
    try:
        key = build_object_key(tenant_id, opening_id, filename)
    except ValueError as exc:
        raise InputError("filename is required") from exc
    url = await storage.presign_upload(key)
    logger.info("profile_upload_presigned", opening_id=opening_id, key=key)
    return StatusResponse(
        message="Upload token generated successfully",
        data={"filename": filename, "s3_key": key, "upload_url": url, "upload_endpoint": "s3"},
    )


@router.post("/openings/{opening_id}/profiles/upload", response_model=StatusResponse)
async def submit_profiles(
    opening_id: str,
    payload: Optional[ProfilesRequest] = None,
    principal: Principal = Depends(require_vendor),
    db: AsyncSession = Depends(get_session),
) -> StatusResponse:
    """Record uploaded profiles as submitted. Existing drafts are promoted."""

    tenant_id = _tenant_of(principal)
    await _get_tenant_opening(db, opening_id, tenant_id)
    profiles = _require_profiles(payload, tenant_id, opening_id)

    keys = [p.s3_key for p in profiles]
    result = await db.execute(select(HiringProfile).where(HiringProfile.s3_key.in_(keys)))
    existing = {profile.s3_key: profile for profile in result.scalars()}

    for key in dict.fromkeys(keys):
        profile = existing.get(key)
        if profile is None:
            db.add(
                HiringProfile(
                    opening_id=opening_id,
                    s3_key=key,
                    uploaded_by=principal.id,
                    is_draft=False,
                    is_deleted=False,
                )
            )
        elif profile.opening_id != opening_id:
            raise InputError("Profile key does not belong to this opening", error_code="invalid_profile_key")
        else:
            # Resubmitting a removed upload restores it.
            profile.is_draft = False
            profile.is_deleted = False
    await db.commit()

    logger.info("profiles_submitted", opening_id=opening_id, count=len(keys))
    return StatusResponse(message="Profiles submitted successfully")


@router.post("/openings/{opening_id}/profiles/uploadasdraft", response_model=StatusResponse)
async def save_draft_profiles(
    opening_id: str,
    payload: Optional[ProfilesRequest] = None,
    principal: Principal = Depends(require_vendor),
    db: AsyncSession = Depends(get_session),
) -> StatusResponse:
    tenant_id = _tenant_of(principal)
    await _get_tenant_opening(db, opening_id, tenant_id)
    profiles = _require_profiles(payload, tenant_id, opening_id)

    db.add_all(
        HiringProfile(
            opening_id=opening_id,
            s3_key=profile.s3_key,
            uploaded_by=principal.id,
            is_draft=True,
            is_deleted=False,
        )
        for profile in profiles
    )
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise InputError("Profile has already been uploaded", error_code="duplicate_profile") from exc

    logger.info("profiles_drafted", opening_id=opening_id, count=len(profiles))
    return StatusResponse(message="Profiles uploaded successfully")


@router.post("/openings/{opening_id}/profiles/view", response_model=StatusResponse)
async def view_profiles(
    opening_id: str,
    payload: Optional[ProfilesRequest] = None,
    principal: Principal = Depends(require_vendor),
    db: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> StatusResponse:
    tenant_id = _tenant_of(principal)
    profiles = _require_profiles(payload, tenant_id, opening_id)
    await _get_tenant_opening(db, opening_id, tenant_id)

    urls: list[ProfileViewUrl] = []
    for profile in profiles:
        leaf = profile.s3_key.rsplit("/", 1)[-1]
        urls.append(
            ProfileViewUrl(
                filename=profile.filename or leaf.partition("_")[2] or leaf,
                s3_key=profile.s3_key,
                view_url=await storage.presign_download(profile.s3_key),
            )
        )
    return StatusResponse(
        message="Presigned view URLs generated",
        data={"profiles": [url.model_dump() for url in urls]},
    )


@router.post("/openings/{opening_id}/profiles/delete/{profile_id}", response_model=StatusResponse)
async def delete_profile(
    opening_id: str,
    profile_id: str,
    principal: Principal = Depends(require_vendor),
    db: AsyncSession = Depends(get_session),
) -> StatusResponse:
    """Soft delete a profile. The opening id in the path is informational."""

    try:
        numeric_id = int(profile_id)
    except ValueError as exc:
        raise InputError("Invalid profileId", error_code="invalid_profile_id") from exc

    tenant_id = _tenant_of(principal)
    result = await db.execute(
        select(HiringProfile)
        .options(selectinload(HiringProfile.opening))
        .where(HiringProfile.id == numeric_id)
    )
    profile = result.scalar_one_or_none()
    if profile is None or profile.is_deleted:
        raise NotFoundError("Profile not found")
    if profile.opening.tenant_id != tenant_id:
        logger.warning(
            "cross_tenant_profile_delete", profile_id=numeric_id, opening_id=opening_id
        )
        raise AuthorizationError(
            "Forbidden: Cannot delete profile from another tenant", error_code="tenant_mismatch"
        )

    profile.is_deleted = True
    await db.commit()
    return StatusResponse(message="Profile deleted successfully")
