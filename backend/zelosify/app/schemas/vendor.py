"""Pydantic models for vendor openings and candidate profile endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class HiringManagerSummary(BaseModel):
    id: str
    name: str
    email: str


class OpeningSummary(BaseModel):
    id: str
    title: str
    location: Optional[str] = None
    contract_type: Optional[str] = None
    posted_date: datetime
    status: str
    hiring_manager: Optional[HiringManagerSummary] = None


class OpeningListResponse(BaseModel):
    """Response schema for ``GET /vendor/openings``."""

    openings: List[OpeningSummary]
    total: int


class ProfileSummary(BaseModel):
    id: int
    file_name: str
    s3_key: str
    is_draft: bool


class OpeningDetail(BaseModel):
    """Response schema for ``GET /vendor/openings/{id}``."""

    id: str
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    contract_type: Optional[str] = None
    experience_min: int
    experience_max: Optional[int] = None
    posted_date: datetime
    expected_completion_date: Optional[datetime] = None
    status: str
    hiring_manager: Optional[HiringManagerSummary] = None
    profiles_submitted: int
    profiles: List[ProfileSummary]


class PresignRequest(BaseModel):
    filename: Optional[str] = Field(default=None, max_length=255)


class ProfileReference(BaseModel):
    """A profile object already uploaded to storage, addressed by its key."""

    s3_key: str = Field(
        min_length=1,
        max_length=1024,
        validation_alias=AliasChoices("s3_key", "s3Key"),
    )
    filename: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class ProfilesRequest(BaseModel):
    profiles: List[ProfileReference] = Field(default_factory=list)


class ProfileViewUrl(BaseModel):
    filename: str
    s3_key: str
    view_url: str


class StatusResponse(BaseModel):
    status: str = "success"
    message: str
    data: Optional[dict[str, Any]] = None


class VendorRequestsResponse(BaseModel):
    """Response schema for ``GET /vendor/requests``."""

    message: str
    requests: List[dict[str, Any]]
