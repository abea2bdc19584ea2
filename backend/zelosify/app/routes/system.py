"""Liveness endpoint."""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from ..config import settings


router = APIRouter(tags=["system"])


class HealthStatusResponse(BaseModel):
    """Response schema for ``GET /``."""

    status: str
    env: str


@router.get("/", response_model=HealthStatusResponse)
async def health() -> HealthStatusResponse:
    return HealthStatusResponse(status="ok", env=settings.env)
