#!/usr/bin/env python3
"""Seed a tenant with sample job openings owned by its hiring manager."""

from __future__ import annotations

import argparse
import asyncio
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.zelosify.app.config import settings
from backend.zelosify.app.logging import get_logger, setup_logging
from backend.zelosify.db.base import Base, dispose_engine, init_engine, session_scope
from backend.zelosify.db.models import Opening, OpeningStatus, Tenant, User, UserRole

logger = get_logger("zelosify.scripts.seed_openings")

DEFAULT_TENANT_ID = "avhbhnjnknjnkmkk"
DEFAULT_COMPANY_NAME = "Bruce Wayne Corp"

# title, location, contract type, min years, max years, status
SAMPLE_OPENINGS: tuple[tuple[str, str, str, int, int, OpeningStatus], ...] = (
    ("Data Analyst", "On-site (Manchester)", "3 Months", 1, 4, OpeningStatus.OPEN),
    ("UX Designer", "Remote", "6 Months", 2, 6, OpeningStatus.ON_HOLD),
    ("Backend Engineer", "Hybrid (London)", "12 Months", 3, 8, OpeningStatus.CLOSED),
    ("Frontend Developer", "On-site (Birmingham)", "9 Months", 2, 5, OpeningStatus.OPEN),
    ("Cloud Architect", "Remote", "12 Months", 5, 10, OpeningStatus.ON_HOLD),
    ("QA Engineer", "Hybrid (Leeds)", "6 Months", 1, 3, OpeningStatus.CLOSED),
    ("DevOps Engineer", "On-site (Liverpool)", "12 Months", 3, 6, OpeningStatus.OPEN),
    ("Product Manager", "Remote", "9 Months", 4, 9, OpeningStatus.ON_HOLD),
    ("Business Analyst", "Hybrid (London)", "6 Months", 2, 5, OpeningStatus.CLOSED),
    ("Security Engineer", "On-site (Manchester)", "12 Months", 3, 7, OpeningStatus.OPEN),
    ("UI Designer", "Remote", "6 Months", 1, 4, OpeningStatus.ON_HOLD),
    ("AI Researcher", "On-site (Cambridge)", "18 Months", 5, 12, OpeningStatus.CLOSED),
    ("Mobile Developer", "Hybrid (London)", "9 Months", 2, 6, OpeningStatus.OPEN),
    ("System Admin", "On-site (Leeds)", "6 Months", 2, 5, OpeningStatus.ON_HOLD),
    ("Blockchain Engineer", "Remote", "12 Months", 3, 8, OpeningStatus.CLOSED),
    ("Technical Writer", "Remote", "3 Months", 1, 2, OpeningStatus.OPEN),
    ("Data Scientist", "On-site (Oxford)", "12 Months", 4, 9, OpeningStatus.ON_HOLD),
    ("Network Engineer", "Hybrid (Bristol)", "9 Months", 3, 6, OpeningStatus.CLOSED),
    ("Full Stack Developer", "Remote", "12 Months", 3, 7, OpeningStatus.OPEN),
    ("HR Tech Specialist", "On-site (London)", "6 Months", 2, 5, OpeningStatus.ON_HOLD),
)


class SeedError(RuntimeError):
    """Raised when the tenant is not ready to receive openings."""


async def seed_openings(
    session: AsyncSession,
    *,
    tenant_id: str = DEFAULT_TENANT_ID,
    company_name: str = DEFAULT_COMPANY_NAME,
) -> int:
    """Upsert the tenant and insert missing sample openings.

    Openings whose title already exists for the tenant are skipped, so the
    script can be re-run. Returns the number of openings created.
    """

    tenant = await session.get(Tenant, tenant_id)
    if tenant is None:
        tenant = Tenant(tenant_id=tenant_id, company_name=company_name)
        session.add(tenant)
        await session.flush()

    result = await session.execute(
        select(User).where(User.tenant_id == tenant_id, User.role == UserRole.HIRING_MANAGER)
    )
    manager = result.scalars().first()
    if manager is None:
        raise SeedError(
            "No hiring manager found for the tenant. Please create one before seeding openings."
        )

    result = await session.execute(select(Opening.title).where(Opening.tenant_id == tenant_id))
    existing_titles = set(result.scalars())

    created = 0
    for title, location, contract_type, experience_min, experience_max, status in SAMPLE_OPENINGS:
        if title in existing_titles:
            continue
        session.add(
            Opening(
                tenant_id=tenant_id,
                title=title,
                description=f"{title} role at {tenant.company_name}.",
                location=location,
                contract_type=contract_type,
                experience_min=experience_min,
                experience_max=experience_max,
                status=status,
                hiring_manager_id=manager.id,
            )
        )
        created += 1

    await session.commit()
    logger.info("openings_seeded", tenant_id=tenant_id, created=created, manager_id=manager.id)
    return created


async def _run(database_url: str, tenant_id: str, company_name: str, create_schema: bool) -> int:
    engine = init_engine(database_url, echo=False)
    try:
        if create_schema:
            async with engine.begin() as connection:
                await connection.run_sync(Base.metadata.create_all)
        async with session_scope() as session:
            return await seed_openings(session, tenant_id=tenant_id, company_name=company_name)
    finally:
        await dispose_engine()


def main(argv: Optional[list[str]] = None) -> None:
    setup_logging()
    parser = argparse.ArgumentParser(description="Seed sample openings for a tenant")
    parser.add_argument("--database-url", default=None, help="Defaults to the configured DATABASE_URL")
    parser.add_argument("--tenant-id", default=DEFAULT_TENANT_ID)
    parser.add_argument("--company-name", default=DEFAULT_COMPANY_NAME)
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables first (development databases without migrations)",
    )
    args = parser.parse_args(argv)

    try:
        asyncio.run(
            _run(
                args.database_url or settings.database_url,
                args.tenant_id,
                args.company_name,
                args.create_schema,
            )
        )
    except SeedError as exc:
        parser.exit(1, f"{exc}\n")


if __name__ == "__main__":
    main()
