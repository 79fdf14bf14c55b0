"""
Run-level job leases

A lease row per job name. Claiming is a single conditional UPDATE that only
succeeds when the lease is free (no holder) or expired, so at most one run
holds it at a time. The TTL bounds how long a crashed run can block others.

Usage:
    holder = await try_claim_lease(db, "price_scheduler", ttl_seconds=900)
    if holder is None:
        return skipped
    try:
        ...
    finally:
        await release_lease(db, "price_scheduler", holder)
"""
import logging
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cardboom_pricing.core.utils import utcnow
from cardboom_pricing.models.job_lease import JobLease

logger = logging.getLogger(__name__)


async def _ensure_lease_row(db: AsyncSession, job_name: str) -> None:
    result = await db.execute(select(JobLease.job_name).where(JobLease.job_name == job_name))
    if result.scalar_one_or_none():
        return
    db.add(JobLease(job_name=job_name))
    try:
        await db.commit()
    except IntegrityError:
        # Another run created it first
        await db.rollback()


async def try_claim_lease(db: AsyncSession, job_name: str, ttl_seconds: int) -> Optional[str]:
    """
    Atomically claim the lease for `job_name`.

    Returns the holder token on success, None when another run holds it.
    """
    await _ensure_lease_row(db, job_name)

    now = utcnow()
    holder = uuid.uuid4().hex
    result = await db.execute(
        update(JobLease)
        .where(
            and_(
                JobLease.job_name == job_name,
                or_(JobLease.holder.is_(None), JobLease.expires_at < now),
            )
        )
        .values(holder=holder, acquired_at=now, expires_at=now + timedelta(seconds=ttl_seconds))
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    if result.rowcount == 1:
        logger.info(f"[LEASE] {job_name} claimed by {holder}")
        return holder

    logger.info(f"[LEASE] {job_name} is held by another run")
    return None


async def release_lease(db: AsyncSession, job_name: str, holder: str) -> None:
    """Release the lease if we still hold it."""
    await db.execute(
        update(JobLease)
        .where(and_(JobLease.job_name == job_name, JobLease.holder == holder))
        .values(holder=None, expires_at=None)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info(f"[LEASE] {job_name} released by {holder}")
