"""Database-backed leases so a scheduled job runs on one worker at a time.

A lease is a row per job name. Claiming is a conditional update that only
succeeds when the row is free or its previous holder's lease has expired,
so two processes racing for the same job cannot both win.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from openword_admin.common.models import utcnow
from openword_admin.jobs.models import JobLeaseModel

logger = logging.getLogger(__name__)


async def claim_lease(
    session: AsyncSession,
    job_name: str,
    holder: str,
    ttl_seconds: int,
) -> bool:
    """Try to take the lease for ``job_name``; returns True when this holder owns it."""
    now = utcnow()
    expires = now + timedelta(seconds=ttl_seconds)

    result = await session.execute(
        update(JobLeaseModel)
        .where(
            JobLeaseModel.job_name == job_name,
            or_(
                JobLeaseModel.holder.is_(None),
                JobLeaseModel.expires_at.is_(None),
                JobLeaseModel.expires_at < now,
            ),
        )
        .values(holder=holder, acquired_at=now, expires_at=expires)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        await session.commit()
        return True

    existing = await session.get(JobLeaseModel, job_name, populate_existing=True)
    if existing is not None:
        held_by = existing.holder
        await session.rollback()
        logger.info("Lease for %s held by %s", job_name, held_by)
        return False

    session.add(JobLeaseModel(
        job_name=job_name, holder=holder, acquired_at=now, expires_at=expires,
    ))
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        logger.info("Lease for %s claimed concurrently", job_name)
        return False
    return True


async def release_lease(session: AsyncSession, job_name: str, holder: str) -> bool:
    """Free the lease if ``holder`` still owns it."""
    result = await session.execute(
        update(JobLeaseModel)
        .where(JobLeaseModel.job_name == job_name, JobLeaseModel.holder == holder)
        .values(holder=None, expires_at=None)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount == 1


async def current_holder(session: AsyncSession, job_name: str) -> Optional[str]:
    lease = await session.get(JobLeaseModel, job_name, populate_existing=True)
    if lease is None:
        return None
    return lease.holder
