"""Job run tracking.

Records each batch job execution so `/jobs/status` can report the last run
and last success of every job without relying on Prometheus state.

Usage:
    from fgpredict.jobs.tracking import record_job_run

    start = utcnow()
    try:
        metrics = await refresh_team_stats(session, config)
        await record_job_run(session, "team_stats", "ok", start, metrics=metrics)
    except UpstreamDataError as e:
        await record_job_run(session, "team_stats", "error", start, error=str(e))
        raise
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fgpredict.models import JobRun, utcnow

logger = logging.getLogger(__name__)


async def record_job_run(
    session: AsyncSession,
    job_name: str,
    status: str,
    started_at: datetime,
    error: Optional[str] = None,
    metrics: Optional[dict] = None,
) -> None:
    """
    Record a job execution in the database.

    Args:
        session: Database session.
        job_name: Job identifier (team_stats, patterns, predictions, settlement).
        status: Execution status (ok, partial, conflict, error, timeout).
        started_at: When the job started (naive UTC).
        error: Error message if failed.
        metrics: Optional job-specific metrics dict.
    """
    finished_at = utcnow()
    duration_ms = int((finished_at - started_at).total_seconds() * 1000)

    job_run = JobRun(
        job_name=job_name,
        status=status,
        started_at=started_at,
        finished_at=finished_at,
        duration_ms=duration_ms,
        error_message=error,
        metrics=metrics,
    )

    session.add(job_run)
    await session.commit()

    logger.debug(f"[JOB_TRACKING] Recorded {job_name} run: {status} in {duration_ms}ms")


async def get_last_success_at(
    session: AsyncSession,
    job_name: str,
) -> Optional[datetime]:
    result = await session.execute(
        select(JobRun.finished_at)
        .where(JobRun.job_name == job_name)
        .where(JobRun.status == "ok")
        .order_by(JobRun.finished_at.desc())
        .limit(1)
    )
    row = result.first()
    return row[0] if row else None


async def get_jobs_status(session: AsyncSession) -> dict:
    """
    Last run per job, with the last successful run alongside.

    Returns dict mapping job_name -> {last_run_status, last_run_at, ...}.
    """
    latest = (
        select(JobRun.job_name, func.max(JobRun.id).label("last_id"))
        .group_by(JobRun.job_name)
        .subquery()
    )
    result = await session.execute(
        select(JobRun).join(latest, JobRun.id == latest.c.last_id).order_by(JobRun.job_name)
    )

    jobs_data = {}
    for run in result.scalars().all():
        last_success = await get_last_success_at(session, run.job_name)
        jobs_data[run.job_name] = {
            "last_run_status": run.status,
            "last_run_at": run.finished_at.isoformat() if run.finished_at else None,
            "last_success_at": last_success.isoformat() if last_success else None,
            "duration_ms": run.duration_ms,
            "last_error": run.error_message if run.status != "ok" else None,
        }

    return jobs_data
