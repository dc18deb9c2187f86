"""
Batch job runner.

Wraps every HTTP-triggered job: optional timeout, JobRun record, Prometheus
counters and Sentry capture. Database failures are re-raised as
UpstreamDataError (HTTP 503); retrying is left to the external scheduler.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fgpredict.jobs.tracking import record_job_run
from fgpredict.models import utcnow
from fgpredict.telemetry import metrics as prom
from fgpredict.telemetry.sentry import capture_exception, sentry_job_context

logger = logging.getLogger(__name__)


class UpstreamDataError(Exception):
    """The relational store failed or timed out; the whole job failed."""

    def __init__(self, job_name: str, message: str):
        self.job_name = job_name
        super().__init__(f"{job_name}: {message}")


def job_status(metrics: dict) -> str:
    """ok, conflict (a pattern table lost a watermark race) or partial (rows failed)."""
    if metrics.get("conflicts"):
        return "conflict"
    if metrics.get("failed") or metrics.get("errors"):
        return "partial"
    return "ok"


async def _record_failure(session: AsyncSession, job_name: str, status: str, started_at, error: str) -> None:
    try:
        await session.rollback()
        await record_job_run(session, job_name, status, started_at, error=error)
    except SQLAlchemyError as e:
        logger.error(f"[JOBS] Could not record failed {job_name} run: {e}")


async def run_tracked_job(
    session: AsyncSession,
    job_name: str,
    job: Callable[[], Awaitable[dict]],
    timeout_seconds: Optional[float] = None,
) -> dict:
    """
    Run a job coroutine and record its outcome.

    Args:
        session: Session the job uses (rolled back on failure)
        job_name: Low-cardinality job identifier
        job: Zero-argument coroutine function returning a metrics dict
        timeout_seconds: Cancel the job after this long (None or 0 = no limit)

    Returns:
        The job's metrics dict with `status` added

    Raises:
        UpstreamDataError: database error or timeout
    """
    started_at = utcnow()
    start = asyncio.get_running_loop().time()

    with sentry_job_context(job_name):
        try:
            if timeout_seconds:
                metrics = await asyncio.wait_for(job(), timeout=timeout_seconds)
            else:
                metrics = await job()
        except asyncio.TimeoutError:
            duration_ms = int((asyncio.get_running_loop().time() - start) * 1000)
            message = f"timed out after {timeout_seconds}s"
            logger.error(f"[JOBS] {job_name} {message}; changes rolled back")
            await _record_failure(session, job_name, "timeout", started_at, message)
            prom.record_job_run(job_name, "timeout", duration_ms)
            raise UpstreamDataError(job_name, message) from None
        except SQLAlchemyError as e:
            duration_ms = int((asyncio.get_running_loop().time() - start) * 1000)
            logger.error(f"[JOBS] {job_name} failed: {e}")
            capture_exception(e, job_name=job_name)
            await _record_failure(session, job_name, "error", started_at, str(e)[:500])
            prom.record_job_run(job_name, "error", duration_ms)
            raise UpstreamDataError(job_name, "database error") from e

    status = job_status(metrics)
    metrics["status"] = status
    await record_job_run(session, job_name, status, started_at, metrics=metrics)

    duration_ms = int((asyncio.get_running_loop().time() - start) * 1000)
    prom.record_job_run(job_name, status, duration_ms, failed_rows=len(metrics.get("errors") or []))
    logger.info(f"[JOBS] {job_name} finished: status={status}, duration={duration_ms}ms")
    return metrics
