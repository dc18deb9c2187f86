"""Batch job tracking and execution."""

from fgpredict.jobs.runner import UpstreamDataError, run_tracked_job
from fgpredict.jobs.tracking import get_jobs_status, record_job_run

__all__ = ["UpstreamDataError", "run_tracked_job", "get_jobs_status", "record_job_run"]
