"""Tests for the tracked job runner."""

import asyncio

import pytest
from sqlalchemy import select

from fgpredict.config import PipelineConfig
from fgpredict.jobs import UpstreamDataError, run_tracked_job
from fgpredict.jobs.runner import job_status
from fgpredict.models import JobRun, PatternBucket, PatternWatermark
from fgpredict.patterns import PatternBuilder, refresh_patterns

FIRST_GOAL = PipelineConfig(pattern_feature="first_goal")


async def rows(session, model):
    result = await session.execute(select(model).execution_options(populate_existing=True))
    return result.scalars().all()


class TestJobStatus:
    def test_statuses(self):
        assert job_status({"processed": 3}) == "ok"
        assert job_status({"failed": 1}) == "partial"
        assert job_status({"errors": [{"match": 1}]}) == "partial"
        assert job_status({"conflicts": 1, "failed": 2}) == "conflict"


class TestRunTrackedJob:
    @pytest.mark.asyncio
    async def test_timeout_leaves_watermark_unmoved(self, session, store, match_factory, monkeypatch):
        await store([
            match_factory(i, home=1, away=10 + i, home_goals=1, away_goals=0) for i in range(1, 6)
        ])

        async def stalled(self, feature, scope, counts):
            await asyncio.sleep(5)

        monkeypatch.setattr(PatternBuilder, "_apply_counts", stalled)

        with pytest.raises(UpstreamDataError) as exc:
            await run_tracked_job(
                session,
                "patterns",
                lambda: refresh_patterns(session, FIRST_GOAL),
                timeout_seconds=0.05,
            )

        assert exc.value.job_name == "patterns"
        assert await rows(session, PatternWatermark) == []
        assert await rows(session, PatternBucket) == []
        (run,) = await rows(session, JobRun)
        assert (run.job_name, run.status) == ("patterns", "timeout")

    @pytest.mark.asyncio
    async def test_rerun_after_timeout_counts_everything_once(self, session, store, match_factory, monkeypatch):
        await store([
            match_factory(i, home=1, away=10 + i, home_goals=1, away_goals=0) for i in range(1, 6)
        ])
        original = PatternBuilder._apply_counts

        async def stalled(self, feature, scope, counts):
            await asyncio.sleep(5)

        monkeypatch.setattr(PatternBuilder, "_apply_counts", stalled)
        with pytest.raises(UpstreamDataError):
            await run_tracked_job(
                session, "patterns", lambda: refresh_patterns(session, FIRST_GOAL), timeout_seconds=0.05
            )
        monkeypatch.setattr(PatternBuilder, "_apply_counts", original)

        metrics = await run_tracked_job(
            session, "patterns", lambda: refresh_patterns(session, FIRST_GOAL), timeout_seconds=5
        )

        assert metrics["status"] == "ok"
        (bucket,) = [b for b in await rows(session, PatternBucket) if b.scope == "ALL"]
        assert (bucket.code, bucket.total, bucket.home_wins) == ("home", 5, 5)

    @pytest.mark.asyncio
    async def test_success_is_recorded(self, session):
        async def job():
            return {"processed": 2}

        metrics = await run_tracked_job(session, "settlement", job)

        assert metrics == {"processed": 2, "status": "ok"}
        (run,) = await rows(session, JobRun)
        assert (run.job_name, run.status) == ("settlement", "ok")
