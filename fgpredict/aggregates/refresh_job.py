"""
Team stats refresh job.

Recomputes TeamStats for every competition with settled matches, or a
single competition when one is given. Triggered over HTTP by an external
scheduler; database failures propagate so the whole run is retried.
"""

import logging
import time
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fgpredict.aggregates.service import AggregatesService
from fgpredict.config import PipelineConfig
from fgpredict.matches.queries import list_competitions
from fgpredict.models import TeamStat

logger = logging.getLogger(__name__)


async def refresh_team_stats(
    session: AsyncSession,
    config: PipelineConfig,
    competition: Optional[str] = None,
) -> dict:
    """
    Refresh TeamStats for one or all competitions.

    Args:
        session: Database session
        config: Pipeline tunables (window size, decay, thresholds)
        competition: Only this competition (default: all with settled matches)

    Returns:
        Dict with refresh metrics and per-row validation errors
    """
    start_time = time.time()
    service = AggregatesService(session)

    competitions = [competition] if competition else await list_competitions(session)
    logger.info(f"[AGGREGATES] Refreshing team stats for {len(competitions)} competition(s)")

    metrics = {
        "competitions": [],
        "processed": 0,
        "teams": 0,
        "insufficient": 0,
        "skipped": 0,
        "errors": [],
    }

    for code in competitions:
        aggregation = await service.refresh_competition(code, config)
        insufficient = sum(1 for s in aggregation.stats.values() if s.insufficient_data)
        metrics["competitions"].append(code)
        metrics["processed"] += aggregation.matches_used
        metrics["teams"] += len(aggregation.stats)
        metrics["insufficient"] += insufficient
        metrics["skipped"] += len(aggregation.skipped)
        metrics["errors"].extend(aggregation.skipped)

    await session.commit()

    metrics["duration_ms"] = round((time.time() - start_time) * 1000)
    logger.info(
        f"[AGGREGATES] Refresh complete: {metrics['teams']} teams from "
        f"{metrics['processed']} matches, {metrics['skipped']} skipped, "
        f"duration={metrics['duration_ms']}ms"
    )
    return metrics


async def get_team_stats_status(session: AsyncSession) -> dict:
    """Counts and latest computation time of the team_stats table."""
    total = (await session.execute(select(func.count(TeamStat.id)))).scalar() or 0
    insufficient = (
        await session.execute(
            select(func.count(TeamStat.id)).where(TeamStat.insufficient_data.is_(True))
        )
    ).scalar() or 0
    latest = (
        await session.execute(
            select(TeamStat.computed_at).order_by(TeamStat.computed_at.desc()).limit(1)
        )
    ).scalar()

    return {
        "teams_count": total,
        "insufficient_count": insufficient,
        "latest_computed_at": latest.isoformat() if latest else None,
    }
