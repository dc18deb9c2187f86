"""
Pattern table refresh job.

Without a competition filter the job updates the ALL table and every
competition table of the feature; with one it updates only that
competition's table. Each table is committed independently.
"""

import logging
import time
from typing import Optional

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fgpredict.config import PipelineConfig
from fgpredict.matches.queries import list_competitions
from fgpredict.models import SCOPE_ALL, PatternBucket, PatternWatermark
from fgpredict.patterns.builder import (
    MODE_FULL,
    MODE_INCREMENTAL,
    STATUS_CONFLICT,
    PatternBuilder,
)
from fgpredict.patterns.features import get_feature
from fgpredict.telemetry.metrics import record_pattern_run

logger = logging.getLogger(__name__)


async def refresh_patterns(
    session: AsyncSession,
    config: PipelineConfig,
    feature: Optional[str] = None,
    mode: str = MODE_INCREMENTAL,
    competition: Optional[str] = None,
    batch_size: int = 2000,
) -> dict:
    """
    Run the pattern builder over one or more scopes.

    Args:
        session: Database session
        config: Pipeline tunables
        feature: Feature family (default: config.pattern_feature)
        mode: "incremental" or "full"
        competition: Only this competition's table
        batch_size: Max matches folded per scope (incremental) or chunk size (full)

    Returns:
        Dict with per-scope results and totals
    """
    start_time = time.time()
    feature = feature or config.pattern_feature
    get_feature(feature)
    if mode not in (MODE_FULL, MODE_INCREMENTAL):
        raise ValueError(f"Unknown mode '{mode}', expected 'full' or 'incremental'")
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    scopes = [competition] if competition else [SCOPE_ALL] + await list_competitions(session)
    builder = PatternBuilder(session)

    metrics = {
        "feature": feature,
        "mode": mode,
        "scopes": [],
        "processed": 0,
        "skipped": 0,
        "uncoded": 0,
        "conflicts": 0,
        "errors": [],
    }

    for scope in scopes:
        if mode == MODE_FULL:
            run = await builder.run_full(feature, config, scope=scope, batch_size=batch_size)
        else:
            run = await builder.run_incremental(feature, config, scope=scope, batch_size=batch_size)
        metrics["scopes"].append(run.as_dict())
        metrics["processed"] += run.processed
        metrics["skipped"] += len(run.errors)
        metrics["uncoded"] += run.uncoded
        if run.status == STATUS_CONFLICT:
            metrics["conflicts"] += 1
        # ALL sees every match, so per-row errors are reported once
        if scope == SCOPE_ALL or competition:
            metrics["errors"].extend(run.errors)

    record_pattern_run(feature, metrics["processed"], metrics["conflicts"])
    metrics["duration_ms"] = round((time.time() - start_time) * 1000)
    logger.info(
        f"[PATTERNS] Refresh {feature} ({mode}) complete: {len(scopes)} scope(s), "
        f"processed={metrics['processed']}, conflicts={metrics['conflicts']}, "
        f"duration={metrics['duration_ms']}ms"
    )
    return metrics


async def list_buckets(
    session: AsyncSession,
    feature: str,
    scope: str = SCOPE_ALL,
) -> list[PatternBucket]:
    result = await session.execute(
        select(PatternBucket)
        .where(and_(PatternBucket.feature == feature, PatternBucket.scope == scope))
        .order_by(PatternBucket.total.desc(), PatternBucket.code)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_patterns_status(session: AsyncSession) -> dict:
    """Bucket counts and watermarks per (feature, scope)."""
    counts = await session.execute(
        select(PatternBucket.feature, PatternBucket.scope, func.count(PatternBucket.id), func.sum(PatternBucket.total))
        .group_by(PatternBucket.feature, PatternBucket.scope)
    )
    watermarks = (
        await session.execute(select(PatternWatermark).execution_options(populate_existing=True))
    ).scalars().all()
    marks = {(w.feature, w.scope): w for w in watermarks}

    tables = []
    for feature, scope, buckets, total in counts.all():
        mark = marks.get((feature, scope))
        tables.append({
            "feature": feature,
            "scope": scope,
            "buckets": buckets,
            "matches": total or 0,
            "watermark_version": mark.version if mark else None,
            "last_settled_at": (
                mark.last_settled_at.isoformat() if mark and mark.last_settled_at else None
            ),
        })
    return {"tables": tables}
