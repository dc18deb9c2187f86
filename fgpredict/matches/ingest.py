"""
Match ingestion.

Upserts provider rows keyed by external fixture id. A row becomes settled the
first time it arrives with a finished status and a final score; from then on
it is immutable. Re-sending a settled match with the same result is a no-op,
with a different result it is rejected for that row.
"""

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fgpredict.db_utils import dialect_insert
from fgpredict.matches.validation import (
    MatchValidationError,
    identity_problems,
    result_problems,
)
from fgpredict.ml.devig import InvalidOddsError, implied_probabilities
from fgpredict.models import FINISHED_STATUSES, MatchRecord, to_naive_utc, utcnow

logger = logging.getLogger(__name__)

RESULT_FIELDS = ("home_goals", "away_goals", "first_goal")


def _check_row(match: MatchRecord) -> None:
    """
    Raises:
        MatchValidationError: missing identifiers or inconsistent result
        InvalidOddsError: odds present but invalid
    """
    problems = identity_problems(match)
    if match.status in FINISHED_STATUSES:
        problems.extend(result_problems(match))
    if problems:
        raise MatchValidationError(match.external_id, problems)
    if any(o is not None for o in (match.odds_home, match.odds_draw, match.odds_away)):
        implied_probabilities(match.odds_home, match.odds_draw, match.odds_away)


def _differs(existing: MatchRecord, incoming: MatchRecord) -> list[str]:
    return [
        name for name in RESULT_FIELDS
        if getattr(existing, name) != getattr(incoming, name)
    ]


async def _existing(session: AsyncSession, external_id: int) -> Optional[MatchRecord]:
    result = await session.execute(
        select(MatchRecord)
        .where(MatchRecord.external_id == external_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def ingest_matches(session: AsyncSession, rows: list[dict[str, Any]]) -> dict:
    """
    Upsert a batch of match rows.

    Per-row validation failures and attempts to rewrite a settled result are
    reported in `errors` and the batch continues. Database errors propagate.

    Returns:
        Dict with inserted/updated/unchanged/settled/failed counts and errors
    """
    metrics = {
        "processed": 0,
        "inserted": 0,
        "updated": 0,
        "settled": 0,
        "unchanged": 0,
        "failed": 0,
        "errors": [],
    }
    insert = dialect_insert(session)
    now = utcnow()

    for row in rows:
        metrics["processed"] += 1
        match = MatchRecord(**row)
        match.kickoff_at = to_naive_utc(match.kickoff_at)
        try:
            _check_row(match)
        except MatchValidationError as e:
            metrics["failed"] += 1
            metrics["errors"].append(e.as_dict())
            continue
        except InvalidOddsError as e:
            metrics["failed"] += 1
            metrics["errors"].append({"match": match.external_id, "errors": [str(e)]})
            continue

        existing = await _existing(session, match.external_id)
        if existing is not None and existing.settled_at is not None:
            changed = _differs(existing, match)
            if changed:
                metrics["failed"] += 1
                metrics["errors"].append({
                    "match": match.external_id,
                    "errors": [f"settled match is immutable (changed: {', '.join(changed)})"],
                })
            else:
                metrics["unchanged"] += 1
            continue

        finished = match.status in FINISHED_STATUSES
        values = match.model_dump(exclude={"id", "created_at", "settled_at"})
        # Stamped per row; the pattern builder's settle lag covers the commit delay
        values["settled_at"] = utcnow() if finished else None

        stmt = insert(MatchRecord).values(**values, created_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=["external_id"],
            set_={col: getattr(stmt.excluded, col) for col in values if col != "external_id"},
            where=MatchRecord.settled_at.is_(None),
        )
        result = await session.execute(stmt)
        if result.rowcount == 0:
            # Settled by a concurrent ingest between the read and the write
            metrics["unchanged"] += 1
            continue

        metrics["inserted" if existing is None else "updated"] += 1
        if finished:
            metrics["settled"] += 1

    await session.commit()
    logger.info(
        f"[INGEST] processed={metrics['processed']}, inserted={metrics['inserted']}, "
        f"updated={metrics['updated']}, settled={metrics['settled']}, failed={metrics['failed']}"
    )
    return metrics
