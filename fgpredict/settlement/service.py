"""
Settlement and accuracy reporting.

A prediction is settled by a conditional UPDATE (... WHERE result IS NULL).
Accuracy counters are only touched when that UPDATE changed a row, so
re-running settlement never changes a stored result or double counts.

Counters are kept per (scope, grade): scope is "ALL" or the competition code,
grade is "ALL" or the prediction's grade. SKIP picks settle as VOID and only
increment `void`; they neither count toward accuracy nor break a streak.
"""

import logging
import time
from typing import Optional

from sqlalchemy import and_, case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fgpredict.db_utils import dialect_insert
from fgpredict.matches.validation import MatchValidationError, validate_settled_match
from fgpredict.models import (
    FINISHED_STATUSES,
    PICK_SKIP,
    RESULT_CORRECT,
    RESULT_INCORRECT,
    RESULT_VOID,
    SCOPE_ALL,
    AccuracyCounter,
    MatchRecord,
    Prediction,
    utcnow,
)
from fgpredict.telemetry.metrics import record_settlements

logger = logging.getLogger(__name__)


def settlement_result(pick: str, actual_outcome: str) -> str:
    if pick == PICK_SKIP:
        return RESULT_VOID
    return RESULT_CORRECT if pick == actual_outcome else RESULT_INCORRECT


class SettlementService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def load_pending(
        self,
        competition: Optional[str] = None,
        batch_size: int = 200,
    ) -> list[tuple[Prediction, MatchRecord]]:
        """Unsettled predictions whose match has a final score, oldest kickoff first."""
        query = (
            select(Prediction, MatchRecord)
            .join(MatchRecord, MatchRecord.id == Prediction.match_id)
            .where(
                and_(
                    Prediction.result.is_(None),
                    MatchRecord.settled_at.isnot(None),
                    MatchRecord.status.in_(FINISHED_STATUSES),
                )
            )
        )
        if competition:
            query = query.where(Prediction.competition == competition)
        query = query.order_by(MatchRecord.kickoff_at, MatchRecord.id).limit(batch_size)
        result = await self.session.execute(query)
        return [(row[0], row[1]) for row in result.all()]

    async def _ensure_counter(self, scope: str, grade: str) -> None:
        insert = dialect_insert(self.session)
        stmt = insert(AccuracyCounter).values(scope=scope, grade=grade).on_conflict_do_nothing(
            index_elements=["scope", "grade"]
        )
        await self.session.execute(stmt)

    async def _bump_counter(self, scope: str, grade: str, result: str) -> None:
        await self._ensure_counter(scope, grade)
        where = and_(AccuracyCounter.scope == scope, AccuracyCounter.grade == grade)

        if result == RESULT_VOID:
            values = {"void": AccuracyCounter.void + 1}
        elif result == RESULT_CORRECT:
            new_streak = case(
                (AccuracyCounter.current_streak >= 0, AccuracyCounter.current_streak + 1),
                else_=1,
            )
            values = {
                "settled": AccuracyCounter.settled + 1,
                "correct": AccuracyCounter.correct + 1,
                "current_streak": new_streak,
                "best_streak": case(
                    (new_streak > AccuracyCounter.best_streak, new_streak),
                    else_=AccuracyCounter.best_streak,
                ),
            }
        else:
            values = {
                "settled": AccuracyCounter.settled + 1,
                "current_streak": case(
                    (AccuracyCounter.current_streak <= 0, AccuracyCounter.current_streak - 1),
                    else_=-1,
                ),
            }
        values["updated_at"] = utcnow()
        await self.session.execute(
            update(AccuracyCounter)
            .where(where)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def settle(self, prediction: Prediction, match: MatchRecord) -> Optional[str]:
        """
        Settle one prediction against its match's final score.

        Returns:
            The stored result, or None if the prediction was already settled

        Raises:
            MatchValidationError: the match's final result is malformed
        """
        validate_settled_match(match)
        actual = match.outcome
        result = settlement_result(prediction.pick, actual)

        updated = await self.session.execute(
            update(Prediction)
            .where(and_(Prediction.id == prediction.id, Prediction.result.is_(None)))
            .values(
                result=result,
                actual_outcome=actual,
                final_home_goals=match.home_goals,
                final_away_goals=match.away_goals,
                settled_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if updated.rowcount != 1:
            return None

        for scope in (SCOPE_ALL, prediction.competition):
            for grade in (SCOPE_ALL, prediction.grade):
                await self._bump_counter(scope, grade, result)
        return result


async def run_settlement(
    session: AsyncSession,
    competition: Optional[str] = None,
    batch_size: int = 200,
) -> dict:
    """
    Settle pending predictions whose matches have finished.

    Returns:
        Dict with counts per result and per-row errors
    """
    start_time = time.time()
    service = SettlementService(session)
    pending = await service.load_pending(competition, batch_size)

    metrics = {
        "processed": 0,
        "settled": 0,
        "correct": 0,
        "incorrect": 0,
        "void": 0,
        "skipped": 0,
        "failed": 0,
        "errors": [],
    }
    for prediction, match in pending:
        metrics["processed"] += 1
        try:
            result = await service.settle(prediction, match)
        except MatchValidationError as e:
            metrics["failed"] += 1
            metrics["errors"].append(e.as_dict())
            continue
        if result is None:
            metrics["skipped"] += 1
            continue
        metrics["settled"] += 1
        metrics[result.lower()] += 1

    await session.commit()

    record_settlements(metrics["correct"], metrics["incorrect"], metrics["void"])
    metrics["duration_ms"] = round((time.time() - start_time) * 1000)
    logger.info(
        f"[SETTLEMENT] processed={metrics['processed']}, settled={metrics['settled']} "
        f"({metrics['correct']} correct, {metrics['incorrect']} incorrect, {metrics['void']} void), "
        f"failed={metrics['failed']}"
    )
    return metrics


def _counter_dict(counter: AccuracyCounter) -> dict:
    return {
        "scope": counter.scope,
        "grade": counter.grade,
        "settled": counter.settled,
        "correct": counter.correct,
        "void": counter.void,
        "accuracy": round(counter.accuracy, 4) if counter.accuracy is not None else None,
        "current_streak": counter.current_streak,
        "best_streak": counter.best_streak,
    }


async def get_accuracy_report(
    session: AsyncSession,
    competition: Optional[str] = None,
    recent_limit: int = 20,
) -> dict:
    """Overall, per-grade and per-competition accuracy plus recent settled picks."""
    # Counters and results are written by core UPDATEs; bypass the identity map
    fresh = {"populate_existing": True}
    counters = (
        await session.execute(select(AccuracyCounter).execution_options(**fresh))
    ).scalars().all()

    scope = competition or SCOPE_ALL
    overall = None
    by_grade = []
    by_competition = []
    for counter in counters:
        if counter.scope == scope and counter.grade == SCOPE_ALL:
            overall = _counter_dict(counter)
        if counter.scope == scope and counter.grade != SCOPE_ALL:
            by_grade.append(_counter_dict(counter))
        if counter.scope != SCOPE_ALL and counter.grade == SCOPE_ALL:
            if competition is None or counter.scope == competition:
                by_competition.append(_counter_dict(counter))

    query = select(Prediction).where(Prediction.result.isnot(None)).execution_options(**fresh)
    if competition:
        query = query.where(Prediction.competition == competition)
    recent = (
        await session.execute(query.order_by(Prediction.settled_at.desc()).limit(recent_limit))
    ).scalars().all()

    return {
        "overall": overall,
        "by_grade": sorted(by_grade, key=lambda c: c["grade"]),
        "by_competition": sorted(by_competition, key=lambda c: c["scope"]),
        "recent": [
            {
                "match_id": p.match_id,
                "competition": p.competition,
                "pick": p.pick,
                "grade": p.grade,
                "result": p.result,
                "actual_outcome": p.actual_outcome,
                "score": f"{p.final_home_goals}-{p.final_away_goals}",
                "settled_at": p.settled_at.isoformat() if p.settled_at else None,
            }
            for p in recent
        ],
    }
