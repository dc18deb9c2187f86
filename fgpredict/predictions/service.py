"""
Prediction persistence and batch prediction.

At most one Prediction row per match. A new prediction replaces an unsettled
row; a settled row is never rewritten. The replace is a single
INSERT ... ON CONFLICT DO UPDATE ... WHERE result IS NULL, so a settlement
racing with a re-prediction cannot be overwritten.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from fgpredict.aggregates.service import AggregatesService
from fgpredict.config import PipelineConfig
from fgpredict.db_utils import dialect_insert
from fgpredict.matches.validation import MatchValidationError, validate_candidate_match
from fgpredict.ml.devig import InvalidOddsError
from fgpredict.ml.predictor import PredictionOutcome, feature_code_for, predict_match
from fgpredict.models import MatchRecord, Prediction, utcnow
from fgpredict.patterns.builder import get_bucket
from fgpredict.telemetry.metrics import record_prediction

logger = logging.getLogger(__name__)

SAVE_STORED = "stored"
SAVE_REPLACED = "replaced"
SAVE_ALREADY_SETTLED = "already_settled"
SAVE_NOT_STORED = "not_stored"


@dataclass
class BatchPredictionResult:
    processed: int = 0
    stored: int = 0
    insufficient: int = 0
    already_settled: int = 0
    failed: int = 0
    errors: list[dict] = field(default_factory=list)
    insufficient_matches: list[dict] = field(default_factory=list)


class PredictionService:
    """Loads predictor inputs and stores outcomes."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.aggregates = AggregatesService(session)

    async def predict(self, match: MatchRecord, config: PipelineConfig) -> PredictionOutcome:
        """
        Predict one candidate match from persisted TeamStats and patterns.

        Raises:
            MatchValidationError: missing identifiers
            InvalidOddsError: odds present but invalid
        """
        validate_candidate_match(match)
        home_stat = await self.aggregates.get_team_stat(match.home_team_id, match.competition)
        away_stat = await self.aggregates.get_team_stat(match.away_team_id, match.competition)

        code = feature_code_for(match, config)
        bucket = None
        if code is not None:
            bucket = await get_bucket(
                self.session,
                config.pattern_feature,
                code,
                match.competition,
                config.min_pattern_sample,
            )

        return predict_match(
            match,
            config,
            home_stat=home_stat,
            away_stat=away_stat,
            bucket=bucket,
            feature_code=code,
        )

    async def get_prediction(self, match_id: int) -> Optional[Prediction]:
        result = await self.session.execute(
            select(Prediction)
            .where(Prediction.match_id == match_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def save(self, match: MatchRecord, outcome: PredictionOutcome) -> str:
        """
        Store an ok outcome as the match's prediction (caller commits).

        Returns:
            "stored", "replaced", "already_settled", or "not_stored" for
            insufficient-data outcomes
        """
        if outcome.is_insufficient:
            return SAVE_NOT_STORED

        existing = await self.get_prediction(match.id)
        if existing is not None and existing.result is not None:
            return SAVE_ALREADY_SETTLED

        now = utcnow()
        values = {
            "match_id": match.id,
            "competition": match.competition,
            "home_prob": outcome.home_prob,
            "draw_prob": outcome.draw_prob,
            "away_prob": outcome.away_prob,
            "pick": outcome.pick,
            "grade": outcome.grade,
            "feature_code": outcome.feature_code,
            "estimates": [e.as_dict() for e in outcome.estimates],
            "reasons": outcome.reasons,
            "created_at": now,
            "updated_at": now,
        }
        insert = dialect_insert(self.session)
        stmt = insert(Prediction).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["match_id"],
            set_={
                col: getattr(stmt.excluded, col)
                for col in values
                if col not in ("match_id", "created_at")
            },
            where=Prediction.result.is_(None),
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            # Settled between the read and the write
            return SAVE_ALREADY_SETTLED
        return SAVE_REPLACED if existing is not None else SAVE_STORED

    async def load_candidates(
        self,
        competition: Optional[str] = None,
        batch_size: int = 200,
        offset: int = 0,
        horizon_days: int = 7,
    ) -> list[MatchRecord]:
        """Unplayed matches kicking off within the horizon, in kickoff order."""
        now = utcnow()
        query = select(MatchRecord).where(
            and_(
                MatchRecord.status == "NS",
                MatchRecord.settled_at.is_(None),
                MatchRecord.kickoff_at >= now,
                MatchRecord.kickoff_at <= now + timedelta(days=horizon_days),
            )
        )
        if competition:
            query = query.where(MatchRecord.competition == competition)
        query = query.order_by(MatchRecord.kickoff_at, MatchRecord.id).offset(offset).limit(batch_size)
        result = await self.session.execute(query)
        return list(result.scalars().all())


async def run_batch_predictions(
    session: AsyncSession,
    config: PipelineConfig,
    competition: Optional[str] = None,
    batch_size: int = 200,
    offset: int = 0,
    horizon_days: int = 7,
) -> dict:
    """
    Predict and store a chunk of upcoming matches.

    Per-row validation and odds errors are reported and the batch continues;
    insufficient-data matches are listed with their exclusion reasons.
    Database errors propagate.

    Returns:
        Dict with counts, per-row errors and `next_offset` for chunking
    """
    start_time = time.time()
    service = PredictionService(session)
    matches = await service.load_candidates(competition, batch_size, offset, horizon_days)
    batch = BatchPredictionResult()

    for match in matches:
        batch.processed += 1
        try:
            outcome = await service.predict(match, config)
        except MatchValidationError as e:
            batch.failed += 1
            batch.errors.append(e.as_dict())
            continue
        except InvalidOddsError as e:
            batch.failed += 1
            batch.errors.append({"match": match.id, "errors": [str(e)]})
            continue

        record_prediction(outcome.grade, [x.method for x in outcome.exclusions])
        if outcome.is_insufficient:
            batch.insufficient += 1
            batch.insufficient_matches.append({"match": match.id, "reasons": outcome.reasons})
            continue

        saved = await service.save(match, outcome)
        if saved == SAVE_ALREADY_SETTLED:
            batch.already_settled += 1
        else:
            batch.stored += 1

    await session.commit()

    duration_ms = round((time.time() - start_time) * 1000)
    logger.info(
        f"[PREDICTIONS] Batch offset={offset}: processed={batch.processed}, stored={batch.stored}, "
        f"insufficient={batch.insufficient}, failed={batch.failed}, duration={duration_ms}ms"
    )
    return {
        "processed": batch.processed,
        "stored": batch.stored,
        "skipped": batch.insufficient + batch.already_settled,
        "insufficient": batch.insufficient,
        "already_settled": batch.already_settled,
        "failed": batch.failed,
        "errors": batch.errors,
        "insufficient_matches": batch.insufficient_matches,
        "next_offset": offset + len(matches) if len(matches) == batch_size else None,
        "duration_ms": duration_ms,
    }
