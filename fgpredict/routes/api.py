"""Public API endpoints: ingestion, batch jobs, prediction, settlement, lookups.

Auth: batch and write endpoints require verify_api_key; lookups are public
and rate limited. Batch jobs run through run_tracked_job, so a database error
or timeout becomes HTTP 503 and a failed JobRun.
"""

import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fgpredict.aggregates import AggregatesService, get_team_stats_status, refresh_team_stats
from fgpredict.config import PipelineConfig, get_settings
from fgpredict.database import get_async_session
from fgpredict.jobs import get_jobs_status, run_tracked_job
from fgpredict.matches import MatchValidationError, ingest_matches
from fgpredict.ml import InvalidOddsError
from fgpredict.models import SCOPE_ALL, MatchRecord, TeamStat, utcnow
from fgpredict.patterns import (
    FEATURES,
    describe_bucket,
    get_patterns_status,
    list_buckets,
    refresh_patterns,
    sample_confidence,
)
from fgpredict.predictions import PredictionService, run_batch_predictions
from fgpredict.security import limiter, verify_api_key
from fgpredict.settlement import get_accuracy_report, run_settlement
from fgpredict.telemetry.metrics import record_prediction

router = APIRouter(tags=["api"])

logger = logging.getLogger(__name__)
settings = get_settings()


def get_pipeline_config() -> PipelineConfig:
    return PipelineConfig.from_settings()


# =============================================================================
# REQUEST MODELS
# =============================================================================


class MatchIn(BaseModel):
    external_id: int
    competition: str = Field(..., min_length=1, max_length=20)
    season: Optional[str] = None
    kickoff_at: datetime
    home_team_id: Optional[int] = None
    away_team_id: Optional[int] = None
    home_team_name: Optional[str] = None
    away_team_name: Optional[str] = None
    status: str = "NS"
    home_goals: Optional[int] = None
    away_goals: Optional[int] = None
    first_goal: Optional[str] = None
    odds_home: Optional[float] = None
    odds_draw: Optional[float] = None
    odds_away: Optional[float] = None


class IngestRequest(BaseModel):
    matches: list[MatchIn] = Field(..., max_length=1000)


class TeamStatsJobRequest(BaseModel):
    competition: Optional[str] = None


class PatternsJobRequest(BaseModel):
    feature: Optional[str] = None
    mode: Literal["incremental", "full"] = "incremental"
    competition: Optional[str] = None
    batch_size: int = Field(default=settings.PATTERN_BATCH_SIZE, ge=1, le=50000)

    @field_validator("feature")
    @classmethod
    def known_feature(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in FEATURES:
            raise ValueError(f"unknown feature, expected one of {sorted(FEATURES)}")
        return v


class PredictRequest(BaseModel):
    """Either a stored match (`match_id`) or an ad-hoc fixture."""

    match_id: Optional[int] = None
    competition: Optional[str] = None
    home_team_id: Optional[int] = None
    away_team_id: Optional[int] = None
    odds_home: Optional[float] = None
    odds_draw: Optional[float] = None
    odds_away: Optional[float] = None

    @model_validator(mode="after")
    def match_or_teams(self):
        if self.match_id is None and not (
            self.competition and self.home_team_id is not None and self.away_team_id is not None
        ):
            raise ValueError("provide match_id, or competition with home_team_id and away_team_id")
        return self


class PredictionsJobRequest(BaseModel):
    competition: Optional[str] = None
    batch_size: int = Field(default=settings.PREDICTION_BATCH_SIZE, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)
    horizon_days: int = Field(default=settings.PREDICTION_HORIZON_DAYS, ge=1, le=60)


class SettlementJobRequest(BaseModel):
    competition: Optional[str] = None
    batch_size: int = Field(default=settings.SETTLEMENT_BATCH_SIZE, ge=1, le=1000)


# =============================================================================
# INGESTION
# =============================================================================


@router.post("/matches")
@limiter.limit("30/minute")
async def post_matches(
    request: Request,
    body: IngestRequest,
    session: AsyncSession = Depends(get_async_session),
    _: bool = Depends(verify_api_key),
):
    """Bulk upsert match rows. Malformed rows are reported, not fatal."""
    rows = [m.model_dump() for m in body.matches]
    return await run_tracked_job(
        session, "ingest", lambda: ingest_matches(session, rows),
        timeout_seconds=settings.JOB_TIMEOUT_SECONDS,
    )


# =============================================================================
# BATCH JOBS
# =============================================================================


@router.post("/jobs/team-stats")
@limiter.limit("10/minute")
async def job_team_stats(
    request: Request,
    body: Optional[TeamStatsJobRequest] = None,
    session: AsyncSession = Depends(get_async_session),
    config: PipelineConfig = Depends(get_pipeline_config),
    _: bool = Depends(verify_api_key),
):
    """Recompute TeamStats for one or all competitions."""
    body = body or TeamStatsJobRequest()
    return await run_tracked_job(
        session, "team_stats", lambda: refresh_team_stats(session, config, body.competition),
        timeout_seconds=settings.JOB_TIMEOUT_SECONDS,
    )


@router.post("/jobs/patterns")
@limiter.limit("10/minute")
async def job_patterns(
    request: Request,
    body: Optional[PatternsJobRequest] = None,
    session: AsyncSession = Depends(get_async_session),
    config: PipelineConfig = Depends(get_pipeline_config),
    _: bool = Depends(verify_api_key),
):
    """
    Update pattern tables.

    Incremental runs fold in at most `batch_size` newly settled matches per
    table; call repeatedly until every scope reports `up_to_date`.
    """
    body = body or PatternsJobRequest()
    return await run_tracked_job(
        session,
        "patterns",
        lambda: refresh_patterns(
            session,
            config,
            feature=body.feature,
            mode=body.mode,
            competition=body.competition,
            batch_size=body.batch_size,
        ),
        timeout_seconds=settings.JOB_TIMEOUT_SECONDS,
    )


@router.post("/jobs/predictions")
@limiter.limit("10/minute")
async def job_predictions(
    request: Request,
    body: Optional[PredictionsJobRequest] = None,
    session: AsyncSession = Depends(get_async_session),
    config: PipelineConfig = Depends(get_pipeline_config),
    _: bool = Depends(verify_api_key),
):
    """Predict a chunk of upcoming matches; follow `next_offset` for more."""
    body = body or PredictionsJobRequest()
    return await run_tracked_job(
        session,
        "predictions",
        lambda: run_batch_predictions(
            session,
            config,
            competition=body.competition,
            batch_size=body.batch_size,
            offset=body.offset,
            horizon_days=body.horizon_days,
        ),
        timeout_seconds=settings.JOB_TIMEOUT_SECONDS,
    )


@router.post("/jobs/settlement")
@limiter.limit("10/minute")
async def job_settlement(
    request: Request,
    body: Optional[SettlementJobRequest] = None,
    session: AsyncSession = Depends(get_async_session),
    _: bool = Depends(verify_api_key),
):
    """Settle predictions whose matches have finished. Safe to re-run."""
    body = body or SettlementJobRequest()
    return await run_tracked_job(
        session,
        "settlement",
        lambda: run_settlement(session, competition=body.competition, batch_size=body.batch_size),
        timeout_seconds=settings.JOB_TIMEOUT_SECONDS,
    )


@router.get("/jobs/status")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def jobs_status(
    request: Request,
    session: AsyncSession = Depends(get_async_session),
):
    return {
        "jobs": await get_jobs_status(session),
        "team_stats": await get_team_stats_status(session),
        "patterns": await get_patterns_status(session),
    }


# =============================================================================
# PREDICTION
# =============================================================================


@router.post("/predict")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def predict(
    request: Request,
    body: PredictRequest,
    session: AsyncSession = Depends(get_async_session),
    config: PipelineConfig = Depends(get_pipeline_config),
    _: bool = Depends(verify_api_key),
):
    """
    Predict one match.

    With `match_id` the stored match is used and the prediction is saved;
    otherwise the ad-hoc fixture is predicted without storing anything.
    Insufficient data is a normal response (`status: insufficient_data`).
    """
    service = PredictionService(session)
    if body.match_id is not None:
        match = await session.get(MatchRecord, body.match_id)
        if match is None:
            raise HTTPException(status_code=404, detail=f"Match {body.match_id} not found")
        if match.settled_at is not None:
            raise HTTPException(status_code=409, detail=f"Match {body.match_id} is already settled")
    else:
        match = MatchRecord(
            external_id=0,
            competition=body.competition,
            kickoff_at=utcnow(),
            home_team_id=body.home_team_id,
            away_team_id=body.away_team_id,
            odds_home=body.odds_home,
            odds_draw=body.odds_draw,
            odds_away=body.odds_away,
        )

    try:
        outcome = await service.predict(match, config)
    except MatchValidationError as e:
        raise HTTPException(status_code=422, detail=e.as_dict())
    except InvalidOddsError as e:
        raise HTTPException(status_code=422, detail=str(e))

    record_prediction(outcome.grade, [x.method for x in outcome.exclusions])
    response = outcome.as_dict()
    response["match_id"] = match.id
    response["stored"] = None
    if match.id is not None:
        response["stored"] = await service.save(match, outcome)
        await session.commit()
    return response


# =============================================================================
# LOOKUPS
# =============================================================================


def _rate(value: Optional[float]) -> Optional[float]:
    return round(value, 4) if value is not None else None


def _team_stat_dict(stat: TeamStat) -> dict:
    data = stat.model_dump(exclude={"id"})
    data["computed_at"] = stat.computed_at.isoformat() if stat.computed_at else None
    data["last_match_at"] = stat.last_match_at.isoformat() if stat.last_match_at else None
    data["scored_first_win_rate"] = _rate(stat.scored_first_win_rate)
    data["home_scored_first_win_rate"] = _rate(stat.home_scored_first_win_rate)
    data["away_scored_first_win_rate"] = _rate(stat.away_scored_first_win_rate)
    data["comeback_rate"] = _rate(stat.comeback_rate)
    return data


@router.get("/team-stats/{team_id}")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def team_stats(
    request: Request,
    team_id: int,
    competition: Optional[str] = Query(None),
    session: AsyncSession = Depends(get_async_session),
):
    """TeamStats of a team, for one competition or all it plays in."""
    if competition:
        stat = await AggregatesService(session).get_team_stat(team_id, competition)
        return {"team_id": team_id, "stats": [_team_stat_dict(stat)]}

    result = await session.execute(
        select(TeamStat).where(TeamStat.team_id == team_id).order_by(TeamStat.competition)
    )
    stats = result.scalars().all()
    if not stats:
        raise HTTPException(status_code=404, detail=f"No stats for team {team_id}")
    return {"team_id": team_id, "stats": [_team_stat_dict(s) for s in stats]}


@router.get("/patterns")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def patterns(
    request: Request,
    feature: Optional[str] = Query(None),
    scope: str = Query(SCOPE_ALL),
    session: AsyncSession = Depends(get_async_session),
    config: PipelineConfig = Depends(get_pipeline_config),
):
    """Buckets of one pattern table with rates derived from counts."""
    feature = feature or config.pattern_feature
    if feature not in FEATURES:
        raise HTTPException(status_code=422, detail=f"Unknown feature '{feature}'")

    buckets = await list_buckets(session, feature, scope)
    return {
        "feature": feature,
        "scope": scope,
        "buckets": [
            {
                "code": b.code,
                "total": b.total,
                "home_wins": b.home_wins,
                "draws": b.draws,
                "away_wins": b.away_wins,
                "home_win_rate": _rate(b.home_win_rate),
                "draw_rate": _rate(b.draw_rate),
                "away_win_rate": _rate(b.away_win_rate),
                "confidence": sample_confidence(b.total),
                "usable": b.total >= config.min_pattern_sample,
                "description": describe_bucket(b),
            }
            for b in buckets
        ],
    }


@router.get("/accuracy")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def accuracy(
    request: Request,
    competition: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=200),
    session: AsyncSession = Depends(get_async_session),
):
    """Accuracy counters and recently settled predictions."""
    return await get_accuracy_report(session, competition=competition, recent_limit=limit)
