"""Shared fixtures: in-memory SQLite database and match factories."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("API_KEY", "test-key")
os.environ.setdefault("METRICS_BEARER_TOKEN", "")
os.environ.setdefault("SENTRY_DSN", "")

from datetime import datetime, timedelta
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import fgpredict.models  # noqa: F401
from fgpredict.config import PipelineConfig
from fgpredict.models import MatchRecord

BASE_TIME = datetime(2025, 8, 1, 15, 0)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine) -> AsyncSession:
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        yield session


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig()


def make_match(
    external_id: int,
    competition: str = "PL",
    home: Optional[int] = 1,
    away: Optional[int] = 2,
    home_goals: Optional[int] = None,
    away_goals: Optional[int] = None,
    first_goal: Optional[str] = None,
    kickoff: Optional[datetime] = None,
    settled_at: Optional[datetime] = None,
    odds: Optional[tuple] = None,
    status: Optional[str] = None,
) -> MatchRecord:
    """
    Build a MatchRecord. Passing a score makes it a settled FT match; the
    first scorer is inferred when not given.
    """
    kickoff = kickoff or BASE_TIME + timedelta(days=external_id)
    played = home_goals is not None and away_goals is not None
    if played and first_goal is None:
        if home_goals == 0 and away_goals == 0:
            first_goal = "none"
        else:
            first_goal = "home" if home_goals > 0 else "away"
    if played and settled_at is None:
        settled_at = kickoff + timedelta(hours=2)
    odds = odds or (None, None, None)
    return MatchRecord(
        external_id=external_id,
        competition=competition,
        season="2025",
        kickoff_at=kickoff,
        home_team_id=home,
        away_team_id=away,
        home_team_name=f"Team {home}" if home is not None else None,
        away_team_name=f"Team {away}" if away is not None else None,
        status=status or ("FT" if played else "NS"),
        home_goals=home_goals,
        away_goals=away_goals,
        first_goal=first_goal,
        odds_home=odds[0],
        odds_draw=odds[1],
        odds_away=odds[2],
        settled_at=settled_at,
    )


async def add_matches(session: AsyncSession, matches: list[MatchRecord]) -> list[MatchRecord]:
    session.add_all(matches)
    await session.commit()
    return matches


@pytest.fixture
def match_factory():
    return make_match


@pytest.fixture
def store(session):
    async def _store(matches: list[MatchRecord]) -> list[MatchRecord]:
        return await add_matches(session, matches)
    return _store
