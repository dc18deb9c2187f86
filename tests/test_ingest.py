"""Tests for match ingestion."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from fgpredict.matches import ingest_matches
from fgpredict.models import MatchRecord

KICKOFF = datetime(2025, 9, 13, 14, 0)


def row(external_id, **overrides):
    data = {
        "external_id": external_id,
        "competition": "PL",
        "season": "2025",
        "kickoff_at": KICKOFF + timedelta(days=external_id),
        "home_team_id": 1,
        "away_team_id": 2,
        "status": "NS",
    }
    data.update(overrides)
    return data


def final(external_id, home_goals=2, away_goals=1, first_goal="home", **overrides):
    return row(
        external_id,
        status="FT",
        home_goals=home_goals,
        away_goals=away_goals,
        first_goal=first_goal,
        **overrides,
    )


async def stored(session, external_id):
    result = await session.execute(
        select(MatchRecord)
        .where(MatchRecord.external_id == external_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


class TestIngest:
    @pytest.mark.asyncio
    async def test_insert_then_settle(self, session):
        first = await ingest_matches(session, [row(1, odds_home=2.0, odds_draw=3.5, odds_away=4.0)])
        assert first["inserted"] == 1
        assert (await stored(session, 1)).settled_at is None

        second = await ingest_matches(session, [final(1, odds_home=2.0, odds_draw=3.5, odds_away=4.0)])

        assert second["updated"] == 1
        assert second["settled"] == 1
        match = await stored(session, 1)
        assert match.settled_at is not None
        assert (match.home_goals, match.away_goals, match.first_goal) == (2, 1, "home")
        assert match.odds_home == 2.0

    @pytest.mark.asyncio
    async def test_resending_settled_match_is_a_noop(self, session):
        await ingest_matches(session, [final(1)])
        settled_at = (await stored(session, 1)).settled_at

        metrics = await ingest_matches(session, [final(1)])

        assert metrics["unchanged"] == 1
        assert metrics["failed"] == 0
        assert (await stored(session, 1)).settled_at == settled_at

    @pytest.mark.asyncio
    async def test_settled_result_is_immutable(self, session):
        await ingest_matches(session, [final(1, 2, 1)])

        metrics = await ingest_matches(session, [final(1, 2, 2)])

        assert metrics["failed"] == 1
        assert "settled match is immutable" in metrics["errors"][0]["errors"][0]
        assert (await stored(session, 1)).away_goals == 1

    @pytest.mark.asyncio
    async def test_malformed_rows_reported_batch_continues(self, session):
        metrics = await ingest_matches(session, [
            row(1, home_team_id=None),
            row(2, away_team_id=1),
            final(3, home_goals=None),
            final(4, home_goals=0, away_goals=1, first_goal="home"),
            row(5, odds_home=0.95, odds_draw=3.0, odds_away=4.0),
            row(6),
        ])

        assert metrics["processed"] == 6
        assert metrics["failed"] == 5
        assert metrics["inserted"] == 1
        assert [e["match"] for e in metrics["errors"]] == [1, 2, 3, 4, 5]
        assert "missing home_team_id" in metrics["errors"][0]["errors"]
        assert "home_team_id equals away_team_id" in metrics["errors"][1]["errors"]
        assert await stored(session, 1) is None
        assert await stored(session, 6) is not None

    @pytest.mark.asyncio
    async def test_aware_kickoff_stored_as_naive_utc(self, session):
        kickoff = datetime(2025, 9, 13, 16, 0, tzinfo=timezone(timedelta(hours=2)))
        await ingest_matches(session, [row(1, kickoff_at=kickoff)])

        assert (await stored(session, 1)).kickoff_at == datetime(2025, 9, 13, 14, 0)

    @pytest.mark.asyncio
    async def test_postponed_match_stays_unsettled(self, session):
        await ingest_matches(session, [row(1)])
        metrics = await ingest_matches(session, [row(1, status="PST")])

        assert metrics["updated"] == 1
        match = await stored(session, 1)
        assert match.status == "PST"
        assert match.settled_at is None

    @pytest.mark.asyncio
    async def test_reserved_competition_code_rejected(self, session):
        metrics = await ingest_matches(session, [row(1, competition="ALL"), row(2)])

        assert metrics["failed"] == 1
        assert metrics["errors"][0]["errors"] == ["competition 'ALL' is reserved"]
        assert await stored(session, 1) is None
        assert await stored(session, 2) is not None

    @pytest.mark.asyncio
    async def test_settled_at_stamped_per_row(self, session, monkeypatch):
        ticks = iter(datetime(2025, 9, 20, 18, 0, s) for s in range(10))
        monkeypatch.setattr("fgpredict.matches.ingest.utcnow", lambda: next(ticks))

        await ingest_matches(session, [final(1), final(2)])

        first, second = (await stored(session, 1)).settled_at, (await stored(session, 2)).settled_at
        assert first < second
