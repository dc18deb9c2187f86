"""Tests for settlement, accuracy counters and prediction storage."""

import pytest
from sqlalchemy import select

from fgpredict.ml.predictor import predict_match
from fgpredict.models import AccuracyCounter, Prediction
from fgpredict.predictions import PredictionService
from fgpredict.settlement import SettlementService, get_accuracy_report, run_settlement
from fgpredict.settlement.service import settlement_result


def prediction_for(match, pick="HOME", grade="HIGH"):
    return Prediction(
        match_id=match.id,
        competition=match.competition,
        home_prob=0.5,
        draw_prob=0.3,
        away_prob=0.2,
        pick=pick,
        grade=grade,
    )


async def counters(session) -> dict:
    result = await session.execute(
        select(AccuracyCounter).execution_options(populate_existing=True)
    )
    return {
        (c.scope, c.grade): (c.settled, c.correct, c.void, c.current_streak, c.best_streak)
        for c in result.scalars().all()
    }


async def predictions(session) -> dict:
    result = await session.execute(
        select(Prediction).execution_options(populate_existing=True)
    )
    return {p.match_id: p for p in result.scalars().all()}


@pytest.fixture
def settled_with_prediction(session, store, match_factory):
    async def _make(external_id, home_goals, away_goals, pick="HOME", grade="HIGH", competition="PL"):
        (match,) = await store([
            match_factory(external_id, competition=competition, home_goals=home_goals, away_goals=away_goals)
        ])
        session.add(prediction_for(match, pick, grade))
        await session.commit()
        return match
    return _make


class TestSettlementResult:
    def test_results(self):
        assert settlement_result("HOME", "HOME") == "CORRECT"
        assert settlement_result("AWAY", "DRAW") == "INCORRECT"
        assert settlement_result("SKIP", "HOME") == "VOID"


class TestRunSettlement:
    @pytest.mark.asyncio
    async def test_correct_pick_updates_every_counter(self, session, settled_with_prediction):
        await settled_with_prediction(1, 2, 0)

        metrics = await run_settlement(session)

        assert metrics["settled"] == 1 and metrics["correct"] == 1
        expected = (1, 1, 0, 1, 1)
        assert await counters(session) == {
            ("ALL", "ALL"): expected,
            ("ALL", "HIGH"): expected,
            ("PL", "ALL"): expected,
            ("PL", "HIGH"): expected,
        }
        stored = (await predictions(session))[1]
        assert stored.result == "CORRECT"
        assert stored.actual_outcome == "HOME"
        assert (stored.final_home_goals, stored.final_away_goals) == (2, 0)

    @pytest.mark.asyncio
    async def test_rerun_changes_nothing(self, session, settled_with_prediction):
        await settled_with_prediction(1, 0, 1)
        await run_settlement(session)
        before_counters = await counters(session)
        before_result = (await predictions(session))[1].result

        again = await run_settlement(session)

        assert again["processed"] == 0
        assert await counters(session) == before_counters
        assert (await predictions(session))[1].result == before_result == "INCORRECT"

    @pytest.mark.asyncio
    async def test_settling_twice_directly_is_a_noop(self, session, settled_with_prediction):
        match = await settled_with_prediction(1, 1, 0)
        service = SettlementService(session)
        prediction = (await predictions(session))[match.id]

        assert await service.settle(prediction, match) == "CORRECT"
        assert await service.settle(prediction, match) is None
        await session.commit()

        assert (await counters(session))[("ALL", "ALL")][:2] == (1, 1)

    @pytest.mark.asyncio
    async def test_skip_settles_void(self, session, settled_with_prediction):
        await settled_with_prediction(1, 2, 0)
        await run_settlement(session)
        await settled_with_prediction(2, 1, 1, pick="SKIP")

        metrics = await run_settlement(session)

        assert metrics["void"] == 1
        # void neither counts toward accuracy nor breaks the streak
        assert (await counters(session))[("ALL", "ALL")] == (1, 1, 1, 1, 1)

    @pytest.mark.asyncio
    async def test_streaks(self, session, settled_with_prediction):
        # hit, hit, miss, miss, hit in kickoff order
        await settled_with_prediction(1, 2, 0)
        await settled_with_prediction(2, 3, 1)
        await settled_with_prediction(3, 0, 2)
        await settled_with_prediction(4, 1, 1)
        await settled_with_prediction(5, 1, 0)

        await run_settlement(session)

        settled, correct, void, current, best = (await counters(session))[("ALL", "ALL")]
        assert (settled, correct, void) == (5, 3, 0)
        assert current == 1
        assert best == 2

    @pytest.mark.asyncio
    async def test_unfinished_match_not_settled(self, session, store, match_factory):
        (match,) = await store([match_factory(1)])
        session.add(prediction_for(match))
        await session.commit()

        metrics = await run_settlement(session)

        assert metrics["processed"] == 0
        assert (await predictions(session))[match.id].result is None

    @pytest.mark.asyncio
    async def test_competition_filter(self, session, settled_with_prediction):
        await settled_with_prediction(1, 2, 0, competition="PL")
        await settled_with_prediction(2, 2, 0, competition="LL")

        metrics = await run_settlement(session, competition="LL")

        assert metrics["settled"] == 1
        assert ("PL", "ALL") not in await counters(session)


class TestPredictionStorage:
    @pytest.mark.asyncio
    async def test_replace_unsettled_prediction(self, session, store, match_factory, config):
        (match,) = await store([match_factory(1, odds=(2.00, 3.50, 4.00))])
        service = PredictionService(session)
        outcome = predict_match(match, config)

        assert await service.save(match, outcome) == "stored"
        assert await service.save(match, outcome) == "replaced"
        await session.commit()

        assert len(await predictions(session)) == 1

    @pytest.mark.asyncio
    async def test_settled_prediction_never_rewritten(self, session, settled_with_prediction, config):
        match = await settled_with_prediction(1, 0, 2, pick="HOME")
        await run_settlement(session)

        match.odds_home, match.odds_draw, match.odds_away = 4.00, 3.50, 2.00
        outcome = predict_match(match, config)
        assert outcome.pick == "AWAY"

        assert await PredictionService(session).save(match, outcome) == "already_settled"
        await session.commit()
        stored = (await predictions(session))[match.id]
        assert (stored.pick, stored.result) == ("HOME", "INCORRECT")

    @pytest.mark.asyncio
    async def test_insufficient_outcome_not_stored(self, session, store, match_factory, config):
        (match,) = await store([match_factory(1)])
        outcome = predict_match(match, config)

        assert outcome.is_insufficient
        assert await PredictionService(session).save(match, outcome) == "not_stored"


class TestAccuracyReport:
    @pytest.mark.asyncio
    async def test_report(self, session, settled_with_prediction):
        await settled_with_prediction(1, 2, 0, grade="HIGH")
        await settled_with_prediction(2, 0, 2, grade="LOW")
        await run_settlement(session)

        report = await get_accuracy_report(session)

        assert report["overall"]["settled"] == 2
        assert report["overall"]["accuracy"] == 0.5
        assert [g["grade"] for g in report["by_grade"]] == ["HIGH", "LOW"]
        assert [c["scope"] for c in report["by_competition"]] == ["PL"]
        assert {r["result"] for r in report["recent"]} == {"CORRECT", "INCORRECT"}
        assert report["recent"][0]["score"] in ("2-0", "0-2")

    @pytest.mark.asyncio
    async def test_empty_report(self, session):
        report = await get_accuracy_report(session)
        assert report["overall"] is None
        assert report["recent"] == []
