"""End-to-end API tests against the in-memory database."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from fgpredict.config import PipelineConfig
from fgpredict.main import app
from fgpredict.routes.api import get_pipeline_config
from fgpredict.security import limiter

AUTH = {"X-API-Key": "test-key"}


@pytest.fixture
def client():
    limiter.enabled = False
    # Matches settle during the test, so patterns must not wait for the settle lag
    app.dependency_overrides[get_pipeline_config] = lambda: PipelineConfig(settle_lag_seconds=0)
    # Lifespan creates the tables; disposing the engine on exit drops the in-memory database
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    limiter.enabled = True


def history():
    """Team 1 won its last four, team 2 lost its last four."""
    start = datetime.now(timezone.utc) - timedelta(days=30)
    rows = []
    for i in range(4):
        rows.append({
            "external_id": 100 + i,
            "competition": "PL",
            "kickoff_at": (start + timedelta(days=i)).isoformat(),
            "home_team_id": 1,
            "away_team_id": 3 + i,
            "status": "FT",
            "home_goals": 2,
            "away_goals": 0,
            "first_goal": "home",
        })
        rows.append({
            "external_id": 200 + i,
            "competition": "PL",
            "kickoff_at": (start + timedelta(days=i, hours=3)).isoformat(),
            "home_team_id": 7 + i,
            "away_team_id": 2,
            "status": "FT",
            "home_goals": 1,
            "away_goals": 0,
            "first_goal": "home",
        })
    return rows


def upcoming(**overrides):
    data = {
        "external_id": 500,
        "competition": "PL",
        "kickoff_at": (datetime.now(timezone.utc) + timedelta(days=1)).isoformat(),
        "home_team_id": 1,
        "away_team_id": 2,
        "status": "NS",
        "odds_home": 1.80,
        "odds_draw": 3.60,
        "odds_away": 4.50,
    }
    data.update(overrides)
    return data


class TestCore:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["sentry"] is False

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "fgpredict_job_runs_total" in response.text


class TestAuth:
    def test_missing_key(self, client):
        response = client.post("/jobs/settlement", json={})
        assert response.status_code == 401

    def test_wrong_key(self, client):
        response = client.post("/jobs/settlement", json={}, headers={"X-API-Key": "nope"})
        assert response.status_code == 403

    def test_lookups_are_public(self, client):
        assert client.get("/accuracy").status_code == 200


class TestPipeline:
    def test_ingest_predict_settle(self, client):
        ingest = client.post("/matches", json={"matches": history() + [upcoming()]}, headers=AUTH)
        assert ingest.status_code == 200
        assert ingest.json()["inserted"] == 9
        assert ingest.json()["status"] == "ok"

        stats = client.post("/jobs/team-stats", json={}, headers=AUTH).json()
        assert stats["status"] == "ok"
        assert stats["processed"] == 8

        patterns = client.post("/jobs/patterns", json={}, headers=AUTH).json()
        assert patterns["status"] == "ok"
        assert [s["scope"] for s in patterns["scopes"]] == ["ALL", "PL"]

        predictions = client.post("/jobs/predictions", json={}, headers=AUTH).json()
        assert predictions["stored"] == 1

        final = upcoming(status="FT", home_goals=2, away_goals=0, first_goal="home")
        settled = client.post("/matches", json={"matches": [final]}, headers=AUTH).json()
        assert settled["settled"] == 1

        first = client.post("/jobs/settlement", json={}, headers=AUTH).json()
        again = client.post("/jobs/settlement", json={}, headers=AUTH).json()
        assert first["correct"] == 1
        assert again["processed"] == 0

        report = client.get("/accuracy").json()
        assert report["overall"]["settled"] == 1
        assert report["overall"]["correct"] == 1
        assert report["recent"][0]["score"] == "2-0"

        status = client.get("/jobs/status").json()
        assert set(status["jobs"]) == {"ingest", "team_stats", "patterns", "predictions", "settlement"}
        assert status["team_stats"]["teams_count"] > 0

    def test_team_stats_lookup(self, client):
        client.post("/matches", json={"matches": history()}, headers=AUTH)
        client.post("/jobs/team-stats", json={}, headers=AUTH)

        stats = client.get("/team-stats/1").json()["stats"][0]
        assert stats["wins"] == 4
        assert stats["form_index"] == 1.0
        assert stats["home_scored_first_win_rate"] == 1.0

        assert client.get("/team-stats/999").status_code == 404
        unknown = client.get("/team-stats/999", params={"competition": "PL"}).json()
        assert unknown["stats"][0]["insufficient_data"] is True

    def test_patterns_lookup(self, client):
        rows = [
            {**row, "odds_home": 1.60, "odds_draw": 4.00, "odds_away": 5.50}
            for row in history()
        ]
        client.post("/matches", json={"matches": rows}, headers=AUTH)
        client.post("/jobs/patterns", json={"feature": "odds_tier"}, headers=AUTH)

        body = client.get("/patterns", params={"feature": "odds_tier"}).json()
        (bucket,) = body["buckets"]
        assert bucket["code"] == "H:50-60"
        assert bucket["total"] == 8
        assert bucket["home_win_rate"] == 1.0
        assert bucket["usable"] is False

        assert client.get("/patterns", params={"feature": "corners"}).status_code == 422


class TestPredictEndpoint:
    def test_adhoc_fixture_not_stored(self, client):
        response = client.post(
            "/predict",
            json={"competition": "PL", "home_team_id": 1, "away_team_id": 2,
                  "odds_home": 2.0, "odds_draw": 3.5, "odds_away": 4.0},
            headers=AUTH,
        )
        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "ok"
        assert body["stored"] is None
        assert body["home_prob"] + body["draw_prob"] + body["away_prob"] == pytest.approx(1.0, abs=0.01)

    def test_adhoc_fixture_without_data(self, client):
        response = client.post(
            "/predict",
            json={"competition": "PL", "home_team_id": 1, "away_team_id": 2},
            headers=AUTH,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "insufficient_data"

    def test_invalid_odds(self, client):
        response = client.post(
            "/predict",
            json={"competition": "PL", "home_team_id": 1, "away_team_id": 2,
                  "odds_home": 1.0, "odds_draw": 3.5, "odds_away": 4.0},
            headers=AUTH,
        )
        assert response.status_code == 422

    def test_unknown_match(self, client):
        response = client.post("/predict", json={"match_id": 12345}, headers=AUTH)
        assert response.status_code == 404

    def test_needs_match_or_teams(self, client):
        response = client.post("/predict", json={"competition": "PL"}, headers=AUTH)
        assert response.status_code == 422

    def test_stored_match_prediction(self, client):
        client.post("/matches", json={"matches": [upcoming()]}, headers=AUTH)

        first = client.post("/predict", json={"match_id": 1}, headers=AUTH).json()
        second = client.post("/predict", json={"match_id": 1}, headers=AUTH).json()

        assert first["stored"] == "stored"
        assert second["stored"] == "replaced"

    def test_settled_match_rejected(self, client):
        final = upcoming(status="FT", home_goals=1, away_goals=0, first_goal="home")
        client.post("/matches", json={"matches": [final]}, headers=AUTH)

        response = client.post("/predict", json={"match_id": 1}, headers=AUTH)
        assert response.status_code == 409


class TestJobFailures:
    def test_database_error_is_503_and_recorded(self, client, monkeypatch):
        failing = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("database is locked")))
        monkeypatch.setattr("fgpredict.routes.api.refresh_team_stats", failing)

        response = client.post("/jobs/team-stats", json={}, headers=AUTH)

        assert response.status_code == 503
        assert response.json()["job"] == "team_stats"
        status = client.get("/jobs/status").json()
        assert status["jobs"]["team_stats"]["last_run_status"] == "error"

    def test_unknown_pattern_feature_rejected(self, client):
        response = client.post("/jobs/patterns", json={"feature": "corners"}, headers=AUTH)
        assert response.status_code == 422
