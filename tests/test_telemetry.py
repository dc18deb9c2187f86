"""Tests for Sentry scrubbing and database engine options."""

from fgpredict.config import Settings
from fgpredict.database import engine_options, get_database_url
from fgpredict.telemetry.sentry import capture_exception, scrub_sensitive_data


class TestScrubSensitiveData:
    def test_api_key_header_and_body_removed(self):
        event = {
            "request": {
                "headers": {"X-API-Key": "secret-key", "User-Agent": "scheduler/1.0"},
                "query_string": "feature=odds_shape&token=abc",
                "data": {"matches": [{"external_id": 1}]},
            }
        }

        scrubbed = scrub_sensitive_data(event, {})["request"]

        assert scrubbed["headers"] == {"X-API-Key": "[REDACTED]", "User-Agent": "scheduler/1.0"}
        assert scrubbed["query_string"] == "feature=odds_shape&token=[REDACTED]"
        assert "data" not in scrubbed

    def test_event_without_request_untouched(self):
        event = {"message": "[JOBS] patterns failed"}
        assert scrub_sensitive_data(event, {}) == {"message": "[JOBS] patterns failed"}

    def test_capture_is_noop_when_disabled(self):
        capture_exception(RuntimeError("boom"), job_name="patterns")


class TestDatabaseUrl:
    def test_async_drivers(self):
        assert get_database_url("sqlite:///./x.db") == "sqlite+aiosqlite:///./x.db"
        assert get_database_url("postgres://u:p@db/fg") == "postgresql+asyncpg://u:p@db/fg"
        assert get_database_url("postgresql://u:p@db/fg") == "postgresql+asyncpg://u:p@db/fg"
        assert get_database_url("postgresql+asyncpg://db/fg") == "postgresql+asyncpg://db/fg"

    def test_statement_timeout_follows_job_timeout(self):
        options = engine_options("postgresql+asyncpg://db/fg", Settings(JOB_TIMEOUT_SECONDS=55))
        assert options["connect_args"]["server_settings"]["statement_timeout"] == "60000"
        assert options["pool_size"] == 10

    def test_no_statement_timeout_without_job_timeout(self):
        options = engine_options("postgresql+asyncpg://db/fg", Settings(JOB_TIMEOUT_SECONDS=0))
        assert "connect_args" not in options

    def test_sqlite_shares_one_connection(self):
        options = engine_options("sqlite+aiosqlite:///:memory:", Settings())
        assert options["connect_args"] == {"check_same_thread": False}
