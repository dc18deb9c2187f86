"""
Sentry error reporting for the batch jobs.

Enabled only when SENTRY_DSN is set; every helper is a no-op otherwise.
Job failures are tagged with the job name. Events never carry the API key
header, request bodies (match batches) or credentials in query strings.
"""

import logging
import re
from contextlib import contextmanager
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from fgpredict.config import get_settings

logger = logging.getLogger(__name__)

_sentry_initialized = False

REDACTED = "[REDACTED]"
_QUERY_SECRET = re.compile(r"(?i)\b(token|api_key|key|secret|password)=([^&]*)")


def _sensitive_headers() -> set[str]:
    return {get_settings().API_KEY_HEADER.lower(), "authorization", "cookie", "set-cookie"}


def scrub_sensitive_data(event: dict, hint: dict) -> Optional[dict]:
    """before_send hook: redact credentials and drop request bodies."""
    request = event.get("request")
    if not request:
        return event

    sensitive = _sensitive_headers()
    headers = request.get("headers") or {}
    request["headers"] = {k: (REDACTED if k.lower() in sensitive else v) for k, v in headers.items()}

    query_string = request.get("query_string")
    if isinstance(query_string, str):
        request["query_string"] = _QUERY_SECRET.sub(rf"\1={REDACTED}", query_string)

    request.pop("data", None)
    return event


def init_sentry() -> bool:
    """Initialize the SDK once. Returns whether Sentry is enabled."""
    global _sentry_initialized

    if _sentry_initialized:
        return True

    settings = get_settings()
    if not settings.SENTRY_DSN:
        logger.info("[SENTRY] Disabled (SENTRY_DSN not set)")
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(level=logging.ERROR, event_level=logging.ERROR),
        ],
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        send_default_pii=False,
        before_send=scrub_sensitive_data,
    )

    _sentry_initialized = True
    logger.info(f"[SENTRY] Enabled: env={settings.ENVIRONMENT}")
    return True


def is_sentry_enabled() -> bool:
    return _sentry_initialized


def capture_exception(exception: Exception, job_name: Optional[str] = None) -> None:
    if not _sentry_initialized:
        return

    with sentry_sdk.new_scope() as scope:
        if job_name:
            scope.set_tag("job", job_name)
        sentry_sdk.capture_exception(exception)


@contextmanager
def sentry_job_context(job_name: str):
    """Tag everything reported while a job runs with its name."""
    if not _sentry_initialized:
        yield
        return

    with sentry_sdk.new_scope() as scope:
        scope.set_tag("job", job_name)
        yield
