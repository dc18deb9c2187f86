"""Telemetry: Prometheus metrics and Sentry."""

from fgpredict.telemetry.metrics import get_metrics_text
from fgpredict.telemetry.sentry import capture_exception, init_sentry, is_sentry_enabled

__all__ = ["get_metrics_text", "capture_exception", "init_sentry", "is_sentry_enabled"]
