"""
Prometheus metrics for the prediction pipeline.

Labels are restricted to LOW-CARDINALITY values only:
- job:      "team_stats", "patterns", "predictions", "settlement", "ingest"
- status:   "ok", "partial", "conflict", "error", "timeout"
- feature:  pattern feature family (max ~5)
- grade:    "HIGH", "MEDIUM", "LOW"
- result:   "CORRECT", "INCORRECT", "VOID"
- method:   "pattern", "form", "odds", "scenario"

Never use match ids, team ids or competition codes as labels; use logs.
"""

import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# =============================================================================
# JOB METRICS
# =============================================================================

job_runs_total = Counter(
    "fgpredict_job_runs_total",
    "Total batch job runs",
    ["job", "status"],
)

job_duration_ms = Histogram(
    "fgpredict_job_duration_ms",
    "Batch job duration in milliseconds",
    ["job"],
    buckets=[100, 500, 1000, 5000, 10000, 30000, 60000, 120000],
)

job_rows_failed_total = Counter(
    "fgpredict_job_rows_failed_total",
    "Rows skipped by a batch job because of validation errors",
    ["job"],
)

# =============================================================================
# PIPELINE METRICS
# =============================================================================

pattern_matches_folded_total = Counter(
    "fgpredict_pattern_matches_folded_total",
    "Settled matches added to pattern buckets",
    ["feature"],
)

pattern_watermark_conflicts_total = Counter(
    "fgpredict_pattern_watermark_conflicts_total",
    "Incremental pattern runs discarded because the watermark moved",
    ["feature"],
)

predictions_total = Counter(
    "fgpredict_predictions_total",
    "Predictions produced, by grade (insufficient data as 'NONE')",
    ["grade"],
)

estimates_excluded_total = Counter(
    "fgpredict_estimates_excluded_total",
    "Estimates excluded from a blend",
    ["method"],
)

settlements_total = Counter(
    "fgpredict_settlements_total",
    "Predictions settled",
    ["result"],
)


def record_job_run(job: str, status: str, duration_ms: int, failed_rows: int = 0) -> None:
    try:
        job_runs_total.labels(job=job, status=status).inc()
        job_duration_ms.labels(job=job).observe(duration_ms)
        if failed_rows:
            job_rows_failed_total.labels(job=job).inc(failed_rows)
    except Exception as e:
        logger.warning(f"Failed to record job metric: {e}")


def record_pattern_run(feature: str, processed: int, conflicts: int) -> None:
    try:
        if processed:
            pattern_matches_folded_total.labels(feature=feature).inc(processed)
        if conflicts:
            pattern_watermark_conflicts_total.labels(feature=feature).inc(conflicts)
    except Exception as e:
        logger.warning(f"Failed to record pattern metric: {e}")


def record_prediction(grade: str, excluded_methods: list[str]) -> None:
    try:
        predictions_total.labels(grade=grade or "NONE").inc()
        for method in excluded_methods:
            estimates_excluded_total.labels(method=method).inc()
    except Exception as e:
        logger.warning(f"Failed to record prediction metric: {e}")


def record_settlements(correct: int, incorrect: int, void: int) -> None:
    try:
        for result, count in (("CORRECT", correct), ("INCORRECT", incorrect), ("VOID", void)):
            if count:
                settlements_total.labels(result=result).inc(count)
    except Exception as e:
        logger.warning(f"Failed to record settlement metric: {e}")


def get_metrics_text() -> tuple[str, str]:
    """
    Generate Prometheus metrics text output.

    Returns:
        Tuple of (content, content_type)
    """
    return generate_latest(REGISTRY).decode("utf-8"), CONTENT_TYPE_LATEST
