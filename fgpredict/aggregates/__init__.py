"""
Team aggregates module.

Provides per-team rolling statistics consumed by the predictor.
"""

from fgpredict.aggregates.service import (
    AggregatesService,
    AggregationResult,
    build_team_stat,
    compute_team_stats,
    form_index,
    insufficient_team_stat,
)
from fgpredict.aggregates.refresh_job import get_team_stats_status, refresh_team_stats

__all__ = [
    "AggregatesService",
    "AggregationResult",
    "build_team_stat",
    "compute_team_stats",
    "form_index",
    "insufficient_team_stat",
    "get_team_stats_status",
    "refresh_team_stats",
]
