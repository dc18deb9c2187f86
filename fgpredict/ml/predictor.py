"""
Match outcome predictor.

Pure function of already-loaded inputs: the candidate match, its feature code
and pattern bucket, and both teams' TeamStats. Loading and persistence live in
fgpredict.predictions.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from fgpredict.config import PipelineConfig
from fgpredict.ml.blend import (
    estimate_weight,
    expected_values,
    grade,
    pick,
    spread,
    weighted_average,
)
from fgpredict.ml.estimates import (
    Estimate,
    Exclusion,
    form_estimate,
    odds_estimate,
    pattern_estimate,
    scenario_estimate,
)
from fgpredict.models import (
    OUTCOME_AWAY,
    OUTCOME_HOME,
    MatchRecord,
    PatternBucket,
    TeamStat,
)
from fgpredict.patterns.features import get_feature

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_INSUFFICIENT = "insufficient_data"


@dataclass
class PredictionOutcome:
    """Result of one prediction: either probabilities or insufficient data."""

    status: str
    home_prob: Optional[float] = None
    draw_prob: Optional[float] = None
    away_prob: Optional[float] = None
    pick: Optional[str] = None
    grade: Optional[str] = None
    edge: Optional[float] = None
    feature_code: Optional[str] = None
    estimates: list[Estimate] = field(default_factory=list)
    exclusions: list[Exclusion] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)
    expected_value: Optional[dict] = None

    @property
    def is_insufficient(self) -> bool:
        return self.status == STATUS_INSUFFICIENT

    def as_dict(self) -> dict:
        return {
            "status": self.status,
            "home_prob": self.home_prob,
            "draw_prob": self.draw_prob,
            "away_prob": self.away_prob,
            "pick": self.pick,
            "grade": self.grade,
            "edge": self.edge,
            "feature_code": self.feature_code,
            "estimates": [e.as_dict() for e in self.estimates],
            "exclusions": [e.as_dict() for e in self.exclusions],
            "reasons": self.reasons,
            "expected_value": self.expected_value,
        }


def feature_code_for(match: MatchRecord, config: PipelineConfig) -> Optional[str]:
    """
    Feature code of a candidate match, or None if not derivable pre-match.

    Raises:
        InvalidOddsError: odds present but invalid
    """
    return get_feature(config.pattern_feature)(match, config)


def _normalized(probs: tuple[float, float, float]) -> tuple[float, float, float]:
    home = round(probs[0], 4)
    draw = round(probs[1], 4)
    # Absorb rounding into the last component so the stored triple sums to 1
    away = round(1.0 - home - draw, 4)
    return home, draw, max(away, 0.0)


def _reasons(
    outcome: PredictionOutcome,
    home_stat: Optional[TeamStat],
    away_stat: Optional[TeamStat],
    bucket: Optional[PatternBucket],
) -> list[str]:
    reasons = [f"edge {outcome.edge:.1%}"]

    if outcome.pick == OUTCOME_HOME and home_stat is not None:
        rate = home_stat.home_scored_first_win_rate
        if rate is not None:
            reasons.append(f"home side wins {rate:.0%} at home after scoring first")
    elif outcome.pick == OUTCOME_AWAY and away_stat is not None:
        rate = away_stat.away_scored_first_win_rate
        if rate is not None:
            reasons.append(f"away side wins {rate:.0%} away after scoring first")

    if bucket is not None and any(e.method == "pattern" for e in outcome.estimates):
        reasons.append(f"pattern {bucket.code} seen {bucket.total} times ({bucket.scope})")

    volume = sum(e.sample_size or 0 for e in outcome.estimates)
    reasons.append(f"{len(outcome.estimates)} estimate(s), {volume} matches of history")
    return reasons


def predict_match(
    match: MatchRecord,
    config: PipelineConfig,
    home_stat: Optional[TeamStat] = None,
    away_stat: Optional[TeamStat] = None,
    bucket: Optional[PatternBucket] = None,
    feature_code: Optional[str] = None,
) -> PredictionOutcome:
    """
    Blend the available estimates for one candidate match.

    Args:
        match: Candidate match (teams and optional odds)
        config: Pipeline tunables
        home_stat: Home team's TeamStat (None if unknown)
        away_stat: Away team's TeamStat (None if unknown)
        bucket: Pattern bucket for `feature_code` (None if none)
        feature_code: Feature code of the match (None if not derivable)

    Returns:
        PredictionOutcome with status "ok", or "insufficient_data" listing
        why every estimate was excluded

    Raises:
        InvalidOddsError: odds present but invalid
    """
    results = [
        pattern_estimate(bucket, feature_code, config),
        form_estimate(home_stat, away_stat, config),
        odds_estimate(match.odds_home, match.odds_draw, match.odds_away, config),
        scenario_estimate(home_stat, away_stat, config),
    ]
    estimates = [r for r in results if isinstance(r, Estimate)]
    exclusions = [r for r in results if isinstance(r, Exclusion)]

    pairs = [(e, estimate_weight(e, config)) for e in estimates]
    blended = weighted_average(pairs)
    if blended is None:
        if estimates:
            exclusions.extend(Exclusion(e.method, "zero blend weight") for e in estimates)
        return PredictionOutcome(
            status=STATUS_INSUFFICIENT,
            feature_code=feature_code,
            exclusions=exclusions,
            reasons=[x.reason for x in exclusions],
        )

    home, draw, away = _normalized(blended)
    choice, edge = pick((home, draw, away), config.min_edge)
    outcome = PredictionOutcome(
        status=STATUS_OK,
        home_prob=home,
        draw_prob=draw,
        away_prob=away,
        pick=choice,
        grade=grade(estimates, config),
        edge=round(edge, 4),
        feature_code=feature_code,
        estimates=estimates,
        exclusions=exclusions,
        expected_value=expected_values(
            (home, draw, away), match.odds_home, match.odds_draw, match.odds_away
        ),
    )
    outcome.reasons = _reasons(outcome, home_stat, away_stat, bucket)
    logger.debug(
        f"[PREDICT] match={match.id} pick={outcome.pick} grade={outcome.grade} "
        f"estimates={len(estimates)} spread={spread(estimates):.3f}"
    )
    return outcome
