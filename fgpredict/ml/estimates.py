"""
Independent probability estimates for a candidate match.

Each builder returns an Estimate, or an Exclusion naming why the method could
not produce one. Exclusions are surfaced in the prediction outcome.
"""

import math
from dataclasses import dataclass
from typing import Optional, Union

from fgpredict.config import PipelineConfig
from fgpredict.ml.devig import get_devig_function
from fgpredict.models import PatternBucket, TeamStat

METHOD_PATTERN = "pattern"
METHOD_FORM = "form"
METHOD_ODDS = "odds"
METHOD_SCENARIO = "scenario"


@dataclass(frozen=True)
class Estimate:
    method: str
    home: float
    draw: float
    away: float
    sample_size: Optional[int] = None  # None = not sample-backed (odds)
    detail: Optional[str] = None

    @property
    def probs(self) -> tuple[float, float, float]:
        return (self.home, self.draw, self.away)

    def as_dict(self) -> dict:
        return {
            "method": self.method,
            "home": round(self.home, 4),
            "draw": round(self.draw, 4),
            "away": round(self.away, 4),
            "sample_size": self.sample_size,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class Exclusion:
    method: str
    reason: str

    def as_dict(self) -> dict:
        return {"method": self.method, "reason": self.reason}


EstimateResult = Union[Estimate, Exclusion]


def pattern_estimate(
    bucket: Optional[PatternBucket],
    code: Optional[str],
    config: PipelineConfig,
) -> EstimateResult:
    """Historical frequencies of the match's feature-code bucket."""
    if code is None:
        return Exclusion(METHOD_PATTERN, f"feature code '{config.pattern_feature}' not derivable")
    if bucket is None or bucket.total == 0:
        return Exclusion(METHOD_PATTERN, f"no history for code {code}")
    if bucket.total < config.min_pattern_sample:
        return Exclusion(
            METHOD_PATTERN,
            f"bucket {code} has {bucket.total} matches (< {config.min_pattern_sample})",
        )
    return Estimate(
        METHOD_PATTERN,
        bucket.home_win_rate,
        bucket.draw_rate,
        bucket.away_win_rate,
        sample_size=bucket.total,
        detail=f"{bucket.scope}:{code}",
    )


def form_probabilities(diff: float, config: PipelineConfig) -> tuple[float, float, float]:
    """
    Map a form differential in [-1, 1] to a home/draw/away triple.

    s = logistic(k * diff + home_advantage); the draw share peaks at
    `form_draw_base` when s = 0.5 and shrinks as one side dominates.
    """
    s = 1.0 / (1.0 + math.exp(-(config.form_logistic_scale * diff + config.form_home_advantage)))
    draw = config.form_draw_base * (1.0 - abs(2.0 * s - 1.0))
    home = (1.0 - draw) * s
    away = (1.0 - draw) * (1.0 - s)
    return (home, draw, away)


def form_estimate(
    home_stat: Optional[TeamStat],
    away_stat: Optional[TeamStat],
    config: PipelineConfig,
) -> EstimateResult:
    """Logistic mapping of the home/away form index differential."""
    for side, stat in (("home", home_stat), ("away", away_stat)):
        if stat is None or stat.form_index is None:
            return Exclusion(METHOD_FORM, f"{side} team has no history")
        if stat.insufficient_data:
            return Exclusion(
                METHOD_FORM,
                f"{side} team has {stat.sample_size} matches (< {config.min_team_matches})",
            )

    diff = home_stat.form_index - away_stat.form_index
    home, draw, away = form_probabilities(diff, config)
    return Estimate(
        METHOD_FORM,
        home,
        draw,
        away,
        sample_size=min(home_stat.sample_size, away_stat.sample_size),
        detail=f"form {home_stat.form_index:.2f} vs {away_stat.form_index:.2f}",
    )


def odds_estimate(
    odds_home: Optional[float],
    odds_draw: Optional[float],
    odds_away: Optional[float],
    config: PipelineConfig,
) -> EstimateResult:
    """
    Market-implied probabilities with the overround removed.

    Raises:
        InvalidOddsError: odds present but not a valid market
    """
    if None in (odds_home, odds_draw, odds_away):
        return Exclusion(METHOD_ODDS, "no odds supplied")
    devig = get_devig_function(config.devig_method)
    home, draw, away = devig(odds_home, odds_draw, odds_away)
    overround = 1 / odds_home + 1 / odds_draw + 1 / odds_away - 1
    return Estimate(
        METHOD_ODDS,
        home,
        draw,
        away,
        sample_size=None,
        detail=f"{config.devig_method}, overround {overround:.1%}",
    )


def scenario_estimate(
    home_stat: Optional[TeamStat],
    away_stat: Optional[TeamStat],
    config: PipelineConfig,
) -> EstimateResult:
    """
    First-goal scenario: who scores first, then how each side converts it.

    The home side scores first with probability p (`scenario_home_first_share`):

        home = p * home_side_scored_first_win_rate + (1 - p) * home_comeback * 0.5
        away = (1 - p) * away_side_scored_first_win_rate + p * away_comeback * 0.3

    The draw is the remainder clamped to [scenario_draw_min, scenario_draw_max];
    the decisive share left over is split in the home:away ratio above.
    """
    if home_stat is None or home_stat.home_scored_first_win_rate is None:
        return Exclusion(METHOD_SCENARIO, "home team has never scored first at home")
    if away_stat is None or away_stat.away_scored_first_win_rate is None:
        return Exclusion(METHOD_SCENARIO, "away team has never scored first away")

    p = config.scenario_home_first_share
    home_comeback = home_stat.comeback_rate or 0.0
    away_comeback = away_stat.comeback_rate or 0.0
    raw_home = p * home_stat.home_scored_first_win_rate + (1 - p) * home_comeback * 0.5
    raw_away = (1 - p) * away_stat.away_scored_first_win_rate + p * away_comeback * 0.3

    draw = min(max(1.0 - raw_home - raw_away, config.scenario_draw_min), config.scenario_draw_max)
    decisive = raw_home + raw_away
    home_share = raw_home / decisive if decisive > 0 else p
    home = (1.0 - draw) * home_share
    away = 1.0 - draw - home
    return Estimate(
        METHOD_SCENARIO,
        home,
        draw,
        away,
        sample_size=min(home_stat.home_scored_first_games, away_stat.away_scored_first_games),
        detail=(
            f"scored first {home_stat.home_scored_first_win_rate:.0%} home / "
            f"{away_stat.away_scored_first_win_rate:.0%} away"
        ),
    )
