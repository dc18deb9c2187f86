"""
Feature-code functions for pattern tables.

Each function maps a match to a discrete string code, or None when the code
cannot be derived for that match (no odds, first scorer unknown, ...).
"""

import math
from typing import Callable, Optional

from fgpredict.config import PipelineConfig
from fgpredict.ml.devig import get_devig_function
from fgpredict.models import MatchRecord

FeatureFunction = Callable[[MatchRecord, PipelineConfig], Optional[str]]


def shape_code(home: float, draw: float, away: float) -> str:
    """
    Rank-shape code of a probability triple, e.g. "1-3-2".

    Per outcome: 0 = extreme (<= 5% or >= 85%), 1 = within 3 points of the
    max, 3 = within 5 points of the min, 2 = in between.
    """
    hi = max(home, draw, away)
    lo = min(home, draw, away)

    def rank(value: float) -> int:
        if value <= 0.05 or value >= 0.85:
            return 0
        if value >= hi - 0.03:
            return 1
        if value <= lo + 0.05:
            return 3
        return 2

    return f"{rank(home)}-{rank(draw)}-{rank(away)}"


def first_goal_code(match: MatchRecord, config: PipelineConfig) -> Optional[str]:
    """Which side scored first: 'home', 'away' or 'none'."""
    if match.first_goal in ("home", "away", "none"):
        return match.first_goal
    return None


def _fair_probabilities(match: MatchRecord, config: PipelineConfig):
    if not match.has_odds:
        return None
    devig = get_devig_function(config.devig_method)
    return devig(match.odds_home, match.odds_draw, match.odds_away)


def odds_tier_code(match: MatchRecord, config: PipelineConfig) -> Optional[str]:
    """Favourite side plus its de-vigged probability decile, e.g. 'H:60-70'."""
    probs = _fair_probabilities(match, config)
    if probs is None:
        return None
    sides = ("H", "D", "A")
    fav = max(range(3), key=lambda i: probs[i])
    low = min(int(math.floor(probs[fav] * 10)) * 10, 90)
    return f"{sides[fav]}:{low}-{low + 10}"


def odds_shape_code(match: MatchRecord, config: PipelineConfig) -> Optional[str]:
    """Rank shape of the de-vigged market triple."""
    probs = _fair_probabilities(match, config)
    if probs is None:
        return None
    return shape_code(*probs)


FEATURES: dict[str, FeatureFunction] = {
    "first_goal": first_goal_code,
    "odds_tier": odds_tier_code,
    "odds_shape": odds_shape_code,
}


def get_feature(name: str) -> FeatureFunction:
    """
    Raises:
        ValueError: unknown feature family
    """
    try:
        return FEATURES[name]
    except KeyError:
        raise ValueError(f"Unknown feature '{name}', expected one of {sorted(FEATURES)}") from None
