"""
Estimate blending, pick selection and confidence grading.

Blending is a generic weighted average over (estimate, weight) pairs and knows
nothing about which methods produced them. Weights are the method weight
scaled by min(1, sample_size / weight_saturation); estimates without a sample
size (market odds) keep their full method weight.
"""

from itertools import combinations
from typing import Optional, Sequence

from fgpredict.config import PipelineConfig
from fgpredict.ml.estimates import (
    METHOD_FORM,
    METHOD_ODDS,
    METHOD_PATTERN,
    METHOD_SCENARIO,
    Estimate,
)
from fgpredict.models import OUTCOME_AWAY, OUTCOME_DRAW, OUTCOME_HOME, PICK_SKIP

GRADE_HIGH = "HIGH"
GRADE_MEDIUM = "MEDIUM"
GRADE_LOW = "LOW"

OUTCOMES = (OUTCOME_HOME, OUTCOME_DRAW, OUTCOME_AWAY)

Triple = tuple[float, float, float]


def estimate_weight(estimate: Estimate, config: PipelineConfig) -> float:
    method_weight = {
        METHOD_PATTERN: config.weight_pattern,
        METHOD_FORM: config.weight_form,
        METHOD_ODDS: config.weight_odds,
        METHOD_SCENARIO: config.weight_scenario,
    }.get(estimate.method, 1.0)
    if estimate.sample_size is None:
        return method_weight
    return method_weight * min(1.0, estimate.sample_size / config.weight_saturation)


def weighted_average(pairs: Sequence[tuple[Estimate, float]]) -> Optional[Triple]:
    """
    Weighted mean of probability triples, renormalized to sum to 1.

    Returns None when there is nothing to average (no pairs or zero weight).
    """
    total_weight = sum(w for _, w in pairs if w > 0)
    if total_weight <= 0:
        return None
    sums = [0.0, 0.0, 0.0]
    for estimate, weight in pairs:
        if weight <= 0:
            continue
        for i, p in enumerate(estimate.probs):
            sums[i] += weight * p
    norm = sum(sums)
    return (sums[0] / norm, sums[1] / norm, sums[2] / norm)


def disagreement(a: Estimate, b: Estimate) -> float:
    """Largest per-outcome absolute difference between two estimates."""
    return max(abs(x - y) for x, y in zip(a.probs, b.probs))


def spread(estimates: Sequence[Estimate]) -> float:
    if len(estimates) < 2:
        return 0.0
    return max(disagreement(a, b) for a, b in combinations(estimates, 2))


def _backed(estimate: Estimate, min_sample: int) -> bool:
    # Market odds are not sample-based and count as backed
    return estimate.sample_size is None or estimate.sample_size >= min_sample


def grade(estimates: Sequence[Estimate], config: PipelineConfig) -> str:
    """
    HIGH: two or more estimates agree within tolerance, each backed by
    `high_grade_min_sample`. MEDIUM: one estimate backed by
    `medium_grade_min_sample` and every estimate within 2x tolerance.
    LOW otherwise.
    """
    strong = [e for e in estimates if _backed(e, config.high_grade_min_sample)]
    for a, b in combinations(strong, 2):
        if disagreement(a, b) <= config.agreement_tolerance:
            return GRADE_HIGH

    if any(_backed(e, config.medium_grade_min_sample) for e in estimates):
        if spread(estimates) <= 2 * config.agreement_tolerance:
            return GRADE_MEDIUM

    return GRADE_LOW


def pick(probs: Triple, min_edge: float) -> tuple[str, float]:
    """
    Most likely outcome, or SKIP when the triple is too flat.

    Edge is max minus min probability.
    """
    edge = max(probs) - min(probs)
    if edge < min_edge:
        return PICK_SKIP, edge
    best = max(range(3), key=lambda i: probs[i])
    return OUTCOMES[best], edge


def expected_values(
    probs: Triple,
    odds_home: Optional[float],
    odds_draw: Optional[float],
    odds_away: Optional[float],
) -> Optional[dict]:
    """prob * odds - 1 per outcome, when odds are known."""
    odds = (odds_home, odds_draw, odds_away)
    if None in odds:
        return None
    return {
        outcome: round(p * o - 1, 4)
        for outcome, p, o in zip(OUTCOMES, probs, odds)
    }
