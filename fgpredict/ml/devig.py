"""
De-vig methods for removing bookmaker margin from 1X2 odds.

Three methods available:
- devig_proportional: normalize 1/odds. Default.
- devig_power: multiplicative method, solves sum((1/o_i)^k) = 1.
- devig_shin: Shin's insider-trading model.

Odds at or below 1.0 are not a market; every method raises InvalidOddsError
for them instead of returning a placeholder distribution.
"""

import math
from typing import Callable, Tuple

Triple = Tuple[float, float, float]


class InvalidOddsError(ValueError):
    """Decimal odds that cannot be converted to probabilities."""


def implied_probabilities(odds_home: float, odds_draw: float, odds_away: float) -> Triple:
    """Raw 1/odds for each outcome (sums to the overround, not to 1)."""
    odds = (odds_home, odds_draw, odds_away)
    for o in odds:
        if o is None or not math.isfinite(o) or o <= 1.0:
            raise InvalidOddsError(f"Decimal odds must be finite and > 1.0, got {odds}")
    return (1 / odds_home, 1 / odds_draw, 1 / odds_away)


def overround(odds_home: float, odds_draw: float, odds_away: float) -> float:
    """Bookmaker margin: sum of implied probabilities minus 1."""
    return sum(implied_probabilities(odds_home, odds_draw, odds_away)) - 1.0


def devig_proportional(
    odds_home: float, odds_draw: float, odds_away: float
) -> Triple:
    """
    Proportional/additive de-vig (default method).

    Simply normalizes 1/odds to sum to 1.

    Args:
        odds_home: Decimal odds for home win
        odds_draw: Decimal odds for draw
        odds_away: Decimal odds for away win

    Returns:
        Tuple of (prob_home, prob_draw, prob_away) summing to 1.0
    """
    implied = implied_probabilities(odds_home, odds_draw, odds_away)
    total = sum(implied)
    return (implied[0] / total, implied[1] / total, implied[2] / total)


def devig_power(
    odds_home: float, odds_draw: float, odds_away: float
) -> Triple:
    """
    Power method (multiplicative) de-vig.

    Solves for k such that sum((1/o_i)^k) = 1 using bisection.
    Assumes the margin is applied multiplicatively, which weighs it more
    heavily on longshots.
    """
    implied = implied_probabilities(odds_home, odds_draw, odds_away)
    total_implied = sum(implied)

    # Already fair odds (no margin)
    if abs(total_implied - 1.0) < 1e-9:
        return (implied[0] / total_implied, implied[1] / total_implied, implied[2] / total_implied)

    def f(k: float) -> float:
        return sum(p**k for p in implied) - 1.0

    # k > 1 if overround > 1 (typical), k < 1 if underround
    k_low, k_high = 0.1, 3.0

    # 50 iterations gives precision < 1e-15
    for _ in range(50):
        k_mid = (k_low + k_high) / 2
        if f(k_mid) > 0:
            k_low = k_mid
        else:
            k_high = k_mid

    k = (k_low + k_high) / 2
    true_probs = [p**k for p in implied]

    total = sum(true_probs)
    return (true_probs[0] / total, true_probs[1] / total, true_probs[2] / total)


def devig_shin(
    odds_home: float, odds_draw: float, odds_away: float,
    max_iter: int = 100, tol: float = 1e-10
) -> Triple:
    """
    Shin's method (Shin 1991, 1993) de-vig.

    Accounts for favourite-longshot bias by solving for z (the share of
    insider money). Each true probability is:
      p_i = (sqrt(z^2 + 4*(1-z)*(q_i^2)/q_total) - z) / (2*(1-z))
    where q_i = 1/odds_i and q_total = sum(q_i).

    Uses bisection to find z where sum(p_i) = 1.
    """
    q = implied_probabilities(odds_home, odds_draw, odds_away)
    q_total = sum(q)

    if abs(q_total - 1.0) < 1e-9:
        return (q[0] / q_total, q[1] / q_total, q[2] / q_total)

    def shin_probs(z):
        probs = []
        for qi in q:
            inner = max(z**2 + 4 * (1 - z) * (qi**2) / q_total, 0.0)
            pi = (inner**0.5 - z) / (2 * (1 - z))
            probs.append(max(pi, 1e-10))
        return probs

    z_lo, z_hi = 0.0, 0.5
    z = 0.0
    for _ in range(max_iter):
        z = (z_lo + z_hi) / 2
        s = sum(shin_probs(z))
        if abs(s - 1.0) < tol:
            break
        if s > 1.0:
            z_lo = z
        else:
            z_hi = z

    probs = shin_probs(z)
    total = sum(probs)
    return (probs[0] / total, probs[1] / total, probs[2] / total)


DEVIG_METHODS = {
    "proportional": devig_proportional,
    "power": devig_power,
    "shin": devig_shin,
}


def get_devig_function(method: str = "proportional") -> Callable[[float, float, float], Triple]:
    """
    Get the de-vig function by name.

    Args:
        method: "proportional" (default), "power", or "shin"

    Raises:
        ValueError: unknown method name
    """
    try:
        return DEVIG_METHODS[method]
    except KeyError:
        raise ValueError(
            f"Unknown de-vig method '{method}', expected one of {sorted(DEVIG_METHODS)}"
        ) from None
