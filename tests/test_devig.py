"""
Tests for de-vig methods.

Invalid odds raise InvalidOddsError instead of producing a uniform triple.
"""

import pytest

from fgpredict.ml.devig import (
    InvalidOddsError,
    devig_power,
    devig_proportional,
    devig_shin,
    get_devig_function,
    implied_probabilities,
    overround,
)


class TestDevigProportional:
    """Test baseline de-vig method."""

    def test_fair_odds_unchanged(self):
        """Fair odds (sum to 1) should be unchanged."""
        result = devig_proportional(2.0, 4.0, 4.0)
        assert abs(sum(result) - 1.0) < 1e-10
        assert abs(result[0] - 0.5) < 1e-10
        assert abs(result[1] - 0.25) < 1e-10
        assert abs(result[2] - 0.25) < 1e-10

    def test_overround_scenario(self):
        """2.00 / 3.50 / 4.00 carries a margin; normalized triple sums to 1."""
        raw = implied_probabilities(2.00, 3.50, 4.00)
        assert sum(raw) > 1.0

        result = devig_proportional(2.00, 3.50, 4.00)
        assert sum(result) == pytest.approx(1.0, abs=1e-12)
        # 0.5 / 1.0357..., 0.2857 / 1.0357..., 0.25 / 1.0357...
        assert result[0] == pytest.approx(0.4828, abs=1e-4)
        assert result[1] == pytest.approx(0.2759, abs=1e-4)
        assert result[2] == pytest.approx(0.2414, abs=1e-4)

    def test_typical_market_odds(self):
        """Typical market odds with ~5% overround."""
        result = devig_proportional(2.10, 3.50, 3.40)
        assert abs(sum(result) - 1.0) < 1e-10
        assert 0.4 < result[0] < 0.5  # home
        assert 0.25 < result[1] < 0.30  # draw
        assert 0.25 < result[2] < 0.30  # away

    def test_invalid_odds_raise(self):
        """Odds at or below 1.0 are not a market."""
        with pytest.raises(InvalidOddsError):
            devig_proportional(0.5, 1.0, 1.0)

    def test_missing_odds_raise(self):
        with pytest.raises(InvalidOddsError):
            devig_proportional(2.0, None, 3.0)

    def test_sums_to_one(self):
        """Result should always sum to 1."""
        test_cases = [
            (1.80, 3.60, 4.50),
            (2.50, 3.20, 2.90),
            (1.20, 6.00, 12.00),
        ]
        for odds in test_cases:
            result = devig_proportional(*odds)
            assert abs(sum(result) - 1.0) < 1e-10


class TestDevigPower:
    """Test power/multiplicative de-vig method."""

    def test_fair_odds_unchanged(self):
        result = devig_power(2.0, 4.0, 4.0)
        assert abs(sum(result) - 1.0) < 1e-10
        assert abs(result[0] - 0.5) < 1e-10

    def test_sums_to_one(self):
        for odds in [(1.80, 3.60, 4.50), (2.50, 3.20, 2.90), (1.20, 6.00, 12.00)]:
            assert abs(sum(devig_power(*odds)) - 1.0) < 1e-10

    def test_power_differs_from_proportional_on_high_overround(self):
        """Power method weighs the margin more heavily on longshots."""
        odds = (1.50, 4.00, 6.00)
        prop_result = devig_proportional(*odds)
        power_result = devig_power(*odds)

        assert abs(sum(prop_result) - 1.0) < 1e-10
        assert abs(sum(power_result) - 1.0) < 1e-10

        diff = sum(abs(p - q) for p, q in zip(prop_result, power_result))
        assert diff > 0.001
        # Favourite gains probability relative to proportional
        assert power_result[0] > prop_result[0]

    def test_invalid_odds_raise(self):
        with pytest.raises(InvalidOddsError):
            devig_power(0.5, 1.0, 1.0)


class TestDevigShin:
    def test_sums_to_one(self):
        for odds in [(1.80, 3.60, 4.50), (2.00, 3.50, 4.00), (1.20, 6.00, 12.00)]:
            assert sum(devig_shin(*odds)) == pytest.approx(1.0, abs=1e-9)

    def test_keeps_favourite_ordering(self):
        home, draw, away = devig_shin(1.50, 4.00, 6.00)
        assert home > draw > away


class TestOverround:
    def test_margin(self):
        assert overround(2.00, 3.50, 4.00) == pytest.approx(0.0357, abs=1e-4)

    def test_fair_market(self):
        assert overround(2.0, 4.0, 4.0) == pytest.approx(0.0, abs=1e-12)


class TestGetDevigFunction:
    """Test function selector."""

    def test_default_is_proportional(self):
        assert get_devig_function() == devig_proportional

    def test_power_selection(self):
        assert get_devig_function("power") == devig_power

    def test_shin_selection(self):
        assert get_devig_function("shin") == devig_shin

    def test_unknown_method_raises(self):
        with pytest.raises(ValueError, match="Unknown de-vig method"):
            get_devig_function("unknown")
