"""
Prediction module.

Only the leaf de-vig helpers are re-exported here; matches and patterns
import them at package load. Import the predictor from
fgpredict.ml.predictor.
"""

from fgpredict.ml.devig import InvalidOddsError, get_devig_function

__all__ = ["InvalidOddsError", "get_devig_function"]
