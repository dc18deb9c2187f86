"""Prediction storage and batch prediction."""

from fgpredict.predictions.service import PredictionService, run_batch_predictions

__all__ = ["PredictionService", "run_batch_predictions"]
