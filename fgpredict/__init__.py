"""fg-predict: football match outcome prediction pipeline."""

__version__ = "1.0.0"
