"""
Pattern tables module.

Historical outcome frequencies per discrete feature code, built in full or
incrementally behind a persisted watermark.
"""

from fgpredict.patterns.builder import (
    BucketCounts,
    PatternAccumulator,
    PatternBuilder,
    PatternRunResult,
    WatermarkConflict,
    describe_bucket,
    get_bucket,
    sample_confidence,
)
from fgpredict.patterns.features import FEATURES, get_feature, shape_code
from fgpredict.patterns.refresh_job import get_patterns_status, list_buckets, refresh_patterns

__all__ = [
    "BucketCounts",
    "PatternAccumulator",
    "PatternBuilder",
    "PatternRunResult",
    "WatermarkConflict",
    "describe_bucket",
    "get_bucket",
    "sample_confidence",
    "FEATURES",
    "get_feature",
    "shape_code",
    "get_patterns_status",
    "list_buckets",
    "refresh_patterns",
]
