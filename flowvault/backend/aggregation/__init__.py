"""
aggregation/__init__.py

Public API for the aggregation sub-package.
"""

from .bucketer import aggregate_flows
from .models import BUCKET_SECONDS, AggregationKey, bucket_start, make_aggregation_key

__all__ = [
    "BUCKET_SECONDS",
    "AggregationKey",
    "aggregate_flows",
    "bucket_start",
    "make_aggregation_key",
]
