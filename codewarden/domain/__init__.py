"""
Domain module - Business models

Contains the usage metering records and repository metrics models.
"""

from codewarden.domain.metrics import Insights, MetricsSnapshot
from codewarden.domain.usage import (
    DURABLE_FEATURES,
    Feature,
    IncrementResult,
    LimitCheck,
    UsageRecord,
    UsageSummary,
    zero_usage,
)

__all__ = [
    # Usage
    "DURABLE_FEATURES",
    "Feature",
    "IncrementResult",
    "LimitCheck",
    "UsageRecord",
    "UsageSummary",
    "zero_usage",
    # Metrics
    "Insights",
    "MetricsSnapshot",
]
