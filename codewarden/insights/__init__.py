"""
Insights module - Cached repository insights
"""

from codewarden.insights.cache_key import derive_key
from codewarden.insights.generator import (
    FallbackInsightModel,
    InsightModel,
    InsightService,
)

__all__ = [
    "derive_key",
    "FallbackInsightModel",
    "InsightModel",
    "InsightService",
]
