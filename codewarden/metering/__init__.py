"""
Metering module - Usage tracking and free-tier enforcement
"""

from codewarden.metering.ledger import UsageLedger, create_usage_ledger
from codewarden.metering.limits import (
    DEFAULT_FREE_TIER_LIMITS,
    LimitPolicy,
    LimitTable,
    load_limit_table,
)
from codewarden.metering.reset import next_window_start, should_reset

__all__ = [
    "UsageLedger",
    "create_usage_ledger",
    "DEFAULT_FREE_TIER_LIMITS",
    "LimitPolicy",
    "LimitTable",
    "load_limit_table",
    "next_window_start",
    "should_reset",
]
