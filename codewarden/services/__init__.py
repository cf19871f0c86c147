"""
Services module - Infrastructure adapters

Contains:
- Quota stores (SQL, in-memory, unconfigured)
"""

from codewarden.services.store import (
    InMemoryQuotaStore,
    QuotaStore,
    SQLQuotaStore,
    UnconfiguredQuotaStore,
    create_quota_store,
)

__all__ = [
    "InMemoryQuotaStore",
    "QuotaStore",
    "SQLQuotaStore",
    "UnconfiguredQuotaStore",
    "create_quota_store",
]
