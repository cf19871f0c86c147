"""
Usage ledger.

The single authority for "may this user do X" decisions and the only
writer of counter mutations.

Flow for a metered action:
1. Load (or lazily create) the user's record
2. Apply the monthly reset if the window has lapsed
3. Compare the count against the limit policy
4. Only if allowed, apply an atomic increment in the store

No in-process lock is held between steps 3 and 4. Under concurrency the
default (soft) mode may admit one extra use per racing caller; strict mode
collapses 3 and 4 into a single conditional store update.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar, Union

from codewarden.core.config import Settings, get_settings, load_yaml_config
from codewarden.core.errors import StoreUnavailableError
from codewarden.core.logging import get_logger
from codewarden.core.timeutil import Clock, now_utc
from codewarden.domain.usage import (
    DURABLE_FEATURES,
    Feature,
    IncrementResult,
    LimitCheck,
    UsageRecord,
    UsageSummary,
    zero_usage,
)
from codewarden.metering.limits import LimitPolicy, load_limit_table
from codewarden.metering.reset import next_window_start, should_reset
from codewarden.services.store import QuotaStore, create_quota_store, store_deadline

logger = get_logger("ledger")

T = TypeVar("T")

# Extra wait past the store deadline for an in-flight abort to surface
DEADLINE_GRACE = 1.0

FeatureLike = Union[Feature, str]


class UsageLedger:
    """Per-user usage lifecycle: initialization, reset, checks and mutation."""

    def __init__(
        self,
        store: QuotaStore,
        policy: Optional[LimitPolicy] = None,
        *,
        clock: Clock = now_utc,
        timeout: float = 5.0,
        strict: bool = False,
    ):
        self.store = store
        self.policy = policy or LimitPolicy()
        self.clock = clock
        self.timeout = timeout
        self.strict = strict

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        """
        Bound a store call by the timeout; a timeout is a store fault.

        The store sees the deadline and aborts its own uncommitted writes
        once it passes. The wait runs DEADLINE_GRACE longer so such an
        abort is reported from the store rather than raced.
        """
        try:
            with store_deadline(self.timeout):
                return await asyncio.wait_for(
                    awaitable, timeout=self.timeout + DEADLINE_GRACE
                )
        except asyncio.TimeoutError as e:
            logger.warning(f"Quota store {operation} timed out after {self.timeout}s")
            raise StoreUnavailableError(
                f"Quota store {operation} timed out",
                operation=operation,
                cause=e,
            ) from e

    def _default_record(self) -> UsageRecord:
        now = self.clock()
        return UsageRecord(
            is_pro=False,
            usage=zero_usage(),
            window_start=next_window_start(now),
            created_at=now,
        )

    async def get_or_initialize(self, user_id: str) -> UsageRecord:
        """Load the user's record, creating the zero-state default if absent."""
        record = await self._call("load", self.store.load(user_id))
        if record is not None:
            return record

        logger.info(f"Initializing usage record for {user_id}")
        return await self._call(
            "create_if_absent",
            self.store.create_if_absent(user_id, self._default_record()),
        )

    async def get_current(self, user_id: str) -> UsageRecord:
        """Like get_or_initialize, with the monthly reset applied and persisted."""
        record = await self.get_or_initialize(user_id)
        now = self.clock()
        if not should_reset(record.window_start, now):
            return record

        window_start = next_window_start(now)
        await self._call(
            "reset_window",
            self.store.reset_window(user_id, window_start, keep=DURABLE_FEATURES),
        )
        logger.info(
            f"Reset usage window for {user_id}: "
            f"{record.window_start.date()} -> {window_start.date()}"
        )

        # Another caller may have reset and counted in between; return what is stored.
        reloaded = await self._call("load", self.store.load(user_id))
        if reloaded is not None:
            return reloaded
        usage = {
            feature: (count if feature in DURABLE_FEATURES else 0)
            for feature, count in record.usage.items()
        }
        return UsageRecord(
            is_pro=record.is_pro,
            usage=usage,
            window_start=window_start,
            created_at=record.created_at,
        )

    async def check_limit(self, user_id: str, feature: FeatureLike) -> LimitCheck:
        """Whether the user may use feature once more."""
        feature = Feature.parse(feature)
        record = await self.get_current(user_id)
        current = record.count(feature)

        if record.is_pro:
            return LimitCheck(allowed=True, current=current, limit=None, is_pro=True)

        limit = self.policy.ceiling(False, feature)
        return LimitCheck(
            allowed=current < limit,
            current=current,
            limit=limit,
            is_pro=False,
        )

    async def try_increment(self, user_id: str, feature: FeatureLike) -> IncrementResult:
        """
        Record one use of feature if the user is within their limit.

        A denial leaves the stored record untouched.
        """
        feature = Feature.parse(feature)
        check = await self.check_limit(user_id, feature)

        if not check.allowed:
            logger.info(
                f"Limit reached for {user_id}: {feature.value} "
                f"{check.current}/{check.limit}"
            )
            return IncrementResult(
                success=False,
                current=check.current,
                limit=check.limit,
                feature=feature,
            )

        if self.strict and not check.is_pro:
            count = await self._call(
                "conditional_increment",
                self.store.conditional_increment(user_id, feature, check.limit),
            )
            if count is None:
                logger.info(f"Conditional increment rejected for {user_id}: {feature.value}")
                return IncrementResult(
                    success=False,
                    current=check.limit,
                    limit=check.limit,
                    feature=feature,
                )
            return IncrementResult(success=True, current=count, limit=check.limit, feature=feature)

        await self._call("atomic_increment", self.store.atomic_increment(user_id, feature))
        logger.debug(f"Incremented {feature.value} for {user_id} to {check.current + 1}")
        return IncrementResult(
            success=True,
            current=check.current + 1,
            limit=check.limit,
            feature=feature,
        )

    async def decrement(self, user_id: str, feature: FeatureLike) -> None:
        """Release one unit of feature. Never checks limits; clamps at zero."""
        feature = Feature.parse(feature)
        await self._call("atomic_decrement", self.store.atomic_decrement(user_id, feature))
        logger.debug(f"Decremented {feature.value} for {user_id}")

    async def set_tier(self, user_id: str, is_pro: bool) -> None:
        """Flip the user's tier. Counters and window are left as they are."""
        await self.get_or_initialize(user_id)
        await self._call("set_tier", self.store.set_tier(user_id, is_pro))
        logger.info(f"Set tier for {user_id}: {'pro' if is_pro else 'free'}")

    async def remaining_for(self, user_id: str) -> UsageSummary:
        """Per-feature remaining uses; None means unlimited."""
        record = await self.get_current(user_id)
        limits = self.policy.table.as_dict()

        if record.is_pro:
            remaining = {feature: None for feature in Feature}
        else:
            remaining = {
                feature: max(0, limits[feature] - record.count(feature))
                for feature in Feature
            }

        return UsageSummary(
            is_pro=record.is_pro,
            usage={feature: record.count(feature) for feature in Feature},
            limits=limits,
            remaining=remaining,
            window_start=record.window_start,
        )


def create_usage_ledger(
    settings: Optional[Settings] = None,
    store: Optional[QuotaStore] = None,
    config: Optional[dict] = None,
) -> UsageLedger:
    """
    Build a ledger from settings and the YAML business rules.

    A missing config.yaml means the default free-tier limits.
    """
    settings = settings or get_settings()
    if config is None:
        try:
            config = load_yaml_config()
        except FileNotFoundError:
            logger.info("No config.yaml found, using default free-tier limits")
            config = {}

    return UsageLedger(
        store or create_quota_store(settings),
        LimitPolicy(load_limit_table(config)),
        timeout=settings.store_timeout,
        strict=settings.strict_limits,
    )
