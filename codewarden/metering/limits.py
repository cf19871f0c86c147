"""
Free-tier limit table and policy.

The table is built once at startup (defaults, optionally overridden by
the `metering.free_tier_limits` section of config.yaml) and passed into
LimitPolicy. Pro users are unbounded.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping, Optional

from codewarden.core.errors import ConfigurationError, InvalidFeatureError
from codewarden.domain.usage import Feature

DEFAULT_FREE_TIER_LIMITS = {
    Feature.PROJECTS: 1,
    Feature.PUSH_ANALYSES: 2,
    Feature.FIX_WITH_PR: 2,
}


@dataclass(frozen=True)
class LimitTable:
    """Immutable feature -> free-tier ceiling mapping."""
    free_tier: Mapping[Feature, int]

    def __post_init__(self):
        missing = set(Feature) - set(self.free_tier)
        if missing:
            names = sorted(f.value for f in missing)
            raise ConfigurationError(f"Missing free-tier limits for: {names}")
        for feature, ceiling in self.free_tier.items():
            if not isinstance(ceiling, int) or isinstance(ceiling, bool) or ceiling < 0:
                raise ConfigurationError(
                    f"Free-tier limit for {feature.value} must be a non-negative integer"
                )
        object.__setattr__(self, "free_tier", MappingProxyType(dict(self.free_tier)))

    @classmethod
    def default(cls) -> "LimitTable":
        return cls(free_tier=DEFAULT_FREE_TIER_LIMITS)

    def as_dict(self) -> dict[Feature, int]:
        return dict(self.free_tier)


def load_limit_table(config: Optional[dict[str, Any]] = None) -> LimitTable:
    """
    Build the limit table from the YAML business-rules config.

    Features not listed keep their default ceiling.

    Raises:
        ConfigurationError: On unknown features or invalid ceilings
    """
    if not config:
        return LimitTable.default()

    metering = config.get("metering") or {}
    if not isinstance(metering, dict):
        raise ConfigurationError("'metering' must be a dictionary")

    overrides = metering.get("free_tier_limits") or {}
    if not isinstance(overrides, dict):
        raise ConfigurationError("'metering.free_tier_limits' must be a dictionary")

    limits = dict(DEFAULT_FREE_TIER_LIMITS)
    for name, ceiling in overrides.items():
        try:
            feature = Feature.parse(name)
        except InvalidFeatureError:
            valid = [f.value for f in Feature]
            raise ConfigurationError(
                f"Unknown feature in free_tier_limits: {name!r}. Must be one of: {valid}"
            ) from None
        limits[feature] = ceiling

    return LimitTable(free_tier=limits)


class LimitPolicy:
    """Maps tier and feature to a ceiling. Stateless."""

    def __init__(self, table: Optional[LimitTable] = None):
        self.table = table or LimitTable.default()

    def ceiling(self, is_pro: bool, feature: Feature) -> Optional[int]:
        """Return the ceiling, or None when unbounded."""
        if is_pro:
            return None
        return self.table.free_tier[Feature.parse(feature)]

    def within(self, is_pro: bool, feature: Feature, count: int) -> bool:
        """Whether one more use is allowed at the given current count."""
        limit = self.ceiling(is_pro, feature)
        return limit is None or count < limit
