"""
Usage metering data models.

A UsageRecord is owned by the usage ledger and persisted through a quota
store. Limit denials are plain result values, not exceptions.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from codewarden.core.errors import InvalidFeatureError


class Feature(str, Enum):
    """Metered features. Values are the stored counter keys."""
    PROJECTS = "codePoliceProjects"
    PUSH_ANALYSES = "pushAnalyses"
    FIX_WITH_PR = "fixWithPr"

    @classmethod
    def parse(cls, value: Union["Feature", str]) -> "Feature":
        """Coerce a feature or its stored name; raise InvalidFeatureError otherwise."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidFeatureError(value) from None

    @property
    def label(self) -> str:
        return FEATURE_LABELS[self]


FEATURE_LABELS = {
    Feature.PROJECTS: "Code Police projects",
    Feature.PUSH_ANALYSES: "push analyses",
    Feature.FIX_WITH_PR: "fix-with-PR runs",
}

# Counts standing resources, so it survives the monthly reset.
DURABLE_FEATURES = frozenset({Feature.PROJECTS})


def zero_usage() -> dict[Feature, int]:
    return {feature: 0 for feature in Feature}


@dataclass
class UsageRecord:
    """
    Per-user usage state.

    window_start is the first instant of the current monthly accounting
    window (UTC). created_at is set once and never changes.
    """
    is_pro: bool
    usage: dict[Feature, int]
    window_start: datetime
    created_at: datetime

    def count(self, feature: Feature) -> int:
        return self.usage.get(feature, 0)


@dataclass(frozen=True)
class LimitCheck:
    """Outcome of a limit check. limit=None means unbounded (pro)."""
    allowed: bool
    current: int
    limit: Optional[int]
    is_pro: bool


@dataclass(frozen=True)
class IncrementResult:
    """Outcome of a metered action. success=False is a normal denial."""
    success: bool
    current: int
    limit: Optional[int]
    feature: Optional[Feature] = None

    @property
    def message(self) -> str:
        """User-facing message for this outcome."""
        label = self.feature.label if self.feature else "this feature"
        if self.success:
            return f"Recorded usage of {label}."
        return (
            f"Free plan limit reached for {label} ({self.current}/{self.limit}). "
            "Upgrade to Pro or wait for the monthly reset."
        )


@dataclass
class UsageSummary:
    """Read-only usage view for display. None in remaining means unlimited."""
    is_pro: bool
    usage: dict[Feature, int]
    limits: dict[Feature, int]
    remaining: dict[Feature, Optional[int]]
    window_start: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "isPro": self.is_pro,
            "usage": {f.value: n for f, n in self.usage.items()},
            "limits": {f.value: n for f, n in self.limits.items()},
            "remaining": {
                f.value: ("unlimited" if n is None else n)
                for f, n in self.remaining.items()
            },
            "usageResetAt": self.window_start.isoformat(),
        }
