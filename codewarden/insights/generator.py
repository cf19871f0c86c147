"""
Insight generation for repository metrics.

Supports:
- A generative model behind the InsightModel interface (external)
- Deterministic rule-based fallback (no model calls)

Results are cached by derive_key(snapshot) so repeated analyses of an
unchanged repository reuse the earlier output.
"""

from abc import ABC, abstractmethod
from typing import Optional

from codewarden.core.cache import CacheManager, get_insight_cache
from codewarden.core.logging import get_logger
from codewarden.core.timeutil import format_timestamp, now_utc
from codewarden.domain.metrics import Insights, MetricsSnapshot
from codewarden.insights.cache_key import derive_key

logger = get_logger("insights")

MAX_ACTIONS = 5

GENERIC_ACTIONS = [
    "Review and update dependencies regularly",
    "Consider adding CI/CD pipeline improvements",
    "Document key architectural decisions",
    "Set up automated code quality checks",
    "Create onboarding guide for new contributors",
]


class InsightModel(ABC):
    """Abstract base class for insight generators."""

    @abstractmethod
    def generate(self, snapshot: MetricsSnapshot) -> Insights:
        """Produce a summary and prioritized actions for a snapshot."""
        pass


def _fmt(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class FallbackInsightModel(InsightModel):
    """Rule-based insights used when no model is available or it fails."""

    def generate(self, snapshot: MetricsSnapshot) -> Insights:
        actions: list[str] = []
        summary = [
            f"{snapshot.repo_name} is a {snapshot.primary_language} project with a "
            f"health score of {_fmt(snapshot.health_score)}/100 ({snapshot.health_grade})."
        ]

        # Activity
        if snapshot.commits_90d > 100:
            summary.append("The project shows high development activity.")
        elif snapshot.commits_90d > 30:
            summary.append("The project has moderate development activity.")
        else:
            summary.append("Development activity has been relatively low recently.")
            actions.append("Consider increasing commit frequency to maintain momentum")

        # Bus factor
        if snapshot.bus_factor <= 1:
            summary.append("Warning: Single contributor dependency detected.")
            actions.append("CRITICAL: Reduce bus factor by involving more contributors")
        elif snapshot.bus_factor <= 2:
            actions.append("Encourage more contributors to spread knowledge across the team")

        if snapshot.avg_pr_merge_hrs > 48:
            actions.append(
                f"Reduce PR merge time (currently {_fmt(snapshot.avg_pr_merge_hrs)}hrs, target <24hrs)"
            )

        if snapshot.avg_issue_close_days > 14:
            actions.append(
                f"Improve issue response time (currently {_fmt(snapshot.avg_issue_close_days)} days avg)"
            )

        if snapshot.docs_score < 50:
            actions.append("Add missing documentation (CONTRIBUTING.md, SECURITY.md)")

        if snapshot.test_count == 0:
            actions.append("Add test coverage - no test files detected")
        elif snapshot.test_count < 20:
            actions.append("Increase test coverage for better reliability")

        # Pad with generic actions
        for action in GENERIC_ACTIONS:
            if len(actions) >= MAX_ACTIONS:
                break
            if action not in actions:
                actions.append(action)

        return Insights(
            summary=" ".join(summary),
            top_actions=actions[:MAX_ACTIONS],
            generated_at=format_timestamp(now_utc()),
            source="fallback",
        )


class InsightService:
    """
    Cached insight lookup.

    A model failure is logged and answered by the fallback model.
    """

    def __init__(
        self,
        model: Optional[InsightModel] = None,
        cache: Optional[CacheManager] = None,
    ):
        self.fallback = FallbackInsightModel()
        self.model = model or self.fallback
        self.cache = cache or get_insight_cache()

    def get_insights(self, snapshot: MetricsSnapshot) -> Insights:
        key = derive_key(snapshot)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        try:
            insights = self.model.generate(snapshot)
        except Exception as e:
            logger.error(f"Insight model failed for {snapshot.repo_name}: {e}")
            insights = self.fallback.generate(snapshot)

        self.cache.set(key, insights)
        logger.info(f"Generated {insights.source} insights for {snapshot.repo_name} ({key})")
        return insights
