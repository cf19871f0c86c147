"""
Repository metrics and generated insights.

MetricsSnapshot is produced by the analytics layer for one repository at
one point in time. It is read-only here and never persisted.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class MetricsSnapshot:
    """Flattened repository metrics."""
    repo_name: str
    health_score: float
    commits_90d: int
    contributor_count: int
    docs_score: float
    test_count: int
    health_grade: str = ""
    loc: Optional[int] = None
    languages: dict[str, float] = field(default_factory=dict)  # top 3 only
    bus_factor: int = 0
    avg_pr_merge_hrs: float = 0.0
    open_issues: int = 0
    avg_issue_close_days: float = 0.0
    trend: str = "stable"  # increasing / stable / decreasing

    @property
    def primary_language(self) -> str:
        return next(iter(self.languages), "Unknown")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetricsSnapshot":
        """Create from the analytics layer's camelCase payload."""
        return cls(
            repo_name=data["repoName"],
            health_score=data["healthScore"],
            commits_90d=data["commits90d"],
            contributor_count=data["contributorCount"],
            docs_score=data["docsScore"],
            test_count=data["testCount"],
            health_grade=data.get("healthGrade", ""),
            loc=data.get("loc"),
            languages=dict(data.get("languages") or {}),
            bus_factor=data.get("busFactor", 0),
            avg_pr_merge_hrs=data.get("avgPRMergeHrs", 0.0),
            open_issues=data.get("openIssues", 0),
            avg_issue_close_days=data.get("avgIssueCloseDays", 0.0),
            trend=data.get("trend", "stable"),
        )


@dataclass
class Insights:
    """Summary plus prioritized action items for one snapshot."""
    summary: str
    top_actions: list[str]
    generated_at: str
    source: str = "model"  # model / fallback
