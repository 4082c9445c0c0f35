"""Analysis result models.

Everything here is produced fresh by an analysis call and never mutated:
trends, bottlenecks, error patterns, predicted issues and the SystemAnalysis
that bundles them for one cycle.

Prediction Horizon:
- likely_occurrence is strictly after predicted_at
- and no more than PREDICTION_HORIZON_HOURS later
"""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator
from whenever import Instant

from .metrics import MetricsSnapshot, _now_iso

PREDICTION_HORIZON_HOURS = 48


class TrendDirection(StrEnum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class Severity(StrEnum):
    """Shared four-level scale for severity, urgency, priority and impact."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Sort rank, critical first
SEVERITY_RANK: dict[Severity, int] = {
    Severity.CRITICAL: 1,
    Severity.HIGH: 2,
    Severity.MEDIUM: 3,
    Severity.LOW: 4,
}


class BottleneckType(StrEnum):
    CPU = "cpu"
    MEMORY = "memory"
    IO = "io"
    NETWORK = "network"
    VALIDATION = "validation"


class IssueType(StrEnum):
    PERFORMANCE_DEGRADATION = "performance_degradation"
    SYSTEM_OVERLOAD = "system_overload"
    VALIDATION_FAILURE = "validation_failure"


# =============================================================================
# TRENDS
# =============================================================================


class TrendDataPoint(BaseModel):
    """One observation in a trend series."""

    model_config = ConfigDict(frozen=True)

    timestamp: str
    value: float
    anomaly_detected: bool = False


class PerformanceTrend(BaseModel):
    """Regression-derived direction, magnitude and confidence for one metric."""

    model_config = ConfigDict(frozen=True)

    metric_name: str = Field(description="e.g. system_success_rate, planner_response_time")
    agent_id: str | None = Field(default=None, description="Set for per-agent trends")
    direction: TrendDirection
    change_percent: float = Field(ge=0, description="Normalised change over the window")
    confidence_score: float = Field(ge=0, le=100, description="R² scaled to 0-100")
    time_window: str = Field(description="Window label, e.g. '24h'")
    data_points: list[TrendDataPoint] = Field(default_factory=list)

    @property
    def signed_change_percent(self) -> float:
        """Change percent carrying the direction as its sign."""
        if self.direction == TrendDirection.UP:
            return self.change_percent
        if self.direction == TrendDirection.DOWN:
            return -self.change_percent
        return 0.0


# =============================================================================
# BOTTLENECKS & ERROR PATTERNS
# =============================================================================


class Bottleneck(BaseModel):
    """A threshold violation in the latest snapshot."""

    bottleneck_id: str
    type: BottleneckType
    affected_target: str = Field(description="'system' or an agent id")
    severity: Severity
    description: str
    impact_assessment: str
    resolution_urgency: Severity
    estimated_improvement: float = Field(ge=0, description="Expected gain in percent")


class ErrorPattern(BaseModel):
    """Recurring errors aggregated over the recent snapshots."""

    pattern_id: str
    error_type: str
    frequency: int = Field(ge=0)
    affected_targets: list[str] = Field(default_factory=list)
    common_conditions: list[str] = Field(default_factory=list)
    potential_causes: list[str] = Field(default_factory=list)
    suggested_fixes: list[str] = Field(default_factory=list)
    business_impact: Severity


# =============================================================================
# PREDICTIONS
# =============================================================================


class PredictedIssue(BaseModel):
    """A near-future issue forecast from simplified trend heuristics."""

    issue_id: str
    predicted_at: str
    likely_occurrence: str
    confidence_percent: float = Field(ge=0, le=100)
    issue_type: IssueType
    affected_components: list[str] = Field(default_factory=list)
    preventive_actions: list[str] = Field(default_factory=list)
    monitoring_requirements: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _within_horizon(self) -> "PredictedIssue":
        gap = Instant.parse_iso(self.likely_occurrence) - Instant.parse_iso(self.predicted_at)
        hours = gap.total("hours")
        if hours <= 0 or hours > PREDICTION_HORIZON_HOURS:
            msg = (
                f"likely_occurrence must fall within (0, {PREDICTION_HORIZON_HOURS}h] "
                f"of predicted_at, got {hours:.2f}h"
            )
            raise ValueError(msg)
        return self


# =============================================================================
# SYSTEM ANALYSIS
# =============================================================================


class SystemAnalysis(BaseModel):
    """Result of one analysis cycle."""

    analyzed_at: str = Field(default_factory=_now_iso)
    current_state: MetricsSnapshot | None = None
    trends: list[PerformanceTrend] = Field(default_factory=list)
    bottlenecks: list[Bottleneck] = Field(default_factory=list)
    error_patterns: list[ErrorPattern] = Field(default_factory=list)
    predicted_issues: list[PredictedIssue] = Field(default_factory=list)
    overall_health_assessment: str = ""
    optimization_opportunities: list[str] = Field(default_factory=list)
