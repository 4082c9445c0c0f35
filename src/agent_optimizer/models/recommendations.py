"""Optimization recommendation and result models."""

from enum import StrEnum

from pydantic import BaseModel, Field

from .analysis import Severity
from .metrics import MetricsSnapshot, _now_iso
from .thresholds import RiskTier


class OptimizationType(StrEnum):
    THRESHOLD_ADJUSTMENT = "threshold_adjustment"
    PERFORMANCE_TUNING = "performance_tuning"
    RESOURCE_OPTIMIZATION = "resource_optimization"
    LOAD_BALANCING = "load_balancing"


class ActionKind(StrEnum):
    THRESHOLD_UPDATE = "threshold_update"
    CONFIG_CHANGE = "config_change"
    RESOURCE_SCALING = "resource_scaling"
    CACHE_ADJUSTMENT = "cache_adjustment"


class OptimizationStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class Comparison(StrEnum):
    ABOVE = "above"
    BELOW = "below"


class OptimizationAction(BaseModel):
    """One concrete, reversible change an optimization performs."""

    action_id: str
    kind: ActionKind
    target: str = Field(description="'system' or an agent id")
    parameters: dict[str, float | int | str | bool] = Field(default_factory=dict)
    description: str = ""
    reversible: bool = True


class RollbackTrigger(BaseModel):
    """Metric condition that rolls an active optimization back automatically.

    `metric` is a dotted path into a snapshot, e.g. `system.overall_success_rate`.
    """

    metric: str
    comparison: Comparison
    threshold: float
    description: str = ""

    def is_triggered(self, snapshot: MetricsSnapshot) -> bool:
        value = read_metric(snapshot, self.metric)
        if value is None:
            return False
        if self.comparison == Comparison.ABOVE:
            return value > self.threshold
        return value < self.threshold


_METRIC_SECTIONS = {
    "system": "system_metrics",
    "validation": "validation_metrics",
}


def read_metric(snapshot: MetricsSnapshot, path: str) -> float | None:
    """Resolve `system.<field>`, `validation.<field>` or `agent.<id>.<field>`."""
    parts = path.split(".")
    if parts[0] == "agent" and len(parts) == 3:
        agent = snapshot.agent_metrics.get(parts[1])
        if agent is None:
            return None
        value = getattr(agent, parts[2], None)
    elif len(parts) == 2 and parts[0] in _METRIC_SECTIONS:
        section = getattr(snapshot, _METRIC_SECTIONS[parts[0]])
        value = getattr(section, parts[1], None)
    else:
        return None
    return float(value) if isinstance(value, int | float) else None


class SafetyAssessment(BaseModel):
    risk_level: RiskTier
    potential_impacts: list[str] = Field(default_factory=list)
    mitigation_strategies: list[str] = Field(default_factory=list)
    monitoring_required: list[str] = Field(default_factory=list)
    rollback_triggers: list[RollbackTrigger] = Field(default_factory=list)


class ExpectedImpact(BaseModel):
    performance_improvement_percent: float = 0.0
    reliability_improvement_percent: float = 0.0
    resource_savings_percent: float = 0.0


class OptimizationRecommendation(BaseModel):
    """A ranked, reversible change proposed by the Optimization Engine."""

    recommendation_id: str
    type: OptimizationType
    priority: Severity
    title: str
    description: str
    rationale: str
    expected_impact: ExpectedImpact = Field(default_factory=ExpectedImpact)
    implementation: list[OptimizationAction] = Field(default_factory=list)
    rollback_plan: list[OptimizationAction] = Field(default_factory=list)
    safety_assessment: SafetyAssessment
    estimated_duration_minutes: int = Field(default=5, ge=0)
    requires_human_approval: bool = False
    created_at: str = Field(default_factory=_now_iso)
    source: str = Field(description="What produced it, e.g. 'bottleneck:memory:planner'")
    threshold_request_id: str | None = Field(
        default=None, description="Set for threshold_adjustment recommendations"
    )


class OptimizationResult(BaseModel):
    """Execution record of one applied recommendation."""

    optimization_id: str
    recommendation: OptimizationRecommendation
    status: OptimizationStatus = OptimizationStatus.PENDING
    started_at: str = Field(default_factory=_now_iso)
    completed_at: str | None = None
    rolled_back_at: str | None = None
    applied_actions: list[str] = Field(default_factory=list)
    error: str | None = None
    rollback_reason: str | None = None


class SafetyCheck(BaseModel):
    """Structured outcome of a safety policy check."""

    passed: bool
    reason: str | None = None

    @classmethod
    def ok(cls) -> "SafetyCheck":
        return cls(passed=True)

    @classmethod
    def blocked(cls, reason: str) -> "SafetyCheck":
        return cls(passed=False, reason=reason)


class RecommendationOutcome(BaseModel):
    """What happened when a caller asked to apply one recommendation.

    Exactly one of `result` (executed, possibly failed) or `decision_request_id`
    (routed to human oversight) is set when `safety.passed` is true.
    """

    recommendation_id: str
    safety: SafetyCheck
    result: OptimizationResult | None = None
    decision_request_id: str | None = None
    threshold_request_id: str | None = None
