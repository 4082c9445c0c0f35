"""Alert threshold and threshold-change models.

Risk Tiers (by resulting change percent):
- LOW: <= 5%
- MEDIUM: <= 15%
- HIGH: <= 25%
- CRITICAL: otherwise

A ThresholdChangeRequest records the full threshold set before and after it
was applied, so a rollback restores exactly what that request replaced.
"""

from enum import StrEnum

from pydantic import BaseModel, Field

from .analysis import PerformanceTrend  # noqa: TC001
from .metrics import _now_iso


class RiskTier(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


RISK_WEIGHTS: dict[RiskTier, int] = {
    RiskTier.LOW: 1,
    RiskTier.MEDIUM: 3,
    RiskTier.HIGH: 7,
    RiskTier.CRITICAL: 10,
}

MAX_RISK_SCORE = 100


def risk_tier_for_change(change_percent: float) -> RiskTier:
    """Band an absolute change percent into a risk tier."""
    change = abs(change_percent)
    if change <= 5:
        return RiskTier.LOW
    if change <= 15:
        return RiskTier.MEDIUM
    if change <= 25:
        return RiskTier.HIGH
    return RiskTier.CRITICAL


class ApprovalStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    AUTO_APPLIED = "auto_applied"
    FAILED = "failed"


class AlertThresholds(BaseModel):
    """Named numeric alerting limits."""

    max_response_time_ms: float = Field(default=5000.0, gt=0, description="Slowest acceptable")
    min_success_rate_percent: float = Field(default=90.0, ge=0, le=100)
    max_error_rate_percent: float = Field(default=5.0, ge=0, le=100)
    max_memory_usage_mb: float = Field(default=1024.0, gt=0)
    max_cpu_usage_percent: float = Field(default=80.0, gt=0)
    min_system_health_score: float = Field(default=80.0, ge=0, le=100)
    max_validation_time_ms: float = Field(default=1000.0, gt=0)
    min_compatibility_score: float = Field(default=85.0, ge=0, le=100)

    def value_of(self, name: str) -> float:
        if name not in type(self).model_fields:
            msg = f"Unknown threshold '{name}'"
            raise KeyError(msg)
        return float(getattr(self, name))


class ThresholdAdjustment(BaseModel):
    """A proposed move of one threshold."""

    threshold_name: str
    current_value: float
    recommended_value: float
    change_percent: float = Field(description="Signed change relative to current_value")
    confidence_score: float = Field(ge=0, le=100)
    justification: str
    risk_assessment: RiskTier
    requires_approval: bool
    supporting_trends: list[PerformanceTrend] = Field(default_factory=list)


class EstimatedImpact(BaseModel):
    performance_change_percent: float = 0.0
    alert_frequency_change_percent: float = 0.0
    false_positive_reduction_percent: float = 0.0


class ThresholdRollbackPlan(BaseModel):
    auto_rollback_conditions: list[str] = Field(default_factory=list)
    manual_rollback_procedure: list[str] = Field(default_factory=list)
    rollback_window_hours: int = 24
    monitoring_metrics: list[str] = Field(default_factory=list)


class ThresholdChangeRequest(BaseModel):
    """A batch of adjustments that is applied or decided as one unit."""

    request_id: str
    created_at: str = Field(default_factory=_now_iso)
    adjustments: list[ThresholdAdjustment]
    total_risk_score: int = Field(ge=0, le=MAX_RISK_SCORE)
    estimated_impact: EstimatedImpact = Field(default_factory=EstimatedImpact)
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    rollback_plan: ThresholdRollbackPlan = Field(default_factory=ThresholdRollbackPlan)

    # Lifecycle bookkeeping
    approved_by: list[str] = Field(default_factory=list)
    decision_request_id: str | None = None
    applied_at: str | None = None
    previous_thresholds: AlertThresholds | None = None
    applied_thresholds: AlertThresholds | None = None
    rolled_back_at: str | None = None
    failure_reason: str | None = None

    @property
    def requires_approval(self) -> bool:
        return any(adj.requires_approval for adj in self.adjustments)

    @property
    def is_applied(self) -> bool:
        return self.applied_at is not None and self.rolled_back_at is None

    @property
    def risk_tier(self) -> RiskTier:
        """Highest tier among the adjustments."""
        if not self.adjustments:
            return RiskTier.LOW
        return max(
            (adj.risk_assessment for adj in self.adjustments),
            key=lambda tier: RISK_WEIGHTS[tier],
        )
