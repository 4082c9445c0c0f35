"""Change events published by the optimizer.

Each event is a tagged model keyed by `kind`. Subscribers receive the
`OptimizerEvent` union and match on `kind`.
"""

from typing import Annotated, Literal

from pydantic import BaseModel, Field

from .metrics import _now_iso
from .oversight import DecisionStatus  # noqa: TC001
from .recommendations import OptimizationStatus  # noqa: TC001


class _Event(BaseModel):
    occurred_at: str = Field(default_factory=_now_iso)


class AnalysisCompleted(_Event):
    kind: Literal["analysis_completed"] = "analysis_completed"
    analyzed_at: str
    trend_count: int
    bottleneck_count: int
    predicted_issue_count: int


class ThresholdsApplied(_Event):
    kind: Literal["thresholds_applied"] = "thresholds_applied"
    request_id: str
    auto_applied: bool
    changed: dict[str, float] = Field(description="Threshold name → new value")


class ThresholdsRolledBack(_Event):
    kind: Literal["thresholds_rolled_back"] = "thresholds_rolled_back"
    request_id: str
    restored: dict[str, float] = Field(description="Threshold name → restored value")


class ThresholdRequestPending(_Event):
    kind: Literal["threshold_request_pending"] = "threshold_request_pending"
    request_id: str
    total_risk_score: int


class DecisionResolved(_Event):
    kind: Literal["decision_resolved"] = "decision_resolved"
    request_id: str
    status: DecisionStatus


class DecisionEscalated(_Event):
    kind: Literal["decision_escalated"] = "decision_escalated"
    request_id: str
    reason: str


class OptimizationStatusChanged(_Event):
    kind: Literal["optimization_status_changed"] = "optimization_status_changed"
    optimization_id: str
    status: OptimizationStatus
    reason: str | None = None


OptimizerEvent = Annotated[
    AnalysisCompleted
    | ThresholdsApplied
    | ThresholdsRolledBack
    | ThresholdRequestPending
    | DecisionResolved
    | DecisionEscalated
    | OptimizationStatusChanged,
    Field(discriminator="kind"),
]
