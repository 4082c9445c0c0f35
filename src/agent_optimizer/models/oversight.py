"""Human oversight models.

Decision Request Lifecycle:
    pending → approved | rejected | expired
    pending → escalated → pending (re-entrant, audited)

A single rejection is terminal. Reaching the required approval count with no
rejection is terminal-approved. Reaching expiry while pending is terminal-expired.

Content is a tagged variant keyed by `kind`, matching the request type.
"""

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field, model_validator

from .analysis import Severity
from .metrics import _now_iso
from .recommendations import OptimizationRecommendation  # noqa: TC001
from .thresholds import RiskTier, ThresholdAdjustment, ThresholdChangeRequest


class DecisionType(StrEnum):
    THRESHOLD_CHANGE = "threshold_change"
    OPTIMIZATION_APPROVAL = "optimization_approval"
    EMERGENCY_ACTION = "emergency_action"


class DecisionPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class DecisionStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    ESCALATED = "escalated"

    @property
    def is_terminal(self) -> bool:
        return self in (DecisionStatus.APPROVED, DecisionStatus.REJECTED, DecisionStatus.EXPIRED)


class Verdict(StrEnum):
    APPROVE = "approve"
    REJECT = "reject"
    MODIFY = "modify"  # Approve with modified adjustments


class OversightRole(StrEnum):
    ADMIN = "admin"
    SENIOR_ENGINEER = "senior_engineer"
    TEAM_LEAD = "team_lead"
    REVIEWER = "reviewer"


class PermissionAction(StrEnum):
    APPROVE_THRESHOLDS = "approve_thresholds"
    APPROVE_OPTIMIZATIONS = "approve_optimizations"
    EMERGENCY_ROLLBACK = "emergency_rollback"
    VIEW_ANALYTICS = "view_analytics"


class PermissionScope(StrEnum):
    ALL = "all"
    LOW_RISK = "low_risk"
    MEDIUM_RISK = "medium_risk"
    HIGH_RISK = "high_risk"


# Highest risk tier each scope may decide on
SCOPE_CEILING: dict[PermissionScope, RiskTier] = {
    PermissionScope.LOW_RISK: RiskTier.LOW,
    PermissionScope.MEDIUM_RISK: RiskTier.MEDIUM,
    PermissionScope.HIGH_RISK: RiskTier.HIGH,
    PermissionScope.ALL: RiskTier.CRITICAL,
}

_TIER_ORDER = [RiskTier.LOW, RiskTier.MEDIUM, RiskTier.HIGH, RiskTier.CRITICAL]


# =============================================================================
# USERS
# =============================================================================


class OversightPermission(BaseModel):
    action: PermissionAction
    scope: PermissionScope = PermissionScope.ALL

    def covers(self, action: PermissionAction, tier: RiskTier) -> bool:
        if action != self.action:
            return False
        ceiling = SCOPE_CEILING[self.scope]
        return _TIER_ORDER.index(tier) <= _TIER_ORDER.index(ceiling)


class NotificationPreferences(BaseModel):
    email: bool = True
    chat: bool = False
    urgent_only: bool = False


class OversightUser(BaseModel):
    user_id: str
    name: str
    role: OversightRole
    permissions: list[OversightPermission] = Field(default_factory=list)
    email: str | None = None
    notification_preferences: NotificationPreferences = Field(
        default_factory=NotificationPreferences
    )

    def can(self, action: PermissionAction, tier: RiskTier) -> bool:
        return any(p.covers(action, tier) for p in self.permissions)


# =============================================================================
# DECISION CONTENT (tagged variants)
# =============================================================================


class EmergencyContext(BaseModel):
    trigger_event: str
    severity: Severity = Severity.CRITICAL
    affected_systems: list[str] = Field(default_factory=list)
    immediate_actions_taken: list[str] = Field(default_factory=list)
    proposed_actions: list[str] = Field(default_factory=list)
    time_constraint_minutes: int = Field(default=30, gt=0)


class ThresholdChangeContent(BaseModel):
    kind: Literal["threshold_change"] = "threshold_change"
    request: ThresholdChangeRequest


class OptimizationApprovalContent(BaseModel):
    kind: Literal["optimization_approval"] = "optimization_approval"
    recommendation: OptimizationRecommendation


class EmergencyActionContent(BaseModel):
    kind: Literal["emergency_action"] = "emergency_action"
    emergency: EmergencyContext


DecisionContent = Annotated[
    ThresholdChangeContent | OptimizationApprovalContent | EmergencyActionContent,
    Field(discriminator="kind"),
]


# =============================================================================
# CONTEXT & DECISIONS
# =============================================================================


class ContextRecommendation(BaseModel):
    """Heuristic suggestion shown to reviewers alongside a request."""

    verdict: Verdict
    confidence: float = Field(ge=0, le=100)
    reasoning: str


class OversightContext(BaseModel):
    system_health: float = Field(default=100.0, ge=0, le=100)
    active_alerts: list[str] = Field(default_factory=list)
    similar_decision_success_rate: float | None = Field(
        default=None, description="Approval rate of past requests of the same type"
    )
    predicted_outcomes: list[str] = Field(default_factory=list)
    recommendation: ContextRecommendation


class HumanDecision(BaseModel):
    user_id: str
    verdict: Verdict
    reasoning: str = ""
    confidence: float = Field(default=100.0, ge=0, le=100)
    modified_adjustments: list[ThresholdAdjustment] | None = None
    decided_at: str = Field(default_factory=_now_iso)

    @model_validator(mode="after")
    def _modify_carries_adjustments(self) -> "HumanDecision":
        if self.verdict == Verdict.MODIFY and not self.modified_adjustments:
            msg = "A 'modify' decision must include modified_adjustments"
            raise ValueError(msg)
        return self


class StatusTransition(BaseModel):
    from_status: DecisionStatus
    to_status: DecisionStatus
    at: str = Field(default_factory=_now_iso)
    reason: str = ""


class DecisionRequest(BaseModel):
    request_id: str
    type: DecisionType
    created_at: str = Field(default_factory=_now_iso)
    expires_at: str
    priority: DecisionPriority
    risk_tier: RiskTier = RiskTier.LOW
    content: DecisionContent
    context: OversightContext
    required_approvals: int = Field(ge=1)
    received_approvals: list[HumanDecision] = Field(default_factory=list)
    status: DecisionStatus = DecisionStatus.PENDING
    final_decision: Verdict | None = None
    resolved_at: str | None = None
    transitions: list[StatusTransition] = Field(default_factory=list)

    @model_validator(mode="after")
    def _content_matches_type(self) -> "DecisionRequest":
        if self.content.kind != self.type.value:
            msg = f"Content kind '{self.content.kind}' does not match type '{self.type}'"
            raise ValueError(msg)
        return self

    @property
    def approval_count(self) -> int:
        return sum(1 for d in self.received_approvals if d.verdict != Verdict.REJECT)

    @property
    def has_rejection(self) -> bool:
        return any(d.verdict == Verdict.REJECT for d in self.received_approvals)

    @property
    def was_escalated(self) -> bool:
        return any(t.to_status == DecisionStatus.ESCALATED for t in self.transitions)

    def decided_by(self, user_id: str) -> bool:
        return any(d.user_id == user_id for d in self.received_approvals)


class OversightMetrics(BaseModel):
    total_decisions_today: int = 0
    pending_decisions: int = 0
    approval_rate: float = Field(default=0.0, description="Percent of resolved requests approved")
    average_decision_minutes: float = 0.0
    expired_count: int = 0
    escalated_count: int = 0
    decisions_by_type: dict[str, int] = Field(default_factory=dict)
    decisions_by_user: dict[str, int] = Field(default_factory=dict)
