"""Pydantic models for the agent optimizer.

Model Families:
- Metrics: timestamped telemetry snapshots (input)
- Analysis: trends, bottlenecks, error patterns, predictions (derived, ephemeral)
- Thresholds: alert limits and risk-scored change requests
- Oversight: decision requests, reviewers, verdicts, analytics
- Recommendations: ranked optimizations and their execution records
- Events: tagged change notifications

Key Principle: "Heuristics decide, humans approve"
- Every confidence value comes from regression statistics or fixed rules
- Changes above the approval threshold wait for a human quorum
"""

from .analysis import (
    PREDICTION_HORIZON_HOURS,
    SEVERITY_RANK,
    Bottleneck,
    BottleneckType,
    ErrorPattern,
    IssueType,
    PerformanceTrend,
    PredictedIssue,
    Severity,
    SystemAnalysis,
    TrendDataPoint,
    TrendDirection,
)
from .config import (
    AnalysisSettings,
    OptimizerConfig,
    OversightSettings,
    SafetySettings,
    SchedulerSettings,
    ThresholdEngineSettings,
    ThrottleSettings,
)
from .events import (
    AnalysisCompleted,
    DecisionEscalated,
    DecisionResolved,
    OptimizationStatusChanged,
    OptimizerEvent,
    ThresholdRequestPending,
    ThresholdsApplied,
    ThresholdsRolledBack,
)
from .metrics import AgentMetrics, MetricsSnapshot, SystemMetrics, ValidationMetrics
from .oversight import (
    ContextRecommendation,
    DecisionContent,
    DecisionPriority,
    DecisionRequest,
    DecisionStatus,
    DecisionType,
    EmergencyActionContent,
    EmergencyContext,
    HumanDecision,
    NotificationPreferences,
    OptimizationApprovalContent,
    OversightContext,
    OversightMetrics,
    OversightPermission,
    OversightRole,
    OversightUser,
    PermissionAction,
    PermissionScope,
    StatusTransition,
    ThresholdChangeContent,
    Verdict,
)
from .recommendations import (
    ActionKind,
    Comparison,
    ExpectedImpact,
    OptimizationAction,
    OptimizationRecommendation,
    OptimizationResult,
    OptimizationStatus,
    OptimizationType,
    RecommendationOutcome,
    RollbackTrigger,
    SafetyAssessment,
    SafetyCheck,
    read_metric,
)
from .reports import GuardState, OptimizationReport, ServiceStatus
from .thresholds import (
    RISK_WEIGHTS,
    AlertThresholds,
    ApprovalStatus,
    EstimatedImpact,
    RiskTier,
    ThresholdAdjustment,
    ThresholdChangeRequest,
    ThresholdRollbackPlan,
    risk_tier_for_change,
)

__all__ = [
    # Metrics
    "AgentMetrics",
    "MetricsSnapshot",
    "SystemMetrics",
    "ValidationMetrics",
    # Analysis
    "PREDICTION_HORIZON_HOURS",
    "SEVERITY_RANK",
    "Bottleneck",
    "BottleneckType",
    "ErrorPattern",
    "IssueType",
    "PerformanceTrend",
    "PredictedIssue",
    "Severity",
    "SystemAnalysis",
    "TrendDataPoint",
    "TrendDirection",
    # Thresholds
    "RISK_WEIGHTS",
    "AlertThresholds",
    "ApprovalStatus",
    "EstimatedImpact",
    "RiskTier",
    "ThresholdAdjustment",
    "ThresholdChangeRequest",
    "ThresholdRollbackPlan",
    "risk_tier_for_change",
    # Oversight
    "ContextRecommendation",
    "DecisionContent",
    "DecisionPriority",
    "DecisionRequest",
    "DecisionStatus",
    "DecisionType",
    "EmergencyActionContent",
    "EmergencyContext",
    "HumanDecision",
    "NotificationPreferences",
    "OptimizationApprovalContent",
    "OversightContext",
    "OversightMetrics",
    "OversightPermission",
    "OversightRole",
    "OversightUser",
    "PermissionAction",
    "PermissionScope",
    "StatusTransition",
    "ThresholdChangeContent",
    "Verdict",
    # Recommendations
    "ActionKind",
    "Comparison",
    "ExpectedImpact",
    "OptimizationAction",
    "OptimizationRecommendation",
    "OptimizationResult",
    "OptimizationStatus",
    "OptimizationType",
    "RecommendationOutcome",
    "RollbackTrigger",
    "SafetyAssessment",
    "SafetyCheck",
    "read_metric",
    # Events
    "AnalysisCompleted",
    "DecisionEscalated",
    "DecisionResolved",
    "OptimizationStatusChanged",
    "OptimizerEvent",
    "ThresholdRequestPending",
    "ThresholdsApplied",
    "ThresholdsRolledBack",
    # Reports
    "GuardState",
    "OptimizationReport",
    "ServiceStatus",
    # Config
    "AnalysisSettings",
    "OptimizerConfig",
    "OversightSettings",
    "SafetySettings",
    "SchedulerSettings",
    "ThresholdEngineSettings",
    "ThrottleSettings",
]
