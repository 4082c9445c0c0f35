"""Configuration for the agent optimizer.

Every heuristic constant the analyzers, guards and engines use lives here so it
can be overridden from the environment (prefix OPTIMIZER_, nested with "__",
e.g. OPTIMIZER_SAFETY__MAX_CONCURRENT_OPTIMIZATIONS=3).

Confidence Floors:
- Trends: only trends at or above analysis.confidence_threshold are reported
- Thresholds: only trends at or above thresholds.confidence_threshold move a threshold
- Predictions: forecasts below analysis.prediction_confidence_threshold are dropped
"""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from .oversight import DecisionPriority
from .thresholds import AlertThresholds


class AnalysisSettings(BaseModel):
    """Trend, bottleneck, error-pattern and prediction heuristics."""

    history_capacity: int = Field(
        default=1000, gt=0, description="Snapshots kept before the oldest is evicted"
    )
    min_data_points: int = Field(
        default=10, gt=1, description="Below this, trends fall back to a baseline"
    )
    min_series_points: int = Field(
        default=3, gt=1, description="A metric needs this many points in the window for a trend"
    )
    confidence_threshold: float = Field(
        default=80.0, ge=0, le=100, description="Trends below this confidence are dropped"
    )
    stable_change_percent: float = Field(
        default=2.0, ge=0, description="Normalised change below this is 'stable'"
    )
    anomaly_deviation_ratio: float = Field(
        default=0.2, gt=0, description="Deviation from the fit, as a share of the mean"
    )
    default_window_hours: int = Field(default=24, gt=0)

    # Error patterns & predictions
    recent_snapshot_count: int = Field(
        default=24, gt=0, description="Snapshots aggregated for errors and predictions"
    )
    prediction_confidence_threshold: float = Field(default=70.0, ge=0, le=100)
    simplified_trend_delta: float = Field(
        default=5.0, description="Recent-vs-window mean gap that counts as a trend"
    )
    overload_request_floor: float = Field(
        default=100.0, description="Mean requests above this with rising load → overload"
    )
    validation_success_floor: float = Field(
        default=90.0, description="Mean validation success below this → validation failure"
    )


class ThrottleSettings(BaseModel):
    """Throttle and circuit-breaker limits for one guarded operation."""

    min_interval_sec: float = Field(default=30.0, ge=0)
    failure_threshold: int = Field(default=5, gt=0, description="Failures before opening")
    cooldown_sec: float = Field(default=300.0, ge=0, description="Open-circuit duration")
    timeout_sec: float = Field(default=30.0, gt=0, description="Deadline for one run")


class ThresholdEngineSettings(BaseModel):
    confidence_threshold: float = Field(default=85.0, ge=0, le=100)
    max_change_percent: float = Field(default=20.0, gt=0)
    approval_above_percent: float = Field(
        default=15.0, ge=0, description="Changes above this need human approval"
    )
    trend_weight: float = Field(default=0.7, gt=0, le=1)
    historical_window_days: int = Field(default=7, gt=0)
    reevaluation_interval_sec: float = Field(default=21600.0, gt=0)
    auto_apply_enabled: bool = True


class SafetySettings(BaseModel):
    max_concurrent_optimizations: int = Field(default=5, gt=0)
    require_human_approval_for_critical: bool = True
    max_auto_optimizations_per_day: int = Field(default=10, ge=0)
    monitoring_window_hours: float = Field(
        default=24.0, gt=0, description="How long a completed optimization is watched for rollback"
    )


class OversightSettings(BaseModel):
    expiry_hours: dict[DecisionPriority, float] = Field(
        default={
            DecisionPriority.URGENT: 2.0,
            DecisionPriority.HIGH: 8.0,
            DecisionPriority.MEDIUM: 24.0,
            DecisionPriority.LOW: 72.0,
        },
        description="Time to decide, by priority",
    )
    high_risk_score: int = Field(
        default=50, description="Threshold requests scoring above this need two approvals"
    )
    escalation_extension_hours: float = Field(default=2.0, gt=0)
    register_default_admin: bool = True
    default_admin_id: str = "admin-1"


class SchedulerSettings(BaseModel):
    collection_interval_sec: float = Field(default=60.0, gt=0)
    analysis_interval_sec: float = Field(default=300.0, gt=0)
    expiry_sweep_interval_sec: float = Field(default=60.0, gt=0)
    tracking_interval_sec: float = Field(default=300.0, gt=0)


class OptimizerConfig(BaseSettings):
    """Main configuration for the agent optimizer."""

    log_level: str = Field(default="INFO", description="Root log level for the CLI")

    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    trend_guard: ThrottleSettings = Field(default_factory=ThrottleSettings)
    analysis_guard: ThrottleSettings = Field(
        default_factory=lambda: ThrottleSettings(min_interval_sec=60.0)
    )
    threshold_guard: ThrottleSettings = Field(
        default_factory=lambda: ThrottleSettings(min_interval_sec=60.0)
    )
    thresholds: ThresholdEngineSettings = Field(default_factory=ThresholdEngineSettings)
    safety: SafetySettings = Field(default_factory=SafetySettings)
    oversight: OversightSettings = Field(default_factory=OversightSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)

    # Starting alert thresholds
    alert_thresholds: AlertThresholds = Field(default_factory=AlertThresholds)

    model_config = {"env_prefix": "OPTIMIZER_", "env_nested_delimiter": "__"}
