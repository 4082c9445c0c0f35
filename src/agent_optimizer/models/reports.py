"""Service status and report models."""

from pydantic import BaseModel, Field

from .metrics import _now_iso
from .oversight import OversightMetrics
from .recommendations import OptimizationResult
from .thresholds import AlertThresholds


class GuardState(BaseModel):
    """Observable state of one throttle guard."""

    name: str
    circuit_open: bool
    consecutive_failures: int
    in_flight: bool
    last_success_at: str | None = None


class ServiceStatus(BaseModel):
    running: bool
    snapshots_recorded: int
    last_analysis_at: str | None = None
    active_optimizations: int = 0
    pending_decisions: int = 0
    pending_threshold_requests: int = 0
    auto_applied_today: int = 0
    guards: list[GuardState] = Field(default_factory=list)


class OptimizationReport(BaseModel):
    generated_at: str = Field(default_factory=_now_iso)
    overall_health_assessment: str = ""
    trend_count: int = 0
    bottleneck_count: int = 0
    predicted_issue_count: int = 0
    optimization_opportunities: list[str] = Field(default_factory=list)
    current_thresholds: AlertThresholds
    threshold_changes_applied: int = 0
    threshold_changes_rolled_back: int = 0
    active_optimizations: list[OptimizationResult] = Field(default_factory=list)
    recent_results: list[OptimizationResult] = Field(default_factory=list)
    oversight: OversightMetrics = Field(default_factory=OversightMetrics)
