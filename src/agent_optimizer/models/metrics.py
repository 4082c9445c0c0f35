"""Telemetry snapshot models.

A MetricsSnapshot is one timestamped capture of everything the optimizer
watches: per-agent health, system-wide health and the validation pipeline.
Snapshots are frozen once built; the History Store is their only owner.

Date/Time: All timestamps use `whenever` library (UTC-first, Rust-backed).
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from whenever import Instant


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string."""
    return Instant.now().format_iso()


class AgentMetrics(BaseModel):
    """Health of a single agent in the pipeline."""

    model_config = ConfigDict(frozen=True)

    response_time_ms: float = Field(ge=0, description="Mean response time over the capture")
    success_rate: float = Field(ge=0, le=100, description="Successful task percentage")
    error_count: int = Field(default=0, ge=0, description="Errors since the previous capture")
    throughput_per_minute: float = Field(default=0.0, ge=0, description="Tasks handled per minute")
    memory_usage_mb: float = Field(default=0.0, ge=0, description="Resident memory")
    cpu_usage_percent: float = Field(default=0.0, ge=0, description="CPU utilisation")
    last_activity: str = Field(default_factory=_now_iso, description="Last observed activity")


class SystemMetrics(BaseModel):
    """Pipeline-wide health."""

    model_config = ConfigDict(frozen=True)

    total_requests: int = Field(default=0, ge=0, description="Requests since the previous capture")
    active_agents: int = Field(default=0, ge=0, description="Agents reporting activity")
    average_response_time: float = Field(ge=0, description="Mean response time across agents (ms)")
    overall_success_rate: float = Field(ge=0, le=100, description="Successful request percentage")
    critical_events: int = Field(default=0, ge=0, description="Critical events since last capture")
    system_health_score: float = Field(
        default=100.0, ge=0, le=100, description="Composite health score"
    )


class ValidationMetrics(BaseModel):
    """Output validation pipeline health."""

    model_config = ConfigDict(frozen=True)

    total_validations: int = Field(default=0, ge=0)
    validation_success_rate: float = Field(default=100.0, ge=0, le=100)
    average_validation_time: float = Field(default=0.0, ge=0, description="Milliseconds")
    failed_validations: int = Field(default=0, ge=0)
    quality_score_average: float = Field(default=100.0, ge=0, le=100)
    compatibility_score_average: float = Field(default=100.0, ge=0, le=100)


class MetricsSnapshot(BaseModel):
    """One timestamped capture of all tracked metrics."""

    model_config = ConfigDict(frozen=True)

    timestamp: str = Field(default_factory=_now_iso, description="Capture time (ISO 8601 UTC)")
    agent_metrics: dict[str, AgentMetrics] = Field(default_factory=dict)
    system_metrics: SystemMetrics
    validation_metrics: ValidationMetrics = Field(default_factory=ValidationMetrics)

    @field_validator("timestamp")
    @classmethod
    def _timestamp_is_iso(cls, value: str) -> str:
        # Raises ValueError on anything whenever can't parse
        Instant.parse_iso(value)
        return value

    @property
    def instant(self) -> Instant:
        return Instant.parse_iso(self.timestamp)
