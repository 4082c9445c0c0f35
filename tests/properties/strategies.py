"""Hypothesis strategies for generating optimizer domain objects.

These strategies generate valid metrics snapshots, snapshot histories with
increasing timestamps, and alert threshold sets for property-based testing.
"""

from hypothesis import strategies as st
from whenever import TimeDelta

from agent_optimizer.models import (
    AgentMetrics,
    AlertThresholds,
    MetricsSnapshot,
    SystemMetrics,
    ValidationMetrics,
)

from ..builders import T0

AGENT_IDS = ["planner", "coder", "reviewer"]


def _floats(max_value: float, min_value: float = 0):
    return st.floats(min_value=min_value, max_value=max_value, allow_nan=False)


# =============================================================================
# METRICS
# =============================================================================


@st.composite
def agent_metrics(draw):
    return AgentMetrics(
        response_time_ms=draw(_floats(20000)),
        success_rate=draw(_floats(100)),
        error_count=draw(st.integers(min_value=0, max_value=100)),
        throughput_per_minute=draw(_floats(500)),
        memory_usage_mb=draw(_floats(4096)),
        cpu_usage_percent=draw(_floats(100)),
        last_activity=T0.format_iso(),
    )


@st.composite
def system_metrics(draw):
    return SystemMetrics(
        total_requests=draw(st.integers(min_value=0, max_value=1000)),
        active_agents=draw(st.integers(min_value=0, max_value=10)),
        average_response_time=draw(_floats(20000)),
        overall_success_rate=draw(_floats(100)),
        critical_events=draw(st.integers(min_value=0, max_value=20)),
        system_health_score=draw(_floats(100)),
    )


@st.composite
def validation_metrics(draw):
    return ValidationMetrics(
        total_validations=draw(st.integers(min_value=0, max_value=500)),
        validation_success_rate=draw(_floats(100)),
        average_validation_time=draw(_floats(5000)),
        failed_validations=draw(st.integers(min_value=0, max_value=100)),
        quality_score_average=draw(_floats(100)),
        compatibility_score_average=draw(_floats(100)),
    )


@st.composite
def snapshots(draw, minute: int = 0):
    agents = draw(st.lists(st.sampled_from(AGENT_IDS), max_size=3, unique=True))
    return MetricsSnapshot(
        timestamp=(T0 + TimeDelta(minutes=minute)).format_iso(),
        agent_metrics={agent_id: draw(agent_metrics()) for agent_id in agents},
        system_metrics=draw(system_metrics()),
        validation_metrics=draw(validation_metrics()),
    )


@st.composite
def snapshot_histories(draw, min_size: int = 0, max_size: int = 30):
    """Snapshots one minute apart, oldest first."""
    size = draw(st.integers(min_value=min_size, max_value=max_size))
    return [draw(snapshots(minute=i)) for i in range(size)]


# =============================================================================
# THRESHOLDS
# =============================================================================


@st.composite
def alert_thresholds(draw):
    return AlertThresholds(
        max_response_time_ms=draw(_floats(20000, min_value=1)),
        min_success_rate_percent=draw(_floats(100)),
        max_error_rate_percent=draw(_floats(100)),
        max_memory_usage_mb=draw(_floats(4096, min_value=1)),
        max_cpu_usage_percent=draw(_floats(100, min_value=1)),
        min_system_health_score=draw(_floats(100)),
        max_validation_time_ms=draw(_floats(5000, min_value=1)),
        min_compatibility_score=draw(_floats(100)),
    )
