"""Property tests for the Bottleneck Detector.

- Results are always ordered critical first
- Every reported bottleneck is backed by a real threshold violation
"""

from hypothesis import given, settings

from agent_optimizer.analysis import detect_bottlenecks
from agent_optimizer.models import (
    SEVERITY_RANK,
    AlertThresholds,
    BottleneckType,
    MetricsSnapshot,
    Severity,
)

from ..builders import agent, snapshot
from .strategies import alert_thresholds, snapshots

# =============================================================================
# ORDERING
# =============================================================================


@given(current=snapshots(), thresholds=alert_thresholds())
@settings(max_examples=300)
def test_bottlenecks_sorted_by_severity(current: MetricsSnapshot, thresholds: AlertThresholds):
    """Property: Severity rank never decreases along the result list."""
    ranks = [SEVERITY_RANK[b.severity] for b in detect_bottlenecks(current, thresholds)]
    assert ranks == sorted(ranks)


@given(current=snapshots(), thresholds=alert_thresholds())
@settings(max_examples=200)
def test_bottleneck_ids_are_unique(current: MetricsSnapshot, thresholds: AlertThresholds):
    """Property: One bottleneck per (type, target, metric)."""
    ids = [b.bottleneck_id for b in detect_bottlenecks(current, thresholds)]
    assert len(ids) == len(set(ids))


@given(current=snapshots())
@settings(max_examples=200)
def test_memory_bottleneck_only_above_limit(current: MetricsSnapshot):
    """Property: A memory bottleneck implies the agent exceeds the memory limit."""
    thresholds = AlertThresholds()
    for b in detect_bottlenecks(current, thresholds):
        if b.type == BottleneckType.MEMORY:
            usage = current.agent_metrics[b.affected_target].memory_usage_mb
            assert usage > thresholds.max_memory_usage_mb


# =============================================================================
# EXAMPLES
# =============================================================================


def test_slow_system_is_critical_bottleneck():
    thresholds = AlertThresholds(max_response_time_ms=2000)
    found = detect_bottlenecks(snapshot(response_time=6000), thresholds)

    system = [b for b in found if b.affected_target == "system"]
    assert len(system) == 1
    assert system[0].severity == Severity.CRITICAL
    assert system[0].type == BottleneckType.NETWORK
    assert system[0].estimated_improvement > 0


def test_moderately_slow_system_is_high():
    found = detect_bottlenecks(snapshot(response_time=6000), AlertThresholds())

    assert [b.severity for b in found] == [Severity.HIGH]


def test_agent_memory_tiers():
    current = snapshot(
        agents={
            "planner": agent(memory_usage_mb=1300),
            "coder": agent(memory_usage_mb=1100),
        }
    )
    found = {b.affected_target: b for b in detect_bottlenecks(current, AlertThresholds())}

    assert found["planner"].severity == Severity.CRITICAL
    assert found["coder"].severity == Severity.MEDIUM
    assert list(found) == ["planner", "coder"]


def test_no_snapshot_no_bottlenecks():
    assert detect_bottlenecks(None, AlertThresholds()) == []


def test_healthy_snapshot_has_no_bottlenecks():
    assert detect_bottlenecks(snapshot(), AlertThresholds()) == []
