"""Bottleneck Detector - threshold violations in the latest snapshot.

Severity Rules (value vs. threshold t):
- System response time: > 1.5t CRITICAL, otherwise HIGH
- System success rate: < 0.8t CRITICAL, otherwise HIGH
- Agent response time: > 1.5t CRITICAL, > 1.2t HIGH, otherwise MEDIUM
- Agent success rate: < 0.8t HIGH, otherwise MEDIUM
- Agent memory: > 1.2t CRITICAL, otherwise MEDIUM
- Agent CPU: > 1.2t HIGH, otherwise MEDIUM
- Validation time: > 1.5t HIGH, otherwise MEDIUM

Estimated improvement is the overshoot: percent of threshold for times and
memory, percentage points for rates.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from agent_optimizer.models import SEVERITY_RANK, Bottleneck, BottleneckType, Severity

if TYPE_CHECKING:
    from agent_optimizer.models import AgentMetrics, AlertThresholds, MetricsSnapshot

SYSTEM_TARGET = "system"


def _overshoot_percent(value: float, threshold: float) -> float:
    return float(round((value - threshold) / threshold * 100))


def _bottleneck_id(kind: BottleneckType, target: str, metric: str) -> str:
    return f"{kind.value}:{target}:{metric}"


def detect_bottlenecks(
    snapshot: MetricsSnapshot | None, thresholds: AlertThresholds
) -> list[Bottleneck]:
    """Bottlenecks in `snapshot`, critical first. Empty when there is no snapshot."""
    if snapshot is None:
        return []

    found: list[Bottleneck] = []
    found.extend(_system_bottlenecks(snapshot, thresholds))
    for agent_id in sorted(snapshot.agent_metrics):
        found.extend(_agent_bottlenecks(agent_id, snapshot.agent_metrics[agent_id], thresholds))
    found.extend(_validation_bottlenecks(snapshot, thresholds))

    return sorted(found, key=lambda b: SEVERITY_RANK[b.severity])


def _system_bottlenecks(
    snapshot: MetricsSnapshot, thresholds: AlertThresholds
) -> list[Bottleneck]:
    system = snapshot.system_metrics
    results: list[Bottleneck] = []

    limit = thresholds.max_response_time_ms
    if system.average_response_time > limit:
        critical = system.average_response_time > limit * 1.5
        severity = Severity.CRITICAL if critical else Severity.HIGH
        results.append(
            Bottleneck(
                bottleneck_id=_bottleneck_id(
                    BottleneckType.NETWORK, SYSTEM_TARGET, "response_time"
                ),
                type=BottleneckType.NETWORK,
                affected_target=SYSTEM_TARGET,
                severity=severity,
                description=(
                    f"System average response time {system.average_response_time:.0f}ms "
                    f"exceeds {limit:.0f}ms"
                ),
                impact_assessment="Slower end-to-end processing for every request",
                resolution_urgency=Severity.HIGH,
                estimated_improvement=_overshoot_percent(system.average_response_time, limit),
            )
        )

    floor = thresholds.min_success_rate_percent
    if system.overall_success_rate < floor:
        severity = (
            Severity.CRITICAL if system.overall_success_rate < floor * 0.8 else Severity.HIGH
        )
        results.append(
            Bottleneck(
                bottleneck_id=_bottleneck_id(
                    BottleneckType.VALIDATION, SYSTEM_TARGET, "success_rate"
                ),
                type=BottleneckType.VALIDATION,
                affected_target=SYSTEM_TARGET,
                severity=severity,
                description=(
                    f"System success rate {system.overall_success_rate:.1f}% "
                    f"below {floor:.1f}%"
                ),
                impact_assessment="Failed requests reach users and trigger retries",
                resolution_urgency=Severity.CRITICAL,
                estimated_improvement=float(round(floor - system.overall_success_rate)),
            )
        )
    return results


def _agent_bottlenecks(
    agent_id: str, agent: AgentMetrics, thresholds: AlertThresholds
) -> list[Bottleneck]:
    results: list[Bottleneck] = []

    limit = thresholds.max_response_time_ms
    if agent.response_time_ms > limit:
        if agent.response_time_ms > limit * 1.5:
            severity = Severity.CRITICAL
        elif agent.response_time_ms > limit * 1.2:
            severity = Severity.HIGH
        else:
            severity = Severity.MEDIUM
        results.append(
            Bottleneck(
                bottleneck_id=_bottleneck_id(BottleneckType.NETWORK, agent_id, "response_time"),
                type=BottleneckType.NETWORK,
                affected_target=agent_id,
                severity=severity,
                description=(
                    f"Agent {agent_id} response time {agent.response_time_ms:.0f}ms "
                    f"exceeds {limit:.0f}ms"
                ),
                impact_assessment=f"Work routed through {agent_id} is delayed",
                resolution_urgency=severity,
                estimated_improvement=_overshoot_percent(agent.response_time_ms, limit),
            )
        )

    floor = thresholds.min_success_rate_percent
    if agent.success_rate < floor:
        severity = Severity.HIGH if agent.success_rate < floor * 0.8 else Severity.MEDIUM
        results.append(
            Bottleneck(
                bottleneck_id=_bottleneck_id(BottleneckType.VALIDATION, agent_id, "success_rate"),
                type=BottleneckType.VALIDATION,
                affected_target=agent_id,
                severity=severity,
                description=(
                    f"Agent {agent_id} success rate {agent.success_rate:.1f}% below {floor:.1f}%"
                ),
                impact_assessment=f"Tasks handled by {agent_id} fail and are retried",
                resolution_urgency=severity,
                estimated_improvement=float(round(floor - agent.success_rate)),
            )
        )

    limit = thresholds.max_memory_usage_mb
    if agent.memory_usage_mb > limit:
        critical = agent.memory_usage_mb > limit * 1.2
        results.append(
            Bottleneck(
                bottleneck_id=_bottleneck_id(BottleneckType.MEMORY, agent_id, "memory"),
                type=BottleneckType.MEMORY,
                affected_target=agent_id,
                severity=Severity.CRITICAL if critical else Severity.MEDIUM,
                description=(
                    f"Agent {agent_id} uses {agent.memory_usage_mb:.0f}MB, "
                    f"limit {limit:.0f}MB"
                ),
                impact_assessment="Risk of out-of-memory restarts and GC stalls",
                resolution_urgency=Severity.HIGH if critical else Severity.MEDIUM,
                estimated_improvement=_overshoot_percent(agent.memory_usage_mb, limit),
            )
        )

    limit = thresholds.max_cpu_usage_percent
    if agent.cpu_usage_percent > limit:
        high = agent.cpu_usage_percent > limit * 1.2
        results.append(
            Bottleneck(
                bottleneck_id=_bottleneck_id(BottleneckType.CPU, agent_id, "cpu"),
                type=BottleneckType.CPU,
                affected_target=agent_id,
                severity=Severity.HIGH if high else Severity.MEDIUM,
                description=(
                    f"Agent {agent_id} CPU at {agent.cpu_usage_percent:.0f}%, "
                    f"limit {limit:.0f}%"
                ),
                impact_assessment="Queued work and rising response times",
                resolution_urgency=Severity.MEDIUM,
                estimated_improvement=float(round(agent.cpu_usage_percent - limit)),
            )
        )
    return results


def _validation_bottlenecks(
    snapshot: MetricsSnapshot, thresholds: AlertThresholds
) -> list[Bottleneck]:
    validation = snapshot.validation_metrics
    limit = thresholds.max_validation_time_ms
    if validation.average_validation_time <= limit:
        return []
    high = validation.average_validation_time > limit * 1.5
    return [
        Bottleneck(
            bottleneck_id=_bottleneck_id(
                BottleneckType.VALIDATION, SYSTEM_TARGET, "validation_time"
            ),
            type=BottleneckType.VALIDATION,
            affected_target=SYSTEM_TARGET,
            severity=Severity.HIGH if high else Severity.MEDIUM,
            description=(
                f"Average validation time {validation.average_validation_time:.0f}ms "
                f"exceeds {limit:.0f}ms"
            ),
            impact_assessment="Validation delays hold back every generated output",
            resolution_urgency=Severity.MEDIUM,
            estimated_improvement=_overshoot_percent(validation.average_validation_time, limit),
        )
    ]
