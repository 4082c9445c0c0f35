"""Error-Pattern Analyzer - recurring failures over the recent snapshots."""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING

from agent_optimizer.models import ErrorPattern, Severity

if TYPE_CHECKING:
    from collections.abc import Sequence

    from agent_optimizer.models import MetricsSnapshot


def _system_impact(total: int) -> Severity:
    if total > 10:
        return Severity.HIGH
    if total > 5:
        return Severity.MEDIUM
    return Severity.LOW


def analyze_error_patterns(snapshots: Sequence[MetricsSnapshot]) -> list[ErrorPattern]:
    """Aggregate critical events and agent errors into named patterns.

    A source with zero errors across `snapshots` produces no pattern.
    """
    patterns: list[ErrorPattern] = []

    critical_total = sum(s.system_metrics.critical_events for s in snapshots)
    if critical_total > 0:
        patterns.append(
            ErrorPattern(
                pattern_id="system_critical_events",
                error_type="critical_system_event",
                frequency=critical_total,
                affected_targets=["system"],
                common_conditions=["High system load", "Many concurrent requests"],
                potential_causes=["Resource exhaustion", "Upstream dependency failures"],
                suggested_fixes=[
                    "Add load balancing across agents",
                    "Tighten resource monitoring and alerting",
                ],
                business_impact=_system_impact(critical_total),
            )
        )

    agent_errors: Counter[str] = Counter()
    for snapshot in snapshots:
        for agent_id, metrics in snapshot.agent_metrics.items():
            agent_errors[agent_id] += metrics.error_count

    for agent_id in sorted(agent_errors):
        count = agent_errors[agent_id]
        if count == 0:
            continue
        patterns.append(
            ErrorPattern(
                pattern_id=f"{agent_id}_errors",
                error_type="agent_error",
                frequency=count,
                affected_targets=[agent_id],
                common_conditions=[f"Requests routed to {agent_id}"],
                potential_causes=["Agent-specific logic errors", "Resource constraints"],
                suggested_fixes=[
                    f"Review {agent_id} error handling",
                    f"Scale {agent_id} resources",
                ],
                business_impact=Severity.MEDIUM if count > 5 else Severity.LOW,
            )
        )

    return patterns
