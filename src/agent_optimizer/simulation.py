"""Synthetic telemetry for demos and soak tests.

Scenarios:
- steady: healthy agents with small jitter
- spike: calm and spike phases alternate; during a spike response time,
  CPU and request volume jump and success rate dips
- degrading: response time climbs and success rate falls linearly
- memory_leak: one agent's memory grows every step until it breaches its limit

`run_simulation` replays a scenario through a full OptimizerService whose
clock follows the snapshot timestamps, then runs one analysis cycle.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from whenever import Instant, TimeDelta

from agent_optimizer.models import (
    AgentMetrics,
    MetricsSnapshot,
    OptimizerConfig,
    SystemMetrics,
    ValidationMetrics,
)
from agent_optimizer.service import OptimizerService

if TYPE_CHECKING:
    from collections.abc import Sequence

    from agent_optimizer.models import (
        OptimizationRecommendation,
        OptimizationResult,
        ServiceStatus,
        SystemAnalysis,
        ThresholdChangeRequest,
    )

logger = logging.getLogger("agent_optimizer.simulation")

DEFAULT_AGENTS = ("planner", "coder", "reviewer")


class Scenario(StrEnum):
    STEADY = "steady"
    SPIKE = "spike"
    DEGRADING = "degrading"
    MEMORY_LEAK = "memory_leak"


@dataclass
class _Phase:
    response_ms: float
    success: float
    cpu: float
    memory_mb: float
    throughput: float


def _phase_for(scenario: Scenario, step: int, count: int, agent_index: int) -> _Phase:
    progress = step / max(1, count - 1)
    base = _Phase(
        response_ms=800.0 + agent_index * 150,
        success=98.0,
        cpu=35.0 + agent_index * 5,
        memory_mb=400.0 + agent_index * 100,
        throughput=40.0,
    )

    if scenario == Scenario.SPIKE:
        # 10 calm steps, 5 spike steps
        if step % 15 >= 10:
            base.response_ms *= 4
            base.success -= 12
            base.cpu = min(99.0, base.cpu * 2.5)
            base.throughput *= 6
    elif scenario == Scenario.DEGRADING:
        base.response_ms *= 1 + 3 * progress
        base.success -= 25 * progress
        base.cpu += 30 * progress
    elif scenario == Scenario.MEMORY_LEAK and agent_index == 0:
        base.memory_mb += 1200 * progress
    return base


def generate_snapshots(
    scenario: Scenario | str,
    count: int,
    *,
    start: Instant | None = None,
    interval: TimeDelta = TimeDelta(minutes=1),
    agents: Sequence[str] = DEFAULT_AGENTS,
    seed: int | None = None,
) -> list[MetricsSnapshot]:
    """`count` snapshots spaced `interval` apart, oldest first."""
    scenario = Scenario(scenario)
    rng = random.Random(seed)
    origin = start or Instant.now() - interval * count

    def jitter(value: float, spread: float = 0.03) -> float:
        return value * (1 + rng.uniform(-spread, spread))

    snapshots: list[MetricsSnapshot] = []
    for step in range(count):
        timestamp = (origin + interval * step).format_iso()
        agent_metrics: dict[str, AgentMetrics] = {}
        for index, agent_id in enumerate(agents):
            phase = _phase_for(scenario, step, count, index)
            success = max(0.0, min(100.0, jitter(phase.success, 0.01)))
            throughput = jitter(phase.throughput)
            agent_metrics[agent_id] = AgentMetrics(
                response_time_ms=jitter(phase.response_ms),
                success_rate=success,
                error_count=round(throughput * (100 - success) / 100),
                throughput_per_minute=throughput,
                memory_usage_mb=jitter(phase.memory_mb, 0.01),
                cpu_usage_percent=max(0.0, min(100.0, jitter(phase.cpu))),
                last_activity=timestamp,
            )

        values = list(agent_metrics.values())
        mean_success = sum(a.success_rate for a in values) / len(values) if values else 100.0
        mean_response = sum(a.response_time_ms for a in values) / len(values) if values else 0.0
        total_throughput = sum(a.throughput_per_minute for a in values)
        critical = sum(1 for a in values if a.success_rate < 80)
        health = max(0.0, min(100.0, mean_success - max(0.0, mean_response - 2000) / 100))

        snapshots.append(
            MetricsSnapshot(
                timestamp=timestamp,
                agent_metrics=agent_metrics,
                system_metrics=SystemMetrics(
                    total_requests=round(total_throughput),
                    active_agents=len(values),
                    average_response_time=mean_response,
                    overall_success_rate=mean_success,
                    critical_events=critical,
                    system_health_score=health,
                ),
                validation_metrics=ValidationMetrics(
                    total_validations=round(total_throughput / 2),
                    validation_success_rate=max(0.0, min(100.0, mean_success - 1)),
                    average_validation_time=jitter(300.0 + mean_response / 10),
                    failed_validations=round(total_throughput / 2 * (100 - mean_success) / 100),
                    quality_score_average=jitter(88.0, 0.02),
                    compatibility_score_average=jitter(92.0, 0.02),
                ),
            )
        )
    return snapshots


@dataclass
class SimulationResult:
    scenario: Scenario
    analysis: SystemAnalysis
    recommendations: list[OptimizationRecommendation]
    applied: list[OptimizationResult]
    threshold_changes: list[ThresholdChangeRequest]
    status: ServiceStatus
    pending_decision_ids: list[str] = field(default_factory=list)


async def run_simulation(
    scenario: Scenario | str,
    count: int = 60,
    *,
    interval: TimeDelta = TimeDelta(minutes=1),
    agents: Sequence[str] = DEFAULT_AGENTS,
    seed: int | None = None,
    apply: bool = True,
    config: OptimizerConfig | None = None,
) -> SimulationResult:
    """Replay `scenario` through a fresh service and run one optimization cycle."""
    scenario = Scenario(scenario)
    snapshots = generate_snapshots(scenario, count, interval=interval, agents=agents, seed=seed)
    now = {"instant": snapshots[-1].instant if snapshots else Instant.now()}

    service = OptimizerService(config, clock=lambda: now["instant"])
    for snapshot in snapshots:
        now["instant"] = snapshot.instant
        service.push_snapshot(snapshot)
    logger.info("Replayed %d %s snapshots", len(snapshots), scenario)

    analysis = await service.get_analysis()
    recommendations = service.engine.generate_recommendations(analysis)
    applied = await service.engine.apply_optimizations(recommendations) if apply else []

    result = SimulationResult(
        scenario=scenario,
        analysis=analysis,
        recommendations=recommendations,
        applied=applied,
        threshold_changes=service.get_threshold_history(),
        status=service.get_status(),
        pending_decision_ids=[r.request_id for r in service.oversight.pending()],
    )
    await service.stop()
    return result
