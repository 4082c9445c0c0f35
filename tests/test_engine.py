"""Tests for the optimization engine."""

from dataclasses import dataclass

import pytest
from agent_optimizer.analysis import OptimizationAnalyzer
from agent_optimizer.engine import InMemoryActionExecutor, OptimizationEngine
from agent_optimizer.errors import OptimizationNotFoundError, RecommendationNotFoundError
from agent_optimizer.events import EventBus
from agent_optimizer.guard import ThrottleGuard
from agent_optimizer.history import MetricsHistory
from agent_optimizer.models import (
    ActionKind,
    DecisionPriority,
    DecisionType,
    OptimizationAction,
    OptimizationStatus,
    OptimizationType,
    RiskTier,
    SafetySettings,
    Severity,
    SystemAnalysis,
    ThrottleSettings,
    TrendDirection,
)
from agent_optimizer.oversight import HumanOversightWorkflow
from agent_optimizer.thresholds import DynamicThresholdEngine

from .builders import FakeClock, agent, recommendation, series, snapshot, trend

pytestmark = pytest.mark.anyio


@dataclass
class Rig:
    engine: OptimizationEngine
    history: MetricsHistory
    thresholds: DynamicThresholdEngine
    oversight: HumanOversightWorkflow
    executor: InMemoryActionExecutor
    events: EventBus
    clock: FakeClock


def make_rig(clock, monotonic, *snapshots, safety=None, executor=None) -> Rig:
    events = EventBus()
    history = MetricsHistory()
    for item in snapshots:
        history.append(item)
    thresholds = DynamicThresholdEngine(events=events, clock=clock)
    oversight = HumanOversightWorkflow(events=events, clock=clock)
    executor = executor or InMemoryActionExecutor()
    engine = OptimizationEngine(
        OptimizationAnalyzer(history, clock=clock),
        thresholds,
        oversight,
        safety,
        analysis_guard=ThrottleGuard(
            "system-analysis", ThrottleSettings(min_interval_sec=60), clock=monotonic
        ),
        executor=executor,
        events=events,
        clock=clock,
    )
    return Rig(engine, history, thresholds, oversight, executor, events, clock)


def busy(*agent_ids: str, **overrides):
    return snapshot(agents={a: agent(cpu_usage_percent=90.0, **overrides) for a in agent_ids})


class FlakyExecutor(InMemoryActionExecutor):
    def __init__(self, failing_target: str):
        super().__init__()
        self.failing_target = failing_target

    async def execute(self, optimization_id, action):
        if action.target == self.failing_target:
            msg = f"cannot reach {action.target}"
            raise RuntimeError(msg)
        await super().execute(optimization_id, action)


# =============================================================================
# ANALYSIS
# =============================================================================


class TestAnalyzeSystem:
    async def test_empty_history(self, clock, monotonic):
        rig = make_rig(clock, monotonic)
        analysis = await rig.engine.analyze_system()

        assert analysis.current_state is None
        assert analysis.bottlenecks == []
        assert [t.metric_name for t in analysis.trends] == ["system_baseline"]
        assert analysis.overall_health_assessment.startswith("Unknown")

    async def test_healthy_system(self, clock, monotonic):
        rig = make_rig(clock, monotonic, snapshot())
        analysis = await rig.engine.analyze_system()

        assert analysis.overall_health_assessment.startswith("Excellent")
        assert analysis.optimization_opportunities == []
        assert [e.kind for e in rig.events.recent()] == ["analysis_completed"]

    async def test_critical_bottleneck_in_assessment(self, clock, monotonic):
        rig = make_rig(clock, monotonic, snapshot(agents={"planner": agent(memory_usage_mb=1300)}))
        analysis = await rig.engine.analyze_system()

        assert analysis.overall_health_assessment.endswith("(1 critical bottleneck)")
        assert analysis.optimization_opportunities[0].startswith("Resolve memory bottleneck")

    async def test_repeated_analysis_is_throttled(self, clock, monotonic):
        rig = make_rig(clock, monotonic, snapshot())

        first = await rig.engine.analyze_system()
        second = await rig.engine.analyze_system()

        assert second is first
        assert rig.engine.guard.runs == 1
        assert rig.engine.last_analysis is first


# =============================================================================
# RECOMMENDATIONS
# =============================================================================


class TestGenerateRecommendations:
    async def test_cpu_bottleneck(self, clock, monotonic):
        rig = make_rig(clock, monotonic, busy("planner"))
        await rig.engine.analyze_system()

        [rec] = rig.engine.generate_recommendations()

        assert rec.recommendation_id == "rec-cpu:planner:cpu"
        assert rec.type == OptimizationType.RESOURCE_OPTIMIZATION
        assert rec.priority == Severity.MEDIUM
        assert not rec.requires_human_approval
        assert rig.engine.get_recommendations() == [rec]

    async def test_critical_memory_needs_approval(self, clock, monotonic):
        rig = make_rig(clock, monotonic, snapshot(agents={"planner": agent(memory_usage_mb=1300)}))
        await rig.engine.analyze_system()

        [rec] = rig.engine.generate_recommendations()

        assert rec.priority == Severity.CRITICAL
        assert rec.requires_human_approval
        assert rec.safety_assessment.risk_level == RiskTier.HIGH

    async def test_ranked_and_capped(self, clock, monotonic):
        rig = make_rig(
            clock,
            monotonic,
            snapshot(
                agents={
                    "coder": agent(cpu_usage_percent=90.0),
                    "planner": agent(memory_usage_mb=1300),
                    "reviewer": agent(cpu_usage_percent=90.0),
                }
            ),
            safety=SafetySettings(max_concurrent_optimizations=2),
        )
        await rig.engine.analyze_system()

        recs = rig.engine.generate_recommendations()

        assert [r.priority for r in recs] == [Severity.CRITICAL, Severity.MEDIUM]

    def test_degrading_trend_and_threshold_proposal(self, clock, monotonic):
        rig = make_rig(clock, monotonic)
        analysis = SystemAnalysis(
            trends=[trend("system_average_response_time", TrendDirection.UP, 10.0)]
        )

        recs = rig.engine.generate_recommendations(analysis)

        assert [r.type for r in recs] == [
            OptimizationType.PERFORMANCE_TUNING,
            OptimizationType.THRESHOLD_ADJUSTMENT,
        ]
        assert recs[0].recommendation_id == "rec-trend:system_average_response_time"
        assert not any(r.requires_human_approval for r in recs)
        assert recs[1].threshold_request_id is not None

    def test_low_confidence_degradation_needs_approval(self, clock, monotonic):
        rig = make_rig(clock, monotonic)
        analysis = SystemAnalysis(
            trends=[trend("planner_success_rate", TrendDirection.DOWN, 10.0, 85.0)]
        )

        recs = {r.recommendation_id: r for r in rig.engine.generate_recommendations(analysis)}

        assert recs["rec-trend:planner_success_rate"].requires_human_approval

    def test_improving_trends_are_not_degrading(self, clock, monotonic):
        rig = make_rig(clock, monotonic)
        analysis = SystemAnalysis(
            trends=[
                trend("system_success_rate", TrendDirection.UP, 1.0),
                trend("system_average_response_time", TrendDirection.DOWN, 1.0, 70.0),
            ]
        )

        recs = rig.engine.generate_recommendations(analysis)

        assert not any(r.source.startswith("trend:") for r in recs)

    def test_nothing_without_analysis(self, clock, monotonic):
        assert make_rig(clock, monotonic).engine.generate_recommendations() == []


# =============================================================================
# SAFETY & EXECUTION
# =============================================================================


class TestApplyOptimizations:
    async def test_safe_recommendation_is_applied(self, clock, monotonic):
        rig = make_rig(clock, monotonic, busy("planner"))
        await rig.engine.analyze_system()
        rig.engine.generate_recommendations()

        [result] = await rig.engine.apply_optimizations()

        assert result.status == OptimizationStatus.COMPLETED
        assert result.applied_actions == ["cpu:planner:cpu:max_concurrency_factor"]
        assert rig.executor.settings["planner"] == {"max_concurrency_factor": 0.8}
        assert rig.engine.get_active_optimizations() == [result]
        assert rig.engine.get_recommendations() == []
        assert rig.engine.auto_runs_today() == 1
        assert rig.events.recent("optimization_status_changed")[0].status == "completed"

    async def test_approval_required_is_skipped(self, clock, monotonic):
        rig = make_rig(clock, monotonic, snapshot(agents={"planner": agent(memory_usage_mb=1300)}))
        await rig.engine.analyze_system()
        rig.engine.generate_recommendations()

        assert await rig.engine.apply_optimizations() == []
        assert rig.executor.settings == {}

    async def test_failure_is_isolated(self, clock, monotonic):
        rig = make_rig(
            clock, monotonic, busy("coder", "planner"), executor=FlakyExecutor("planner")
        )
        await rig.engine.analyze_system()
        rig.engine.generate_recommendations()

        results = await rig.engine.apply_optimizations()

        statuses = {r.recommendation.implementation[0].target: r.status for r in results}
        assert statuses == {
            "coder": OptimizationStatus.COMPLETED,
            "planner": OptimizationStatus.FAILED,
        }
        failed = next(r for r in results if r.status == OptimizationStatus.FAILED)
        assert failed.error == "cannot reach planner"
        assert failed in rig.engine.get_optimization_history()
        assert len(rig.engine.get_active_optimizations()) == 1

    async def test_concurrency_limit_blocks(self, clock, monotonic):
        rig = make_rig(
            clock,
            monotonic,
            busy("coder", "planner", "reviewer"),
            safety=SafetySettings(max_concurrent_optimizations=2),
        )
        await rig.engine.analyze_system()
        rig.engine.generate_recommendations()
        assert len(await rig.engine.apply_optimizations()) == 2

        rig.engine.generate_recommendations()
        assert await rig.engine.apply_optimizations() == []
        assert len(rig.engine.get_active_optimizations()) == 2

    async def test_daily_limit_counts_automatic_runs(self, clock, monotonic):
        rig = make_rig(
            clock,
            monotonic,
            busy("coder", "planner"),
            safety=SafetySettings(max_auto_optimizations_per_day=1),
        )
        await rig.engine.analyze_system()
        rig.engine.generate_recommendations()

        assert len(await rig.engine.apply_optimizations()) == 1
        check = rig.engine.check_safety(recommendation())
        assert not check.passed
        assert "Daily" in check.reason

        clock.advance(hours=25)
        assert rig.engine.auto_runs_today() == 0

    def test_critical_risk_never_automatic(self, clock, monotonic):
        rig = make_rig(clock, monotonic)
        rec = recommendation(risk=RiskTier.CRITICAL)

        assert not rig.engine.check_safety(rec).passed
        assert rig.engine.check_safety(rec, approved=True).passed

    def test_critical_priority_needs_approval(self, clock, monotonic):
        rig = make_rig(clock, monotonic)
        check = rig.engine.check_safety(recommendation(priority=Severity.CRITICAL))

        assert not check.passed
        assert "approval" in check.reason

    async def test_threshold_recommendation_applies_thresholds(self, clock, monotonic):
        rig = make_rig(clock, monotonic)
        recs = rig.engine.generate_recommendations(
            SystemAnalysis(trends=[trend("system_average_response_time", TrendDirection.UP, 10.0)])
        )

        results = await rig.engine.apply_optimizations(recs)

        assert [r.status for r in results] == [OptimizationStatus.COMPLETED] * 2
        current = rig.thresholds.get_current_thresholds()
        assert current.max_response_time_ms == pytest.approx(4650.0)
        assert rig.executor.settings["system"] == {"tuning_profile": "conservative"}

        threshold_result = next(
            r for r in results if r.recommendation.type == OptimizationType.THRESHOLD_ADJUSTMENT
        )
        await rig.engine.rollback_optimization(threshold_result.optimization_id)
        assert rig.thresholds.get_current_thresholds().max_response_time_ms == 5000.0


class TestApplyRecommendation:
    async def test_unknown_recommendation(self, clock, monotonic):
        rig = make_rig(clock, monotonic)
        with pytest.raises(RecommendationNotFoundError):
            await rig.engine.apply_recommendation("rec-missing")

    async def test_safe_recommendation_runs(self, clock, monotonic):
        rig = make_rig(clock, monotonic, busy("planner"))
        await rig.engine.analyze_system()
        [rec] = rig.engine.generate_recommendations()

        outcome = await rig.engine.apply_recommendation(rec.recommendation_id)

        assert outcome.safety.passed
        assert outcome.result.status == OptimizationStatus.COMPLETED
        assert outcome.decision_request_id is None

    async def test_approval_routes_to_oversight(self, clock, monotonic):
        rig = make_rig(clock, monotonic, snapshot(agents={"planner": agent(memory_usage_mb=1300)}))
        await rig.engine.analyze_system()
        [rec] = rig.engine.generate_recommendations()

        outcome = await rig.engine.apply_recommendation(rec.recommendation_id)

        assert outcome.result is None
        request = rig.oversight.get_request(outcome.decision_request_id)
        assert request.type == DecisionType.OPTIMIZATION_APPROVAL
        assert request.priority == DecisionPriority.URGENT
        assert request.required_approvals == 2
        assert rig.engine.get_recommendations() == []
        rig.oversight.close()

    async def test_risky_threshold_recommendation_goes_pending(self, clock, monotonic):
        rig = make_rig(clock, monotonic)
        [_, rec] = rig.engine.generate_recommendations(
            SystemAnalysis(trends=[trend("system_average_response_time", TrendDirection.UP, 50.0)])
        )
        assert rec.requires_human_approval

        outcome = await rig.engine.apply_recommendation(rec.recommendation_id)

        [pending] = rig.thresholds.get_pending_requests()
        assert outcome.threshold_request_id == pending.request_id
        assert rig.events.recent("threshold_request_pending")
        assert rig.thresholds.get_current_thresholds().max_response_time_ms == 5000.0

    async def test_blocked_recommendation_reports_reason(self, clock, monotonic):
        rig = make_rig(
            clock,
            monotonic,
            busy("planner"),
            safety=SafetySettings(max_auto_optimizations_per_day=0),
        )
        await rig.engine.analyze_system()
        [rec] = rig.engine.generate_recommendations()

        outcome = await rig.engine.apply_recommendation(rec.recommendation_id)

        assert not outcome.safety.passed
        assert outcome.result is None


# =============================================================================
# ROLLBACK & TRACKING
# =============================================================================


class TestRollback:
    async def test_manual_rollback_restores_settings(self, clock, monotonic):
        rig = make_rig(clock, monotonic, busy("planner"))
        await rig.engine.analyze_system()
        rig.engine.generate_recommendations()
        [result] = await rig.engine.apply_optimizations()

        rolled = await rig.engine.rollback_optimization(result.optimization_id)

        assert rolled.status == OptimizationStatus.ROLLED_BACK
        assert rolled.rollback_reason == "Manual rollback"
        assert rig.executor.settings["planner"] == {}
        assert rig.engine.get_active_optimizations() == []
        assert rig.engine.get_optimization_history() == [rolled]

    async def test_unknown_optimization(self, clock, monotonic):
        rig = make_rig(clock, monotonic)
        with pytest.raises(OptimizationNotFoundError):
            await rig.engine.rollback_optimization("opt-missing")

    async def test_trigger_rolls_back(self, clock, monotonic):
        rig = make_rig(clock, monotonic, busy("planner"))
        await rig.engine.analyze_system()
        rig.engine.generate_recommendations()
        [result] = await rig.engine.apply_optimizations()

        clock.advance(minutes=1)
        rig.history.append(snapshot(clock(), health=50.0))
        rolled = await rig.engine.track_optimization_results()

        assert [r.optimization_id for r in rolled] == [result.optimization_id]
        assert "System health" in rolled[0].rollback_reason

    async def test_quiet_optimization_retires_after_window(self, clock, monotonic):
        rig = make_rig(clock, monotonic, busy("planner"))
        await rig.engine.analyze_system()
        rig.engine.generate_recommendations()
        [result] = await rig.engine.apply_optimizations()

        clock.advance(hours=1)
        assert await rig.engine.track_optimization_results() == []
        assert rig.engine.get_active_optimizations() == [result]

        clock.advance(hours=24)
        assert await rig.engine.track_optimization_results() == []
        assert rig.engine.get_active_optimizations() == []
        assert result.status == OptimizationStatus.COMPLETED
        assert rig.engine.get_optimization_history() == [result]

    async def test_emergency_rollback_reverts_everything(self, clock, monotonic):
        rig = make_rig(clock, monotonic, busy("coder", "planner"))
        await rig.engine.analyze_system()
        rig.engine.generate_recommendations()
        await rig.engine.apply_optimizations()

        rolled = await rig.engine.emergency_rollback("Error spike")

        assert len(rolled) == 2
        assert all(r.rollback_reason == "Error spike" for r in rolled)
        assert rig.engine.get_active_optimizations() == []



# =============================================================================
# ACTION EXECUTOR
# =============================================================================


def concurrency(value: float) -> OptimizationAction:
    return OptimizationAction(
        action_id="cpu:planner:cpu:max_concurrency_factor",
        kind=ActionKind.CONFIG_CHANGE,
        target="planner",
        parameters={"max_concurrency_factor": value},
    )


class TestInMemoryActionExecutor:
    @pytest.mark.parametrize(
        ("revert_order", "after_first_revert"),
        [(("opt-2", "opt-1"), 0.8), (("opt-1", "opt-2"), 0.5)],
    )
    async def test_stacked_overrides_restore_original(self, revert_order, after_first_revert):
        executor = InMemoryActionExecutor()
        executor.settings["planner"] = {"max_concurrency_factor": 1.0}

        await executor.execute("opt-1", concurrency(0.8))
        await executor.execute("opt-2", concurrency(0.5))
        assert executor.settings["planner"]["max_concurrency_factor"] == 0.5

        first, second = revert_order
        await executor.revert(first, concurrency(0.8 if first == "opt-1" else 0.5))
        assert executor.settings["planner"]["max_concurrency_factor"] == after_first_revert
        await executor.revert(second, concurrency(0.8 if second == "opt-1" else 0.5))
        assert executor.settings["planner"] == {"max_concurrency_factor": 1.0}

    async def test_revert_of_unknown_optimization_is_ignored(self):
        executor = InMemoryActionExecutor()
        await executor.execute("opt-1", concurrency(0.8))

        await executor.revert("opt-other", concurrency(0.8))

        assert executor.settings["planner"] == {"max_concurrency_factor": 0.8}


# =============================================================================
# REPEATED CYCLES
# =============================================================================


class TestRepeatedCycles:
    async def test_same_bottleneck_runs_once(self, clock, monotonic):
        rig = make_rig(clock, monotonic, busy("planner"))

        applied = []
        for _ in range(3):
            analysis = await rig.engine.analyze_system()
            rig.engine.generate_recommendations(analysis)
            applied.extend(await rig.engine.apply_optimizations())
            monotonic.advance(120)

        [result] = applied
        assert rig.engine.get_active_optimizations() == [result]

        [rec] = rig.engine.generate_recommendations()
        for approved in (False, True):
            check = rig.engine.check_safety(rec, approved=approved)
            assert not check.passed
            assert result.optimization_id in check.reason

        await rig.engine.rollback_optimization(result.optimization_id)
        assert rig.executor.settings["planner"] == {}

    async def test_unchanged_trends_move_thresholds_once(self, clock, monotonic):
        rising = series("response_time", [1000.0 + 10 * i for i in range(10)])
        rig = make_rig(clock, monotonic, *rising)
        clock.advance(minutes=9)

        analysis = await rig.engine.analyze_system()
        first = await rig.engine.apply_optimizations(rig.engine.generate_recommendations(analysis))
        assert OptimizationType.THRESHOLD_ADJUSTMENT in [r.recommendation.type for r in first]
        moved = rig.thresholds.get_current_thresholds().max_response_time_ms
        assert moved < 5000.0

        for advance in (0, 120, 120):
            monotonic.advance(advance)
            analysis = await rig.engine.analyze_system()
            recs = rig.engine.generate_recommendations(analysis)

            assert OptimizationType.THRESHOLD_ADJUSTMENT not in [r.type for r in recs]
            assert await rig.engine.apply_optimizations(recs) == []
            assert rig.thresholds.get_current_thresholds().max_response_time_ms == moved
        assert len(rig.thresholds.get_threshold_history()) == 1
