"""OptimizerService - composition root and public facade.

Wires one history, analyzer, threshold engine, oversight workflow and
optimization engine together around a shared event bus, then drives them
with periodic loops:

    collection   → push_snapshot (only when a MetricsSource is configured)
    analysis     → analyze → recommend → apply the safe recommendations
    thresholds   → guarded threshold re-evaluation
    expiry sweep → expire overdue decision requests
    tracking     → rollback triggers on active optimizations

Routing:
- a pending threshold request becomes a threshold_change decision request
- a resolved threshold_change decision approves, modifies or rejects the
  threshold request (expiry counts as rejection)
- a resolved optimization_approval decision executes the recommendation
- an approved emergency_action rolls back every active optimization

Principle: "Heuristics decide, humans approve"
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import ValidationError
from whenever import Instant, TimeDelta

from agent_optimizer.analysis import OptimizationAnalyzer, detect_bottlenecks
from agent_optimizer.engine import OptimizationEngine
from agent_optimizer.events import EventBus
from agent_optimizer.guard import ThrottleGuard
from agent_optimizer.history import MetricsHistory
from agent_optimizer.models import (
    DecisionPriority,
    DecisionStatus,
    DecisionType,
    EmergencyActionContent,
    MetricsSnapshot,
    OptimizationReport,
    OptimizerConfig,
    ServiceStatus,
    ThresholdChangeContent,
    Verdict,
)
from agent_optimizer.oversight import HumanOversightWorkflow
from agent_optimizer.scheduler import PeriodicTask
from agent_optimizer.thresholds import DynamicThresholdEngine

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from agent_optimizer.engine import ActionExecutor
    from agent_optimizer.models import (
        AlertThresholds,
        DecisionRequest,
        EmergencyContext,
        OptimizationRecommendation,
        OptimizationResult,
        OptimizerEvent,
        OversightMetrics,
        OversightUser,
        RecommendationOutcome,
        SystemAnalysis,
        ThresholdAdjustment,
        ThresholdChangeRequest,
    )
    from agent_optimizer.notifications import Notifier

logger = logging.getLogger("agent_optimizer.service")


@runtime_checkable
class MetricsSource(Protocol):
    """Pull-based telemetry producer polled by the collection loop."""

    async def collect(self) -> MetricsSnapshot | dict[str, Any] | None: ...


class HistoryContextProvider:
    """Reviewer context from the latest snapshot and the live thresholds."""

    def __init__(self, history: MetricsHistory, thresholds: DynamicThresholdEngine) -> None:
        self._history = history
        self._thresholds = thresholds

    def system_health(self) -> float:
        latest = self._history.latest()
        if latest is None:
            return 100.0
        return latest.system_metrics.system_health_score

    def active_alerts(self) -> list[str]:
        bottlenecks = detect_bottlenecks(
            self._history.latest(), self._thresholds.get_current_thresholds()
        )
        return [b.description for b in bottlenecks]


class OptimizerService:
    def __init__(
        self,
        config: OptimizerConfig | None = None,
        *,
        history: MetricsHistory | None = None,
        source: MetricsSource | None = None,
        notifier: Notifier | None = None,
        executor: ActionExecutor | None = None,
        events: EventBus | None = None,
        clock: Callable[[], Instant] = Instant.now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or OptimizerConfig()
        cfg = self.config
        self._clock = clock
        self._source = source

        self.events = events or EventBus()
        self.history = history or MetricsHistory(cfg.analysis.history_capacity)
        self.analyzer = OptimizationAnalyzer(
            self.history,
            cfg.analysis,
            trend_guard=ThrottleGuard("trend-analysis", cfg.trend_guard, clock=monotonic),
            clock=clock,
        )
        self.thresholds = DynamicThresholdEngine(
            cfg.alert_thresholds,
            cfg.thresholds,
            guard=ThrottleGuard("threshold-evaluation", cfg.threshold_guard, clock=monotonic),
            events=self.events,
            clock=clock,
        )
        self.oversight = HumanOversightWorkflow(
            cfg.oversight,
            notifier=notifier,
            context_provider=HistoryContextProvider(self.history, self.thresholds),
            events=self.events,
            clock=clock,
        )
        self.engine = OptimizationEngine(
            self.analyzer,
            self.thresholds,
            self.oversight,
            cfg.safety,
            analysis_guard=ThrottleGuard("system-analysis", cfg.analysis_guard, clock=monotonic),
            executor=executor,
            events=self.events,
            clock=clock,
        )

        self.oversight.add_resolution_handler(self._on_decision_resolved)
        self.events.subscribe(self._on_event)
        self._tasks = self._build_tasks()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return any(t.running for t in self._tasks)

    async def start(self) -> None:
        for task in self._tasks:
            task.start()
        logger.info("Optimizer service started with %d loops", len(self._tasks))

    async def stop(self) -> None:
        for task in self._tasks:
            await task.stop()
        self.oversight.close()
        logger.info("Optimizer service stopped")

    async def __aenter__(self) -> OptimizerService:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def _build_tasks(self) -> list[PeriodicTask]:
        sched = self.config.scheduler
        tasks = [
            PeriodicTask(
                "analysis", TimeDelta(seconds=sched.analysis_interval_sec), self.run_analysis_cycle
            ),
            PeriodicTask(
                "threshold-evaluation",
                TimeDelta(seconds=self.config.thresholds.reevaluation_interval_sec),
                self.evaluate_thresholds,
            ),
            PeriodicTask(
                "decision-expiry",
                TimeDelta(seconds=sched.expiry_sweep_interval_sec),
                self.oversight.expire_overdue,
            ),
            PeriodicTask(
                "optimization-tracking",
                TimeDelta(seconds=sched.tracking_interval_sec),
                self.engine.track_optimization_results,
            ),
        ]
        if self._source is not None:
            tasks.insert(
                0,
                PeriodicTask(
                    "collection",
                    TimeDelta(seconds=sched.collection_interval_sec),
                    self.collect_once,
                    run_immediately=True,
                ),
            )
        return tasks

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    def push_snapshot(self, snapshot: MetricsSnapshot | dict[str, Any]) -> bool:
        """Validate and record one snapshot. Malformed input is logged and dropped."""
        try:
            validated = MetricsSnapshot.model_validate(snapshot)
        except ValidationError as e:
            logger.warning("Dropping malformed metrics snapshot: %s", e.error_count())
            logger.debug("Snapshot validation errors: %s", e)
            return False
        self.history.append(validated)
        return True

    async def collect_once(self) -> bool:
        if self._source is None:
            return False
        snapshot = await self._source.collect()
        if snapshot is None:
            return False
        return self.push_snapshot(snapshot)

    # -------------------------------------------------------------------------
    # Analysis & recommendations
    # -------------------------------------------------------------------------

    async def run_analysis_cycle(self) -> list[OptimizationResult]:
        """Analyze, recommend, and apply everything that passes the safety policy."""
        analysis = await self.engine.analyze_system()
        recommendations = self.engine.generate_recommendations(analysis)
        return await self.engine.apply_optimizations(recommendations)

    async def evaluate_thresholds(self) -> ThresholdChangeRequest | None:
        outcome = await self.analyzer.analyze_trends()
        trends = outcome.value or []
        result = await self.thresholds.evaluate(trends)
        return result.value if result.ran else None

    async def get_analysis(self) -> SystemAnalysis:
        return await self.engine.analyze_system()

    async def get_recommendations(self) -> list[OptimizationRecommendation]:
        analysis = await self.engine.analyze_system()
        return self.engine.generate_recommendations(analysis)

    async def apply_recommendation(self, recommendation_id: str) -> RecommendationOutcome:
        return await self.engine.apply_recommendation(recommendation_id)

    async def rollback_optimization(
        self, optimization_id: str, reason: str = "Manual rollback"
    ) -> OptimizationResult:
        return await self.engine.rollback_optimization(optimization_id, reason)

    # -------------------------------------------------------------------------
    # Thresholds
    # -------------------------------------------------------------------------

    def get_current_thresholds(self) -> AlertThresholds:
        return self.thresholds.get_current_thresholds()

    def get_threshold_history(self) -> list[ThresholdChangeRequest]:
        return self.thresholds.get_threshold_history()

    async def rollback_thresholds(self, request_id: str) -> ThresholdChangeRequest:
        return await self.thresholds.rollback(request_id)

    # -------------------------------------------------------------------------
    # Oversight
    # -------------------------------------------------------------------------

    def register_user(self, user: OversightUser) -> None:
        self.oversight.register_user(user)

    def get_pending_decisions(self, user_id: str) -> list[DecisionRequest]:
        return self.oversight.get_pending_decisions(user_id)

    async def submit_decision(
        self,
        request_id: str,
        user_id: str,
        verdict: Verdict,
        *,
        reasoning: str = "",
        confidence: float = 100.0,
        modified_adjustments: Sequence[ThresholdAdjustment] | None = None,
    ) -> DecisionRequest:
        return await self.oversight.submit_decision(
            request_id,
            user_id,
            verdict,
            reasoning=reasoning,
            confidence=confidence,
            modified_adjustments=modified_adjustments,
        )

    def escalate(self, request_id: str, reason: str) -> DecisionRequest:
        return self.oversight.escalate(request_id, reason)

    def request_emergency_action(self, emergency: EmergencyContext) -> DecisionRequest:
        """Ask for approval to roll back every active optimization."""
        return self.oversight.create_decision_request(
            DecisionType.EMERGENCY_ACTION,
            EmergencyActionContent(emergency=emergency),
            DecisionPriority.URGENT,
        )

    def get_oversight_metrics(self) -> OversightMetrics:
        return self.oversight.get_metrics()

    # -------------------------------------------------------------------------
    # Status & reporting
    # -------------------------------------------------------------------------

    def get_status(self) -> ServiceStatus:
        analysis = self.engine.last_analysis
        return ServiceStatus(
            running=self.running,
            snapshots_recorded=self.history.total_recorded,
            last_analysis_at=analysis.analyzed_at if analysis else None,
            active_optimizations=len(self.engine.get_active_optimizations()),
            pending_decisions=len(self.oversight.pending()),
            pending_threshold_requests=len(self.thresholds.get_pending_requests()),
            auto_applied_today=self.engine.auto_runs_today(),
            guards=[
                self.analyzer.trend_guard.state(),
                self.engine.guard.state(),
                self.thresholds.guard.state(),
            ],
        )

    def generate_report(self, recent_limit: int = 10) -> OptimizationReport:
        analysis = self.engine.last_analysis
        threshold_history = self.thresholds.get_threshold_history()
        return OptimizationReport(
            generated_at=self._clock().format_iso(),
            overall_health_assessment=(
                analysis.overall_health_assessment if analysis else "No analysis has run yet"
            ),
            trend_count=len(analysis.trends) if analysis else 0,
            bottleneck_count=len(analysis.bottlenecks) if analysis else 0,
            predicted_issue_count=len(analysis.predicted_issues) if analysis else 0,
            optimization_opportunities=analysis.optimization_opportunities if analysis else [],
            current_thresholds=self.thresholds.get_current_thresholds(),
            threshold_changes_applied=sum(1 for r in threshold_history if r.is_applied),
            threshold_changes_rolled_back=sum(
                1 for r in threshold_history if r.rolled_back_at is not None
            ),
            active_optimizations=self.engine.get_active_optimizations(),
            recent_results=self.engine.get_optimization_history()[-recent_limit:],
            oversight=self.oversight.get_metrics(),
        )

    # -------------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------------

    def _on_event(self, event: OptimizerEvent) -> None:
        if event.kind != "threshold_request_pending":
            return
        request = self.thresholds.get_request(event.request_id)
        high = request.total_risk_score > self.config.oversight.high_risk_score
        decision = self.oversight.create_decision_request(
            DecisionType.THRESHOLD_CHANGE,
            ThresholdChangeContent(request=request),
            DecisionPriority.HIGH if high else DecisionPriority.MEDIUM,
        )
        request.decision_request_id = decision.request_id

    async def _on_decision_resolved(self, decision: DecisionRequest) -> None:
        content = decision.content
        if content.kind == "threshold_change":
            await self._resolve_threshold_decision(decision, content.request)
        elif content.kind == "optimization_approval":
            await self.engine.complete_approval(decision)
        elif decision.status == DecisionStatus.APPROVED:
            logger.warning("Emergency action approved: %s", content.emergency.trigger_event)
            await self.engine.emergency_rollback(
                f"Emergency action: {content.emergency.trigger_event}"
            )

    async def _resolve_threshold_decision(
        self, decision: DecisionRequest, request: ThresholdChangeRequest
    ) -> None:
        if decision.status != DecisionStatus.APPROVED:
            await self.thresholds.process_decision(request.request_id, Verdict.REJECT)
            return

        modified = None
        for vote in decision.received_approvals:
            if vote.verdict == Verdict.MODIFY and vote.modified_adjustments:
                modified = vote.modified_adjustments
        await self.thresholds.process_decision(
            request.request_id,
            decision.final_decision or Verdict.APPROVE,
            decided_by=[v.user_id for v in decision.received_approvals],
            modified_adjustments=modified,
        )
