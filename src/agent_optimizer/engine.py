"""Optimization Engine - analysis cycles, ranked recommendations, guarded execution.

Cycle:
    analyze_system → generate_recommendations → apply_optimizations
                                              → track_optimization_results

Recommendation Sources:
- memory bottleneck   → resource_optimization (critical needs approval)
- cpu bottleneck      → resource_optimization, low risk
- validation bottleneck → performance_tuning
- network bottleneck  → load_balancing (critical needs approval)
- degrading confident trend → performance_tuning (approval below 90% confidence)
- threshold proposal  → threshold_adjustment (approval above 2 adjustments or when
                        any adjustment needs one)

Safety Policy (checked before every execution, first failure wins):
1. no active optimization from the same recommendation or the same source
2. active optimizations below max_concurrent_optimizations
3. critical priority needs a human approval when configured
4. critical risk never runs automatically
5. automatic executions in the last 24h below max_auto_optimizations_per_day

A blocked recommendation is skipped, not an error. An execution failure is
recorded as a FAILED result and never stops the remaining recommendations.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from whenever import Instant, TimeDelta

from agent_optimizer.errors import OptimizationNotFoundError, RecommendationNotFoundError
from agent_optimizer.guard import GuardOutcome, ThrottleGuard
from agent_optimizer.models import (
    SEVERITY_RANK,
    ActionKind,
    AnalysisCompleted,
    ApprovalStatus,
    BottleneckType,
    Comparison,
    DecisionPriority,
    DecisionStatus,
    DecisionType,
    ExpectedImpact,
    OptimizationAction,
    OptimizationApprovalContent,
    OptimizationRecommendation,
    OptimizationResult,
    OptimizationStatus,
    OptimizationStatusChanged,
    OptimizationType,
    RecommendationOutcome,
    RiskTier,
    RollbackTrigger,
    SafetyAssessment,
    SafetyCheck,
    SafetySettings,
    Severity,
    SystemAnalysis,
    TrendDirection,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from agent_optimizer.analysis import OptimizationAnalyzer
    from agent_optimizer.events import EventBus
    from agent_optimizer.models import (
        AlertThresholds,
        Bottleneck,
        DecisionRequest,
        MetricsSnapshot,
        OptimizerEvent,
        PerformanceTrend,
        PredictedIssue,
        ThresholdChangeRequest,
    )
    from agent_optimizer.oversight import HumanOversightWorkflow
    from agent_optimizer.thresholds import DynamicThresholdEngine

logger = logging.getLogger("agent_optimizer.engine")

TARGET_SUCCESS_RATE = 95.0
DEGRADING_TREND_CONFIDENCE = 80.0
TREND_AUTO_CONFIDENCE = 90.0
MAX_AUTO_THRESHOLD_ADJUSTMENTS = 2

_LOWER_IS_BETTER_SUFFIXES = ("response_time", "average_time")

_DECISION_PRIORITY = {
    Severity.CRITICAL: DecisionPriority.URGENT,
    Severity.HIGH: DecisionPriority.HIGH,
    Severity.MEDIUM: DecisionPriority.MEDIUM,
    Severity.LOW: DecisionPriority.LOW,
}


# =============================================================================
# ACTION EXECUTION
# =============================================================================


@runtime_checkable
class ActionExecutor(Protocol):
    """Applies and reverts non-threshold actions on behalf of one optimization."""

    async def execute(self, optimization_id: str, action: OptimizationAction) -> None: ...

    async def revert(self, optimization_id: str, action: OptimizationAction) -> None: ...


_Setting = float | int | str | bool


class InMemoryActionExecutor:
    """Keeps applied parameters per target and restores the prior values on revert.

    Each (target, parameter) holds a stack of overrides, one per optimization,
    recording the value it replaced. Reverting the top override restores that
    value; reverting one further down hands its recorded value to the override
    above it, so any revert order ends at the original setting.
    """

    def __init__(self) -> None:
        self.settings: dict[str, dict[str, _Setting]] = {}
        self._overrides: dict[tuple[str, str], list[tuple[str, _Setting | None]]] = {}

    async def execute(self, optimization_id: str, action: OptimizationAction) -> None:
        target = self.settings.setdefault(action.target, {})
        for key, value in action.parameters.items():
            stack = self._overrides.setdefault((action.target, key), [])
            stack.append((optimization_id, target.get(key)))
            target[key] = value
        logger.debug("Executed %s on %s: %s", action.kind, action.target, action.parameters)

    async def revert(self, optimization_id: str, action: OptimizationAction) -> None:
        target = self.settings.setdefault(action.target, {})
        for key in action.parameters:
            stack = self._overrides.get((action.target, key), [])
            index = next(
                (i for i, (owner, _) in enumerate(stack) if owner == optimization_id), None
            )
            if index is None:
                continue
            _, replaced = stack.pop(index)
            if index < len(stack):
                stack[index] = (stack[index][0], replaced)
            elif replaced is None:
                target.pop(key, None)
            else:
                target[key] = replaced
            if not stack:
                del self._overrides[(action.target, key)]


# =============================================================================
# ENGINE
# =============================================================================


class OptimizationEngine:
    """Turns analysis into ranked recommendations and runs the safe ones."""

    def __init__(
        self,
        analyzer: OptimizationAnalyzer,
        threshold_engine: DynamicThresholdEngine,
        oversight: HumanOversightWorkflow,
        settings: SafetySettings | None = None,
        *,
        analysis_guard: ThrottleGuard | None = None,
        executor: ActionExecutor | None = None,
        events: EventBus | None = None,
        clock: Callable[[], Instant] = Instant.now,
    ) -> None:
        self._analyzer = analyzer
        self._thresholds = threshold_engine
        self._oversight = oversight
        self._settings = settings or SafetySettings()
        self._guard = analysis_guard or ThrottleGuard("system-analysis")
        self._executor = executor or InMemoryActionExecutor()
        self._events = events
        self._clock = clock

        self._last_analysis: SystemAnalysis | None = None
        self._recommendations: dict[str, OptimizationRecommendation] = {}
        self._threshold_proposals: dict[str, ThresholdChangeRequest] = {}
        self._awaiting_approval: dict[str, str] = {}  # decision id → recommendation id
        self._active: dict[str, OptimizationResult] = {}
        self._history: list[OptimizationResult] = []
        self._auto_runs: list[Instant] = []

    @property
    def settings(self) -> SafetySettings:
        return self._settings

    @property
    def guard(self) -> ThrottleGuard:
        return self._guard

    @property
    def executor(self) -> ActionExecutor:
        return self._executor

    @property
    def last_analysis(self) -> SystemAnalysis | None:
        return self._last_analysis

    def get_active_optimizations(self) -> list[OptimizationResult]:
        return list(self._active.values())

    def get_optimization_history(self) -> list[OptimizationResult]:
        return list(self._history)

    def get_recommendations(self) -> list[OptimizationRecommendation]:
        """Recommendations from the latest generation, highest priority first."""
        return list(self._recommendations.values())

    def auto_runs_today(self) -> int:
        day_ago = self._clock() - TimeDelta(hours=24)
        self._auto_runs = [t for t in self._auto_runs if t >= day_ago]
        return len(self._auto_runs)

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    async def analyze_system(self) -> SystemAnalysis:
        """Guarded analysis cycle.

        Returns the fresh analysis, the last successful one when the guard
        short-circuits, or an empty analysis if none has succeeded yet.
        """
        outcome: GuardOutcome = await self._guard.run(self._run_analysis)
        if outcome.value is not None:
            return outcome.value
        return SystemAnalysis(
            analyzed_at=self._clock().format_iso(),
            current_state=self._analyzer.latest_snapshot(),
            overall_health_assessment=_health_assessment(self._analyzer.latest_snapshot(), []),
        )

    async def _run_analysis(self) -> SystemAnalysis:
        thresholds = self._thresholds.get_current_thresholds()
        trend_outcome, bottlenecks, patterns, predictions = await asyncio.gather(
            self._analyzer.analyze_trends(),
            asyncio.to_thread(self._analyzer.detect_bottlenecks, thresholds),
            asyncio.to_thread(self._analyzer.analyze_error_patterns),
            asyncio.to_thread(self._analyzer.predict_issues),
        )
        trends: list[PerformanceTrend] = trend_outcome.value or []
        current = self._analyzer.latest_snapshot()

        analysis = SystemAnalysis(
            analyzed_at=self._clock().format_iso(),
            current_state=current,
            trends=trends,
            bottlenecks=bottlenecks,
            error_patterns=patterns,
            predicted_issues=predictions,
            overall_health_assessment=_health_assessment(current, bottlenecks),
            optimization_opportunities=_opportunities(current, trends, bottlenecks, predictions),
        )
        self._last_analysis = analysis
        logger.info(
            "Analysis complete: %d trends, %d bottlenecks, %d predicted issues",
            len(trends),
            len(bottlenecks),
            len(predictions),
        )
        self._publish(
            AnalysisCompleted(
                analyzed_at=analysis.analyzed_at,
                trend_count=len(trends),
                bottleneck_count=len(bottlenecks),
                predicted_issue_count=len(predictions),
            )
        )
        return analysis

    # -------------------------------------------------------------------------
    # Recommendations
    # -------------------------------------------------------------------------

    def generate_recommendations(
        self, analysis: SystemAnalysis | None = None
    ) -> list[OptimizationRecommendation]:
        """Rank recommendations for `analysis` (default: the latest one).

        Replaces the previous generation. At most max_concurrent_optimizations
        are returned.
        """
        analysis = analysis or self._last_analysis
        if analysis is None:
            return []

        thresholds = self._thresholds.get_current_thresholds()
        recommendations: list[OptimizationRecommendation] = []
        for bottleneck in analysis.bottlenecks:
            rec = self._from_bottleneck(bottleneck, thresholds)
            if rec is not None:
                recommendations.append(rec)
        for trend in analysis.trends:
            if _is_degrading(trend):
                recommendations.append(self._from_trend(trend, thresholds))

        self._threshold_proposals.clear()
        proposal = self._thresholds.propose_adjustments(analysis.trends)
        if proposal is not None:
            recommendations.append(self._from_threshold_proposal(proposal))

        recommendations.sort(key=lambda r: SEVERITY_RANK[r.priority])
        ranked = recommendations[: self._settings.max_concurrent_optimizations]
        self._recommendations = {r.recommendation_id: r for r in ranked}
        return ranked

    def _from_bottleneck(
        self, bottleneck: Bottleneck, thresholds: AlertThresholds
    ) -> OptimizationRecommendation | None:
        target = bottleneck.affected_target
        critical = bottleneck.severity == Severity.CRITICAL
        health_trigger = RollbackTrigger(
            metric="system.system_health_score",
            comparison=Comparison.BELOW,
            threshold=thresholds.min_system_health_score,
            description="System health fell below its alert threshold",
        )

        if bottleneck.type == BottleneckType.MEMORY:
            return OptimizationRecommendation(
                recommendation_id=f"rec-{bottleneck.bottleneck_id}",
                type=OptimizationType.RESOURCE_OPTIMIZATION,
                priority=Severity.CRITICAL if critical else Severity.HIGH,
                title=f"Relieve memory pressure on {target}",
                description=bottleneck.description,
                rationale=bottleneck.impact_assessment,
                expected_impact=ExpectedImpact(
                    performance_improvement_percent=bottleneck.estimated_improvement * 0.5,
                    reliability_improvement_percent=10.0,
                    resource_savings_percent=20.0,
                ),
                implementation=[
                    _action(
                        bottleneck,
                        ActionKind.RESOURCE_SCALING,
                        "memory_limit_mb",
                        round(thresholds.max_memory_usage_mb * 1.25),
                        f"Raise the memory limit of {target}",
                    ),
                    _action(
                        bottleneck,
                        ActionKind.CACHE_ADJUSTMENT,
                        "cache_size_factor",
                        0.75,
                        f"Shrink caches held by {target}",
                    ),
                ],
                safety_assessment=SafetyAssessment(
                    risk_level=RiskTier.HIGH if critical else RiskTier.MEDIUM,
                    potential_impacts=["Restart of the affected agent", "Lower cache hit rate"],
                    mitigation_strategies=["Apply during low traffic", "Watch hit rate"],
                    monitoring_required=[f"agent.{target}.memory_usage_mb"],
                    rollback_triggers=[
                        health_trigger,
                        RollbackTrigger(
                            metric=f"agent.{target}.response_time_ms",
                            comparison=Comparison.ABOVE,
                            threshold=thresholds.max_response_time_ms * 1.5,
                            description="Response time regressed after cache reduction",
                        ),
                    ],
                ),
                estimated_duration_minutes=10,
                requires_human_approval=critical,
                created_at=self._clock().format_iso(),
                source=f"bottleneck:{bottleneck.bottleneck_id}",
            )

        if bottleneck.type == BottleneckType.CPU:
            return OptimizationRecommendation(
                recommendation_id=f"rec-{bottleneck.bottleneck_id}",
                type=OptimizationType.RESOURCE_OPTIMIZATION,
                priority=Severity.MEDIUM,
                title=f"Reduce CPU load on {target}",
                description=bottleneck.description,
                rationale=bottleneck.impact_assessment,
                expected_impact=ExpectedImpact(
                    performance_improvement_percent=15.0, resource_savings_percent=10.0
                ),
                implementation=[
                    _action(
                        bottleneck,
                        ActionKind.CONFIG_CHANGE,
                        "max_concurrency_factor",
                        0.8,
                        f"Lower concurrent work on {target}",
                    )
                ],
                safety_assessment=SafetyAssessment(
                    risk_level=RiskTier.LOW,
                    potential_impacts=["Slightly lower throughput"],
                    mitigation_strategies=["Restore concurrency once CPU settles"],
                    monitoring_required=[f"agent.{target}.cpu_usage_percent"],
                    rollback_triggers=[health_trigger],
                ),
                created_at=self._clock().format_iso(),
                source=f"bottleneck:{bottleneck.bottleneck_id}",
            )

        if bottleneck.type == BottleneckType.VALIDATION:
            return OptimizationRecommendation(
                recommendation_id=f"rec-{bottleneck.bottleneck_id}",
                type=OptimizationType.PERFORMANCE_TUNING,
                priority=Severity.MEDIUM,
                title=f"Tune validation for {target}",
                description=bottleneck.description,
                rationale=bottleneck.impact_assessment,
                expected_impact=ExpectedImpact(
                    performance_improvement_percent=20.0, reliability_improvement_percent=5.0
                ),
                implementation=[
                    _action(
                        bottleneck,
                        ActionKind.CONFIG_CHANGE,
                        "parallel_validation",
                        True,
                        "Run independent validation steps in parallel",
                    )
                ],
                safety_assessment=SafetyAssessment(
                    risk_level=RiskTier.LOW,
                    potential_impacts=["Higher momentary resource use"],
                    mitigation_strategies=["Fall back to sequential validation"],
                    monitoring_required=["validation.validation_success_rate"],
                    rollback_triggers=[
                        RollbackTrigger(
                            metric="validation.validation_success_rate",
                            comparison=Comparison.BELOW,
                            threshold=thresholds.min_success_rate_percent,
                            description="Validation success rate dropped",
                        )
                    ],
                ),
                created_at=self._clock().format_iso(),
                source=f"bottleneck:{bottleneck.bottleneck_id}",
            )

        if bottleneck.type == BottleneckType.NETWORK:
            return OptimizationRecommendation(
                recommendation_id=f"rec-{bottleneck.bottleneck_id}",
                type=OptimizationType.LOAD_BALANCING,
                priority=bottleneck.severity,
                title=f"Rebalance load away from {target}",
                description=bottleneck.description,
                rationale=bottleneck.impact_assessment,
                expected_impact=ExpectedImpact(
                    performance_improvement_percent=min(bottleneck.estimated_improvement, 50.0),
                    reliability_improvement_percent=5.0,
                ),
                implementation=[
                    _action(
                        bottleneck,
                        ActionKind.CONFIG_CHANGE,
                        "routing_weight",
                        0.5,
                        f"Halve the share of traffic routed to {target}",
                    )
                ],
                safety_assessment=SafetyAssessment(
                    risk_level=RiskTier.MEDIUM,
                    potential_impacts=["Other agents absorb the shifted load"],
                    mitigation_strategies=["Shift traffic back if peers saturate"],
                    monitoring_required=["system.average_response_time"],
                    rollback_triggers=[
                        health_trigger,
                        RollbackTrigger(
                            metric="system.overall_success_rate",
                            comparison=Comparison.BELOW,
                            threshold=thresholds.min_success_rate_percent,
                            description="Success rate dropped after rebalancing",
                        ),
                    ],
                ),
                requires_human_approval=critical,
                created_at=self._clock().format_iso(),
                source=f"bottleneck:{bottleneck.bottleneck_id}",
            )
        return None

    def _from_trend(
        self, trend: PerformanceTrend, thresholds: AlertThresholds
    ) -> OptimizationRecommendation:
        target = trend.agent_id or "system"
        return OptimizationRecommendation(
            recommendation_id=f"rec-trend:{trend.metric_name}",
            type=OptimizationType.PERFORMANCE_TUNING,
            priority=Severity.HIGH,
            title=f"Counter degrading {trend.metric_name}",
            description=(
                f"{trend.metric_name} is trending {trend.direction} "
                f"{trend.change_percent:.1f}% over {trend.time_window}"
            ),
            rationale=f"Regression confidence {trend.confidence_score:.0f}%",
            expected_impact=ExpectedImpact(
                performance_improvement_percent=min(trend.change_percent, 30.0),
                reliability_improvement_percent=10.0,
            ),
            implementation=[
                OptimizationAction(
                    action_id=f"trend:{trend.metric_name}:tuning_profile",
                    kind=ActionKind.CONFIG_CHANGE,
                    target=target,
                    parameters={"tuning_profile": "conservative"},
                    description=f"Switch {target} to the conservative tuning profile",
                )
            ],
            safety_assessment=SafetyAssessment(
                risk_level=RiskTier.MEDIUM,
                potential_impacts=["Lower peak throughput while conservative"],
                mitigation_strategies=["Revert once the trend stabilises"],
                monitoring_required=[trend.metric_name],
                rollback_triggers=[
                    RollbackTrigger(
                        metric="system.system_health_score",
                        comparison=Comparison.BELOW,
                        threshold=thresholds.min_system_health_score,
                        description="System health fell below its alert threshold",
                    )
                ],
            ),
            requires_human_approval=trend.confidence_score < TREND_AUTO_CONFIDENCE,
            created_at=self._clock().format_iso(),
            source=f"trend:{trend.metric_name}",
        )

    def _from_threshold_proposal(
        self, proposal: ThresholdChangeRequest
    ) -> OptimizationRecommendation:
        rec_id = f"rec-{proposal.request_id}"
        self._threshold_proposals[rec_id] = proposal
        needs_approval = (
            len(proposal.adjustments) > MAX_AUTO_THRESHOLD_ADJUSTMENTS or proposal.requires_approval
        )
        names = ", ".join(a.threshold_name for a in proposal.adjustments)
        return OptimizationRecommendation(
            recommendation_id=rec_id,
            type=OptimizationType.THRESHOLD_ADJUSTMENT,
            priority=Severity.HIGH if needs_approval else Severity.MEDIUM,
            title=f"Adjust alert thresholds: {names}",
            description=f"{len(proposal.adjustments)} threshold(s) track recent trends",
            rationale="; ".join(a.justification for a in proposal.adjustments),
            expected_impact=ExpectedImpact(
                performance_improvement_percent=(
                    proposal.estimated_impact.performance_change_percent
                ),
                reliability_improvement_percent=(
                    proposal.estimated_impact.false_positive_reduction_percent
                ),
            ),
            implementation=[
                OptimizationAction(
                    action_id=f"{proposal.request_id}:{a.threshold_name}",
                    kind=ActionKind.THRESHOLD_UPDATE,
                    target="system",
                    parameters={a.threshold_name: a.recommended_value},
                    description=(
                        f"{a.threshold_name}: {a.current_value:g} → {a.recommended_value:g}"
                    ),
                )
                for a in proposal.adjustments
            ],
            rollback_plan=[
                OptimizationAction(
                    action_id=f"{proposal.request_id}:{a.threshold_name}:restore",
                    kind=ActionKind.THRESHOLD_UPDATE,
                    target="system",
                    parameters={a.threshold_name: a.current_value},
                    description=f"Restore {a.threshold_name} to {a.current_value:g}",
                )
                for a in proposal.adjustments
            ],
            safety_assessment=SafetyAssessment(
                risk_level=proposal.risk_tier,
                potential_impacts=["Alert volume changes"],
                mitigation_strategies=proposal.rollback_plan.manual_rollback_procedure,
                monitoring_required=proposal.rollback_plan.monitoring_metrics,
            ),
            estimated_duration_minutes=1,
            requires_human_approval=needs_approval,
            created_at=self._clock().format_iso(),
            source="threshold_engine",
            threshold_request_id=proposal.request_id,
        )

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def check_safety(
        self, recommendation: OptimizationRecommendation, *, approved: bool = False
    ) -> SafetyCheck:
        duplicate = self._active_duplicate_of(recommendation)
        if duplicate is not None:
            return SafetyCheck.blocked(
                f"Optimization {duplicate.optimization_id} from {duplicate.recommendation.source} "
                "is still active"
            )
        limit = self._settings.max_concurrent_optimizations
        if len(self._active) >= limit:
            return SafetyCheck.blocked(f"Concurrent optimization limit reached ({limit})")
        if (
            recommendation.priority == Severity.CRITICAL
            and self._settings.require_human_approval_for_critical
            and not approved
        ):
            return SafetyCheck.blocked("Critical-priority optimizations need human approval")
        if recommendation.safety_assessment.risk_level == RiskTier.CRITICAL and not approved:
            return SafetyCheck.blocked("Critical-risk optimizations never run automatically")
        if not approved:
            daily = self._settings.max_auto_optimizations_per_day
            if self.auto_runs_today() >= daily:
                return SafetyCheck.blocked(f"Daily automatic optimization limit reached ({daily})")
        return SafetyCheck.ok()

    def _active_duplicate_of(
        self, recommendation: OptimizationRecommendation
    ) -> OptimizationResult | None:
        for result in self._active.values():
            active = result.recommendation
            if (
                active.recommendation_id == recommendation.recommendation_id
                or active.source == recommendation.source
            ):
                return result
        return None

    async def apply_optimizations(
        self, recommendations: Sequence[OptimizationRecommendation] | None = None
    ) -> list[OptimizationResult]:
        """Execute every recommendation that needs no approval and passes safety.

        Returns one result per execution attempt (completed or failed).
        """
        candidates = (
            list(recommendations) if recommendations is not None else self.get_recommendations()
        )
        results: list[OptimizationResult] = []
        for rec in candidates:
            if rec.requires_human_approval:
                logger.info("Skipping %s: requires human approval", rec.recommendation_id)
                continue
            check = self.check_safety(rec)
            if not check.passed:
                logger.info("Skipping %s: %s", rec.recommendation_id, check.reason)
                continue
            results.append(await self._execute(rec))
        return results

    async def apply_recommendation(self, recommendation_id: str) -> RecommendationOutcome:
        """Apply one recommendation, routing it to human oversight if it needs approval."""
        rec = self._recommendations.get(recommendation_id)
        if rec is None:
            raise RecommendationNotFoundError(recommendation_id)

        if rec.requires_human_approval:
            return await self._request_approval(rec)

        check = self.check_safety(rec)
        if not check.passed:
            logger.info("Not applying %s: %s", recommendation_id, check.reason)
            return RecommendationOutcome(recommendation_id=recommendation_id, safety=check)
        result = await self._execute(rec)
        return RecommendationOutcome(
            recommendation_id=recommendation_id,
            safety=check,
            result=result,
            threshold_request_id=rec.threshold_request_id,
        )

    async def _request_approval(self, rec: OptimizationRecommendation) -> RecommendationOutcome:
        if rec.type == OptimizationType.THRESHOLD_ADJUSTMENT:
            # Pending threshold requests reach oversight through the engine's events
            request = self._threshold_proposals.pop(rec.recommendation_id)
            request.approval_status = ApprovalStatus.PENDING
            await self._thresholds.submit(request)
            self._recommendations.pop(rec.recommendation_id, None)
            return RecommendationOutcome(
                recommendation_id=rec.recommendation_id,
                safety=SafetyCheck.ok(),
                decision_request_id=request.decision_request_id,
                threshold_request_id=request.request_id,
            )

        decision = self._oversight.create_decision_request(
            DecisionType.OPTIMIZATION_APPROVAL,
            OptimizationApprovalContent(recommendation=rec),
            _DECISION_PRIORITY[rec.priority],
        )
        self._awaiting_approval[decision.request_id] = rec.recommendation_id
        self._recommendations.pop(rec.recommendation_id, None)
        return RecommendationOutcome(
            recommendation_id=rec.recommendation_id,
            safety=SafetyCheck.ok(),
            decision_request_id=decision.request_id,
        )

    async def complete_approval(self, decision: DecisionRequest) -> OptimizationResult | None:
        """Run an optimization once its approval request resolves as approved."""
        self._awaiting_approval.pop(decision.request_id, None)
        if decision.content.kind != "optimization_approval":
            return None
        rec = decision.content.recommendation
        if decision.status != DecisionStatus.APPROVED:
            logger.info("Optimization %s not approved (%s)", rec.recommendation_id, decision.status)
            return None

        check = self.check_safety(rec, approved=True)
        if not check.passed:
            logger.warning(
                "Approved optimization %s blocked: %s", rec.recommendation_id, check.reason
            )
            return None
        approvers = [d.user_id for d in decision.received_approvals]
        return await self._execute(rec, approved_by=approvers)

    async def _execute(
        self, rec: OptimizationRecommendation, *, approved_by: Sequence[str] = ()
    ) -> OptimizationResult:
        result = OptimizationResult(
            optimization_id=f"opt-{uuid.uuid4().hex[:12]}",
            recommendation=rec,
            status=OptimizationStatus.IN_PROGRESS,
            started_at=self._clock().format_iso(),
        )
        self._active[result.optimization_id] = result
        applied: list[OptimizationAction] = []

        try:
            if rec.type == OptimizationType.THRESHOLD_ADJUSTMENT:
                await self._apply_threshold_proposal(rec, approved_by)
                applied.extend(rec.implementation)
            else:
                for action in rec.implementation:
                    await self._executor.execute(result.optimization_id, action)
                    applied.append(action)
        except Exception as e:
            logger.warning("Optimization %s failed: %s", rec.recommendation_id, e, exc_info=True)
            if rec.type != OptimizationType.THRESHOLD_ADJUSTMENT:
                await self._revert_actions(result.optimization_id, applied)
            result.status = OptimizationStatus.FAILED
            result.error = str(e) or type(e).__name__
            result.completed_at = self._clock().format_iso()
            del self._active[result.optimization_id]
            self._history.append(result)
            self._publish_status(result, result.error)
            return result

        result.status = OptimizationStatus.COMPLETED
        result.completed_at = self._clock().format_iso()
        result.applied_actions = [a.action_id for a in applied]
        if not approved_by:
            self._auto_runs.append(self._clock())
        self._recommendations.pop(rec.recommendation_id, None)

        logger.info(
            "Applied optimization %s (%s) as %s",
            rec.recommendation_id,
            rec.type,
            result.optimization_id,
        )
        self._publish_status(result)
        return result

    async def _apply_threshold_proposal(
        self, rec: OptimizationRecommendation, approved_by: Sequence[str]
    ) -> None:
        request = self._threshold_proposals.pop(rec.recommendation_id, None)
        if request is None:
            msg = f"Threshold proposal for {rec.recommendation_id} is no longer available"
            raise ValueError(msg)
        if approved_by:
            request.approval_status = ApprovalStatus.APPROVED
            request.approved_by = list(approved_by)
        else:
            request.approval_status = ApprovalStatus.AUTO_APPLIED
        self._thresholds.register(request)
        await self._thresholds.apply(request.request_id)

    async def _revert_actions(
        self, optimization_id: str, actions: Sequence[OptimizationAction]
    ) -> None:
        for action in reversed(actions):
            if not action.reversible:
                continue
            try:
                await self._executor.revert(optimization_id, action)
            except Exception:
                logger.exception("Failed to revert action %s", action.action_id)

    # -------------------------------------------------------------------------
    # Rollback & tracking
    # -------------------------------------------------------------------------

    async def rollback_optimization(
        self, optimization_id: str, reason: str = "Manual rollback"
    ) -> OptimizationResult:
        result = self._active.get(optimization_id)
        if result is None:
            raise OptimizationNotFoundError(optimization_id)

        rec = result.recommendation
        if rec.type == OptimizationType.THRESHOLD_ADJUSTMENT and rec.threshold_request_id:
            await self._thresholds.rollback(rec.threshold_request_id)
        else:
            applied = set(result.applied_actions)
            await self._revert_actions(
                optimization_id, [a for a in rec.implementation if a.action_id in applied]
            )

        result.status = OptimizationStatus.ROLLED_BACK
        result.rolled_back_at = self._clock().format_iso()
        result.rollback_reason = reason
        del self._active[optimization_id]
        self._history.append(result)

        logger.warning("Rolled back optimization %s: %s", optimization_id, reason)
        self._publish_status(result, reason)
        return result

    async def track_optimization_results(self) -> list[OptimizationResult]:
        """Roll back optimizations whose triggers fire; retire those past the watch window.

        Returns the optimizations rolled back in this pass.
        """
        snapshot = self._analyzer.latest_snapshot()
        cutoff = self._clock() - TimeDelta(hours=self._settings.monitoring_window_hours)
        rolled_back: list[OptimizationResult] = []

        for result in list(self._active.values()):
            if result.status != OptimizationStatus.COMPLETED:
                continue
            trigger = _fired_trigger(result, snapshot)
            if trigger is not None:
                reason = f"Rollback trigger fired: {trigger.description or trigger.metric}"
                try:
                    rolled_back.append(
                        await self.rollback_optimization(result.optimization_id, reason)
                    )
                except Exception:
                    logger.exception("Automatic rollback of %s failed", result.optimization_id)
                continue
            if result.completed_at and Instant.parse_iso(result.completed_at) < cutoff:
                del self._active[result.optimization_id]
                self._history.append(result)
                logger.debug("Optimization %s left the watch window", result.optimization_id)
        return rolled_back

    async def emergency_rollback(self, reason: str) -> list[OptimizationResult]:
        """Roll back every active optimization, continuing past individual failures."""
        rolled_back: list[OptimizationResult] = []
        for optimization_id in list(self._active):
            try:
                rolled_back.append(await self.rollback_optimization(optimization_id, reason))
            except Exception:
                logger.exception("Emergency rollback of %s failed", optimization_id)
        return rolled_back

    def _publish_status(self, result: OptimizationResult, reason: str | None = None) -> None:
        self._publish(
            OptimizationStatusChanged(
                optimization_id=result.optimization_id, status=result.status, reason=reason
            )
        )

    def _publish(self, event: OptimizerEvent) -> None:
        if self._events is not None:
            self._events.publish(event)


# =============================================================================
# HELPERS
# =============================================================================


def _action(
    bottleneck: Bottleneck,
    kind: ActionKind,
    parameter: str,
    value: float | int | bool,
    description: str,
) -> OptimizationAction:
    return OptimizationAction(
        action_id=f"{bottleneck.bottleneck_id}:{parameter}",
        kind=kind,
        target=bottleneck.affected_target,
        parameters={parameter: value},
        description=description,
    )


def _lower_is_better(metric_name: str) -> bool:
    return metric_name.endswith(_LOWER_IS_BETTER_SUFFIXES)


def _is_degrading(trend: PerformanceTrend) -> bool:
    if trend.confidence_score <= DEGRADING_TREND_CONFIDENCE:
        return False
    if trend.metric_name == "system_baseline":
        return False
    if _lower_is_better(trend.metric_name):
        return trend.direction == TrendDirection.UP
    return trend.direction == TrendDirection.DOWN


def _fired_trigger(
    result: OptimizationResult, snapshot: MetricsSnapshot | None
) -> RollbackTrigger | None:
    if snapshot is None:
        return None
    for trigger in result.recommendation.safety_assessment.rollback_triggers:
        if trigger.is_triggered(snapshot):
            return trigger
    return None


def _health_assessment(current: MetricsSnapshot | None, bottlenecks: list[Bottleneck]) -> str:
    if current is None:
        return "Unknown - no metrics recorded yet"
    health = current.system_metrics.system_health_score
    critical = sum(1 for b in bottlenecks if b.severity == Severity.CRITICAL)

    if health >= 90 and critical == 0:
        text = "Excellent - system performing optimally"
    elif health >= 75 and critical == 0:
        text = "Good - minor optimizations available"
    elif health >= 60:
        text = "Fair - several issues need attention"
    else:
        text = "Poor - immediate action required"
    if critical:
        text += f" ({critical} critical bottleneck{'s' if critical > 1 else ''})"
    return text


def _opportunities(
    current: MetricsSnapshot | None,
    trends: list[PerformanceTrend],
    bottlenecks: list[Bottleneck],
    predictions: list[PredictedIssue],
) -> list[str]:
    found = [
        f"Resolve {b.type} bottleneck on {b.affected_target} "
        f"(~{b.estimated_improvement:.0f}% improvement)"
        for b in bottlenecks
    ]
    found.extend(
        f"Investigate {t.metric_name} ({t.direction} {t.change_percent:.1f}%)"
        for t in trends
        if _is_degrading(t)
    )
    if current is not None and current.system_metrics.overall_success_rate < TARGET_SUCCESS_RATE:
        found.append(
            f"Raise success rate from {current.system_metrics.overall_success_rate:.1f}% "
            f"toward {TARGET_SUCCESS_RATE:.0f}%"
        )
    found.extend(
        f"Prevent predicted {p.issue_type} ({p.confidence_percent:.0f}% confidence)"
        for p in predictions
    )
    return found
