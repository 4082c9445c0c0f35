"""Dynamic Threshold Engine - trend-driven, risk-scored alert threshold changes.

Proposal:
- each governed threshold watches trends whose metric name ends with its pattern
- only trends at or above the engine's confidence floor count
- step = mean signed trend change × trend_weight, capped at ±max_change_percent
- lower-is-better thresholds move against the step, higher-is-better move with it
- risk tier is banded on the resulting change; above approval_above_percent a
  human has to approve

Lifecycle:
    proposed → auto_applied (no adjustment needs approval)
    proposed → pending → approved (applied) | rejected
    auto_applied | approved → failed (the new values do not validate)

A trend that already backs a registered request is spent: the same evidence
never moves a threshold twice, even when an analysis is re-served from cache.

Every apply records the full threshold set before and after the change.
Rollback restores the fields that request touched from that record; it never
falls back to defaults.

AlertThresholds is owned here. Mutations go through one asyncio.Lock and
readers always get a copy.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from statistics import fmean
from typing import TYPE_CHECKING, NamedTuple

from pydantic import ValidationError
from whenever import Instant

from agent_optimizer.errors import (
    RollbackUnavailableError,
    ThresholdRequestNotFoundError,
    ThresholdRequestStateError,
)
from agent_optimizer.guard import GuardOutcome, ThrottleGuard
from agent_optimizer.models import (
    RISK_WEIGHTS,
    AlertThresholds,
    ApprovalStatus,
    EstimatedImpact,
    ThresholdAdjustment,
    ThresholdChangeRequest,
    ThresholdEngineSettings,
    ThresholdRequestPending,
    ThresholdRollbackPlan,
    ThresholdsApplied,
    ThresholdsRolledBack,
    Verdict,
    risk_tier_for_change,
)
from agent_optimizer.models.thresholds import MAX_RISK_SCORE

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from agent_optimizer.events import EventBus
    from agent_optimizer.models import OptimizerEvent, PerformanceTrend

logger = logging.getLogger("agent_optimizer.thresholds")


class GovernedThreshold(NamedTuple):
    name: str
    pattern: str
    lower_is_better: bool

    def watches(self, trend: PerformanceTrend) -> bool:
        name = trend.metric_name
        if not name.endswith(self.pattern):
            return False
        # Validation series only feed validation thresholds
        return self.pattern.startswith("validation_") or not name.startswith("validation_")


GOVERNED_THRESHOLDS: tuple[GovernedThreshold, ...] = (
    GovernedThreshold("max_response_time_ms", "response_time", lower_is_better=True),
    GovernedThreshold("min_success_rate_percent", "success_rate", lower_is_better=False),
    GovernedThreshold("max_memory_usage_mb", "memory", lower_is_better=True),
    GovernedThreshold("max_cpu_usage_percent", "cpu", lower_is_better=True),
    GovernedThreshold("max_validation_time_ms", "validation_average_time", lower_is_better=True),
)

# Thresholds expressed as a percentage can't exceed 100
_PERCENT_CEILINGS = {"min_success_rate_percent": 100.0}

# Estimated-impact multipliers applied to the mean absolute change
PERFORMANCE_FACTOR = 0.3
ALERT_FREQUENCY_FACTOR = -0.5
FALSE_POSITIVE_FACTOR = 0.8


def _percent_change(current: float, recommended: float) -> float:
    if current == 0:
        return 0.0
    return (recommended - current) / current * 100


TrendEvidence = tuple[str, str | None, str, float, float, str, str | None]


def evidence_of(trend: PerformanceTrend) -> TrendEvidence:
    """Identity of the observations behind `trend`."""
    last_seen = trend.data_points[-1].timestamp if trend.data_points else None
    return (
        trend.metric_name,
        trend.agent_id,
        trend.direction,
        trend.change_percent,
        trend.confidence_score,
        trend.time_window,
        last_seen,
    )


class DynamicThresholdEngine:
    """Owns the live AlertThresholds and every change request made against them."""

    def __init__(
        self,
        thresholds: AlertThresholds | None = None,
        settings: ThresholdEngineSettings | None = None,
        *,
        guard: ThrottleGuard | None = None,
        events: EventBus | None = None,
        clock: Callable[[], Instant] = Instant.now,
    ) -> None:
        self._thresholds = (thresholds or AlertThresholds()).model_copy(deep=True)
        self._settings = settings or ThresholdEngineSettings()
        self._guard = guard or ThrottleGuard("threshold-evaluation")
        self._events = events
        self._clock = clock
        self._lock = asyncio.Lock()
        self._requests: dict[str, ThresholdChangeRequest] = {}
        self._apply_order: dict[str, int] = {}
        self._spent: set[TrendEvidence] = set()

    @property
    def settings(self) -> ThresholdEngineSettings:
        return self._settings

    @property
    def guard(self) -> ThrottleGuard:
        return self._guard

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_current_thresholds(self) -> AlertThresholds:
        return self._thresholds.model_copy(deep=True)

    def get_request(self, request_id: str) -> ThresholdChangeRequest:
        request = self._requests.get(request_id)
        if request is None:
            raise ThresholdRequestNotFoundError(request_id)
        return request

    def get_pending_requests(self) -> list[ThresholdChangeRequest]:
        return [r for r in self._requests.values() if r.approval_status == ApprovalStatus.PENDING]

    def get_threshold_history(self) -> list[ThresholdChangeRequest]:
        """Resolved requests (applied, approved or rejected), oldest first."""
        return [r for r in self._requests.values() if r.approval_status != ApprovalStatus.PENDING]

    # -------------------------------------------------------------------------
    # Proposal
    # -------------------------------------------------------------------------

    def build_adjustment(
        self,
        threshold_name: str,
        current_value: float,
        recommended_value: float,
        *,
        confidence_score: float = 100.0,
        justification: str = "",
        supporting_trends: Sequence[PerformanceTrend] = (),
    ) -> ThresholdAdjustment:
        """Classify a single move of `threshold_name` by risk and approval need."""
        change = _percent_change(current_value, recommended_value)
        return ThresholdAdjustment(
            threshold_name=threshold_name,
            current_value=current_value,
            recommended_value=recommended_value,
            change_percent=change,
            confidence_score=confidence_score,
            justification=justification,
            risk_assessment=risk_tier_for_change(change),
            requires_approval=abs(change) > self._settings.approval_above_percent,
            supporting_trends=list(supporting_trends),
        )

    def propose_adjustments(
        self, trends: Sequence[PerformanceTrend]
    ) -> ThresholdChangeRequest | None:
        """Turn confident trends into one change request.

        Returns None when no governed threshold would move. Trends already
        backing a registered request are ignored.
        """
        current = self.get_current_thresholds()
        fresh = [t for t in trends if evidence_of(t) not in self._spent]
        if len(fresh) < len(trends):
            logger.debug("Ignoring %d already-acted-on trend(s)", len(trends) - len(fresh))
        adjustments: list[ThresholdAdjustment] = []

        for governed in GOVERNED_THRESHOLDS:
            relevant = [
                t
                for t in fresh
                if governed.watches(t) and t.confidence_score >= self._settings.confidence_threshold
            ]
            if not relevant:
                continue
            adjustment = self._adjustment_for(governed, current.value_of(governed.name), relevant)
            if adjustment is not None:
                adjustments.append(adjustment)

        if not adjustments:
            return None
        return self._build_request(adjustments)

    def _adjustment_for(
        self,
        governed: GovernedThreshold,
        current_value: float,
        trends: list[PerformanceTrend],
    ) -> ThresholdAdjustment | None:
        mean_change = fmean(t.signed_change_percent for t in trends)
        step = mean_change * self._settings.trend_weight
        cap = self._settings.max_change_percent
        step = max(-cap, min(cap, step))
        if governed.lower_is_better:
            step = -step

        recommended = current_value * (1 + step / 100)
        ceiling = _PERCENT_CEILINGS.get(governed.name)
        if ceiling is not None:
            recommended = min(recommended, ceiling)
        if recommended == current_value:
            return None

        confidence = fmean(t.confidence_score for t in trends)
        return self.build_adjustment(
            governed.name,
            current_value,
            recommended,
            confidence_score=confidence,
            justification=(
                f"{len(trends)} trend(s) averaging {mean_change:+.1f}% change "
                f"at {confidence:.0f}% confidence"
            ),
            supporting_trends=trends,
        )

    def _build_request(self, adjustments: list[ThresholdAdjustment]) -> ThresholdChangeRequest:
        risk_score = min(MAX_RISK_SCORE, sum(RISK_WEIGHTS[a.risk_assessment] for a in adjustments))
        mean_change = fmean(abs(a.change_percent) for a in adjustments)
        needs_approval = any(a.requires_approval for a in adjustments)
        auto = not needs_approval and self._settings.auto_apply_enabled

        return ThresholdChangeRequest(
            request_id=f"thr-{uuid.uuid4().hex[:12]}",
            created_at=self._clock().format_iso(),
            adjustments=adjustments,
            total_risk_score=risk_score,
            estimated_impact=EstimatedImpact(
                performance_change_percent=mean_change * PERFORMANCE_FACTOR,
                alert_frequency_change_percent=mean_change * ALERT_FREQUENCY_FACTOR,
                false_positive_reduction_percent=mean_change * FALSE_POSITIVE_FACTOR,
            ),
            approval_status=ApprovalStatus.AUTO_APPLIED if auto else ApprovalStatus.PENDING,
            rollback_plan=ThresholdRollbackPlan(
                auto_rollback_conditions=[
                    "System health score drops below its threshold after the change",
                    "Alert volume more than doubles within the rollback window",
                ],
                manual_rollback_procedure=[
                    "Roll back the change request by id",
                    "Confirm restored values with get_current_thresholds",
                    "Monitor affected metrics for one analysis cycle",
                ],
                monitoring_metrics=[a.threshold_name for a in adjustments],
            ),
        )

    # -------------------------------------------------------------------------
    # Submission & evaluation
    # -------------------------------------------------------------------------

    def register(self, request: ThresholdChangeRequest) -> None:
        """Track `request` without applying it and spend the trends behind it."""
        self._requests[request.request_id] = request
        for adjustment in request.adjustments:
            self._spent.update(evidence_of(t) for t in adjustment.supporting_trends)

    async def submit(self, request: ThresholdChangeRequest) -> ThresholdChangeRequest:
        """Register a request; auto-apply it or park it for a human decision."""
        self.register(request)
        if request.approval_status == ApprovalStatus.AUTO_APPLIED:
            return await self.apply(request.request_id)

        logger.info(
            "Threshold request %s pending approval (risk score %d)",
            request.request_id,
            request.total_risk_score,
        )
        self._publish(
            ThresholdRequestPending(
                request_id=request.request_id, total_risk_score=request.total_risk_score
            )
        )
        return request

    async def evaluate(self, trends: Sequence[PerformanceTrend]) -> GuardOutcome:
        """Guarded propose-and-submit cycle.

        The outcome's value is the submitted request, or None when nothing moved.
        """

        async def _cycle() -> ThresholdChangeRequest | None:
            request = self.propose_adjustments(trends)
            if request is None:
                logger.debug("No threshold adjustments proposed")
                return None
            return await self.submit(request)

        return await self._guard.run(_cycle)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def apply(self, request_id: str) -> ThresholdChangeRequest:
        async with self._lock:
            request = self.get_request(request_id)
            if request.applied_at is not None:
                raise ThresholdRequestStateError(request_id, "already applied", "apply")
            if request.approval_status not in (
                ApprovalStatus.AUTO_APPLIED,
                ApprovalStatus.APPROVED,
            ):
                raise ThresholdRequestStateError(request_id, request.approval_status, "apply")

            previous = self._thresholds.model_copy(deep=True)
            values = previous.model_dump()
            for adjustment in request.adjustments:
                values[adjustment.threshold_name] = adjustment.recommended_value
            # Re-validate so a bad recommendation can't leave thresholds half-written
            try:
                updated = AlertThresholds.model_validate(values)
            except ValidationError as e:
                request.approval_status = ApprovalStatus.FAILED
                request.failure_reason = f"Invalid threshold values: {e.error_count()} error(s)"
                logger.warning("Threshold request %s failed validation: %s", request_id, e)
                raise

            self._thresholds = updated
            request.previous_thresholds = previous
            request.applied_thresholds = updated.model_copy(deep=True)
            request.applied_at = self._clock().format_iso()
            self._apply_order[request_id] = len(self._apply_order)

        changed = {a.threshold_name: a.recommended_value for a in request.adjustments}
        logger.info("Applied threshold request %s: %s", request_id, changed)
        self._publish(
            ThresholdsApplied(
                request_id=request_id,
                auto_applied=request.approval_status == ApprovalStatus.AUTO_APPLIED,
                changed=changed,
            )
        )
        return request

    async def process_decision(
        self,
        request_id: str,
        verdict: Verdict,
        *,
        decided_by: Sequence[str] = (),
        modified_adjustments: Sequence[ThresholdAdjustment] | None = None,
    ) -> ThresholdChangeRequest:
        """Resolve a pending request from a human decision and apply it if approved."""
        request = self.get_request(request_id)
        if request.approval_status != ApprovalStatus.PENDING:
            raise ThresholdRequestStateError(request_id, request.approval_status, "decide on")

        if verdict == Verdict.REJECT:
            request.approval_status = ApprovalStatus.REJECTED
            logger.info("Threshold request %s rejected", request_id)
            return request

        if verdict == Verdict.MODIFY and modified_adjustments:
            # Re-anchor modified adjustments on the live values
            current = self.get_current_thresholds()
            rebuilt = self._build_request(
                [
                    self.build_adjustment(
                        a.threshold_name,
                        current.value_of(a.threshold_name),
                        a.recommended_value,
                        confidence_score=a.confidence_score,
                        justification=a.justification or "Modified by reviewer",
                        supporting_trends=a.supporting_trends,
                    )
                    for a in modified_adjustments
                ]
            )
            request.adjustments = rebuilt.adjustments
            request.total_risk_score = rebuilt.total_risk_score
            request.estimated_impact = rebuilt.estimated_impact
            request.rollback_plan = rebuilt.rollback_plan

        request.approval_status = ApprovalStatus.APPROVED
        request.approved_by = list(decided_by)
        return await self.apply(request_id)

    async def rollback(self, request_id: str) -> ThresholdChangeRequest:
        """Restore the thresholds an applied request changed to their prior values."""
        async with self._lock:
            request = self._requests.get(request_id)
            if request is None or request.applied_at is None:
                raise ThresholdRequestNotFoundError(request_id, applied_only=True)
            if request.rolled_back_at is not None or request.previous_thresholds is None:
                raise RollbackUnavailableError(request_id, "previous thresholds already restored")

            touched = {a.threshold_name for a in request.adjustments}
            for other in self._requests.values():
                if (
                    other is not request
                    and other.is_applied
                    and self._apply_order[other.request_id] > self._apply_order[request_id]
                    and touched & {a.threshold_name for a in other.adjustments}
                ):
                    raise RollbackUnavailableError(
                        request_id,
                        f"newer request {other.request_id} changed the same thresholds",
                    )

            values = self._thresholds.model_dump()
            previous = request.previous_thresholds
            restored = {name: previous.value_of(name) for name in sorted(touched)}
            values.update(restored)
            self._thresholds = AlertThresholds.model_validate(values)
            request.rolled_back_at = self._clock().format_iso()

        logger.info("Rolled back threshold request %s: %s", request_id, restored)
        self._publish(ThresholdsRolledBack(request_id=request_id, restored=restored))
        return request

    def _publish(self, event: OptimizerEvent) -> None:
        if self._events is not None:
            self._events.publish(event)
