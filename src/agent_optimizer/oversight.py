"""Human Oversight Workflow - quorum decisions on risky changes.

State machine:
    pending → approved   (required approvals reached, no rejection)
    pending → rejected   (any single rejection, immediately)
    pending → expired    (expiry reached while still pending)
    pending → escalated → pending   (priority raised to urgent, expiry extended,
                                     admins may now decide; audited)

Required approvals:
- emergency actions and urgent requests need 2
- threshold changes with a total risk score above the high-risk score need 2
- everything else needs 1

Expiry by priority (defaults): urgent 2h, high 8h, medium 24h, low 72h.

Each pending request owns one cancellable loop timer. Resolving a request
cancels its timer, so a late timer never touches an archived request.
`expire_overdue()` catches anything a timer missed (e.g. requests created
without a running loop).

On every terminal transition the request leaves the pending set, is appended
to the history log, and registered resolution handlers are awaited.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import Counter
from statistics import fmean
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from whenever import Instant, TimeDelta

from agent_optimizer.errors import (
    DecisionRequestNotFoundError,
    DuplicateDecisionError,
    PermissionDeniedError,
    RequestAlreadyResolvedError,
    UserNotFoundError,
    WorkflowError,
)
from agent_optimizer.models import (
    ContextRecommendation,
    DecisionEscalated,
    DecisionPriority,
    DecisionRequest,
    DecisionResolved,
    DecisionStatus,
    DecisionType,
    HumanDecision,
    OversightContext,
    OversightMetrics,
    OversightPermission,
    OversightRole,
    OversightSettings,
    OversightUser,
    PermissionAction,
    PermissionScope,
    RiskTier,
    Severity,
    StatusTransition,
    Verdict,
)
from agent_optimizer.notifications import LoggingNotifier

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from agent_optimizer.events import EventBus
    from agent_optimizer.models import DecisionContent, OptimizerEvent, ThresholdAdjustment
    from agent_optimizer.notifications import Notifier

logger = logging.getLogger("agent_optimizer.oversight")

ACTION_FOR_TYPE: dict[DecisionType, PermissionAction] = {
    DecisionType.THRESHOLD_CHANGE: PermissionAction.APPROVE_THRESHOLDS,
    DecisionType.OPTIMIZATION_APPROVAL: PermissionAction.APPROVE_OPTIMIZATIONS,
    DecisionType.EMERGENCY_ACTION: PermissionAction.EMERGENCY_ROLLBACK,
}

_PRIORITY_ORDER = {
    DecisionPriority.URGENT: 0,
    DecisionPriority.HIGH: 1,
    DecisionPriority.MEDIUM: 2,
    DecisionPriority.LOW: 3,
}

_SEVERITY_TIER = {
    Severity.LOW: RiskTier.LOW,
    Severity.MEDIUM: RiskTier.MEDIUM,
    Severity.HIGH: RiskTier.HIGH,
    Severity.CRITICAL: RiskTier.CRITICAL,
}


@runtime_checkable
class ContextProvider(Protocol):
    """Live system state shown to reviewers."""

    def system_health(self) -> float: ...

    def active_alerts(self) -> list[str]: ...


class StaticContextProvider:
    def __init__(self, health: float = 100.0, alerts: Sequence[str] = ()) -> None:
        self._health = health
        self._alerts = list(alerts)

    def system_health(self) -> float:
        return self._health

    def active_alerts(self) -> list[str]:
        return list(self._alerts)


def default_admin(user_id: str = "admin-1") -> OversightUser:
    return OversightUser(
        user_id=user_id,
        name="System Administrator",
        role=OversightRole.ADMIN,
        permissions=[
            OversightPermission(action=action, scope=PermissionScope.ALL)
            for action in PermissionAction
        ],
    )


def risk_tier_of(content: DecisionContent) -> RiskTier:
    """Risk tier a request's content carries, used for permission scopes."""
    if content.kind == "threshold_change":
        return content.request.risk_tier
    if content.kind == "optimization_approval":
        return content.recommendation.safety_assessment.risk_level
    return _SEVERITY_TIER[content.emergency.severity]


class HumanOversightWorkflow:
    """Decision requests, reviewers, quorum, expiry and escalation."""

    def __init__(
        self,
        settings: OversightSettings | None = None,
        *,
        notifier: Notifier | None = None,
        context_provider: ContextProvider | None = None,
        events: EventBus | None = None,
        clock: Callable[[], Instant] = Instant.now,
    ) -> None:
        self._settings = settings or OversightSettings()
        self._notifier = notifier or LoggingNotifier()
        self._context = context_provider or StaticContextProvider()
        self._events = events
        self._clock = clock

        self._users: dict[str, OversightUser] = {}
        self._pending: dict[str, DecisionRequest] = {}
        self._history: list[DecisionRequest] = []
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._handlers: list[Callable[[DecisionRequest], Awaitable[None]]] = []

        if self._settings.register_default_admin:
            self.register_user(default_admin(self._settings.default_admin_id))

    # -------------------------------------------------------------------------
    # Users & handlers
    # -------------------------------------------------------------------------

    def register_user(self, user: OversightUser) -> None:
        self._users[user.user_id] = user

    def get_user(self, user_id: str) -> OversightUser:
        user = self._users.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def admins(self) -> list[OversightUser]:
        return [u for u in self._users.values() if u.role == OversightRole.ADMIN]

    def add_resolution_handler(self, handler: Callable[[DecisionRequest], Awaitable[None]]) -> None:
        """Await `handler(request)` after every terminal transition."""
        self._handlers.append(handler)

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def create_decision_request(
        self,
        type: DecisionType,
        content: DecisionContent,
        priority: DecisionPriority = DecisionPriority.MEDIUM,
    ) -> DecisionRequest:
        now = self._clock()
        tier = risk_tier_of(content)
        request = DecisionRequest(
            request_id=f"dec-{uuid.uuid4().hex[:12]}",
            type=type,
            created_at=now.format_iso(),
            expires_at=(now + self._expiry_for(priority)).format_iso(),
            priority=priority,
            risk_tier=tier,
            content=content,
            context=self._build_context(type, tier, content),
            required_approvals=self._required_approvals(type, priority, content),
        )
        self._pending[request.request_id] = request
        self._schedule_expiry(request)

        logger.info(
            "Created %s decision %s (%s priority, %s risk, %d approval(s) required)",
            type,
            request.request_id,
            priority,
            tier,
            request.required_approvals,
        )
        self._notifier.notify_decision_request(request, self._eligible_users(request))
        return request

    def get_request(self, request_id: str) -> DecisionRequest:
        request = self._pending.get(request_id)
        if request is not None:
            return request
        for archived in self._history:
            if archived.request_id == request_id:
                return archived
        raise DecisionRequestNotFoundError(request_id)

    def get_pending_decisions(self, user_id: str) -> list[DecisionRequest]:
        """Pending requests `user_id` may decide on, most urgent first."""
        user = self.get_user(user_id)
        eligible = [r for r in self._pending.values() if self._can_decide(user, r)]
        return sorted(eligible, key=lambda r: (_PRIORITY_ORDER[r.priority], r.created_at))

    def pending(self) -> list[DecisionRequest]:
        return list(self._pending.values())

    def history(self) -> list[DecisionRequest]:
        return list(self._history)

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
        request = self._require_pending(request_id)
        user = self.get_user(user_id)
        if not self._can_decide(user, request):
            raise PermissionDeniedError(user_id, ACTION_FOR_TYPE[request.type], request.risk_tier)

        if Instant.parse_iso(request.expires_at) <= self._clock():
            await self._resolve(request, DecisionStatus.EXPIRED, "Expired before decision")
            raise RequestAlreadyResolvedError(request_id, DecisionStatus.EXPIRED)

        if request.decided_by(user_id):
            raise DuplicateDecisionError(request_id, user_id)
        if verdict == Verdict.MODIFY and request.type != DecisionType.THRESHOLD_CHANGE:
            msg = f"'modify' is only valid for threshold changes, not {request.type}"
            raise WorkflowError(msg)

        request.received_approvals.append(
            HumanDecision(
                user_id=user_id,
                verdict=verdict,
                reasoning=reasoning,
                confidence=confidence,
                modified_adjustments=list(modified_adjustments) if modified_adjustments else None,
                decided_at=self._clock().format_iso(),
            )
        )
        logger.info("User %s voted %s on %s", user_id, verdict, request_id)

        if request.has_rejection:
            await self._resolve(request, DecisionStatus.REJECTED, f"Rejected by {user_id}")
        elif request.approval_count >= request.required_approvals:
            await self._resolve(request, DecisionStatus.APPROVED, "Approval quorum reached")
        return request

    def escalate(self, request_id: str, reason: str) -> DecisionRequest:
        """Raise to urgent and extend expiry; received approvals are kept."""
        request = self._require_pending(request_id)
        now = self._clock()

        request.transitions.append(
            StatusTransition(
                from_status=DecisionStatus.PENDING,
                to_status=DecisionStatus.ESCALATED,
                at=now.format_iso(),
                reason=reason,
            )
        )
        request.priority = DecisionPriority.URGENT
        extended = Instant.parse_iso(request.expires_at) + TimeDelta(
            hours=self._settings.escalation_extension_hours
        )
        floor = now + self._expiry_for(DecisionPriority.URGENT)
        request.expires_at = max(extended, floor).format_iso()
        request.transitions.append(
            StatusTransition(
                from_status=DecisionStatus.ESCALATED,
                to_status=DecisionStatus.PENDING,
                at=now.format_iso(),
                reason="Awaiting decision under escalated scope",
            )
        )
        self._schedule_expiry(request)

        logger.warning("Escalated decision %s: %s", request_id, reason)
        self._notifier.notify_escalation(request, self.admins(), reason)
        self._publish(DecisionEscalated(request_id=request_id, reason=reason))
        return request

    async def expire_overdue(self) -> list[DecisionRequest]:
        """Expire every pending request whose deadline has passed."""
        now = self._clock()
        overdue = [
            r for r in list(self._pending.values()) if Instant.parse_iso(r.expires_at) <= now
        ]
        expired: list[DecisionRequest] = []
        for request in overdue:
            try:
                await self._resolve(request, DecisionStatus.EXPIRED, "Expired without a decision")
            except Exception:
                logger.exception("Resolution handler failed while expiring %s", request.request_id)
            expired.append(request)
        return expired

    def close(self) -> None:
        """Cancel all expiry timers."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    # -------------------------------------------------------------------------
    # Analytics
    # -------------------------------------------------------------------------

    def get_metrics(self) -> OversightMetrics:
        now = self._clock()
        day_ago = now - TimeDelta(hours=24)
        history = self._history

        resolved_today = [
            r for r in history if r.resolved_at and Instant.parse_iso(r.resolved_at) >= day_ago
        ]
        approved = sum(1 for r in history if r.status == DecisionStatus.APPROVED)
        decided = [r for r in history if r.status != DecisionStatus.EXPIRED and r.resolved_at]
        latencies = [
            (Instant.parse_iso(r.resolved_at) - Instant.parse_iso(r.created_at)).total("minutes")
            for r in decided
            if r.resolved_at
        ]

        by_user: Counter[str] = Counter()
        for request in [*history, *self._pending.values()]:
            for decision in request.received_approvals:
                by_user[decision.user_id] += 1

        return OversightMetrics(
            total_decisions_today=len(resolved_today),
            pending_decisions=len(self._pending),
            approval_rate=approved / len(history) * 100 if history else 0.0,
            average_decision_minutes=fmean(latencies) if latencies else 0.0,
            expired_count=sum(1 for r in history if r.status == DecisionStatus.EXPIRED),
            escalated_count=sum(
                1 for r in [*history, *self._pending.values()] if r.was_escalated
            ),
            decisions_by_type=dict(Counter(str(r.type) for r in history)),
            decisions_by_user=dict(by_user),
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require_pending(self, request_id: str) -> DecisionRequest:
        request = self._pending.get(request_id)
        if request is not None:
            return request
        archived = self.get_request(request_id)
        raise RequestAlreadyResolvedError(request_id, archived.status)

    def _expiry_for(self, priority: DecisionPriority) -> TimeDelta:
        return TimeDelta(hours=self._settings.expiry_hours[priority])

    def _required_approvals(
        self, type: DecisionType, priority: DecisionPriority, content: DecisionContent
    ) -> int:
        if type == DecisionType.EMERGENCY_ACTION or priority == DecisionPriority.URGENT:
            return 2
        if (
            content.kind == "threshold_change"
            and content.request.total_risk_score > self._settings.high_risk_score
        ):
            return 2
        return 1

    def _can_decide(self, user: OversightUser, request: DecisionRequest) -> bool:
        action = ACTION_FOR_TYPE[request.type]
        if user.can(action, request.risk_tier):
            return True
        # Escalation broadens scope to every admin holding the action
        return (
            request.was_escalated
            and user.role == OversightRole.ADMIN
            and any(p.action == action for p in user.permissions)
        )

    def _eligible_users(self, request: DecisionRequest) -> list[OversightUser]:
        return [u for u in self._users.values() if self._can_decide(u, request)]

    def _build_context(
        self, type: DecisionType, tier: RiskTier, content: DecisionContent
    ) -> OversightContext:
        similar = [r for r in self._history if r.type == type]
        success_rate = None
        if similar:
            approved = sum(1 for r in similar if r.status == DecisionStatus.APPROVED)
            success_rate = approved / len(similar) * 100

        return OversightContext(
            system_health=max(0.0, min(100.0, self._context.system_health())),
            active_alerts=self._context.active_alerts(),
            similar_decision_success_rate=success_rate,
            predicted_outcomes=_predicted_outcomes(content),
            recommendation=_recommend(type, tier),
        )

    def _schedule_expiry(self, request: DecisionRequest) -> None:
        self._cancel_timer(request.request_id)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; %s relies on expiry sweeps", request.request_id)
            return
        delay = (Instant.parse_iso(request.expires_at) - self._clock()).total("seconds")
        self._timers[request.request_id] = loop.call_later(
            max(0.0, delay), self._on_expiry_timer, request.request_id
        )

    def _cancel_timer(self, request_id: str) -> None:
        handle = self._timers.pop(request_id, None)
        if handle is not None:
            handle.cancel()

    def _on_expiry_timer(self, request_id: str) -> None:
        self._timers.pop(request_id, None)
        request = self._pending.get(request_id)
        if request is None:
            return
        task = asyncio.get_running_loop().create_task(
            self._resolve(request, DecisionStatus.EXPIRED, "Expired without a decision")
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Expiry handling failed", exc_info=task.exception())

    async def _resolve(self, request: DecisionRequest, status: DecisionStatus, reason: str) -> None:
        if self._pending.pop(request.request_id, None) is None:
            return
        self._cancel_timer(request.request_id)

        now = self._clock().format_iso()
        request.transitions.append(
            StatusTransition(from_status=request.status, to_status=status, at=now, reason=reason)
        )
        request.status = status
        request.resolved_at = now
        if status == DecisionStatus.REJECTED:
            request.final_decision = Verdict.REJECT
        elif status == DecisionStatus.APPROVED:
            modified = any(d.verdict == Verdict.MODIFY for d in request.received_approvals)
            request.final_decision = Verdict.MODIFY if modified else Verdict.APPROVE
        self._history.append(request)

        logger.info("Decision %s %s: %s", request.request_id, status, reason)
        self._publish(DecisionResolved(request_id=request.request_id, status=status))
        for handler in list(self._handlers):
            await handler(request)

    def _publish(self, event: OptimizerEvent) -> None:
        if self._events is not None:
            self._events.publish(event)


def _predicted_outcomes(content: DecisionContent) -> list[str]:
    if content.kind == "threshold_change":
        impact = content.request.estimated_impact
        return [
            f"Alert frequency change of about {impact.alert_frequency_change_percent:+.1f}%",
            f"False-positive reduction of about {impact.false_positive_reduction_percent:.1f}%",
        ]
    if content.kind == "optimization_approval":
        impact = content.recommendation.expected_impact
        return [
            f"Performance improvement of about {impact.performance_improvement_percent:.0f}%",
            f"Reliability improvement of about {impact.reliability_improvement_percent:.0f}%",
        ]
    return [f"Mitigates '{content.emergency.trigger_event}'"]


def _recommend(type: DecisionType, tier: RiskTier) -> ContextRecommendation:
    if type == DecisionType.EMERGENCY_ACTION:
        return ContextRecommendation(
            verdict=Verdict.APPROVE,
            confidence=80,
            reasoning="Emergency actions lose value with every minute of delay",
        )
    if tier == RiskTier.LOW:
        return ContextRecommendation(
            verdict=Verdict.APPROVE, confidence=90, reasoning="Small, easily reversible change"
        )
    if tier == RiskTier.MEDIUM:
        return ContextRecommendation(
            verdict=Verdict.APPROVE,
            confidence=75,
            reasoning="Moderate change within historical bounds",
        )
    if tier == RiskTier.HIGH:
        verdict = Verdict.MODIFY if type == DecisionType.THRESHOLD_CHANGE else Verdict.APPROVE
        return ContextRecommendation(
            verdict=verdict,
            confidence=60,
            reasoning="Large change; consider a smaller step and watch the rollback triggers",
        )
    return ContextRecommendation(
        verdict=Verdict.REJECT,
        confidence=70,
        reasoning="Change exceeds safe bounds for a single step",
    )
