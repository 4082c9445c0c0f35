"""Issue Predictor - near-future issues from simplified trend heuristics.

The predictor deliberately does NOT call the Trend Analyzer. It compares the
mean of the newest three points with the mean of the window, which is cheap,
can't re-enter the throttle guard, and can't feed back into threshold changes.

Forecasts:
- performance_degradation: success rate trending down → in 24h
- system_overload: request load rising over the last snapshots above a floor → in 6h
- validation_failure: mean validation success below a floor → in 2h

Every forecast lands strictly after predicted_at and within the 48h horizon.
"""

from __future__ import annotations

from statistics import fmean
from typing import TYPE_CHECKING, NamedTuple

from whenever import TimeDelta

from agent_optimizer.models import (
    PREDICTION_HORIZON_HOURS,
    IssueType,
    PredictedIssue,
    TrendDirection,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from whenever import Instant

    from agent_optimizer.models import AnalysisSettings, MetricsSnapshot

SIMPLE_TREND_CONFIDENCE = 75.0
OVERLOAD_CONFIDENCE = 75.0
VALIDATION_FAILURE_CONFIDENCE = 70.0

LEAD_TIME_HOURS: dict[IssueType, int] = {
    IssueType.PERFORMANCE_DEGRADATION: 24,
    IssueType.SYSTEM_OVERLOAD: 6,
    IssueType.VALIDATION_FAILURE: 2,
}


class SimpleTrend(NamedTuple):
    metric: str
    direction: TrendDirection
    confidence: float


_SIMPLE_SERIES: dict[str, Callable[[MetricsSnapshot], float]] = {
    "success_rate": lambda s: s.system_metrics.overall_success_rate,
    "response_time": lambda s: s.system_metrics.average_response_time,
    "validation_success_rate": lambda s: s.validation_metrics.validation_success_rate,
}


def simplified_trends(
    snapshots: Sequence[MetricsSnapshot], settings: AnalysisSettings
) -> list[SimpleTrend]:
    """Recent-three mean vs. window mean, per tracked series."""
    if len(snapshots) < 3:
        return []
    trends: list[SimpleTrend] = []
    for metric, read in _SIMPLE_SERIES.items():
        values = [read(s) for s in snapshots]
        delta = fmean(values[-3:]) - fmean(values)
        if abs(delta) > settings.simplified_trend_delta:
            direction = TrendDirection.UP if delta > 0 else TrendDirection.DOWN
            trends.append(SimpleTrend(metric, direction, SIMPLE_TREND_CONFIDENCE))
    return trends


def _issue(
    issue_type: IssueType,
    now: Instant,
    confidence: float,
    *,
    components: list[str],
    actions: list[str],
    monitoring: list[str],
) -> PredictedIssue:
    predicted_at = now.format_iso()
    occurrence = now + TimeDelta(hours=LEAD_TIME_HOURS[issue_type])
    return PredictedIssue(
        issue_id=f"{issue_type.value}:{predicted_at}",
        predicted_at=predicted_at,
        likely_occurrence=occurrence.format_iso(),
        confidence_percent=confidence,
        issue_type=issue_type,
        affected_components=components,
        preventive_actions=actions,
        monitoring_requirements=monitoring,
    )


def _is_rising(values: Sequence[float]) -> bool:
    return all(a <= b for a, b in zip(values, values[1:], strict=False)) and values[-1] > values[0]


def predict_issues(
    snapshots: Sequence[MetricsSnapshot],
    now: Instant,
    settings: AnalysisSettings,
) -> list[PredictedIssue]:
    """Forecast issues from the most recent snapshots, oldest first."""
    issues: list[PredictedIssue] = []

    for trend in simplified_trends(snapshots, settings):
        if trend.metric == "success_rate" and trend.direction == TrendDirection.DOWN:
            issues.append(
                _issue(
                    IssueType.PERFORMANCE_DEGRADATION,
                    now,
                    trend.confidence,
                    components=["system"],
                    actions=[
                        "Review recent configuration changes",
                        "Check agent error logs for new failure modes",
                    ],
                    monitoring=["system.overall_success_rate", "system.average_response_time"],
                )
            )

    last_five = snapshots[-5:]
    if len(last_five) >= 3:
        load = [float(s.system_metrics.total_requests) for s in last_five]
        if _is_rising(load[-3:]) and fmean(load) > settings.overload_request_floor:
            issues.append(
                _issue(
                    IssueType.SYSTEM_OVERLOAD,
                    now,
                    OVERLOAD_CONFIDENCE,
                    components=["system", "load_balancer"],
                    actions=["Scale agent capacity ahead of demand", "Enable request queuing"],
                    monitoring=["system.total_requests", "system.system_health_score"],
                )
            )

    last_ten = snapshots[-10:]
    if last_ten:
        success = fmean(s.validation_metrics.validation_success_rate for s in last_ten)
        if success < settings.validation_success_floor:
            issues.append(
                _issue(
                    IssueType.VALIDATION_FAILURE,
                    now,
                    VALIDATION_FAILURE_CONFIDENCE,
                    components=["validation"],
                    actions=["Review validation rules", "Inspect recently failed outputs"],
                    monitoring=["validation.validation_success_rate"],
                )
            )

    return [
        issue
        for issue in issues
        if issue.confidence_percent >= settings.prediction_confidence_threshold
        and LEAD_TIME_HOURS[issue.issue_type] <= PREDICTION_HORIZON_HOURS
    ]
