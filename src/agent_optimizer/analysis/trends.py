"""Trend Analyzer - ordinary least-squares trends over the metrics history.

Algorithm (per metric series, x = point index):
- slope from OLS, intercept = mean - slope * (n - 1) / 2
- change % = |slope * (n - 1) / mean| * 100; below the stable band → STABLE,
  otherwise UP/DOWN by the slope sign
- confidence = R² * 100, clamped to [0, 100]
- a point is anomalous when |value - fit| > anomaly_deviation_ratio * |mean|

Covered series:
- system: average response time, success rate, health score
- per agent: response time, success rate, throughput
- validation: average time, success rate

Pure functions only. The same snapshots always yield the same trends.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NamedTuple

from agent_optimizer.models import (
    AnalysisSettings,
    MetricsSnapshot,
    PerformanceTrend,
    TrendDataPoint,
    TrendDirection,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

BASELINE_METRIC = "system_baseline"
BASELINE_CONFIDENCE = 50.0
BASELINE_VALUE = 100.0


class LinearFit(NamedTuple):
    slope: float
    intercept: float
    mean: float
    r_squared: float

    def predict(self, index: int) -> float:
        return self.slope * index + self.intercept

    def change_percent(self, n: int) -> float:
        if self.mean == 0:
            return 0.0
        return abs(self.slope * (n - 1) / self.mean) * 100


def fit_line(values: Sequence[float]) -> LinearFit:
    """Least-squares line through (index, value) pairs."""
    n = len(values)
    if n == 0:
        return LinearFit(0.0, 0.0, 0.0, 0.0)
    mean = sum(values) / n
    if n == 1:
        return LinearFit(0.0, mean, mean, 0.0)

    sum_x = n * (n - 1) / 2
    sum_xx = (n - 1) * n * (2 * n - 1) / 6
    sum_y = sum(values)
    sum_xy = sum(i * y for i, y in enumerate(values))

    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x**2)
    intercept = mean - slope * (n - 1) / 2

    ss_tot = sum((y - mean) ** 2 for y in values)
    ss_res = sum((y - (slope * i + intercept)) ** 2 for i, y in enumerate(values))
    r_squared = 0.0 if ss_tot == 0 else 1 - ss_res / ss_tot
    return LinearFit(slope, intercept, mean, r_squared)


def build_trend(
    metric_name: str,
    points: Sequence[tuple[str, float]],
    *,
    window_label: str,
    settings: AnalysisSettings,
    agent_id: str | None = None,
) -> PerformanceTrend:
    """Build one trend from (timestamp, value) pairs ordered oldest first."""
    values = [value for _, value in points]
    fit = fit_line(values)
    n = len(values)

    change = fit.change_percent(n)
    if change < settings.stable_change_percent:
        direction = TrendDirection.STABLE
    elif fit.slope > 0:
        direction = TrendDirection.UP
    else:
        direction = TrendDirection.DOWN

    tolerance = settings.anomaly_deviation_ratio * abs(fit.mean)
    data_points = [
        TrendDataPoint(
            timestamp=timestamp,
            value=value,
            anomaly_detected=abs(value - fit.predict(i)) > tolerance,
        )
        for i, (timestamp, value) in enumerate(points)
    ]

    return PerformanceTrend(
        metric_name=metric_name,
        agent_id=agent_id,
        direction=direction,
        change_percent=change,
        confidence_score=max(0.0, min(100.0, fit.r_squared * 100)),
        time_window=window_label,
        data_points=data_points,
    )


def baseline_trend(timestamp: str, window_label: str = "1h") -> PerformanceTrend:
    """Placeholder returned while history is too short to fit anything.

    Stable with middling confidence so consumers don't read "no data" as
    "confirmed stable".
    """
    return PerformanceTrend(
        metric_name=BASELINE_METRIC,
        direction=TrendDirection.STABLE,
        change_percent=0.0,
        confidence_score=BASELINE_CONFIDENCE,
        time_window=window_label,
        data_points=[TrendDataPoint(timestamp=timestamp, value=BASELINE_VALUE)],
    )


# =============================================================================
# SERIES EXTRACTION
# =============================================================================

SYSTEM_SERIES: dict[str, Callable[[MetricsSnapshot], float]] = {
    "system_average_response_time": lambda s: s.system_metrics.average_response_time,
    "system_success_rate": lambda s: s.system_metrics.overall_success_rate,
    "system_health_score": lambda s: s.system_metrics.system_health_score,
}

VALIDATION_SERIES: dict[str, Callable[[MetricsSnapshot], float]] = {
    "validation_average_time": lambda s: s.validation_metrics.average_validation_time,
    "validation_success_rate": lambda s: s.validation_metrics.validation_success_rate,
}

AGENT_SERIES: dict[str, str] = {
    "response_time": "response_time_ms",
    "success_rate": "success_rate",
    "throughput": "throughput_per_minute",
}


def compute_trends(
    snapshots: Sequence[MetricsSnapshot],
    *,
    window_label: str,
    settings: AnalysisSettings,
) -> list[PerformanceTrend]:
    """All confident trends for the given window, in a fixed order.

    System series first, then agents in sorted id order, then validation.
    """
    ordered = sorted(snapshots, key=lambda s: s.instant)
    trends: list[PerformanceTrend] = []

    def add(name: str, points: list[tuple[str, float]], agent_id: str | None = None) -> None:
        if len(points) < settings.min_series_points:
            return
        trends.append(
            build_trend(
                name, points, window_label=window_label, settings=settings, agent_id=agent_id
            )
        )

    for name, read in SYSTEM_SERIES.items():
        add(name, [(s.timestamp, read(s)) for s in ordered])

    agent_ids = sorted({agent for s in ordered for agent in s.agent_metrics})
    for agent_id in agent_ids:
        for suffix, field in AGENT_SERIES.items():
            points = [
                (s.timestamp, float(getattr(s.agent_metrics[agent_id], field)))
                for s in ordered
                if agent_id in s.agent_metrics
            ]
            add(f"{agent_id}_{suffix}", points, agent_id)

    for name, read in VALIDATION_SERIES.items():
        add(name, [(s.timestamp, read(s)) for s in ordered])

    return [t for t in trends if t.confidence_score >= settings.confidence_threshold]
