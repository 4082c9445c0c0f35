"""OptimizationAnalyzer - history-backed entry points for every analysis.

All methods read a copy of the history, so they can run side by side. The
trend computation is the expensive one and is only reachable from the outside
through the throttle guard (`analyze_trends`). `compute_trends` bypasses the
guard and exists for callers that have already been throttled upstream, and
for tests.

Analysis-layer failures never propagate: they are logged and the caller gets
an empty result.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from whenever import Instant, TimeDelta

from agent_optimizer.analysis.bottlenecks import detect_bottlenecks
from agent_optimizer.analysis.error_patterns import analyze_error_patterns
from agent_optimizer.analysis.predictions import predict_issues
from agent_optimizer.analysis.trends import baseline_trend, compute_trends
from agent_optimizer.guard import GuardOutcome, ThrottleGuard
from agent_optimizer.models import AnalysisSettings

if TYPE_CHECKING:
    from collections.abc import Callable

    from agent_optimizer.history import MetricsHistory
    from agent_optimizer.models import (
        AlertThresholds,
        Bottleneck,
        ErrorPattern,
        MetricsSnapshot,
        PerformanceTrend,
        PredictedIssue,
    )

logger = logging.getLogger("agent_optimizer.analysis")


class OptimizationAnalyzer:
    """Trend, bottleneck, error-pattern and prediction analysis over one history."""

    def __init__(
        self,
        history: MetricsHistory,
        settings: AnalysisSettings | None = None,
        *,
        trend_guard: ThrottleGuard | None = None,
        clock: Callable[[], Instant] = Instant.now,
    ) -> None:
        self._history = history
        self._settings = settings or AnalysisSettings()
        self._trend_guard = trend_guard or ThrottleGuard("trend-analysis")
        self._clock = clock

    @property
    def settings(self) -> AnalysisSettings:
        return self._settings

    @property
    def trend_guard(self) -> ThrottleGuard:
        return self._trend_guard

    @property
    def has_enough_history(self) -> bool:
        return len(self._history) >= self._settings.min_data_points

    def latest_snapshot(self) -> MetricsSnapshot | None:
        return self._history.latest()

    # -------------------------------------------------------------------------
    # Trends
    # -------------------------------------------------------------------------

    def compute_trends(self, window_hours: int | None = None) -> list[PerformanceTrend]:
        """Unguarded trend computation over the last `window_hours`.

        Returns a single baseline trend while history is shorter than
        `min_data_points`; never an empty list in that case.
        """
        hours = window_hours or self._settings.default_window_hours
        now = self._clock()
        snapshots = self._history.snapshot()
        if len(snapshots) < self._settings.min_data_points:
            return [baseline_trend(now.format_iso())]

        since = now - TimeDelta(hours=hours)
        windowed = [s for s in snapshots if s.instant >= since]
        return compute_trends(windowed, window_label=f"{hours}h", settings=self._settings)

    async def analyze_trends(self, window_hours: int | None = None) -> GuardOutcome:
        """Guarded trend analysis.

        The outcome's value is the fresh trend list, or the last successful
        one when the guard short-circuits.
        """
        return await self._trend_guard.run(
            lambda: asyncio.to_thread(self.compute_trends, window_hours)
        )

    # -------------------------------------------------------------------------
    # Bottlenecks, error patterns, predictions
    # -------------------------------------------------------------------------

    def detect_bottlenecks(self, thresholds: AlertThresholds) -> list[Bottleneck]:
        return self._recover(
            "bottleneck detection", lambda: detect_bottlenecks(self._history.latest(), thresholds)
        )

    def analyze_error_patterns(self) -> list[ErrorPattern]:
        if not self.has_enough_history:
            return []
        recent = self._history.recent(self._settings.recent_snapshot_count)
        return self._recover("error-pattern analysis", lambda: analyze_error_patterns(recent))

    def predict_issues(self) -> list[PredictedIssue]:
        if self._trend_guard.circuit_open:
            logger.debug("Trend circuit open, skipping predictions")
            return []
        if not self.has_enough_history:
            return []
        recent = self._history.recent(self._settings.recent_snapshot_count)
        now = self._clock()
        return self._recover(
            "issue prediction", lambda: predict_issues(recent, now, self._settings)
        )

    @staticmethod
    def _recover(name: str, compute: Callable[[], list[Any]]) -> list[Any]:
        try:
            return compute()
        except Exception:
            logger.warning("%s failed, returning no results", name, exc_info=True)
            return []
