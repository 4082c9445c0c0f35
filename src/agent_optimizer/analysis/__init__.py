"""Read-only analysis over the metrics history.

- trends: OLS regression trends per metric
- bottlenecks: threshold violations in the latest snapshot
- error_patterns: recurring failures over recent snapshots
- predictions: near-future issues from simplified heuristics
- analyzer: history-backed facade with the throttle guard in front of trends
"""

from .analyzer import OptimizationAnalyzer
from .bottlenecks import detect_bottlenecks
from .error_patterns import analyze_error_patterns
from .predictions import predict_issues, simplified_trends
from .trends import baseline_trend, build_trend, compute_trends, fit_line

__all__ = [
    "OptimizationAnalyzer",
    "analyze_error_patterns",
    "baseline_trend",
    "build_trend",
    "compute_trends",
    "detect_bottlenecks",
    "fit_line",
    "predict_issues",
    "simplified_trends",
]
