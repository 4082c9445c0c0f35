"""Property tests for the Error-Pattern Analyzer.

- A pattern is only reported for a source that actually saw errors
- Frequencies equal the summed counts across the window
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from agent_optimizer.analysis import analyze_error_patterns
from agent_optimizer.models import MetricsSnapshot, Severity

from ..builders import T0, agent, snapshot
from .strategies import snapshot_histories

# =============================================================================
# AGGREGATION
# =============================================================================


@given(history=snapshot_histories(min_size=0, max_size=12))
@settings(max_examples=200)
def test_frequencies_match_summed_counts(history: list[MetricsSnapshot]):
    """Property: Every pattern's frequency is the total it was built from."""
    patterns = {p.pattern_id: p for p in analyze_error_patterns(history)}

    critical = sum(s.system_metrics.critical_events for s in history)
    if critical:
        assert patterns["system_critical_events"].frequency == critical
    else:
        assert "system_critical_events" not in patterns

    for pattern_id, pattern in patterns.items():
        assert pattern.frequency > 0
        if pattern.error_type == "agent_error":
            agent_id = pattern.affected_targets[0]
            expected = sum(
                s.agent_metrics[agent_id].error_count
                for s in history
                if agent_id in s.agent_metrics
            )
            assert pattern.frequency == expected
            assert pattern_id == f"{agent_id}_errors"


def test_empty_window_has_no_patterns():
    assert analyze_error_patterns([]) == []


def test_error_free_window_has_no_patterns():
    assert analyze_error_patterns([snapshot(), snapshot()]) == []


@given(total=st.integers(min_value=1, max_value=30))
def test_system_impact_scales_with_critical_events(total: int):
    """Property: More than 10 is high, more than 5 is medium, otherwise low."""
    (pattern,) = analyze_error_patterns([snapshot(critical_events=total)])
    if total > 10:
        assert pattern.business_impact == Severity.HIGH
    elif total > 5:
        assert pattern.business_impact == Severity.MEDIUM
    else:
        assert pattern.business_impact == Severity.LOW


def test_agent_patterns_sorted_by_agent_id():
    current = snapshot(
        T0,
        agents={"zeta": agent(error_count=7), "alpha": agent(error_count=2)},
    )
    patterns = analyze_error_patterns([current])

    assert [p.pattern_id for p in patterns] == ["alpha_errors", "zeta_errors"]
    assert patterns[0].business_impact == Severity.LOW
    assert patterns[1].business_impact == Severity.MEDIUM
