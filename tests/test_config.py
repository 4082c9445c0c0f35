"""Tests for OptimizerConfig loading."""

from agent_optimizer.models import DecisionPriority, OptimizerConfig


def test_defaults():
    config = OptimizerConfig()

    assert config.alert_thresholds.max_response_time_ms == 5000.0
    assert config.thresholds.approval_above_percent == 15.0
    assert config.safety.max_concurrent_optimizations == 5
    assert config.oversight.expiry_hours[DecisionPriority.URGENT] == 2.0
    assert config.analysis.min_data_points == 10


def test_env_overrides_nested_settings(monkeypatch):
    monkeypatch.setenv("OPTIMIZER_SAFETY__MAX_AUTO_OPTIMIZATIONS_PER_DAY", "3")
    monkeypatch.setenv("OPTIMIZER_ALERT_THRESHOLDS__MAX_CPU_USAGE_PERCENT", "70")

    config = OptimizerConfig()

    assert config.safety.max_auto_optimizations_per_day == 3
    assert config.alert_thresholds.max_cpu_usage_percent == 70.0
    assert config.safety.max_concurrent_optimizations == 5
