"""Tests for the observer event bus."""

from agent_optimizer.events import EventBus
from agent_optimizer.models import DecisionResolved, DecisionStatus, ThresholdsApplied


def applied(request_id: str = "thr-1") -> ThresholdsApplied:
    return ThresholdsApplied(request_id=request_id, auto_applied=True, changed={"x": 1.0})


def test_handlers_called_in_order():
    bus = EventBus()
    seen = []
    bus.subscribe(lambda e: seen.append(("a", e.kind)))
    bus.subscribe(lambda e: seen.append(("b", e.kind)))

    bus.publish(applied())

    assert seen == [("a", "thresholds_applied"), ("b", "thresholds_applied")]


def test_failing_handler_is_isolated():
    bus = EventBus()
    seen = []

    def broken(event):
        msg = "boom"
        raise RuntimeError(msg)

    bus.subscribe(broken)
    bus.subscribe(seen.append)
    bus.publish(applied())

    assert len(seen) == 1


def test_unsubscribe():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(seen.append)
    unsubscribe()
    unsubscribe()

    bus.publish(applied())
    assert seen == []


def test_recent_events_filtered_by_kind():
    bus = EventBus(recent_limit=2)
    bus.publish(applied("thr-1"))
    bus.publish(DecisionResolved(request_id="dec-1", status=DecisionStatus.APPROVED))
    bus.publish(applied("thr-2"))

    assert [e.request_id for e in bus.recent()] == ["dec-1", "thr-2"]
    assert [e.request_id for e in bus.recent("thresholds_applied")] == ["thr-2"]
