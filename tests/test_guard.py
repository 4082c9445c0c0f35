"""Tests for the throttle / circuit-breaker guard."""

import asyncio

import pytest

from agent_optimizer.guard import GuardStatus, ThrottleGuard
from agent_optimizer.models import ThrottleSettings

pytestmark = pytest.mark.anyio


def make_guard(monotonic, **overrides) -> ThrottleGuard:
    settings = ThrottleSettings(
        **{
            "min_interval_sec": 60,
            "failure_threshold": 3,
            "cooldown_sec": 300,
            "timeout_sec": 5,
            **overrides,
        }
    )
    return ThrottleGuard("test", settings, clock=monotonic)


async def ok():
    return "value"


async def boom():
    msg = "boom"
    raise RuntimeError(msg)


class TestThrottle:
    async def test_runs_once_per_interval(self, monotonic):
        guard = make_guard(monotonic)

        first = await guard.run(ok)
        second = await guard.run(ok)

        assert first.status == GuardStatus.RAN
        assert second.status == GuardStatus.THROTTLED
        assert second.value == "value"
        assert second.skipped
        assert guard.runs == 1

    async def test_runs_again_after_interval(self, monotonic):
        guard = make_guard(monotonic)
        await guard.run(ok)
        monotonic.advance(61)

        assert (await guard.run(ok)).ran
        assert guard.runs == 2

    async def test_reset_forgets_last_run(self, monotonic):
        guard = make_guard(monotonic)
        await guard.run(ok)
        guard.reset()

        assert (await guard.run(ok)).ran


class TestSingleFlight:
    async def test_concurrent_call_is_skipped(self, monotonic):
        guard = make_guard(monotonic, min_interval_sec=0)
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return "slow"

        task = asyncio.create_task(guard.run(slow))
        await asyncio.sleep(0)
        assert guard.in_flight

        skipped = await guard.run(ok)
        release.set()
        finished = await task

        assert skipped.status == GuardStatus.IN_FLIGHT
        assert finished.value == "slow"
        assert not guard.in_flight


class TestCircuitBreaker:
    async def test_opens_after_consecutive_failures(self, monotonic):
        guard = make_guard(monotonic, min_interval_sec=0)

        for _ in range(3):
            outcome = await guard.run(boom)
            assert outcome.status == GuardStatus.FAILED
            assert outcome.error == "boom"

        assert guard.circuit_open
        assert (await guard.run(ok)).status == GuardStatus.CIRCUIT_OPEN
        assert guard.runs == 3

    async def test_closes_after_cooldown(self, monotonic):
        guard = make_guard(monotonic, min_interval_sec=0)
        for _ in range(3):
            await guard.run(boom)
        monotonic.advance(301)

        assert not guard.circuit_open
        assert (await guard.run(ok)).ran
        assert guard.consecutive_failures == 0

    async def test_success_resets_failure_count(self, monotonic):
        guard = make_guard(monotonic, min_interval_sec=0)
        await guard.run(boom)
        await guard.run(boom)
        await guard.run(ok)

        assert guard.consecutive_failures == 0
        assert not guard.circuit_open

    async def test_failure_keeps_last_good_value(self, monotonic):
        guard = make_guard(monotonic, min_interval_sec=0)
        await guard.run(ok)
        outcome = await guard.run(boom)

        assert outcome.value == "value"
        assert guard.state().consecutive_failures == 1


class TestTimeout:
    async def test_stuck_operation_times_out(self, monotonic):
        guard = make_guard(monotonic, timeout_sec=0.05, min_interval_sec=0)

        async def stuck():
            await asyncio.sleep(10)

        outcome = await guard.run(stuck)

        assert outcome.status == GuardStatus.FAILED
        assert outcome.error == "TimeoutError"
        assert not guard.in_flight
        assert guard.consecutive_failures == 1
