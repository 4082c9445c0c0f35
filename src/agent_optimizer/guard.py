"""Throttle / Circuit-Breaker Guard.

Wraps an async operation with three rules, checked in order:
1. Circuit open → short-circuit until the cool-down elapses, then reset
2. Single-flight → short-circuit while a run is already in progress
3. Minimum interval → short-circuit if the last success is too recent

A short-circuit is not a failure. It returns the last successful value (if any)
with a status saying why the operation didn't run, and is logged at debug only.

Every run executes under a deadline so a stuck call can't hold the
single-flight slot forever. Consecutive failures (including timeouts) open the
circuit once they reach the configured threshold.

This guard is what stops the "detect load → re-analyze thresholds → detect
load" cascade: however often callers ask, the operation runs at most once per
interval.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from whenever import Instant

from agent_optimizer.models import GuardState, ThrottleSettings

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger("agent_optimizer.guard")


class GuardStatus(StrEnum):
    RAN = "ran"
    THROTTLED = "throttled"  # Inside the minimum interval
    IN_FLIGHT = "in_flight"  # Another run is in progress
    CIRCUIT_OPEN = "circuit_open"  # Cooling down after repeated failures
    FAILED = "failed"  # Ran and raised (or timed out)


@dataclass(frozen=True)
class GuardOutcome:
    """Result of one guarded call.

    `value` is the fresh result when status is RAN, otherwise the last
    successful value (None if the operation never succeeded).
    """

    status: GuardStatus
    value: Any = None
    error: str | None = None

    @property
    def ran(self) -> bool:
        return self.status == GuardStatus.RAN

    @property
    def skipped(self) -> bool:
        """True when the guard short-circuited without attempting the operation."""
        return self.status in (
            GuardStatus.THROTTLED,
            GuardStatus.IN_FLIGHT,
            GuardStatus.CIRCUIT_OPEN,
        )


class ThrottleGuard:
    """Rate limit, single-flight and circuit breaker for one logical operation."""

    def __init__(
        self,
        name: str,
        settings: ThrottleSettings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self._settings = settings or ThrottleSettings()
        self._clock = clock

        self._in_flight = False
        self._failures = 0
        self._opened_at: float | None = None
        self._last_success: float | None = None
        self._last_success_iso: str | None = None
        self._last_value: Any = None
        self._runs = 0

    @property
    def settings(self) -> ThrottleSettings:
        return self._settings

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    @property
    def runs(self) -> int:
        """Number of times the operation was actually attempted."""
        return self._runs

    @property
    def last_value(self) -> Any:
        return self._last_value

    @property
    def circuit_open(self) -> bool:
        """True while the breaker is open and still cooling down."""
        if self._opened_at is None:
            return False
        return self._clock() - self._opened_at < self._settings.cooldown_sec

    def state(self) -> GuardState:
        return GuardState(
            name=self.name,
            circuit_open=self.circuit_open,
            consecutive_failures=self._failures,
            in_flight=self._in_flight,
            last_success_at=self._last_success_iso,
        )

    def reset(self) -> None:
        """Close the breaker and forget the last run time."""
        self._failures = 0
        self._opened_at = None
        self._last_success = None

    async def run(self, operation: Callable[[], Awaitable[Any]]) -> GuardOutcome:
        now = self._clock()

        if self._opened_at is not None:
            if now - self._opened_at < self._settings.cooldown_sec:
                logger.debug("%s: circuit open, skipping", self.name)
                return GuardOutcome(GuardStatus.CIRCUIT_OPEN, self._last_value)
            logger.info("%s: cool-down elapsed, closing circuit", self.name)
            self._opened_at = None
            self._failures = 0

        if self._in_flight:
            logger.debug("%s: already running, skipping", self.name)
            return GuardOutcome(GuardStatus.IN_FLIGHT, self._last_value)

        if (
            self._last_success is not None
            and now - self._last_success < self._settings.min_interval_sec
        ):
            elapsed = now - self._last_success
            logger.debug("%s: throttled, last success %.1fs ago", self.name, elapsed)
            return GuardOutcome(GuardStatus.THROTTLED, self._last_value)

        self._in_flight = True
        self._runs += 1
        try:
            async with asyncio.timeout(self._settings.timeout_sec):
                value = await operation()
        except Exception as e:
            return self._record_failure(e)
        finally:
            self._in_flight = False

        self._failures = 0
        self._last_success = self._clock()
        self._last_success_iso = Instant.now().format_iso()
        self._last_value = value
        return GuardOutcome(GuardStatus.RAN, value)

    def _record_failure(self, error: Exception) -> GuardOutcome:
        self._failures += 1
        reason = str(error) or type(error).__name__
        logger.warning(
            "%s failed (%d/%d consecutive): %s",
            self.name,
            self._failures,
            self._settings.failure_threshold,
            reason,
        )
        if self._failures >= self._settings.failure_threshold:
            self._opened_at = self._clock()
            logger.error(
                "%s: circuit opened after %d failures, cooling down for %.0fs",
                self.name,
                self._failures,
                self._settings.cooldown_sec,
            )
        return GuardOutcome(GuardStatus.FAILED, self._last_value, error=reason)
