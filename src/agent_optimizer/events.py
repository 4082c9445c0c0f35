"""Observer event bus.

Components publish tagged events (see models.events) after a state change has
completed. Handlers are registered explicitly and called synchronously in
registration order. A failing handler is logged and never affects the
publisher or the other handlers.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from agent_optimizer.models import OptimizerEvent

logger = logging.getLogger("agent_optimizer.events")

RECENT_EVENT_LIMIT = 200


class EventBus:
    def __init__(self, recent_limit: int = RECENT_EVENT_LIMIT) -> None:
        self._handlers: list[Callable[[OptimizerEvent], None]] = []
        self._recent: deque[OptimizerEvent] = deque(maxlen=recent_limit)

    def subscribe(self, handler: Callable[[OptimizerEvent], None]) -> Callable[[], None]:
        """Register `handler`; returns a callable that unsubscribes it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: OptimizerEvent) -> None:
        self._recent.append(event)
        logger.debug("Publishing %s", event.kind)
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.kind)

    def recent(self, kind: str | None = None) -> list[OptimizerEvent]:
        """Recently published events, oldest first, optionally filtered by kind."""
        return [e for e in self._recent if kind is None or e.kind == kind]
