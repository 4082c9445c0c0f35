"""Notification collaborator for the oversight workflow.

Delivery (email, chat) lives outside this package. The workflow only calls a
Notifier with the request and the users who are eligible to act on it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from agent_optimizer.models import DecisionRequest, OversightUser

logger = logging.getLogger("agent_optimizer.notifications")


@runtime_checkable
class Notifier(Protocol):
    def notify_decision_request(
        self, request: DecisionRequest, users: list[OversightUser]
    ) -> None: ...

    def notify_escalation(
        self, request: DecisionRequest, admins: list[OversightUser], reason: str
    ) -> None: ...


class LoggingNotifier:
    """Default notifier: records who would have been pinged."""

    def notify_decision_request(
        self, request: DecisionRequest, users: list[OversightUser]
    ) -> None:
        recipients = [u.user_id for u in users if _wants(u, request)]
        logger.info(
            "Decision %s (%s, %s priority) awaiting %d approval(s); notifying %s",
            request.request_id,
            request.type,
            request.priority,
            request.required_approvals,
            ", ".join(recipients) or "nobody",
        )

    def notify_escalation(
        self, request: DecisionRequest, admins: list[OversightUser], reason: str
    ) -> None:
        logger.warning(
            "Decision %s escalated (%s); notifying admins %s",
            request.request_id,
            reason,
            ", ".join(a.user_id for a in admins) or "none registered",
        )


def _wants(user: OversightUser, request: DecisionRequest) -> bool:
    prefs = user.notification_preferences
    if not (prefs.email or prefs.chat):
        return False
    return not prefs.urgent_only or request.priority == "urgent"
