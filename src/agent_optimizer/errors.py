"""Typed failures surfaced to callers.

Workflow, apply and rollback errors are caller mistakes and fail fast.
Throttling and safety-policy rejections are not errors; they come back as
GuardOutcome statuses and SafetyCheck results.
"""

from __future__ import annotations


class OptimizerError(Exception):
    """Base class for all agent optimizer errors."""


# =============================================================================
# OVERSIGHT WORKFLOW
# =============================================================================


class WorkflowError(OptimizerError):
    """A decision-workflow call that cannot be honoured."""


class DecisionRequestNotFoundError(WorkflowError, LookupError):
    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Decision request '{request_id}' not found")


class UserNotFoundError(WorkflowError, LookupError):
    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"Oversight user '{user_id}' not found")


class PermissionDeniedError(WorkflowError, PermissionError):
    def __init__(self, user_id: str, action: str, risk_tier: str) -> None:
        self.user_id = user_id
        super().__init__(
            f"User '{user_id}' lacks permission '{action}' for {risk_tier}-risk requests"
        )


class RequestAlreadyResolvedError(WorkflowError):
    def __init__(self, request_id: str, status: str) -> None:
        self.request_id = request_id
        self.status = status
        super().__init__(f"Decision request '{request_id}' is already {status}")


class DuplicateDecisionError(WorkflowError):
    def __init__(self, request_id: str, user_id: str) -> None:
        super().__init__(f"User '{user_id}' already decided on request '{request_id}'")


# =============================================================================
# THRESHOLDS & OPTIMIZATIONS
# =============================================================================


class ThresholdRequestNotFoundError(OptimizerError, LookupError):
    def __init__(self, request_id: str, *, applied_only: bool = False) -> None:
        self.request_id = request_id
        qualifier = "applied threshold change request" if applied_only else "threshold request"
        super().__init__(f"No {qualifier} '{request_id}' found")


class ThresholdRequestStateError(OptimizerError):
    def __init__(self, request_id: str, status: str, action: str) -> None:
        self.request_id = request_id
        self.status = status
        super().__init__(f"Cannot {action} threshold request '{request_id}' while it is {status}")


class RollbackUnavailableError(OptimizerError):
    """Previous threshold values for a request cannot be restored."""

    def __init__(self, request_id: str, reason: str) -> None:
        self.request_id = request_id
        super().__init__(f"Cannot roll back threshold request '{request_id}': {reason}")


class OptimizationNotFoundError(OptimizerError, LookupError):
    def __init__(self, optimization_id: str) -> None:
        self.optimization_id = optimization_id
        super().__init__(f"Active optimization '{optimization_id}' not found")


class RecommendationNotFoundError(OptimizerError, LookupError):
    def __init__(self, recommendation_id: str) -> None:
        self.recommendation_id = recommendation_id
        super().__init__(f"Recommendation '{recommendation_id}' not found")
