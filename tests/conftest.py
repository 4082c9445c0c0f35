"""Pytest configuration and fixtures for the agent optimizer tests."""

import pytest

from agent_optimizer.events import EventBus
from agent_optimizer.models import (
    OversightPermission,
    OversightRole,
    OversightUser,
    PermissionAction,
    PermissionScope,
)

from .builders import FakeClock, FakeMonotonic


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def second_admin() -> OversightUser:
    return OversightUser(
        user_id="admin-2",
        name="Second Admin",
        role=OversightRole.ADMIN,
        permissions=[
            OversightPermission(action=action, scope=PermissionScope.ALL)
            for action in PermissionAction
        ],
    )


@pytest.fixture
def low_risk_reviewer() -> OversightUser:
    return OversightUser(
        user_id="reviewer-1",
        name="Reviewer",
        role=OversightRole.REVIEWER,
        permissions=[
            OversightPermission(
                action=PermissionAction.APPROVE_THRESHOLDS, scope=PermissionScope.LOW_RISK
            ),
            OversightPermission(
                action=PermissionAction.APPROVE_OPTIMIZATIONS, scope=PermissionScope.LOW_RISK
            ),
        ],
    )
