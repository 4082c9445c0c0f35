"""Property tests for the Human Oversight decision state machine.

- A recorded rejection always ends in `rejected`
- Reaching the approval quorum without a rejection ends in `approved`
- Terminal requests accept no further decisions
"""

import asyncio

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from agent_optimizer.errors import RequestAlreadyResolvedError
from agent_optimizer.models import (
    DecisionPriority,
    DecisionStatus,
    DecisionType,
    EmergencyActionContent,
    EmergencyContext,
    Verdict,
)
from agent_optimizer.oversight import HumanOversightWorkflow, default_admin

from ..builders import FakeClock

REVIEWERS = [f"admin-{i}" for i in range(1, 7)]


def make_workflow() -> HumanOversightWorkflow:
    workflow = HumanOversightWorkflow(clock=FakeClock())
    for user_id in REVIEWERS:
        workflow.register_user(default_admin(user_id))
    return workflow


def emergency_request(workflow: HumanOversightWorkflow):
    return workflow.create_decision_request(
        DecisionType.EMERGENCY_ACTION,
        EmergencyActionContent(emergency=EmergencyContext(trigger_event="error spike")),
        DecisionPriority.URGENT,
    )


async def replay(verdicts: list[Verdict]) -> DecisionStatus:
    workflow = make_workflow()
    request = emergency_request(workflow)
    assert request.required_approvals == 2
    try:
        for user_id, verdict in zip(REVIEWERS, verdicts, strict=False):
            try:
                await workflow.submit_decision(request.request_id, user_id, verdict)
            except RequestAlreadyResolvedError:
                assert request.status.is_terminal
        return request.status
    finally:
        workflow.close()


def expected_status(verdicts: list[Verdict], required: int = 2) -> DecisionStatus:
    approvals = 0
    for verdict in verdicts:
        if verdict == Verdict.REJECT:
            return DecisionStatus.REJECTED
        approvals += 1
        if approvals >= required:
            return DecisionStatus.APPROVED
    return DecisionStatus.PENDING


# =============================================================================
# QUORUM & REJECTION
# =============================================================================


@given(
    verdicts=st.lists(
        st.sampled_from([Verdict.APPROVE, Verdict.REJECT]), min_size=1, max_size=len(REVIEWERS)
    )
)
@settings(max_examples=200)
def test_first_terminal_vote_decides(verdicts: list[Verdict]):
    """Property: Status follows the first rejection or the quorum, whichever comes first."""
    assert asyncio.run(replay(verdicts)) == expected_status(verdicts)


@given(
    later=st.lists(st.sampled_from([Verdict.APPROVE, Verdict.REJECT]), max_size=4),
)
@settings(max_examples=100)
def test_rejection_is_terminal(later: list[Verdict]):
    """Property: Once a rejection is recorded, later votes never change the outcome."""
    assert asyncio.run(replay([Verdict.REJECT, *later])) == DecisionStatus.REJECTED


# =============================================================================
# EXAMPLES
# =============================================================================


@pytest.mark.parametrize(
    ("verdicts", "status"),
    [
        ([Verdict.APPROVE, Verdict.APPROVE], DecisionStatus.APPROVED),
        ([Verdict.APPROVE, Verdict.REJECT], DecisionStatus.REJECTED),
        ([Verdict.APPROVE], DecisionStatus.PENDING),
    ],
)
def test_two_approval_request(verdicts: list[Verdict], status: DecisionStatus):
    assert asyncio.run(replay(verdicts)) == status


def test_resolved_request_rejects_new_votes():
    async def scenario():
        workflow = make_workflow()
        request = emergency_request(workflow)
        await workflow.submit_decision(request.request_id, "admin-1", Verdict.REJECT)
        with pytest.raises(RequestAlreadyResolvedError):
            await workflow.submit_decision(request.request_id, "admin-2", Verdict.APPROVE)
        workflow.close()
        return request

    request = asyncio.run(scenario())
    assert request.status == DecisionStatus.REJECTED
    assert request.final_decision == Verdict.REJECT
    assert len(request.received_approvals) == 1
