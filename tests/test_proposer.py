"""Unit tests for coordmesh.engine.proposer - concurrent plan collection."""

import asyncio
import dataclasses

import pytest

from coordmesh.agents.base import AgentRegistry
from coordmesh.engine.consensus import ConsensusCoordinator
from coordmesh.engine.proposer import PlanProposer, check_proposal
from coordmesh.engine.types import FailureContext, Goal, PhaseSpec, PlanProposal, Priority, RoundState
from coordmesh.observability.activity import MeshActivityLog
from coordmesh.observability.events import ActivityKind

from fakes import ScriptedAgent, fast_config


def _goal(domain="general"):
    return Goal(id="goal_1", objective="Ship the release notes", priority=Priority.MEDIUM, domain=domain)


def _setup(*agents, **config):
    activity = MeshActivityLog()
    cfg = fast_config(**config)
    proposer = PlanProposer(AgentRegistry(list(agents)), activity, cfg)
    coordinator = ConsensusCoordinator(activity, cfg)
    return proposer, coordinator, activity


class BadGoalAgent(ScriptedAgent):
    async def propose_plan(self, goal, failure=None):
        proposal = await super().propose_plan(goal, failure)
        return dataclasses.replace(proposal, goal_id="goal_other")


class TestCheckProposal:
    def test_valid(self):
        agent = ScriptedAgent("a1")
        proposal = PlanProposal(
            goal_id="goal_1", agent_id="a1",
            phases=(PhaseSpec(name="p", agent_id="a1"),), confidence=0.5,
        )
        assert check_proposal(proposal, _goal(), agent) is None

    def test_wrong_type(self):
        assert "expected PlanProposal" in check_proposal({"plan": 1}, _goal(), ScriptedAgent("a1"))

    def test_empty_phases(self):
        proposal = PlanProposal(goal_id="goal_1", agent_id="a1", phases=(), confidence=0.5)
        assert check_proposal(proposal, _goal(), ScriptedAgent("a1")) == "proposal has no phases"

    def test_confidence_out_of_range(self):
        proposal = PlanProposal(
            goal_id="goal_1", agent_id="a1",
            phases=(PhaseSpec(name="p", agent_id="a1"),), confidence=1.5,
        )
        assert "outside" in check_proposal(proposal, _goal(), ScriptedAgent("a1"))

    def test_impersonation(self):
        proposal = PlanProposal(
            goal_id="goal_1", agent_id="a2",
            phases=(PhaseSpec(name="p", agent_id="a2"),), confidence=0.5,
        )
        assert "claims agent" in check_proposal(proposal, _goal(), ScriptedAgent("a1"))


class TestEligibility:
    def test_domain_filter(self):
        proposer, _, _ = _setup(
            ScriptedAgent("generalist"),
            ScriptedAgent("seo", domains=["Marketing"]),
            ScriptedAgent("legal", domains=["legal"]),
        )
        eligible = [a.agent_id for a in proposer.eligible(_goal("marketing"))]
        assert eligible == ["generalist", "seo"]


class TestCollect:
    @pytest.mark.asyncio
    async def test_all_agents_answer(self):
        proposer, coordinator, activity = _setup(ScriptedAgent("a1"), ScriptedAgent("a2"))
        round_ = coordinator.open_round("goal_1", 2)

        report = await proposer.collect(_goal(), round_)

        assert sorted(report.accepted) == ["a1", "a2"]
        assert round_.received == 2
        assert activity.count(ActivityKind.PLAN_PROPOSED) == 2

    @pytest.mark.asyncio
    async def test_proposed_event_message(self):
        proposer, coordinator, activity = _setup(ScriptedAgent("a1", confidence=0.85, phases=["a", "b", "c"]))
        round_ = coordinator.open_round("goal_1", 1)

        await proposer.collect(_goal(), round_)

        event = activity.recent(1)[0]
        assert event.kind == ActivityKind.PLAN_PROPOSED
        assert event.message == "Agent 'a1' proposed a 3-phase plan with 85% confidence"

    @pytest.mark.asyncio
    async def test_slow_agent_excluded_with_timeout_event(self):
        slow = ScriptedAgent("slow", propose_delay=5.0)
        proposer, coordinator, activity = _setup(ScriptedAgent("fast"), slow, round_timeout_s=0.05)
        round_ = coordinator.open_round("goal_1", 2)

        report = await proposer.collect(_goal(), round_)

        assert report.accepted == ["fast"]
        assert report.timed_out == ["slow"]
        timeouts = [e for e in activity.for_goal("goal_1") if e.kind == ActivityKind.AGENT_TIMEOUT]
        assert len(timeouts) == 1
        assert timeouts[0].agent_id == "slow"
        assert timeouts[0].metadata["stage"] == "proposal"
        assert timeouts[0].metadata["error_code"] == "agent_timeout"

    @pytest.mark.asyncio
    async def test_late_proposal_is_not_counted(self):
        slow = ScriptedAgent("slow", propose_delay=0.2)
        proposer, coordinator, _ = _setup(slow, round_timeout_s=0.02)
        round_ = coordinator.open_round("goal_1", 1)

        await proposer.collect(_goal(), round_)

        assert round_.received == 0
        assert slow.proposals == []

    @pytest.mark.asyncio
    async def test_cancelled_round_drops_pending_answers(self):
        slow = ScriptedAgent("slow", propose_delay=0.2)
        proposer, coordinator, activity = _setup(slow, round_timeout_s=1.0)
        round_ = coordinator.open_round("goal_1", 1)

        task = asyncio.create_task(proposer.collect(_goal(), round_))
        await asyncio.sleep(0.02)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.3)

        assert round_.received == 0
        assert round_.state != RoundState.COLLECTING
        assert slow.proposals == []
        assert activity.count(ActivityKind.PLAN_PROPOSED) == 0

    @pytest.mark.asyncio
    async def test_failing_agent_excluded(self):
        broken = ScriptedAgent("broken", propose_error=RuntimeError("model offline"))
        proposer, coordinator, activity = _setup(ScriptedAgent("ok"), broken)
        round_ = coordinator.open_round("goal_1", 2)

        report = await proposer.collect(_goal(), round_)

        assert report.accepted == ["ok"]
        assert report.excluded == ["broken"]
        unavailable = [e for e in activity.for_goal("goal_1") if e.kind == ActivityKind.AGENT_UNAVAILABLE]
        assert len(unavailable) == 1
        assert "model offline" in unavailable[0].message

    @pytest.mark.asyncio
    async def test_malformed_proposal_excluded(self):
        proposer, coordinator, activity = _setup(BadGoalAgent("bad"))
        round_ = coordinator.open_round("goal_1", 1)

        report = await proposer.collect(_goal(), round_)

        assert report.excluded == ["bad"]
        assert round_.received == 0
        assert activity.count(ActivityKind.AGENT_UNAVAILABLE) == 1

    @pytest.mark.asyncio
    async def test_abstain_is_silent(self):
        proposer, coordinator, activity = _setup(ScriptedAgent("quiet", abstain=True))
        round_ = coordinator.open_round("goal_1", 1)

        report = await proposer.collect(_goal(), round_)

        assert report.excluded == ["quiet"]
        assert len(activity) == 0

    @pytest.mark.asyncio
    async def test_no_candidates(self):
        proposer, coordinator, _ = _setup()
        round_ = coordinator.open_round("goal_1", 0)

        report = await proposer.collect(_goal(), round_)

        assert report.eligible == []
        assert report.accepted == []

    @pytest.mark.asyncio
    async def test_failure_context_forwarded(self):
        agent = ScriptedAgent("a1")
        proposer, coordinator, _ = _setup(agent)
        failure = FailureContext(reason="blocked: API_RATE_LIMIT", attempt=1, phase_sequence=2)

        await proposer.collect(_goal(), coordinator.open_round("goal_1", 1), failure)

        assert agent.failures_seen == [failure]
