"""Plan proposer: concurrent fan-out of propose_plan to eligible agents.

The round joins on all answers or on the round deadline, whichever comes
first. Slow, failing or malformed agents are excluded from the round; they
never fail the round as a whole. Whether enough proposals arrived is the
consensus coordinator's call.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from coordmesh.agents.base import AgentRegistry, PlanningAgent
from coordmesh.engine.consensus import ConsensusRound
from coordmesh.engine.errors import AgentTimeout, error_metadata
from coordmesh.engine.types import CoordinationConfig, FailureContext, Goal, PlanProposal
from coordmesh.observability.activity import MeshActivityLog
from coordmesh.observability.events import ActivityKind

logger = logging.getLogger(__name__)


@dataclass
class RoundReport:
    """Who answered a planning round and who was excluded."""
    eligible: List[str] = field(default_factory=list)
    accepted: List[str] = field(default_factory=list)
    timed_out: List[str] = field(default_factory=list)
    excluded: List[str] = field(default_factory=list)


def check_proposal(proposal: object, goal: Goal, agent: PlanningAgent) -> Optional[str]:
    """Return why a proposal is malformed, or None if it is usable."""
    if not isinstance(proposal, PlanProposal):
        return f"expected PlanProposal, got {type(proposal).__name__}"
    if proposal.goal_id != goal.id:
        return f"proposal targets goal {proposal.goal_id}"
    if proposal.agent_id != agent.agent_id:
        return f"proposal claims agent {proposal.agent_id}"
    if not proposal.phases:
        return "proposal has no phases"
    if not 0.0 <= proposal.confidence <= 1.0:
        return f"confidence {proposal.confidence} outside [0, 1]"
    return None


class PlanProposer:
    """Collects competing plans for a goal from every capable agent."""

    def __init__(
        self,
        agents: AgentRegistry,
        activity: MeshActivityLog,
        config: Optional[CoordinationConfig] = None,
    ):
        self.agents = agents
        self.activity = activity
        self.config = config or CoordinationConfig()

    def eligible(self, goal: Goal) -> List[PlanningAgent]:
        return self.agents.eligible_for(goal.domain)

    async def collect(
        self,
        goal: Goal,
        round_: ConsensusRound,
        failure: Optional[FailureContext] = None,
        agents: Optional[List[PlanningAgent]] = None,
    ) -> RoundReport:
        """Fan out to agents and feed every valid proposal into `round_`."""
        candidates = agents if agents is not None else self.eligible(goal)
        report = RoundReport(eligible=[a.agent_id for a in candidates])
        if not candidates:
            logger.warning("No eligible agents for goal %s (domain=%s)", goal.id, goal.domain)
            return report

        tasks = {
            asyncio.create_task(self._ask(agent, goal, round_, failure, report)): agent
            for agent in candidates
        }
        try:
            done, pending = await asyncio.wait(tasks.keys(), timeout=self.config.round_timeout_s)

            for task in pending:
                if task.done():
                    continue
                agent = tasks[task]
                report.timed_out.append(agent.agent_id)
                exc = AgentTimeout(
                    f"Agent '{agent.agent_id}' did not propose within {self.config.round_timeout_s:.1f}s"
                )
                self.activity.record(
                    ActivityKind.AGENT_TIMEOUT,
                    str(exc),
                    goal_id=goal.id,
                    agent_id=agent.agent_id,
                    metadata={**error_metadata(exc), "stage": "proposal"},
                )
        finally:
            # Late answers must not reach the round, even when this task is cancelled.
            await round_.close()
            leftover = [task for task in tasks if not task.done()]
            for task in leftover:
                task.cancel()
            if leftover:
                await asyncio.gather(*leftover, return_exceptions=True)

        logger.info(
            "Round for %s: %d/%d proposals (%d timed out, %d excluded)",
            goal.id, len(report.accepted), len(candidates),
            len(report.timed_out), len(report.excluded),
        )
        return report

    async def _ask(
        self,
        agent: PlanningAgent,
        goal: Goal,
        round_: ConsensusRound,
        failure: Optional[FailureContext],
        report: RoundReport,
    ) -> None:
        try:
            proposal = await agent.propose_plan(goal, failure)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Agent %s failed to propose for %s: %s", agent.agent_id, goal.id, exc)
            self._exclude(agent, goal, report, f"proposal call failed: {exc}")
            return

        if proposal is None:
            logger.debug("Agent %s abstained for %s", agent.agent_id, goal.id)
            report.excluded.append(agent.agent_id)
            return

        problem = check_proposal(proposal, goal, agent)
        if problem:
            self._exclude(agent, goal, report, f"malformed proposal: {problem}")
            return

        if not await round_.submit(proposal):
            report.excluded.append(agent.agent_id)
            return

        report.accepted.append(agent.agent_id)
        self.activity.record(
            ActivityKind.PLAN_PROPOSED,
            f"Agent '{agent.agent_id}' proposed a {len(proposal.phases)}-phase plan "
            f"with {proposal.confidence:.0%} confidence",
            goal_id=goal.id,
            agent_id=agent.agent_id,
            metadata={
                "proposal_id": proposal.id,
                "confidence": proposal.confidence,
                "phases": len(proposal.phases),
            },
        )

    def _exclude(self, agent: PlanningAgent, goal: Goal, report: RoundReport, reason: str) -> None:
        report.excluded.append(agent.agent_id)
        self.activity.record(
            ActivityKind.AGENT_UNAVAILABLE,
            f"Agent '{agent.agent_id}' excluded from round: {reason}",
            goal_id=goal.id,
            agent_id=agent.agent_id,
            metadata={"stage": "proposal", "reason": reason},
        )
