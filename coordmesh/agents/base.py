"""Agent contract consumed by the engine, and the registry of known agents."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Protocol, Sequence, runtime_checkable

from coordmesh.engine.types import ExecutionPhase, FailureContext, Goal, PhaseUpdate, PlanProposal

logger = logging.getLogger(__name__)


@runtime_checkable
class PlanningAgent(Protocol):
    """Minimal interface every agent (local or remote) must satisfy."""

    agent_id: str
    agent_type: str
    domains: Sequence[str]

    async def propose_plan(
        self, goal: Goal, failure: Optional[FailureContext] = None,
    ) -> Optional[PlanProposal]:
        """Return a plan for `goal`, or None to abstain."""
        ...

    async def execute_phase(self, phase: ExecutionPhase, goal: Goal) -> PhaseUpdate:
        """Advance `phase` and report progress, a blocker or a failure."""
        ...


class AgentRegistry:
    """Known agents keyed by agent_id.

    Agents with an empty `domains` list are generalists and are eligible for
    every goal; the rest must advertise the goal's domain.
    """

    def __init__(self, agents: Optional[Sequence[PlanningAgent]] = None):
        self._agents: Dict[str, PlanningAgent] = {}
        for agent in agents or []:
            self.register(agent)

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def register(self, agent: PlanningAgent) -> None:
        """Add or replace an agent."""
        if not agent.agent_id:
            raise ValueError("agent_id is required")
        replaced = agent.agent_id in self._agents
        self._agents[agent.agent_id] = agent
        logger.info(
            "Agent %s: %s (%s) domains=%s",
            "replaced" if replaced else "registered",
            agent.agent_id, agent.agent_type, list(agent.domains) or ["*"],
        )

    def unregister(self, agent_id: str) -> Optional[PlanningAgent]:
        removed = self._agents.pop(agent_id, None)
        if removed:
            logger.info("Agent removed: %s", agent_id)
        return removed

    def get(self, agent_id: str) -> Optional[PlanningAgent]:
        return self._agents.get(agent_id)

    def all(self) -> List[PlanningAgent]:
        return list(self._agents.values())

    def eligible_for(self, domain: str) -> List[PlanningAgent]:
        """Agents capable of planning for `domain`, in registration order."""
        wanted = domain.lower()
        return [
            a for a in self._agents.values()
            if not a.domains or wanted in (d.lower() for d in a.domains)
        ]

    def agent_type_of(self, agent_id: str) -> Optional[str]:
        agent = self._agents.get(agent_id)
        return agent.agent_type if agent else None
