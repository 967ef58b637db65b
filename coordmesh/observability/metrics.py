"""System metrics aggregator: a pure read projection over goal state.

Nothing here is stored between queries. Every snapshot is recomputed
from the goal registry and the agent registry, so metrics cannot drift
from the records they describe.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Tuple

from coordmesh.agents.base import AgentRegistry
from coordmesh.engine.registry import GoalRegistry
from coordmesh.engine.types import CoordinationConfig, GoalStatus, PhaseStatus

logger = logging.getLogger(__name__)

MODERATE_LOAD = 0.5
HIGH_LOAD = 0.8


@dataclass(frozen=True)
class AgentAssignment:
    agent_id: str
    goal_id: str
    phase: int


@dataclass(frozen=True)
class CoordinationSnapshot:
    """Derived, non-persistent aggregate of the coordination state."""
    active_plans: int
    queue_depth: int
    planning: int
    in_flight: int
    system_load: float
    load_status: str
    average_consensus_ms: float
    success_rate: float
    completed: int
    failed: int
    cancelled: int
    registered_agents: int
    agents_in_use: Tuple[AgentAssignment, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["agents_in_use"] = [asdict(a) for a in self.agents_in_use]
        return data


def load_status(load: float) -> str:
    if load < MODERATE_LOAD:
        return "OPTIMAL"
    if load < HIGH_LOAD:
        return "MODERATE"
    return "HIGH_LOAD"


class SystemMetricsAggregator:
    """Computes CoordinationSnapshot values on demand."""

    def __init__(
        self,
        goals: GoalRegistry,
        agents: AgentRegistry,
        config: CoordinationConfig,
    ):
        self.goals = goals
        self.agents = agents
        self.config = config

    def snapshot(self) -> CoordinationSnapshot:
        records = self.goals.all()
        counts = {status: 0 for status in GoalStatus}
        for record in records:
            counts[record.status] += 1

        in_flight = counts[GoalStatus.PLANNING] + counts[GoalStatus.EXECUTING]
        capacity = max(self.config.max_concurrent_goals, 1)
        load = min(max(in_flight / capacity, 0.0), 1.0)

        durations: List[int] = [d for r in records for d in r.consensus_durations_ms]
        avg_consensus = sum(durations) / len(durations) if durations else 0.0

        in_use: List[AgentAssignment] = []
        for record in self.goals.active():
            if record.status != GoalStatus.EXECUTING:
                continue
            for phase in record.phases:
                if phase.status in (PhaseStatus.RUNNING, PhaseStatus.BLOCKED):
                    in_use.append(AgentAssignment(phase.agent_id, record.goal_id, phase.sequence))

        return CoordinationSnapshot(
            active_plans=counts[GoalStatus.EXECUTING],
            queue_depth=counts[GoalStatus.QUEUED],
            planning=counts[GoalStatus.PLANNING],
            in_flight=in_flight,
            system_load=round(load, 4),
            load_status=load_status(load),
            average_consensus_ms=round(avg_consensus, 2),
            success_rate=round(self._success_rate(), 4),
            completed=counts[GoalStatus.COMPLETED],
            failed=counts[GoalStatus.FAILED],
            cancelled=counts[GoalStatus.CANCELLED],
            registered_agents=len(self.agents),
            agents_in_use=tuple(sorted(in_use, key=lambda a: (a.goal_id, a.phase))),
        )

    def _success_rate(self) -> float:
        """Completed share of the last `success_window` terminal goals."""
        finished = [r for r in self.goals.all() if r.terminal and r.finished_at_ms is not None]
        finished.sort(key=lambda r: (r.finished_at_ms, r.goal_id))
        window = finished[-self.config.success_window:] if self.config.success_window > 0 else finished
        if not window:
            return 0.0
        completed = sum(1 for r in window if r.status == GoalStatus.COMPLETED)
        return completed / len(window)
