"""Goal registry: one GoalRecord state machine per goal id.

Each record is mutated only by the pipeline task that owns its goal (plus
the cancel/replan request flags), so access to one goal's state never
blocks another's. Terminal records move to the archive.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from coordmesh.engine.errors import UnknownGoalError
from coordmesh.engine.types import (
    ExecutionPhase,
    Goal,
    GoalStatus,
    GoalStatusView,
    PhaseStatus,
    PhaseView,
    PlanProposal,
)

logger = logging.getLogger(__name__)

DEFAULT_ARCHIVE_LIMIT = 1000

# Legal forward transitions; terminal states have none.
_TRANSITIONS = {
    GoalStatus.QUEUED: {GoalStatus.PLANNING, GoalStatus.FAILED, GoalStatus.CANCELLED},
    GoalStatus.PLANNING: {GoalStatus.EXECUTING, GoalStatus.FAILED, GoalStatus.CANCELLED},
    GoalStatus.EXECUTING: {GoalStatus.PLANNING, GoalStatus.COMPLETED, GoalStatus.FAILED, GoalStatus.CANCELLED},
}


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class GoalRecord:
    """Mutable per-goal state threaded through the pipeline."""
    goal: Goal
    status: GoalStatus = GoalStatus.QUEUED
    reason: Optional[str] = None
    error_code: Optional[str] = None
    accepted: Optional[PlanProposal] = None
    superseded: List[str] = field(default_factory=list)
    phases: List[ExecutionPhase] = field(default_factory=list)
    completed_sequences: List[int] = field(default_factory=list)
    proposers: List[str] = field(default_factory=list)
    replans: int = 0
    consensus_durations_ms: List[int] = field(default_factory=list)
    cancel_requested: bool = False
    replan_requested: bool = False
    started_at_ms: Optional[int] = None
    finished_at_ms: Optional[int] = None

    @property
    def goal_id(self) -> str:
        return self.goal.id

    @property
    def terminal(self) -> bool:
        return self.status.terminal

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(self, status: GoalStatus) -> None:
        if status == self.status:
            return
        allowed = _TRANSITIONS.get(self.status, set())
        if status not in allowed:
            raise RuntimeError(f"Illegal goal transition {self.status.value} -> {status.value}")
        logger.debug("Goal %s: %s -> %s", self.goal_id, self.status.value, status.value)
        if status == GoalStatus.PLANNING and self.started_at_ms is None:
            self.started_at_ms = _now_ms()
        self.status = status

    def accept(self, proposal: PlanProposal) -> None:
        """Install `proposal` as the single accepted plan, superseding any previous one."""
        if proposal.goal_id != self.goal_id:
            raise ValueError(f"Proposal {proposal.id} belongs to goal {proposal.goal_id}")
        if self.accepted is not None:
            self.superseded.append(self.accepted.id)
        self.accepted = proposal
        self.phases = [
            ExecutionPhase.from_spec(i, spec, proposal.id)
            for i, spec in enumerate(proposal.phases, start=1)
        ]

    def finish(self, status: GoalStatus, reason: Optional[str] = None, error_code: Optional[str] = None) -> bool:
        """Move to a terminal state. Returns False if already terminal."""
        if self.terminal:
            return False
        if not status.terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        self.status = status
        self.reason = reason
        self.error_code = error_code
        self.finished_at_ms = _now_ms()
        return True

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def current_phase(self) -> Optional[ExecutionPhase]:
        for phase in self.phases:
            if phase.status not in (PhaseStatus.DONE,):
                return phase
        return None

    def overall_progress(self) -> float:
        if not self.phases:
            return 1.0 if self.status == GoalStatus.COMPLETED else 0.0
        return sum(p.progress for p in self.phases) / len(self.phases)

    def to_status(self, fallbacks: Optional[List[str]] = None) -> GoalStatusView:
        current = self.current_phase() if not self.terminal else None
        blockers: List[str] = []
        for phase in self.phases:
            if phase.status == PhaseStatus.BLOCKED:
                blockers.extend(b for b in phase.blockers if b not in blockers)

        expected = None
        if self.status == GoalStatus.EXECUTING and self.started_at_ms is not None:
            remaining_s = sum(
                p.expected_duration_s * (1.0 - p.progress)
                for p in self.phases if p.status != PhaseStatus.DONE
            )
            expected = _now_ms() + int(remaining_s * 1000)

        return GoalStatusView(
            goal_id=self.goal_id,
            objective=self.goal.objective,
            priority=self.goal.priority.value,
            domain=self.goal.domain,
            status=self.status.value,
            reason=self.reason,
            error_code=self.error_code,
            accepted_proposal_id=self.accepted.id if self.accepted else None,
            accepted_agent_id=self.accepted.agent_id if self.accepted else None,
            current_phase=current.sequence if current else None,
            progress=round(self.overall_progress(), 4),
            replans=self.replans,
            proposers=list(self.proposers),
            phases=[
                PhaseView(
                    sequence=p.sequence,
                    name=p.name,
                    agent_id=p.agent_id,
                    status=p.status.value,
                    progress=p.progress,
                    parallel_group=p.parallel_group,
                    blockers=list(p.blockers),
                    blocked_retries=p.blocked_retries,
                )
                for p in self.phases
            ],
            blockers=blockers,
            fallbacks_available=list(fallbacks or []),
            submitted_at_ms=self.goal.submitted_at_ms,
            finished_at_ms=self.finished_at_ms,
            expected_completion_ms=expected,
        )


class GoalRegistry:
    """Indexed store of goal records: active ones plus a bounded archive."""

    def __init__(self, archive_limit: int = DEFAULT_ARCHIVE_LIMIT):
        self.archive_limit = archive_limit
        self._active: Dict[str, GoalRecord] = {}
        self._archive: "OrderedDict[str, GoalRecord]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._active) + len(self._archive)

    def add(self, goal: Goal) -> GoalRecord:
        if goal.id in self._active or goal.id in self._archive:
            raise ValueError(f"Goal {goal.id} already registered")
        record = GoalRecord(goal=goal)
        self._active[goal.id] = record
        return record

    def get(self, goal_id: str) -> Optional[GoalRecord]:
        return self._active.get(goal_id) or self._archive.get(goal_id)

    def require(self, goal_id: str) -> GoalRecord:
        record = self.get(goal_id)
        if record is None:
            raise UnknownGoalError(f"Unknown goal: {goal_id}")
        return record

    def active(self) -> List[GoalRecord]:
        return list(self._active.values())

    def archived(self) -> List[GoalRecord]:
        """Terminal records, oldest first."""
        return list(self._archive.values())

    def all(self) -> List[GoalRecord]:
        return self.active() + self.archived()

    def archive(self, record: GoalRecord) -> None:
        """Move a terminal record out of the active index."""
        if not record.terminal:
            raise ValueError(f"Goal {record.goal_id} is not terminal")
        self._active.pop(record.goal_id, None)
        self._archive[record.goal_id] = record
        while len(self._archive) > self.archive_limit:
            evicted, _ = self._archive.popitem(last=False)
            logger.debug("Archive full, evicted goal %s", evicted)
