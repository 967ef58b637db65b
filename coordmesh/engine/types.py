"""Core type primitives for goals, proposals, phases and the engine config."""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def _now_ms() -> int:
    return int(time.time() * 1000)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Priority(str, Enum):
    """Goal priority, lowest to highest."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Queue rank: smaller is served first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


class GoalStatus(str, Enum):
    """Goal lifecycle states."""
    QUEUED = "queued"
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (GoalStatus.COMPLETED, GoalStatus.FAILED, GoalStatus.CANCELLED)


class PhaseStatus(str, Enum):
    """Execution phase states."""
    PENDING = "pending"
    RUNNING = "running"
    BLOCKED = "blocked"
    DONE = "done"
    FAILED = "failed"


class RoundState(str, Enum):
    """Consensus round states."""
    COLLECTING = "collecting"
    SCORING = "scoring"
    DECIDED = "decided"
    NO_QUORUM = "no_quorum"


# ---------------------------------------------------------------------------
# Goal and plan primitives
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Goal:
    """A unit of work submitted for planning and execution."""
    id: str
    objective: str
    priority: Priority
    domain: str = "general"
    submitted_at_ms: int = field(default_factory=_now_ms)


@dataclass(frozen=True)
class PhaseSpec:
    """One step of a proposed plan, as authored by the proposing agent."""
    name: str
    agent_id: str
    expected_duration_s: float = 60.0
    parallel_group: Optional[str] = None


@dataclass(frozen=True)
class PlanProposal:
    """A candidate plan for one goal. Immutable once created."""
    goal_id: str
    agent_id: str
    phases: Tuple[PhaseSpec, ...]
    confidence: float
    rationale: str = ""
    id: str = field(default_factory=lambda: new_id("plan"))
    created_at_ms: int = field(default_factory=_now_ms)


@dataclass
class ExecutionPhase:
    """Runtime state of one phase of an accepted plan."""
    sequence: int
    name: str
    agent_id: str
    proposal_id: str
    expected_duration_s: float = 60.0
    parallel_group: Optional[str] = None
    status: PhaseStatus = PhaseStatus.PENDING
    progress: float = 0.0
    blockers: List[str] = field(default_factory=list)
    blocked_retries: int = 0
    started_at_ms: Optional[int] = None
    finished_at_ms: Optional[int] = None

    @classmethod
    def from_spec(cls, sequence: int, spec: PhaseSpec, proposal_id: str) -> "ExecutionPhase":
        return cls(
            sequence=sequence,
            name=spec.name,
            agent_id=spec.agent_id,
            proposal_id=proposal_id,
            expected_duration_s=spec.expected_duration_s,
            parallel_group=spec.parallel_group,
        )


@dataclass(frozen=True)
class FailureContext:
    """Why a replan was requested; handed to agents with the next round."""
    reason: str
    attempt: int
    phase_sequence: Optional[int] = None
    phase_name: Optional[str] = None
    agent_id: Optional[str] = None
    blockers: Tuple[str, ...] = ()
    previous_proposal_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Agent execution updates
# ---------------------------------------------------------------------------

@dataclass
class PhaseProgress:
    """The agent advanced the phase to `progress` (1.0 = done)."""
    progress: float
    note: str = ""


@dataclass
class PhaseBlocked:
    """The agent is waiting on an external condition."""
    reason: str


@dataclass
class PhaseFailed:
    """The agent cannot complete the phase."""
    reason: str


# Union of possible execution updates
PhaseUpdate = PhaseProgress | PhaseBlocked | PhaseFailed


# ---------------------------------------------------------------------------
# Engine configuration
# ---------------------------------------------------------------------------

@dataclass
class CoordinationConfig:
    """Limits and timings for the coordination pipeline."""
    max_concurrent_goals: int = 4
    round_timeout_s: float = 10.0
    quorum_fraction: float = 0.5
    min_quorum: int = 1
    max_blocked_retries: int = 3
    blocked_backoff_s: float = 1.0
    blocked_backoff_max_s: float = 30.0
    phase_call_timeout_s: float = 30.0
    progress_interval_s: float = 0.5
    max_replans: int = 2
    goal_timeout_s: float = 3600.0
    success_window: int = 50

    def required_quorum(self, eligible: int) -> int:
        """Minimum proposals needed for a round with `eligible` agents."""
        required = max(self.min_quorum, int(eligible * self.quorum_fraction) + 1)
        if eligible > 0:
            required = min(required, eligible)
        return max(required, 1)

    def backoff_for(self, attempt: int) -> float:
        """Wait before retrying a phase after its `attempt`-th consecutive block."""
        delay = self.blocked_backoff_s * (2 ** max(attempt - 1, 0))
        return min(delay, self.blocked_backoff_max_s)


# ---------------------------------------------------------------------------
# Read-side views
# ---------------------------------------------------------------------------

@dataclass
class PhaseView:
    sequence: int
    name: str
    agent_id: str
    status: str
    progress: float
    parallel_group: Optional[str] = None
    blockers: List[str] = field(default_factory=list)
    blocked_retries: int = 0


@dataclass
class GoalStatusView:
    """Status and phase detail for one goal."""
    goal_id: str
    objective: str
    priority: str
    domain: str
    status: str
    reason: Optional[str] = None
    error_code: Optional[str] = None
    accepted_proposal_id: Optional[str] = None
    accepted_agent_id: Optional[str] = None
    current_phase: Optional[int] = None
    progress: float = 0.0
    replans: int = 0
    proposers: List[str] = field(default_factory=list)
    phases: List[PhaseView] = field(default_factory=list)
    blockers: List[str] = field(default_factory=list)
    fallbacks_available: List[str] = field(default_factory=list)
    submitted_at_ms: int = 0
    finished_at_ms: Optional[int] = None
    expected_completion_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CancelAck:
    """Acknowledgement of a cancellation request."""
    goal_id: str
    accepted: bool
    status: str
    message: str = ""
