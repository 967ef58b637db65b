"""Pydantic models for engine <-> remote agent communication.

AgentInfo describes a remote agent's identity and capabilities.
Propose*/Execute* wrap the two agent calls crossing the wire.
Join*/Leave* are the registration calls agents make against the engine.
"""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from coordmesh.engine.types import (
    ExecutionPhase,
    FailureContext,
    Goal,
    PhaseBlocked,
    PhaseFailed,
    PhaseProgress,
    PhaseSpec,
    PhaseUpdate,
    PlanProposal,
)


# ---------------------------------------------------------------------------
# Agent identity
# ---------------------------------------------------------------------------

class AgentInfo(BaseModel):
    """Identity and capabilities of a remote agent."""
    agent_id: str
    agent_type: str
    domains: List[str] = Field(default_factory=list)
    version: str = "1.0.0"


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

class GoalPayload(BaseModel):
    id: str
    objective: str
    priority: str
    domain: str
    submitted_at_ms: int

    @classmethod
    def from_goal(cls, goal: Goal) -> "GoalPayload":
        return cls(
            id=goal.id,
            objective=goal.objective,
            priority=goal.priority.value,
            domain=goal.domain,
            submitted_at_ms=goal.submitted_at_ms,
        )


class FailurePayload(BaseModel):
    reason: str
    attempt: int
    phase_sequence: Optional[int] = None
    phase_name: Optional[str] = None
    agent_id: Optional[str] = None
    blockers: List[str] = Field(default_factory=list)
    previous_proposal_id: Optional[str] = None

    @classmethod
    def from_context(cls, failure: FailureContext) -> "FailurePayload":
        return cls(
            reason=failure.reason,
            attempt=failure.attempt,
            phase_sequence=failure.phase_sequence,
            phase_name=failure.phase_name,
            agent_id=failure.agent_id,
            blockers=list(failure.blockers),
            previous_proposal_id=failure.previous_proposal_id,
        )


class PhaseSpecPayload(BaseModel):
    name: str
    agent_id: Optional[str] = None  # defaults to the proposing agent
    expected_duration_s: float = Field(default=60.0, gt=0)
    parallel_group: Optional[str] = None


class ProposalPayload(BaseModel):
    phases: List[PhaseSpecPayload] = Field(..., min_length=1)
    confidence: float = Field(..., ge=0.0, le=1.0)
    rationale: str = ""

    def to_proposal(self, goal_id: str, agent_id: str) -> PlanProposal:
        return PlanProposal(
            goal_id=goal_id,
            agent_id=agent_id,
            phases=tuple(
                PhaseSpec(
                    name=p.name,
                    agent_id=p.agent_id or agent_id,
                    expected_duration_s=p.expected_duration_s,
                    parallel_group=p.parallel_group,
                )
                for p in self.phases
            ),
            confidence=self.confidence,
            rationale=self.rationale,
        )


class PhasePayload(BaseModel):
    sequence: int
    name: str
    agent_id: str
    proposal_id: str
    expected_duration_s: float
    parallel_group: Optional[str] = None
    progress: float = 0.0
    blocked_retries: int = 0

    @classmethod
    def from_phase(cls, phase: ExecutionPhase) -> "PhasePayload":
        return cls(
            sequence=phase.sequence,
            name=phase.name,
            agent_id=phase.agent_id,
            proposal_id=phase.proposal_id,
            expected_duration_s=phase.expected_duration_s,
            parallel_group=phase.parallel_group,
            progress=phase.progress,
            blocked_retries=phase.blocked_retries,
        )


# ---------------------------------------------------------------------------
# Wire protocol: propose
# ---------------------------------------------------------------------------

class ProposeRequest(BaseModel):
    """POST {agent}/agent/propose body."""
    goal: GoalPayload
    failure: Optional[FailurePayload] = None
    mesh_token: str


class ProposeResponse(BaseModel):
    ok: bool
    proposal: Optional[ProposalPayload] = None  # None = abstain
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Wire protocol: execute
# ---------------------------------------------------------------------------

class ExecuteRequest(BaseModel):
    """POST {agent}/agent/execute body."""
    goal: GoalPayload
    phase: PhasePayload
    mesh_token: str


class ExecuteResponse(BaseModel):
    ok: bool
    outcome: Literal["progress", "blocked", "failed"] = "failed"
    progress: float = 0.0
    reason: Optional[str] = None
    error: Optional[str] = None

    def to_update(self) -> PhaseUpdate:
        if not self.ok:
            return PhaseFailed(reason=self.error or "agent reported an error")
        if self.outcome == "progress":
            return PhaseProgress(progress=self.progress, note=self.reason or "")
        if self.outcome == "blocked":
            return PhaseBlocked(reason=self.reason or "blocked")
        return PhaseFailed(reason=self.reason or self.error or "phase failed")


# ---------------------------------------------------------------------------
# Wire protocol: registration against the engine
# ---------------------------------------------------------------------------

class JoinRequest(BaseModel):
    """POST /api/agents/join body."""
    agent_info: AgentInfo
    advertise_url: str
    mesh_token: str


class JoinResponse(BaseModel):
    ok: bool
    registered_agents: int = 0
    error: Optional[str] = None


class LeaveRequest(BaseModel):
    """POST /api/agents/leave body."""
    agent_id: str
    mesh_token: str


class LeaveResponse(BaseModel):
    ok: bool
