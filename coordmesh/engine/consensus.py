"""Consensus coordinator: quorum-gated selection of one plan per round.

A ConsensusRound moves through collecting -> scoring -> decided | no_quorum.
Submissions are serialized by a per-round lock so one agent can never be
counted twice and nothing is accepted after the round closes. Rounds for
different goals share no state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from coordmesh.engine.errors import NoQuorumError
from coordmesh.engine.scoring import ConfidenceScoring, ScoringStrategy
from coordmesh.engine.types import CoordinationConfig, PlanProposal, RoundState
from coordmesh.observability.activity import MeshActivityLog
from coordmesh.observability.events import ActivityKind

logger = logging.getLogger(__name__)


@dataclass
class Submission:
    """A proposal as received by a round, with its arrival order."""
    proposal: PlanProposal
    order: int
    score: float = 0.0


@dataclass
class ConsensusDecision:
    """Outcome of a decided round."""
    goal_id: str
    winner: PlanProposal
    score: float
    quorum: int
    required: int
    eligible: int
    duration_ms: int
    ranking: List[Submission] = field(default_factory=list)


class ConsensusRound:
    """Collects proposals for one goal during one planning round."""

    def __init__(self, goal_id: str, eligible: int, required: int):
        self.goal_id = goal_id
        self.eligible = eligible
        self.required = required
        self.state = RoundState.COLLECTING
        self.opened_at = time.monotonic()
        self._lock = asyncio.Lock()
        self._submissions: List[Submission] = []

    @property
    def submissions(self) -> List[Submission]:
        return list(self._submissions)

    @property
    def received(self) -> int:
        return len(self._submissions)

    async def submit(self, proposal: PlanProposal) -> bool:
        """Add a proposal. Returns False if it was rejected."""
        async with self._lock:
            if self.state != RoundState.COLLECTING:
                logger.debug("Round for %s closed, dropping proposal %s", self.goal_id, proposal.id)
                return False
            if proposal.goal_id != self.goal_id:
                logger.warning("Proposal %s targets goal %s, not %s", proposal.id, proposal.goal_id, self.goal_id)
                return False
            if any(s.proposal.agent_id == proposal.agent_id for s in self._submissions):
                logger.warning("Duplicate proposal from agent %s for goal %s", proposal.agent_id, self.goal_id)
                return False
            self._submissions.append(Submission(proposal=proposal, order=len(self._submissions)))
            return True

    async def close(self) -> List[Submission]:
        """Stop accepting submissions and move to scoring."""
        async with self._lock:
            if self.state == RoundState.COLLECTING:
                self.state = RoundState.SCORING
            return list(self._submissions)


class ConsensusCoordinator:
    """Opens rounds and decides them with a pluggable scoring strategy."""

    def __init__(
        self,
        activity: MeshActivityLog,
        config: Optional[CoordinationConfig] = None,
        scoring: Optional[ScoringStrategy] = None,
        agent_type_of: Optional[Callable[[str], Optional[str]]] = None,
    ):
        self.activity = activity
        self.config = config or CoordinationConfig()
        self.scoring = scoring or ConfidenceScoring()
        self.agent_type_of = agent_type_of or (lambda _agent_id: None)

    def open_round(self, goal_id: str, eligible: int) -> ConsensusRound:
        required = self.config.required_quorum(eligible)
        logger.debug("Round opened for %s: eligible=%d required=%d", goal_id, eligible, required)
        return ConsensusRound(goal_id, eligible, required)

    async def decide(self, round_: ConsensusRound) -> ConsensusDecision:
        """Close the round and pick a winner, or raise NoQuorumError."""
        submissions = await round_.close()
        duration_ms = int((time.monotonic() - round_.opened_at) * 1000)

        if len(submissions) < round_.required:
            round_.state = RoundState.NO_QUORUM
            raise NoQuorumError(
                f"No consensus: {len(submissions)}/{round_.eligible} proposals, "
                f"quorum requires {round_.required}",
                received=len(submissions),
                required=round_.required,
                eligible=round_.eligible,
            )

        for sub in submissions:
            sub.score = self.scoring.score(sub.proposal, self.agent_type_of(sub.proposal.agent_id))

        # Highest score first; earliest arrival breaks exact ties.
        ranking = sorted(submissions, key=lambda s: (-s.score, s.order))
        best = ranking[0]
        round_.state = RoundState.DECIDED

        decision = ConsensusDecision(
            goal_id=round_.goal_id,
            winner=best.proposal,
            score=best.score,
            quorum=len(submissions),
            required=round_.required,
            eligible=round_.eligible,
            duration_ms=duration_ms,
            ranking=ranking,
        )
        self.activity.record(
            ActivityKind.CONSENSUS_REACHED,
            f"Plan accepted by consensus with quorum {decision.quorum}/{decision.eligible} "
            f"agents (score: {decision.score:.2f})",
            goal_id=round_.goal_id,
            agent_id=best.proposal.agent_id,
            metadata={
                "proposal_id": best.proposal.id,
                "score": decision.score,
                "quorum": decision.quorum,
                "required": decision.required,
                "eligible": decision.eligible,
                "duration_ms": duration_ms,
                "strategy": self.scoring.name,
            },
        )
        return decision
