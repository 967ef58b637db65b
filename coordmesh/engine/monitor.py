"""Execution monitor: drives the accepted plan of one goal phase by phase.

Phases run strictly in sequence order. Consecutive phases sharing a
`parallel_group` form one batch that runs concurrently and joins before
the next batch starts; the join only holds up this goal's pipeline.

Blocked phases are retried after an exponential backoff. Once a phase has
been blocked more than `max_blocked_retries` times in a row, or fails
outright, the monitor stops and hands a FailureContext back to the caller
so it can replan. Cancellation is observed after every agent call, every
backoff and every batch; in-flight calls finish but their results are
discarded.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from coordmesh.agents.base import AgentRegistry, PlanningAgent
from coordmesh.engine.errors import AgentTimeout, BlockedPhase, CoordinationError, GoalCancelled, error_metadata
from coordmesh.engine.registry import GoalRecord
from coordmesh.engine.types import (
    CoordinationConfig,
    ExecutionPhase,
    FailureContext,
    Goal,
    PhaseBlocked,
    PhaseFailed,
    PhaseProgress,
    PhaseStatus,
    PhaseUpdate,
)
from coordmesh.observability.activity import MeshActivityLog
from coordmesh.observability.events import ActivityKind

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class PhaseResultKind(str, Enum):
    DONE = "done"
    REPLAN = "replan"
    CANCELLED = "cancelled"


@dataclass
class PhaseResult:
    kind: PhaseResultKind
    failure: Optional[FailureContext] = None


@dataclass
class ExecutionOutcome:
    """What the monitor hands back to the pipeline."""
    completed: bool
    failure: Optional[FailureContext] = None


def plan_batches(phases: List[ExecutionPhase]) -> List[List[ExecutionPhase]]:
    """Group phases into run order; consecutive same-group phases share a batch."""
    batches: List[List[ExecutionPhase]] = []
    for phase in sorted(phases, key=lambda p: p.sequence):
        last = batches[-1] if batches else None
        if (
            last is not None
            and phase.parallel_group is not None
            and last[-1].parallel_group == phase.parallel_group
        ):
            last.append(phase)
        else:
            batches.append([phase])
    return batches


def _now_ms() -> int:
    return int(time.time() * 1000)


class ExecutionMonitor:
    """Runs accepted plans against the assigned agents."""

    def __init__(
        self,
        agents: AgentRegistry,
        activity: MeshActivityLog,
        config: Optional[CoordinationConfig] = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.agents = agents
        self.activity = activity
        self.config = config or CoordinationConfig()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Top-level entry point
    # ------------------------------------------------------------------

    async def run(self, record: GoalRecord) -> ExecutionOutcome:
        """Drive every phase of the record's accepted plan.

        Raises GoalCancelled when cancellation is observed.
        """
        if record.accepted is None:
            raise ValueError(f"Goal {record.goal_id} has no accepted plan")

        for batch in plan_batches(record.phases):
            self._checkpoint(record)
            if record.replan_requested:
                record.replan_requested = False
                return ExecutionOutcome(
                    completed=False,
                    failure=FailureContext(
                        reason="manual",
                        attempt=record.replans + 1,
                        phase_sequence=batch[0].sequence,
                        phase_name=batch[0].name,
                        previous_proposal_id=record.accepted.id,
                    ),
                )

            for phase in batch:
                self.activity.record(
                    ActivityKind.EXECUTION_STARTED,
                    f"Phase {phase.sequence} execution started: {phase.name}",
                    goal_id=record.goal_id,
                    agent_id=phase.agent_id,
                    metadata={
                        "sequence": phase.sequence,
                        "proposal_id": phase.proposal_id,
                        "parallel_group": phase.parallel_group,
                    },
                )

            if len(batch) == 1:
                results = [await self._drive(record, batch[0])]
            else:
                results = list(await asyncio.gather(*(self._drive(record, p) for p in batch)))

            if any(r.kind == PhaseResultKind.CANCELLED for r in results):
                raise GoalCancelled(f"Goal {record.goal_id} cancelled during execution")
            failures = [r.failure for r in results if r.kind == PhaseResultKind.REPLAN]
            if failures:
                return ExecutionOutcome(completed=False, failure=failures[0])

        self._checkpoint(record)
        return ExecutionOutcome(completed=True)

    # ------------------------------------------------------------------
    # Single phase
    # ------------------------------------------------------------------

    async def _drive(self, record: GoalRecord, phase: ExecutionPhase) -> PhaseResult:
        agent = self.agents.get(phase.agent_id)
        if agent is None:
            return self._fail(record, phase, f"agent '{phase.agent_id}' is not registered")

        phase.status = PhaseStatus.RUNNING
        phase.started_at_ms = _now_ms()
        consecutive = 0

        while True:
            blocked: Optional[CoordinationError] = None
            try:
                update = await self._call(agent, phase, record.goal)
            except AgentTimeout as exc:
                update = None
                blocked = exc
            except Exception as exc:
                logger.warning("Phase %d of %s raised: %s", phase.sequence, record.goal_id, exc)
                update = PhaseFailed(reason=f"execution call failed: {exc}")

            if record.cancel_requested:
                return PhaseResult(PhaseResultKind.CANCELLED)

            if isinstance(update, PhaseBlocked):
                blocked = BlockedPhase(update.reason or "blocked")

            if blocked is not None:
                consecutive += 1
                result = self._on_blocked(record, phase, blocked, consecutive)
                if result is not None:
                    return result
                await self._sleep(self.config.backoff_for(consecutive))
                if record.cancel_requested:
                    return PhaseResult(PhaseResultKind.CANCELLED)
                continue

            if isinstance(update, PhaseProgress):
                consecutive = 0
                phase.blockers.clear()
                phase.status = PhaseStatus.RUNNING
                phase.progress = max(phase.progress, min(max(update.progress, 0.0), 1.0))
                if phase.progress >= 1.0:
                    return self._complete(record, phase)
                if self.config.progress_interval_s > 0:
                    await self._sleep(self.config.progress_interval_s)
                else:
                    await asyncio.sleep(0)
                if record.cancel_requested:
                    return PhaseResult(PhaseResultKind.CANCELLED)
                continue

            if isinstance(update, PhaseFailed):
                return self._fail(record, phase, update.reason or "phase failed")

            return self._fail(record, phase, f"unexpected update {type(update).__name__}")

    async def _call(self, agent: PlanningAgent, phase: ExecutionPhase, goal: Goal) -> PhaseUpdate:
        # Runs in the calling task: an outer cancel always propagates.
        try:
            async with asyncio.timeout(self.config.phase_call_timeout_s):
                return await agent.execute_phase(phase, goal)
        except TimeoutError:
            raise AgentTimeout(
                f"Agent '{agent.agent_id}' did not answer phase {phase.sequence} "
                f"within {self.config.phase_call_timeout_s:.1f}s"
            )

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _on_blocked(
        self,
        record: GoalRecord,
        phase: ExecutionPhase,
        exc: CoordinationError,
        consecutive: int,
    ) -> Optional[PhaseResult]:
        """Record one block; return a REPLAN result once retries are exhausted."""
        reason = exc.code if isinstance(exc, AgentTimeout) else str(exc)
        phase.status = PhaseStatus.BLOCKED
        phase.blocked_retries = consecutive
        if reason not in phase.blockers:
            phase.blockers.append(reason)

        kind = ActivityKind.AGENT_TIMEOUT if isinstance(exc, AgentTimeout) else ActivityKind.PHASE_BLOCKED
        self.activity.record(
            kind,
            f"Phase {phase.sequence} blocked ({consecutive}/{self.config.max_blocked_retries} retries): {exc}",
            goal_id=record.goal_id,
            agent_id=phase.agent_id,
            metadata={
                **error_metadata(exc),
                "stage": "execution",
                "sequence": phase.sequence,
                "consecutive": consecutive,
                "blocker": reason,
            },
        )

        if consecutive <= self.config.max_blocked_retries:
            return None

        phase.status = PhaseStatus.FAILED
        phase.finished_at_ms = _now_ms()
        return PhaseResult(
            PhaseResultKind.REPLAN,
            FailureContext(
                reason=f"blocked: {reason}",
                attempt=record.replans + 1,
                phase_sequence=phase.sequence,
                phase_name=phase.name,
                agent_id=phase.agent_id,
                blockers=tuple(phase.blockers),
                previous_proposal_id=phase.proposal_id,
            ),
        )

    def _complete(self, record: GoalRecord, phase: ExecutionPhase) -> PhaseResult:
        phase.status = PhaseStatus.DONE
        phase.progress = 1.0
        phase.finished_at_ms = _now_ms()
        record.completed_sequences.append(phase.sequence)
        self.activity.record(
            ActivityKind.PHASE_COMPLETED,
            f"Phase {phase.sequence} completed: {phase.name}",
            goal_id=record.goal_id,
            agent_id=phase.agent_id,
            metadata={"sequence": phase.sequence},
        )
        return PhaseResult(PhaseResultKind.DONE)

    def _fail(self, record: GoalRecord, phase: ExecutionPhase, reason: str) -> PhaseResult:
        phase.status = PhaseStatus.FAILED
        phase.finished_at_ms = _now_ms()
        self.activity.record(
            ActivityKind.PHASE_FAILED,
            f"Phase {phase.sequence} failed: {reason}",
            goal_id=record.goal_id,
            agent_id=phase.agent_id,
            metadata={"sequence": phase.sequence, "reason": reason},
        )
        return PhaseResult(
            PhaseResultKind.REPLAN,
            FailureContext(
                reason=f"failed: {reason}",
                attempt=record.replans + 1,
                phase_sequence=phase.sequence,
                phase_name=phase.name,
                agent_id=phase.agent_id,
                blockers=tuple(phase.blockers),
                previous_proposal_id=phase.proposal_id,
            ),
        )

    @staticmethod
    def _checkpoint(record: GoalRecord) -> None:
        if record.cancel_requested:
            raise GoalCancelled(f"Goal {record.goal_id} cancelled")
