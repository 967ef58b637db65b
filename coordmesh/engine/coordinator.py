"""CoordinationEngine: lifecycle, worker pool and per-goal pipelines.

Owns the goal registry, the activity log and the worker tasks. Each
worker pulls the next goal from intake and runs its pipeline:

    plan round -> consensus -> execution -> (replan round -> ...) -> terminal

Pipelines of different goals share nothing but the registry and the
activity log. The engine is created at app startup and stopped at
shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Union

from coordmesh.agents.base import AgentRegistry, PlanningAgent
from coordmesh.engine.consensus import ConsensusCoordinator
from coordmesh.engine.errors import (
    CoordinationError,
    GoalCancelled,
    GoalTimeout,
    NoQuorumError,
    ReplanExhausted,
    error_metadata,
)
from coordmesh.engine.intake import DEFAULT_DOMAIN, GoalIntake
from coordmesh.engine.monitor import ExecutionMonitor
from coordmesh.engine.proposer import PlanProposer
from coordmesh.engine.registry import GoalRecord, GoalRegistry
from coordmesh.engine.scoring import ScoringStrategy
from coordmesh.engine.types import (
    CancelAck,
    CoordinationConfig,
    FailureContext,
    GoalStatus,
    GoalStatusView,
    Priority,
)
from coordmesh.observability.activity import MeshActivityLog
from coordmesh.observability.events import ActivityEvent, ActivityKind, EventBus, log_listener
from coordmesh.observability.metrics import CoordinationSnapshot, SystemMetricsAggregator

logger = logging.getLogger(__name__)


class CoordinationEngine:
    """Runs goals from intake to a terminal state."""

    def __init__(
        self,
        agents: Optional[AgentRegistry] = None,
        config: Optional[CoordinationConfig] = None,
        *,
        scoring: Optional[ScoringStrategy] = None,
        activity: Optional[MeshActivityLog] = None,
        goals: Optional[GoalRegistry] = None,
        log_events: bool = True,
    ):
        self.config = config or CoordinationConfig()
        self.agents = agents or AgentRegistry()
        self.goals = goals or GoalRegistry()

        if activity is None:
            bus = EventBus()
            if log_events:
                bus.on_all(log_listener())
            activity = MeshActivityLog(bus)
        self.activity = activity

        self.intake = GoalIntake(self.goals, self.activity)
        self.proposer = PlanProposer(self.agents, self.activity, self.config)
        self.consensus = ConsensusCoordinator(
            self.activity, self.config, scoring, agent_type_of=self.agents.agent_type_of,
        )
        self.monitor = ExecutionMonitor(self.agents, self.activity, self.config)
        self.metrics = SystemMetricsAggregator(self.goals, self.agents, self.config)

        self._workers: List[asyncio.Task] = []
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Spawn the worker pool."""
        if self._running:
            return
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker_loop(i), name=f"coordmesh-worker-{i}")
            for i in range(max(self.config.max_concurrent_goals, 1))
        ]
        logger.info(
            "Coordination engine started: workers=%d agents=%d",
            len(self._workers), len(self.agents),
        )

    async def stop(self) -> None:
        """Cancel workers; goals still in flight end cancelled."""
        self._running = False
        for task in self._workers:
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Coordination engine stopped")

    async def __aenter__(self) -> "CoordinationEngine":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def register_agent(self, agent: PlanningAgent) -> None:
        self.agents.register(agent)

    def submit_goal(
        self,
        objective: str,
        priority: Union[str, Priority, None] = Priority.MEDIUM,
        domain: Optional[str] = DEFAULT_DOMAIN,
    ) -> str:
        """Validate and enqueue a goal; returns its id. Raises ValidationError."""
        return self.intake.submit(objective, priority, domain).id

    def get_goal_status(self, goal_id: str) -> GoalStatusView:
        """Status and phase detail. Raises UnknownGoalError."""
        record = self.goals.require(goal_id)
        fallbacks = [
            a.agent_id for a in self.agents.eligible_for(record.goal.domain)
            if record.accepted is None or a.agent_id != record.accepted.agent_id
        ]
        return record.to_status(fallbacks)

    def get_coordination_snapshot(self) -> CoordinationSnapshot:
        return self.metrics.snapshot()

    def get_activity_log(self, limit: int = 20) -> List[ActivityEvent]:
        """Most recent events first."""
        return self.activity.recent(limit)

    def cancel_goal(self, goal_id: str) -> CancelAck:
        """Request cancellation. Raises UnknownGoalError.

        A queued goal is cancelled at once; a running one at its next
        suspension point. Repeated requests are acknowledged without a
        second event.
        """
        record = self.goals.require(goal_id)
        if record.terminal:
            return CancelAck(goal_id, False, record.status.value, "Goal already finished")
        if record.cancel_requested:
            return CancelAck(goal_id, True, record.status.value, "Cancellation already requested")

        record.cancel_requested = True
        if record.status == GoalStatus.QUEUED:
            self._finalize(record, GoalStatus.CANCELLED, GoalCancelled("Cancelled while queued"))
            return CancelAck(goal_id, True, record.status.value, "Cancelled while queued")

        logger.info("Cancellation requested for goal %s (%s)", goal_id, record.status.value)
        return CancelAck(goal_id, True, record.status.value, "Cancellation will apply at the next checkpoint")

    def trigger_replan(self, goal_id: str) -> bool:
        """Ask an executing goal to replan at its next phase boundary."""
        record = self.goals.require(goal_id)
        if record.status != GoalStatus.EXECUTING or record.cancel_requested:
            return False
        record.replan_requested = True
        logger.info("Manual replan requested for goal %s", goal_id)
        return True

    def emergency_stop(self) -> List[str]:
        """Cancel every goal that has not finished. Returns affected ids."""
        affected = []
        for record in self.goals.active():
            if record.terminal or record.cancel_requested:
                continue
            self.cancel_goal(record.goal_id)
            affected.append(record.goal_id)
        logger.warning("Emergency stop: %d goals cancelled", len(affected))
        return affected

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def _worker_loop(self, index: int) -> None:
        while self._running:
            try:
                record = await self.intake.next_goal()
            except asyncio.CancelledError:
                break
            if record is None:
                continue
            try:
                await self.run_goal(record)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Worker %d crashed on goal %s", index, record.goal_id)

    async def run_goal(self, record: GoalRecord) -> GoalRecord:
        """Run one goal's pipeline to a terminal state."""
        try:
            async with asyncio.timeout(self.config.goal_timeout_s):
                await self._pipeline(record)
        except TimeoutError:
            self._finalize(
                record, GoalStatus.FAILED,
                GoalTimeout(f"Goal exceeded its {self.config.goal_timeout_s:.0f}s lifetime"),
            )
        except GoalCancelled as exc:
            self._finalize(record, GoalStatus.CANCELLED, exc)
        except (NoQuorumError, ReplanExhausted) as exc:
            self._finalize(record, GoalStatus.FAILED, exc)
        except asyncio.CancelledError:
            self._finalize(
                record, GoalStatus.CANCELLED,
                GoalCancelled("Engine stopped", code="engine_stopped"),
            )
            raise
        except Exception as exc:
            logger.error("Pipeline for %s failed: %s", record.goal_id, exc, exc_info=True)
            self._finalize(record, GoalStatus.FAILED, CoordinationError(str(exc), code="internal_error"))
        return record

    async def _pipeline(self, record: GoalRecord) -> None:
        failure: Optional[FailureContext] = None
        while True:
            self._checkpoint(record)
            record.transition(GoalStatus.PLANNING)

            candidates = self.proposer.eligible(record.goal)
            round_ = self.consensus.open_round(record.goal_id, len(candidates))
            report = await self.proposer.collect(record.goal, round_, failure, candidates)
            self._checkpoint(record)
            record.proposers = list(report.accepted)

            decision = await self.consensus.decide(round_)
            record.consensus_durations_ms.append(decision.duration_ms)
            record.accept(decision.winner)
            record.transition(GoalStatus.EXECUTING)

            outcome = await self.monitor.run(record)
            if outcome.completed:
                self._finalize(record, GoalStatus.COMPLETED)
                return

            failure = outcome.failure
            record.replans += 1
            if record.replans > self.config.max_replans:
                raise ReplanExhausted(
                    f"Gave up after {self.config.max_replans} replans "
                    f"(last failure: {failure.reason if failure else 'unknown'})"
                )
            self.activity.record(
                ActivityKind.REPLANNING_TRIGGERED,
                f"Replanning triggered ({record.replans}/{self.config.max_replans}): "
                f"{failure.reason if failure else 'unknown'}",
                goal_id=record.goal_id,
                agent_id=failure.agent_id if failure else None,
                metadata={
                    "attempt": record.replans,
                    "reason": failure.reason if failure else None,
                    "phase": failure.phase_sequence if failure else None,
                    "previous_proposal_id": record.accepted.id if record.accepted else None,
                },
            )

    def _checkpoint(self, record: GoalRecord) -> None:
        if record.cancel_requested:
            raise GoalCancelled(f"Goal {record.goal_id} cancelled")

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _finalize(
        self,
        record: GoalRecord,
        status: GoalStatus,
        exc: Optional[CoordinationError] = None,
    ) -> None:
        """Enter a terminal state, log exactly one event and archive."""
        reason = str(exc) if exc else None
        if not record.finish(status, reason=reason, error_code=exc.code if exc else None):
            return

        if status == GoalStatus.COMPLETED:
            self.activity.record(
                ActivityKind.GOAL_COMPLETED,
                f"Goal completed after {len(record.phases)} phases",
                goal_id=record.goal_id,
                agent_id=record.accepted.agent_id if record.accepted else None,
                metadata={"replans": record.replans, "proposal_id": record.accepted.id if record.accepted else None},
            )
        elif status == GoalStatus.CANCELLED:
            self.activity.record(
                ActivityKind.GOAL_CANCELLED,
                f"Goal cancelled: {reason}",
                goal_id=record.goal_id,
                metadata=error_metadata(exc) if exc else {},
            )
        else:
            self.activity.record(
                ActivityKind.GOAL_FAILED,
                f"Goal failed: {reason}",
                goal_id=record.goal_id,
                metadata={**(error_metadata(exc) if exc else {}), "replans": record.replans},
            )
        self.goals.archive(record)
        logger.info("Goal %s finished: %s (%s)", record.goal_id, status.value, record.error_code or "ok")
