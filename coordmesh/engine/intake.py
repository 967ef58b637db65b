"""Goal intake: validate, register and enqueue submitted goals."""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Optional, Tuple, Union

from coordmesh.engine.errors import ValidationError
from coordmesh.engine.registry import GoalRecord, GoalRegistry
from coordmesh.engine.types import Goal, Priority, new_id
from coordmesh.observability.activity import MeshActivityLog
from coordmesh.observability.events import ActivityKind

logger = logging.getLogger(__name__)

MAX_OBJECTIVE_CHARS = 2000
DEFAULT_DOMAIN = "general"


def parse_priority(value: Union[str, Priority, None]) -> Priority:
    """Accept a Priority or its (case-insensitive) name."""
    if isinstance(value, Priority):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Invalid priority: {value!r}")
    try:
        return Priority(value.strip().lower())
    except ValueError:
        allowed = ", ".join(p.value for p in Priority)
        raise ValidationError(f"Invalid priority {value!r}; expected one of: {allowed}")


class GoalIntake:
    """Front door of the pipeline.

    Owns the planning queue: goals are served by priority (critical first)
    and FIFO within one priority.
    """

    def __init__(self, registry: GoalRegistry, activity: MeshActivityLog):
        self.registry = registry
        self.activity = activity
        self._queue: "asyncio.PriorityQueue[Tuple[int, int, str]]" = asyncio.PriorityQueue()
        self._counter = itertools.count()

    def submit(
        self,
        objective: str,
        priority: Union[str, Priority, None],
        domain: Optional[str] = DEFAULT_DOMAIN,
    ) -> Goal:
        """Validate and enqueue a goal. Raises ValidationError on bad input."""
        if not isinstance(objective, str) or not objective.strip():
            raise ValidationError("Objective must be a non-empty string")
        objective = objective.strip()
        if len(objective) > MAX_OBJECTIVE_CHARS:
            raise ValidationError(f"Objective exceeds {MAX_OBJECTIVE_CHARS} characters")

        level = parse_priority(priority)

        if domain is None:
            domain = DEFAULT_DOMAIN
        if not isinstance(domain, str) or not domain.strip():
            raise ValidationError("Domain must be a non-empty string")

        goal = Goal(
            id=new_id("goal"),
            objective=objective,
            priority=level,
            domain=domain.strip().lower(),
        )
        self.registry.add(goal)
        self._queue.put_nowait((level.rank, next(self._counter), goal.id))

        self.activity.record(
            ActivityKind.GOAL_SUBMITTED,
            f"Goal submitted to planning queue: {objective[:80]}",
            goal_id=goal.id,
            metadata={"priority": level.value, "domain": goal.domain},
        )
        logger.info("Goal %s queued (priority=%s domain=%s)", goal.id, level.value, goal.domain)
        return goal

    async def next_goal(self) -> Optional[GoalRecord]:
        """Wait for the next queued goal.

        Returns None for entries whose goal already left `queued` (for
        example, it was cancelled while waiting).
        """
        _, _, goal_id = await self._queue.get()
        try:
            record = self.registry.get(goal_id)
            if record is None or record.terminal:
                return None
            return record
        finally:
            self._queue.task_done()

    @property
    def pending(self) -> int:
        """Entries still waiting in the queue (including cancelled ones)."""
        return self._queue.qsize()
