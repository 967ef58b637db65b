"""MeshActivityLog: append-only record of every coordination event.

This is the single write path for observability. Components call
`record()` once per significant transition; the log assigns a sequence
number, stores the frozen event and publishes it on the EventBus.
Events are never updated or deleted.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from coordmesh.observability.events import ActivityEvent, ActivityKind, EventBus

logger = logging.getLogger(__name__)


class MeshActivityLog:
    """Append-only activity sink with most-recent-first reads."""

    def __init__(self, bus: Optional[EventBus] = None):
        self.bus = bus or EventBus()
        self._events: List[ActivityEvent] = []

    def __len__(self) -> int:
        return len(self._events)

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def record(
        self,
        kind: ActivityKind,
        message: str,
        *,
        goal_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ActivityEvent:
        """Append one event and publish it."""
        event = ActivityEvent(
            kind=kind,
            message=message,
            seq=len(self._events) + 1,
            goal_id=goal_id,
            agent_id=agent_id,
            metadata=dict(metadata or {}),
        )
        self._events.append(event)
        self.bus.emit(event)
        return event

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def recent(self, limit: int = 20) -> List[ActivityEvent]:
        """Most recent events first, at most `limit` of them."""
        if limit < 1:
            raise ValueError("limit must be >= 1")
        return list(reversed(self._events[-limit:]))

    def for_goal(self, goal_id: str) -> List[ActivityEvent]:
        """A goal's events in the order they were recorded."""
        return [e for e in self._events if e.goal_id == goal_id]

    def count(self, kind: Optional[ActivityKind] = None, *, goal_id: Optional[str] = None) -> int:
        return sum(
            1 for e in self._events
            if (kind is None or e.kind == kind) and (goal_id is None or e.goal_id == goal_id)
        )
