"""Typed activity events and the pub/sub bus they are published on.

Events are written once through the MeshActivityLog and then fanned out
to listeners (loggers, tests, future exporters) which receive the frozen
ActivityEvent payload.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class ActivityKind(str, Enum):
    GOAL_SUBMITTED = "GOAL_SUBMITTED"
    PLAN_PROPOSED = "PLAN_PROPOSED"
    CONSENSUS_REACHED = "CONSENSUS_REACHED"
    EXECUTION_STARTED = "EXECUTION_STARTED"
    REPLANNING_TRIGGERED = "REPLANNING_TRIGGERED"
    AGENT_TIMEOUT = "AGENT_TIMEOUT"
    AGENT_UNAVAILABLE = "AGENT_UNAVAILABLE"
    PHASE_BLOCKED = "PHASE_BLOCKED"
    PHASE_COMPLETED = "PHASE_COMPLETED"
    PHASE_FAILED = "PHASE_FAILED"
    GOAL_COMPLETED = "GOAL_COMPLETED"
    GOAL_FAILED = "GOAL_FAILED"
    GOAL_CANCELLED = "GOAL_CANCELLED"


@dataclass(frozen=True)
class ActivityEvent:
    """One entry of the mesh activity log."""
    kind: ActivityKind
    message: str
    seq: int = 0
    goal_id: Optional[str] = None
    agent_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"activity_{uuid.uuid4().hex[:12]}")
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "seq": self.seq,
            "timestamp_ms": self.timestamp_ms,
            "kind": self.kind.value,
            "message": self.message,
            "goal_id": self.goal_id,
            "agent_id": self.agent_id,
            "metadata": dict(self.metadata),
        }


# ---------------------------------------------------------------------------
# Event bus
# ---------------------------------------------------------------------------

Listener = Callable[[ActivityEvent], None]


class EventBus:
    """Simple synchronous pub/sub for activity events.

    Listeners are called inline, so keep them fast. A failing listener is
    logged and skipped; it never breaks the write path.
    """

    def __init__(self):
        self._listeners: Dict[ActivityKind, List[Listener]] = {}
        self._global_listeners: List[Listener] = []

    def on(self, kind: ActivityKind, listener: Listener) -> None:
        """Subscribe to a specific event kind."""
        self._listeners.setdefault(kind, []).append(listener)

    def on_all(self, listener: Listener) -> None:
        """Subscribe to every event kind."""
        self._global_listeners.append(listener)

    def emit(self, event: ActivityEvent) -> None:
        """Dispatch an event to all matching listeners."""
        for listener in self._global_listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Global activity listener error for %s", event.kind)

        for listener in self._listeners.get(event.kind, []):
            try:
                listener(event)
            except Exception:
                logger.exception("Activity listener error for %s", event.kind)


def log_listener(target: Optional[logging.Logger] = None) -> Listener:
    """Build a listener that mirrors every event to a stdlib logger."""
    out = target or logging.getLogger("coordmesh.activity")

    def _listener(event: ActivityEvent) -> None:
        level = logging.WARNING if event.kind in _WARN_KINDS else logging.INFO
        out.log(
            level,
            "[%s] goal=%s agent=%s %s",
            event.kind.value, event.goal_id or "-", event.agent_id or "-", event.message,
        )

    return _listener


_WARN_KINDS = frozenset({
    ActivityKind.AGENT_TIMEOUT,
    ActivityKind.AGENT_UNAVAILABLE,
    ActivityKind.PHASE_BLOCKED,
    ActivityKind.PHASE_FAILED,
    ActivityKind.GOAL_FAILED,
})
