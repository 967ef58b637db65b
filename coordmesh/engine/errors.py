"""Typed error hierarchy for the coordination engine.

Every error carries a machine-readable `code` so pipeline callers never need
to parse exception messages. Transient errors are `retriable` and are
absorbed inside the pipeline; the rest end a goal.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CoordinationError(Exception):
    """Base for all coordination errors."""
    code: str = "coordination_error"
    retriable: bool = False

    def __init__(self, message: str, *, code: Optional[str] = None, retriable: Optional[bool] = None):
        super().__init__(message)
        if code is not None:
            self.code = code
        if retriable is not None:
            self.retriable = retriable


class ValidationError(CoordinationError):
    """Malformed goal submission or request argument."""
    code = "validation_error"
    retriable = False


class UnknownGoalError(CoordinationError):
    """No goal with the requested id is registered."""
    code = "unknown_goal"
    retriable = False


class NoQuorumError(CoordinationError):
    """A consensus round closed with fewer proposals than the quorum."""
    code = "no_quorum"
    retriable = False

    def __init__(self, message: str, *, received: int = 0, required: int = 0, eligible: int = 0):
        super().__init__(message)
        self.received = received
        self.required = required
        self.eligible = eligible


class BlockedPhase(CoordinationError):
    """A phase reported an external blocker (rate limit, outage, ...)."""
    code = "blocked_phase"
    retriable = True


class AgentTimeout(CoordinationError):
    """An agent did not answer a proposal or execution call in time."""
    code = "agent_timeout"
    retriable = True


class ReplanExhausted(CoordinationError):
    """The goal needed more replans than the configured ceiling."""
    code = "replan_exhausted"
    retriable = False


class GoalCancelled(CoordinationError):
    """Cancellation was observed at a suspension point."""
    code = "goal_cancelled"
    retriable = False


class GoalTimeout(CoordinationError):
    """The goal outlived its configured lifetime."""
    code = "goal_timeout"
    retriable = False


def error_metadata(exc: CoordinationError) -> Dict[str, Any]:
    """Flatten an error into activity-event metadata."""
    meta: Dict[str, Any] = {"error_code": exc.code, "retriable": exc.retriable}
    if isinstance(exc, NoQuorumError):
        meta.update(received=exc.received, required=exc.required, eligible=exc.eligible)
    return meta
