"""Proposal scoring strategies for consensus.

Pure logic, no I/O. A strategy maps a PlanProposal to a score in
[0.0, 1.0] that must not decrease when the proposal's confidence rises.
The consensus round ranks proposals by that score.
"""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional, Protocol

from coordmesh.engine.types import PlanProposal

logger = logging.getLogger(__name__)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class ScoringStrategy(Protocol):
    """Contract every scoring strategy must satisfy."""

    name: str

    def score(self, proposal: PlanProposal, agent_type: Optional[str] = None) -> float:
        """Bounded [0, 1] score, monotonic in proposal.confidence."""
        ...


class ConfidenceScoring:
    """Score = the proposal's self-reported confidence."""

    name = "confidence"

    def score(self, proposal: PlanProposal, agent_type: Optional[str] = None) -> float:
        return clamp(proposal.confidence)


class WeightedScoring:
    """Confidence scaled by a per-agent-type trust weight.

    Weights are non-negative; the product is clamped back into [0, 1] so
    the result stays bounded and monotonic in confidence for a fixed type.
    """

    name = "weighted"

    def __init__(self, weights: Mapping[str, float], default_weight: float = 1.0):
        for agent_type, weight in weights.items():
            if weight < 0:
                raise ValueError(f"Weight for {agent_type!r} must be >= 0")
        if default_weight < 0:
            raise ValueError("default_weight must be >= 0")
        self.weights: Dict[str, float] = {k.lower(): float(v) for k, v in weights.items()}
        self.default_weight = default_weight

    def score(self, proposal: PlanProposal, agent_type: Optional[str] = None) -> float:
        weight = self.weights.get((agent_type or "").lower(), self.default_weight)
        return clamp(clamp(proposal.confidence) * weight)


def create_scoring(name: str, weights: Optional[Mapping[str, float]] = None) -> ScoringStrategy:
    """Build a strategy by name ("confidence" or "weighted")."""
    key = (name or "confidence").strip().lower()
    if key == "confidence":
        return ConfidenceScoring()
    if key == "weighted":
        return WeightedScoring(weights or {})
    raise ValueError(f"Unknown scoring strategy: {name!r}")
