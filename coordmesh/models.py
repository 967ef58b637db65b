"""
Pydantic models for coordination-mesh API requests and responses
"""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# Request Models
class GoalSubmitRequest(BaseModel):
    """Goal submission. Field contents are validated by goal intake."""
    objective: str
    priority: str = "medium"
    domain: str = "general"


# Response Models
class GoalSubmitResponse(BaseModel):
    goal_id: str
    status: str


class PhaseModel(BaseModel):
    sequence: int
    name: str
    agent_id: str
    status: str
    progress: float = Field(ge=0.0, le=1.0)
    parallel_group: Optional[str] = None
    blockers: List[str] = []
    blocked_retries: int = 0


class GoalStatusResponse(BaseModel):
    """Status and phase detail for one goal"""
    goal_id: str
    objective: str
    priority: str
    domain: str
    status: str  # queued, planning, executing, completed, failed, cancelled
    reason: Optional[str] = None
    error_code: Optional[str] = None
    accepted_proposal_id: Optional[str] = None
    accepted_agent_id: Optional[str] = None
    current_phase: Optional[int] = None
    progress: float = Field(ge=0.0, le=1.0)
    replans: int = 0
    proposers: List[str] = []
    phases: List[PhaseModel] = []
    blockers: List[str] = []
    fallbacks_available: List[str] = []
    submitted_at_ms: int
    finished_at_ms: Optional[int] = None
    expected_completion_ms: Optional[int] = None


class CancelResponse(BaseModel):
    goal_id: str
    accepted: bool
    status: str
    message: str = ""


class ReplanResponse(BaseModel):
    goal_id: str
    accepted: bool


class EmergencyStopResponse(BaseModel):
    cancelled: List[str] = []


class AgentAssignmentModel(BaseModel):
    agent_id: str
    goal_id: str
    phase: int


class SnapshotResponse(BaseModel):
    """Coordination snapshot (recomputed on every request)"""
    active_plans: int
    queue_depth: int
    planning: int
    in_flight: int
    system_load: float = Field(ge=0.0, le=1.0)
    load_status: str
    average_consensus_ms: float
    success_rate: float = Field(ge=0.0, le=1.0)
    completed: int
    failed: int
    cancelled: int
    registered_agents: int
    agents_in_use: List[AgentAssignmentModel] = []


class ActivityEventModel(BaseModel):
    id: str
    seq: int
    timestamp_ms: int
    kind: str
    message: str
    goal_id: Optional[str] = None
    agent_id: Optional[str] = None
    metadata: Dict[str, Any] = {}


class ActivityLogResponse(BaseModel):
    events: List[ActivityEventModel]
    total: int


class AgentModel(BaseModel):
    agent_id: str
    agent_type: str
    domains: List[str] = []
    remote_url: Optional[str] = None
