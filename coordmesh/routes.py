"""FastAPI routes for the coordination core.

POST /api/goals                   - submit a goal
GET  /api/goals/{goal_id}         - status and phase detail
POST /api/goals/{goal_id}/cancel  - request cancellation
POST /api/goals/{goal_id}/replan  - operator-triggered replan
POST /api/emergency-stop          - cancel every unfinished goal
GET  /api/snapshot                - coordination metrics
GET  /api/activity?limit=N        - most recent activity first
POST /api/agents/join             - remote agent registration
POST /api/agents/leave            - remote agent departure
GET  /api/agents                  - registered agents
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, Request

from coordmesh.agents.auth import verify_mesh_token
from coordmesh.agents.remote import DEFAULT_TIMEOUT_S, HttpAgent
from coordmesh.agents.wire import JoinRequest, JoinResponse, LeaveRequest, LeaveResponse
from coordmesh.engine.coordinator import CoordinationEngine
from coordmesh.engine.errors import UnknownGoalError, ValidationError
from coordmesh.models import (
    ActivityEventModel,
    ActivityLogResponse,
    AgentModel,
    CancelResponse,
    EmergencyStopResponse,
    GoalStatusResponse,
    GoalSubmitRequest,
    GoalSubmitResponse,
    ReplanResponse,
    SnapshotResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["coordination"])

ENGINE_AUDIENCE = "engine"
MAX_ACTIVITY_LIMIT = 500


def _get_engine(request: Request) -> CoordinationEngine:
    """Extract the CoordinationEngine from app state."""
    engine = getattr(request.app.state, "coordination_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Coordination engine not running")
    return engine


def _verify_or_401(request: Request, token: str) -> None:
    secret = getattr(request.app.state, "mesh_secret", None)
    if not secret or not verify_mesh_token(token, secret, ENGINE_AUDIENCE):
        raise HTTPException(status_code=401, detail="Invalid mesh token")


# ---------------------------------------------------------------------------
# Goals
# ---------------------------------------------------------------------------

@router.post("/goals", response_model=GoalSubmitResponse, status_code=201)
async def submit_goal(body: GoalSubmitRequest, request: Request):
    engine = _get_engine(request)
    try:
        goal_id = engine.submit_goal(body.objective, body.priority, body.domain)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail={"code": exc.code, "message": str(exc)})
    return GoalSubmitResponse(goal_id=goal_id, status=engine.get_goal_status(goal_id).status)


@router.get("/goals/{goal_id}", response_model=GoalStatusResponse)
async def goal_status(goal_id: str, request: Request):
    engine = _get_engine(request)
    try:
        view = engine.get_goal_status(goal_id)
    except UnknownGoalError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return GoalStatusResponse(**view.to_dict())


@router.post("/goals/{goal_id}/cancel", response_model=CancelResponse)
async def cancel_goal(goal_id: str, request: Request):
    engine = _get_engine(request)
    try:
        ack = engine.cancel_goal(goal_id)
    except UnknownGoalError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return CancelResponse(goal_id=ack.goal_id, accepted=ack.accepted, status=ack.status, message=ack.message)


@router.post("/goals/{goal_id}/replan", response_model=ReplanResponse)
async def replan_goal(goal_id: str, request: Request):
    engine = _get_engine(request)
    try:
        accepted = engine.trigger_replan(goal_id)
    except UnknownGoalError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return ReplanResponse(goal_id=goal_id, accepted=accepted)


@router.post("/emergency-stop", response_model=EmergencyStopResponse)
async def emergency_stop(request: Request):
    engine = _get_engine(request)
    return EmergencyStopResponse(cancelled=engine.emergency_stop())


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------

@router.get("/snapshot", response_model=SnapshotResponse)
async def coordination_snapshot(request: Request):
    engine = _get_engine(request)
    return SnapshotResponse(**engine.get_coordination_snapshot().to_dict())


@router.get("/activity", response_model=ActivityLogResponse)
async def activity_log(request: Request, limit: int = Query(default=20, ge=1, le=MAX_ACTIVITY_LIMIT)):
    engine = _get_engine(request)
    events = engine.get_activity_log(limit)
    return ActivityLogResponse(
        events=[ActivityEventModel(**e.to_dict()) for e in events],
        total=len(engine.activity),
    )


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------

@router.post("/agents/join", response_model=JoinResponse)
async def agent_join(body: JoinRequest, request: Request):
    """Register a remote agent that calls in with a valid mesh token."""
    _verify_or_401(request, body.mesh_token)
    engine = _get_engine(request)

    agent = HttpAgent(
        body.agent_info,
        body.advertise_url,
        request.app.state.mesh_secret,
        timeout_s=getattr(request.app.state, "agent_http_timeout_s", DEFAULT_TIMEOUT_S),
    )
    previous = engine.agents.get(agent.agent_id)
    engine.register_agent(agent)
    if isinstance(previous, HttpAgent) and previous is not agent:
        await previous.close()
    logger.info("Agent joined: %s (%s) at %s", agent.agent_id, agent.agent_type, agent.base_url)
    return JoinResponse(ok=True, registered_agents=len(engine.agents))


@router.post("/agents/leave", response_model=LeaveResponse)
async def agent_leave(body: LeaveRequest, request: Request):
    _verify_or_401(request, body.mesh_token)
    engine = _get_engine(request)
    removed = engine.agents.unregister(body.agent_id)
    if isinstance(removed, HttpAgent):
        await removed.close()
    return LeaveResponse(ok=removed is not None)


@router.get("/agents", response_model=list[AgentModel])
async def list_agents(request: Request):
    engine = _get_engine(request)
    return [
        AgentModel(
            agent_id=a.agent_id,
            agent_type=a.agent_type,
            domains=list(a.domains),
            remote_url=a.base_url if isinstance(a, HttpAgent) else None,
        )
        for a in engine.agents.all()
    ]
