"""HttpAgent: the agent contract spoken over HTTP to a remote agent process.

All engine -> agent RPCs go through this class: info, propose and execute.
Uses httpx with configurable timeouts and signs every call with a mesh
token scoped to the target agent.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import httpx

from coordmesh.agents.auth import sign_mesh_token
from coordmesh.agents.wire import (
    AgentInfo,
    ExecuteRequest,
    ExecuteResponse,
    FailurePayload,
    GoalPayload,
    PhasePayload,
    ProposeRequest,
    ProposeResponse,
)
from coordmesh.engine.errors import CoordinationError
from coordmesh.engine.types import (
    ExecutionPhase,
    FailureContext,
    Goal,
    PhaseBlocked,
    PhaseFailed,
    PhaseUpdate,
    PlanProposal,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 10


class AgentUnavailableError(CoordinationError):
    """The remote agent could not be reached or answered with an error."""
    code = "agent_unavailable"
    retriable = True


class HttpAgent:
    """Remote agent reachable at `base_url`."""

    def __init__(
        self,
        info: AgentInfo,
        base_url: str,
        secret: str,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.info = info
        self.base_url = base_url.rstrip("/")
        self.secret = secret
        self.timeout_s = timeout_s
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    # PlanningAgent attributes
    @property
    def agent_id(self) -> str:
        return self.info.agent_id

    @property
    def agent_type(self) -> str:
        return self.info.agent_type

    @property
    def domains(self) -> Sequence[str]:
        return self.info.domains

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_s, connect=5.0),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    @classmethod
    async def discover(
        cls,
        base_url: str,
        secret: str,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> Optional["HttpAgent"]:
        """Fetch GET {base_url}/agent/info and build an agent. Returns None on failure."""
        url = f"{base_url.rstrip('/')}/agent/info"
        try:
            async with httpx.AsyncClient(timeout=timeout_s, transport=transport) as client:
                resp = await client.get(url)
            if resp.status_code != 200:
                logger.warning("Agent discovery at %s failed: %d %s", base_url, resp.status_code, resp.text[:200])
                return None
            info = AgentInfo.model_validate(resp.json())
        except Exception as exc:
            logger.warning("Agent discovery at %s error: %s", base_url, exc)
            return None
        return cls(info, base_url, secret, timeout_s=timeout_s, transport=transport)

    # ------------------------------------------------------------------
    # Propose
    # ------------------------------------------------------------------

    async def propose_plan(
        self, goal: Goal, failure: Optional[FailureContext] = None,
    ) -> Optional[PlanProposal]:
        """Ask the remote agent for a plan. Raises AgentUnavailableError on I/O or protocol errors."""
        body = ProposeRequest(
            goal=GoalPayload.from_goal(goal),
            failure=FailurePayload.from_context(failure) if failure else None,
            mesh_token=sign_mesh_token(self.secret, self.agent_id),
        )
        try:
            client = await self._get_client()
            resp = await client.post(f"{self.base_url}/agent/propose", json=body.model_dump())
        except httpx.HTTPError as exc:
            logger.warning("Propose on %s error: %s", self.agent_id, exc)
            raise AgentUnavailableError(f"{self.agent_id} unreachable: {exc}")

        if resp.status_code != 200:
            logger.warning("Propose on %s failed: %d %s", self.agent_id, resp.status_code, resp.text[:200])
            raise AgentUnavailableError(f"{self.agent_id} answered HTTP {resp.status_code}")

        try:
            answer = ProposeResponse.model_validate(resp.json())
        except ValueError as exc:
            raise AgentUnavailableError(f"{self.agent_id} sent an invalid proposal: {exc}")

        if not answer.ok:
            raise AgentUnavailableError(f"{self.agent_id} refused: {answer.error or 'unknown error'}")
        if answer.proposal is None:
            return None
        return answer.proposal.to_proposal(goal.id, self.agent_id)

    # ------------------------------------------------------------------
    # Execute
    # ------------------------------------------------------------------

    async def execute_phase(self, phase: ExecutionPhase, goal: Goal) -> PhaseUpdate:
        """Advance a phase remotely.

        Transport errors are reported as blocks so the monitor retries with
        backoff; protocol errors fail the phase.
        """
        body = ExecuteRequest(
            goal=GoalPayload.from_goal(goal),
            phase=PhasePayload.from_phase(phase),
            mesh_token=sign_mesh_token(self.secret, self.agent_id),
        )
        try:
            client = await self._get_client()
            resp = await client.post(f"{self.base_url}/agent/execute", json=body.model_dump())
        except httpx.TimeoutException as exc:
            logger.warning("Execute on %s timed out: %s", self.agent_id, exc)
            return PhaseBlocked(reason="agent_timeout")
        except httpx.HTTPError as exc:
            logger.warning("Execute on %s error: %s", self.agent_id, exc)
            return PhaseBlocked(reason="agent_unreachable")

        if resp.status_code == 429 or resp.status_code >= 500:
            return PhaseBlocked(reason=f"http_{resp.status_code}")
        if resp.status_code != 200:
            return PhaseFailed(reason=f"agent answered HTTP {resp.status_code}")

        try:
            return ExecuteResponse.model_validate(resp.json()).to_update()
        except ValueError as exc:
            return PhaseFailed(reason=f"invalid execute response: {exc}")
