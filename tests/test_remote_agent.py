"""Tests for coordmesh.agents - mesh tokens, wire models and HttpAgent."""

import json
import time

import httpx
import pytest

from coordmesh.agents.auth import TOKEN_TTL_S, sign_mesh_token, verify_mesh_token
from coordmesh.agents.remote import AgentUnavailableError, HttpAgent
from coordmesh.agents.wire import AgentInfo, ExecuteResponse, ProposalPayload
from coordmesh.engine.types import (
    ExecutionPhase,
    FailureContext,
    Goal,
    PhaseBlocked,
    PhaseFailed,
    PhaseProgress,
    Priority,
)

SECRET = "test-secret"


def _goal():
    return Goal(id="goal_1", objective="Localize the docs", priority=Priority.HIGH, domain="content")


def _phase():
    return ExecutionPhase(sequence=1, name="translate", agent_id="remote-1", proposal_id="plan_1")


def _agent(handler):
    info = AgentInfo(agent_id="remote-1", agent_type="content", domains=["content"])
    return HttpAgent(info, "http://agent.local/", SECRET, transport=httpx.MockTransport(handler))


class TestMeshToken:
    def test_roundtrip(self):
        token = sign_mesh_token(SECRET, "engine")
        assert verify_mesh_token(token, SECRET, "engine") is True

    def test_wrong_audience(self):
        token = sign_mesh_token(SECRET, "agent-a")
        assert verify_mesh_token(token, SECRET, "agent-b") is False

    def test_wrong_secret(self):
        token = sign_mesh_token(SECRET, "engine")
        assert verify_mesh_token(token, "other", "engine") is False

    def test_expired(self):
        old = int(time.time() * 1000) - (TOKEN_TTL_S + 5) * 1000
        token = sign_mesh_token(SECRET, "engine", timestamp_ms=old)
        assert verify_mesh_token(token, SECRET, "engine") is False

    @pytest.mark.parametrize("token", ["", "garbage", "abc.def", None])
    def test_malformed(self, token):
        assert verify_mesh_token(token, SECRET, "engine") is False


class TestWireModels:
    def test_proposal_defaults_phase_agent(self):
        payload = ProposalPayload.model_validate({
            "phases": [{"name": "translate"}, {"name": "review", "agent_id": "reviewer"}],
            "confidence": 0.7,
        })
        proposal = payload.to_proposal("goal_1", "remote-1")
        assert [p.agent_id for p in proposal.phases] == ["remote-1", "reviewer"]
        assert proposal.goal_id == "goal_1"

    def test_proposal_requires_phases(self):
        with pytest.raises(ValueError):
            ProposalPayload.model_validate({"phases": [], "confidence": 0.5})

    def test_confidence_bounds(self):
        with pytest.raises(ValueError):
            ProposalPayload.model_validate({"phases": [{"name": "x"}], "confidence": 1.2})

    def test_execute_response_updates(self):
        assert ExecuteResponse(ok=True, outcome="progress", progress=0.4).to_update() == PhaseProgress(0.4)
        assert ExecuteResponse(ok=True, outcome="blocked", reason="API_RATE_LIMIT").to_update() == PhaseBlocked("API_RATE_LIMIT")
        assert isinstance(ExecuteResponse(ok=False, error="boom").to_update(), PhaseFailed)


class TestPropose:
    @pytest.mark.asyncio
    async def test_success(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "ok": True,
                "proposal": {"phases": [{"name": "translate", "expected_duration_s": 30}], "confidence": 0.8},
            })

        agent = _agent(handler)
        failure = FailureContext(reason="blocked: API_RATE_LIMIT", attempt=1, blockers=("API_RATE_LIMIT",))
        proposal = await agent.propose_plan(_goal(), failure)
        await agent.close()

        assert seen["url"] == "http://agent.local/agent/propose"
        assert seen["body"]["goal"]["id"] == "goal_1"
        assert seen["body"]["failure"]["blockers"] == ["API_RATE_LIMIT"]
        assert verify_mesh_token(seen["body"]["mesh_token"], SECRET, "remote-1")
        assert proposal.agent_id == "remote-1"
        assert proposal.confidence == 0.8
        assert proposal.phases[0].expected_duration_s == 30

    @pytest.mark.asyncio
    async def test_uses_configured_timeout(self):
        seen = {}

        def handler(request):
            seen["timeout"] = request.extensions["timeout"]
            return httpx.Response(200, json={"ok": True, "proposal": None})

        info = AgentInfo(agent_id="remote-1", agent_type="content")
        agent = HttpAgent(info, "http://agent.local", SECRET, timeout_s=3.0, transport=httpx.MockTransport(handler))
        await agent.propose_plan(_goal())
        await agent.close()

        assert seen["timeout"]["read"] == 3.0
        assert seen["timeout"]["connect"] == 5.0

    @pytest.mark.asyncio
    async def test_abstain(self):
        agent = _agent(lambda request: httpx.Response(200, json={"ok": True, "proposal": None}))
        assert await agent.propose_plan(_goal()) is None

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        agent = _agent(lambda request: httpx.Response(500, text="oops"))
        with pytest.raises(AgentUnavailableError):
            await agent.propose_plan(_goal())

    @pytest.mark.asyncio
    async def test_refused(self):
        agent = _agent(lambda request: httpx.Response(200, json={"ok": False, "error": "busy"}))
        with pytest.raises(AgentUnavailableError) as exc_info:
            await agent.propose_plan(_goal())
        assert exc_info.value.code == "agent_unavailable"

    @pytest.mark.asyncio
    async def test_invalid_payload(self):
        agent = _agent(lambda request: httpx.Response(200, json={"ok": True, "proposal": {"phases": []}}))
        with pytest.raises(AgentUnavailableError):
            await agent.propose_plan(_goal())

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(AgentUnavailableError):
            await _agent(handler).propose_plan(_goal())


class TestExecute:
    @pytest.mark.asyncio
    async def test_progress(self):
        def handler(request):
            body = json.loads(request.content)
            assert body["phase"]["name"] == "translate"
            return httpx.Response(200, json={"ok": True, "outcome": "progress", "progress": 0.5})

        assert await _agent(handler).execute_phase(_phase(), _goal()) == PhaseProgress(0.5)

    @pytest.mark.asyncio
    async def test_rate_limited_is_blocked(self):
        agent = _agent(lambda request: httpx.Response(429))
        assert await agent.execute_phase(_phase(), _goal()) == PhaseBlocked("http_429")

    @pytest.mark.asyncio
    async def test_timeout_is_blocked(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        assert await _agent(handler).execute_phase(_phase(), _goal()) == PhaseBlocked("agent_timeout")

    @pytest.mark.asyncio
    async def test_unreachable_is_blocked(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert await _agent(handler).execute_phase(_phase(), _goal()) == PhaseBlocked("agent_unreachable")

    @pytest.mark.asyncio
    async def test_client_error_fails(self):
        agent = _agent(lambda request: httpx.Response(400))
        assert isinstance(await agent.execute_phase(_phase(), _goal()), PhaseFailed)

    @pytest.mark.asyncio
    async def test_invalid_response_fails(self):
        agent = _agent(lambda request: httpx.Response(200, json={"ok": True, "outcome": "teleported"}))
        assert isinstance(await agent.execute_phase(_phase(), _goal()), PhaseFailed)


class TestDiscover:
    @pytest.mark.asyncio
    async def test_discover(self):
        def handler(request):
            assert request.url.path == "/agent/info"
            return httpx.Response(200, json={"agent_id": "remote-1", "agent_type": "seo", "domains": ["marketing"]})

        agent = await HttpAgent.discover("http://agent.local", SECRET, transport=httpx.MockTransport(handler))

        assert agent is not None
        assert agent.agent_id == "remote-1"
        assert agent.agent_type == "seo"
        assert list(agent.domains) == ["marketing"]

    @pytest.mark.asyncio
    async def test_discover_failure_returns_none(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        assert await HttpAgent.discover("http://agent.local", SECRET, transport=transport) is None
