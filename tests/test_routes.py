"""HTTP contract tests for coordmesh.routes and the /health endpoint."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from coordmesh.agents.auth import sign_mesh_token
from coordmesh.agents.base import AgentRegistry
from coordmesh.agents.remote import HttpAgent
from coordmesh.engine.coordinator import CoordinationEngine
from coordmesh.observability.events import ActivityKind
from coordmesh.routes import router

from fakes import ScriptedAgent, fast_config

SECRET = "route-secret"


def _app(engine=None):
    app = FastAPI()
    app.include_router(router)
    if engine is not None:
        app.state.coordination_engine = engine
        app.state.mesh_secret = SECRET
        app.state.agent_http_timeout_s = 4.0
    return app


@pytest.fixture
def engine():
    # Workers are not started: submitted goals stay queued.
    return CoordinationEngine(AgentRegistry([ScriptedAgent("a1")]), fast_config())


@pytest.fixture
def client(engine):
    return TestClient(_app(engine))


class TestGoalEndpoints:
    def test_submit(self, client, engine):
        response = client.post("/api/goals", json={"objective": "Launch campaign X", "priority": "high"})

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "queued"
        assert engine.get_goal_status(data["goal_id"]).priority == "high"

    def test_submit_validation_error(self, client):
        response = client.post("/api/goals", json={"objective": "   ", "priority": "high"})

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "validation_error"

    def test_submit_bad_priority(self, client):
        response = client.post("/api/goals", json={"objective": "x", "priority": "asap"})
        assert response.status_code == 422

    def test_status(self, client):
        goal_id = client.post("/api/goals", json={"objective": "Write docs"}).json()["goal_id"]

        response = client.get(f"/api/goals/{goal_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["goal_id"] == goal_id
        assert data["status"] == "queued"
        assert data["priority"] == "medium"
        assert data["domain"] == "general"
        assert data["phases"] == []
        assert data["proposers"] == []

    def test_status_unknown(self, client):
        assert client.get("/api/goals/goal_missing").status_code == 404

    def test_cancel(self, client, engine):
        goal_id = client.post("/api/goals", json={"objective": "Write docs"}).json()["goal_id"]

        response = client.post(f"/api/goals/{goal_id}/cancel")

        assert response.status_code == 200
        assert response.json()["accepted"] is True
        assert response.json()["status"] == "cancelled"
        assert engine.activity.count(ActivityKind.GOAL_CANCELLED, goal_id=goal_id) == 1

    def test_cancel_unknown(self, client):
        assert client.post("/api/goals/goal_missing/cancel").status_code == 404

    def test_replan_queued_goal_not_accepted(self, client):
        goal_id = client.post("/api/goals", json={"objective": "Write docs"}).json()["goal_id"]
        response = client.post(f"/api/goals/{goal_id}/replan")
        assert response.status_code == 200
        assert response.json() == {"goal_id": goal_id, "accepted": False}

    def test_emergency_stop(self, client):
        ids = [client.post("/api/goals", json={"objective": f"goal {i}"}).json()["goal_id"] for i in range(2)]

        response = client.post("/api/emergency-stop")

        assert response.status_code == 200
        assert sorted(response.json()["cancelled"]) == sorted(ids)


class TestReadEndpoints:
    def test_snapshot(self, client):
        client.post("/api/goals", json={"objective": "Write docs"})

        data = client.get("/api/snapshot").json()

        assert data["queue_depth"] == 1
        assert data["active_plans"] == 0
        assert data["load_status"] == "OPTIMAL"
        assert data["registered_agents"] == 1

    def test_activity(self, client):
        for i in range(3):
            client.post("/api/goals", json={"objective": f"goal {i}"})

        data = client.get("/api/activity", params={"limit": 2}).json()

        assert data["total"] == 3
        assert len(data["events"]) == 2
        assert data["events"][0]["seq"] == 3
        assert data["events"][0]["kind"] == "GOAL_SUBMITTED"

    @pytest.mark.parametrize("limit", [0, 501])
    def test_activity_limit_bounds(self, client, limit):
        assert client.get("/api/activity", params={"limit": limit}).status_code == 422


class TestAgentEndpoints:
    def _join_body(self, token=None):
        return {
            "agent_info": {"agent_id": "remote-1", "agent_type": "seo", "domains": ["marketing"]},
            "advertise_url": "http://remote-1:9000",
            "mesh_token": token or sign_mesh_token(SECRET, "engine"),
        }

    def test_join_and_list(self, client, engine):
        response = client.post("/api/agents/join", json=self._join_body())

        assert response.status_code == 200
        assert response.json() == {"ok": True, "registered_agents": 2, "error": None}
        assert isinstance(engine.agents.get("remote-1"), HttpAgent)
        assert engine.agents.get("remote-1").timeout_s == 4.0

        agents = {a["agent_id"]: a for a in client.get("/api/agents").json()}
        assert agents["remote-1"]["remote_url"] == "http://remote-1:9000"
        assert agents["remote-1"]["domains"] == ["marketing"]
        assert agents["a1"]["remote_url"] is None

    def test_join_bad_token(self, client, engine):
        body = self._join_body(token=sign_mesh_token("wrong", "engine"))
        assert client.post("/api/agents/join", json=body).status_code == 401
        assert "remote-1" not in engine.agents

    def test_leave(self, client, engine):
        client.post("/api/agents/join", json=self._join_body())

        response = client.post(
            "/api/agents/leave",
            json={"agent_id": "remote-1", "mesh_token": sign_mesh_token(SECRET, "engine")},
        )

        assert response.json() == {"ok": True}
        assert "remote-1" not in engine.agents

    def test_leave_unknown(self, client):
        response = client.post(
            "/api/agents/leave",
            json={"agent_id": "nobody", "mesh_token": sign_mesh_token(SECRET, "engine")},
        )
        assert response.json() == {"ok": False}


class TestNoEngine:
    def test_503_without_engine(self):
        client = TestClient(_app())
        assert client.get("/api/snapshot").status_code == 503


class TestHealth:
    def test_health_before_startup(self):
        from coordmesh.main import app

        response = TestClient(app).get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "coordination-mesh"
        assert data["status"] in ("healthy", "starting")
