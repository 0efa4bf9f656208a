"""Tests for the admin API."""

import time

import pytest
from fastapi.testclient import TestClient

from landing_pad.api import create_fastapi_app
from landing_pad.app import Application
from landing_pad.config import AppConfig
from conftest import FAST_AGENT_CONFIG, FAST_RETRY


def wait_for(predicate, timeout: float = 5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        result = predicate()
        if result:
            return result
        time.sleep(0.02)
    raise AssertionError("condition not met in time")


@pytest.fixture
def application():
    config = AppConfig.from_sections(
        "test",
        agents=FAST_AGENT_CONFIG,
        messaging={
            "retry": {
                **FAST_RETRY,
                # Missing content is dead-lettered so the queue can be exercised
                "overrides": {"brand_consistency": {"dead_letter_permanent": True}},
            },
            "graceful_shutdown_seconds": 1,
        },
    )
    return Application(config, db_path=":memory:")


@pytest.fixture
def client(application):
    with TestClient(create_fastapi_app(application)) as test_client:
        yield test_client


class TestHealthAndAgents:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert len(data["agents"]) == 5

    def test_list_agents(self, client):
        response = client.get("/api/agents")
        assert response.status_code == 200
        assert sorted(agent["name"] for agent in response.json()) == [
            "brand_consistency",
            "content_creation",
            "content_management",
            "content_strategy",
            "optimisation",
        ]

    def test_get_agent(self, client):
        data = client.get("/api/agents/optimisation").json()
        assert data["name"] == "optimisation"
        assert data["is_running"] is True
        assert data["restarts"] == 0
        assert data["recovery_history"] == []

    def test_unknown_agent(self, client):
        response = client.get("/api/agents/weather")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_restart_agent(self, client):
        response = client.post("/api/agents/optimisation/restart", json={"user_id": "admin"})
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        wait_for(lambda: client.get("/api/agents/optimisation").json()["restarts"] == 1)


class TestCommands:
    def test_submit_command_runs_workflow(self, client, application):
        response = client.post(
            "/api/agents/content_strategy/commands",
            json={"type": "create_brief", "payload": {"type": "blog", "topic": "AI"}, "user_id": "u1"},
        )
        assert response.status_code == 202
        body = response.json()
        assert body["agent"] == "content_strategy"
        assert body["type"] == "create_brief"
        assert body["message_id"]

        def approved_workflow():
            for workflow_id in application.tracker.workflows():
                steps = client.get(f"/api/workflows/{workflow_id}").json()["steps"]
                if any(step["step_id"] == "content_creation.content_approved" for step in steps):
                    return steps
            return None

        steps = wait_for(approved_workflow)
        assert steps[0]["step_id"] == "content_strategy.brief_created"
        assert all(step["status"] == "completed" for step in steps)

    def test_invalid_payload(self, client):
        response = client.post(
            "/api/agents/content_strategy/commands",
            json={"type": "create_brief", "payload": {"topic": "AI"}},
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "validation"

    def test_priority_out_of_range(self, client):
        response = client.post(
            "/api/agents/content_strategy/commands",
            json={"type": "create_brief", "payload": {"type": "blog", "topic": "AI"}, "priority": 11},
        )
        assert response.status_code == 422

    def test_command_for_unknown_agent(self, client):
        response = client.post("/api/agents/weather/commands", json={"type": "forecast"})
        assert response.status_code == 404

    def test_unknown_workflow(self, client):
        response = client.get("/api/workflows/nothing")
        assert response.status_code == 404


class TestDeadLetters:
    def test_list_retry_and_delete(self, client):
        client.post(
            "/api/agents/brand_consistency/commands",
            json={"type": "review_content", "payload": {"content_id": "missing"}},
        )
        [entry] = wait_for(lambda: client.get("/api/dead-letters").json())
        assert entry["agent_id"] == "brand_consistency"
        assert entry["error"]["code"] == "not_found"
        assert client.get("/api/dead-letters", params={"agent": "optimisation"}).json() == []

        response = client.post(f"/api/dead-letters/{entry['key']}/retry")
        assert response.status_code == 202
        assert response.json() == {"status": "ok"}

        response = client.delete(f"/api/dead-letters/{entry['key']}")
        assert response.status_code == 200
        wait_for(lambda: client.get("/api/dead-letters").json() == [])

    def test_unknown_key(self, client):
        assert client.post("/api/dead-letters/missing/retry").status_code == 404
        assert client.delete("/api/dead-letters/missing").status_code == 404
