"""Tests for Application."""

import asyncio

import pytest
import pytest_asyncio

from landing_pad.agents import AGENT_TYPES, OptimisationAgent
from landing_pad.app import Application
from landing_pad.config import AppConfig
from landing_pad.errors import ConfigurationError, NotFoundError
from landing_pad.models import RecoveryStrategy, StepStatus
from conftest import FAST_AGENT_CONFIG, FAST_RETRY, EventCollector


def make_config(**agents) -> AppConfig:
    return AppConfig.from_sections(
        "test",
        agents={**FAST_AGENT_CONFIG, **agents},
        messaging={
            "retry": FAST_RETRY,
            "graceful_shutdown_seconds": 1,
            "recovery": {"hold_seconds": 0.01},
        },
    )


@pytest_asyncio.fixture
async def application(storage):
    """Started application with all five agents."""
    app = Application(make_config(), storage=storage)
    await app.start()
    yield app
    await app.stop()


class TestApplicationLifecycle:
    @pytest.mark.asyncio
    async def test_starts_all_agents(self, application):
        assert sorted(application.agents) == [
            "brand_consistency",
            "content_creation",
            "content_management",
            "content_strategy",
            "optimisation",
        ]
        assert all(agent.is_running for agent in application.agents.values())
        assert (await application.health.check()).healthy

    @pytest.mark.asyncio
    async def test_selected_agents_only(self, storage):
        app = Application(make_config(), agents=["optimisation"], storage=storage)
        await app.start()
        assert list(app.agents) == ["optimisation"]
        with pytest.raises(NotFoundError):
            app.agent("content_creation")
        await app.stop()

    @pytest.mark.asyncio
    async def test_disabled_agents_skipped(self, storage):
        app = Application(make_config(optimisation={"enabled": False}), storage=storage)
        await app.start()
        assert "optimisation" not in app.agents
        assert len(app.agents) == 4
        await app.stop()

    @pytest.mark.asyncio
    async def test_unknown_agent_rejected(self, storage):
        app = Application(make_config(), agents=["weather"], storage=storage)
        with pytest.raises(ConfigurationError):
            await app.start()

    @pytest.mark.asyncio
    async def test_components_require_start(self):
        app = Application(make_config())
        with pytest.raises(RuntimeError):
            app.message_bus

    @pytest.mark.asyncio
    async def test_stop_is_idempotent_and_keeps_injected_storage(self, storage):
        app = Application(make_config(), agents=["optimisation"], storage=storage)
        await app.start()
        await app.start()
        await app.stop()
        await app.stop()

        assert not app.agent("optimisation").is_running
        assert app.message_bus.status()["connected"] is False
        assert await storage.ping() is True

    @pytest.mark.asyncio
    async def test_owns_storage_from_db_path(self):
        app = Application(make_config(), agents=["optimisation"], db_path=":memory:")
        await app.start()
        assert await app.storage.ping() is True
        await app.stop()
        assert await app.storage.ping() is False

    @pytest.mark.asyncio
    async def test_reset_clears_storage(self, application):
        await application.storage.store("content", {"_id": "C"})
        await application.reset()
        assert await application.storage.find("content") == []


class TestApplicationWorkflow:
    @pytest.mark.asyncio
    async def test_full_choreography(self, application):
        events = EventCollector()
        await application.message_bus.subscribe_event("#", events, owner="test")

        await application.submit_command(
            "content_strategy",
            "create_brief",
            {"type": "blog", "topic": "AI", "keywords": ["ai"]},
            {"user_id": "u1"},
        )
        await application.message_bus.drain()

        assert not [key for key in events.routing_keys if key.endswith(".failure")]
        [created] = events.of_type("content_creation.content_created")
        content_id = created.payload["content_id"]

        content = await application.storage.find_one("content", {"_id": content_id})
        assert content["status"] == "approved"
        assert content["seo_recommendations"]
        assert content["categories"]

        tracking = await application.storage.find_one("content_tracking", {"_id": content_id})
        assert tracking["status"] == "ready_for_publishing"

        step_ids = [step.step_id for step in application.tracker.steps(content_id)]
        assert step_ids[:2] == ["content_strategy.brief_created", "content_creation.content_created"]
        assert "content_creation.content_approved" in step_ids
        assert "content_management.workflow_status_updated" in step_ids
        assert all(step.status is StepStatus.COMPLETED for step in application.tracker.steps(content_id))

    @pytest.mark.asyncio
    async def test_manual_restart(self, application):
        events = EventCollector()
        await application.message_bus.subscribe_event("*.restarted", events, owner="test")

        await application.restart_agent("optimisation", user_id="admin")
        await application.message_bus.drain()

        assert application.agent("optimisation").is_running
        assert application.health.restart_count("optimisation") == 1
        assert events.of_type("optimisation.restarted")[0].payload["restarted_by"] == "admin"


class FlakyOptimisationAgent(OptimisationAgent):
    """Optimisation agent whose first initialization fails."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.initialize_calls = 0

    async def initialize(self) -> None:
        self.initialize_calls += 1
        if self.initialize_calls == 1:
            raise ConnectionError("storage not ready")
        await super().initialize()


class TestStartupRecovery:
    @pytest.mark.asyncio
    async def test_agent_failing_first_start_is_retried(self, storage, monkeypatch):
        monkeypatch.setitem(AGENT_TYPES, "optimisation", FlakyOptimisationAgent)
        app = Application(make_config(), agents=["optimisation"], storage=storage)
        await app.start()
        agent = app.agent("optimisation")

        for _ in range(200):
            if agent.is_running:
                break
            await asyncio.sleep(0.01)

        assert agent.is_running
        assert agent.initialize_calls == 2
        assert [r.strategy for r in app.recovery.history("optimisation")] == [RecoveryStrategy.RETRY]
        await app.stop()
