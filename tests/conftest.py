"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from landing_pad.errors import TransientError  # noqa: E402

FAST_RETRY = {
    "attempts": 3,
    "initial_delay": 0.01,
    "factor": 2.0,
    "max_delay": 0.05,
    "jitter": False,
}

# Agent settings that keep the choreography quick in tests
FAST_AGENT_CONFIG = {
    "content_strategy": {},
    "content_creation": {"auto_generate_types": ["blog"]},
    "brand_consistency": {"auto_review_delay_seconds": 0},
    "optimisation": {"auto_seo_delay_seconds": 0},
    "content_management": {},
}


class EventCollector:
    """Records every event seen on the bus."""

    def __init__(self):
        self.events = []

    async def __call__(self, event) -> None:
        self.events.append(event)

    @property
    def routing_keys(self) -> list[str]:
        return [event.routing_key for event in self.events]

    def of_type(self, routing_key: str) -> list:
        return [event for event in self.events if event.routing_key == routing_key]

    def correlated(self, message_id: str) -> list:
        return [event for event in self.events if event.correlation_id == message_id]


class FlakyStorage:
    """Storage wrapper whose find_one fails on one collection a number of times."""

    def __init__(self, inner, collection: str, failures: int):
        self._inner = inner
        self._collection = collection
        self.failures = failures
        self.failed_calls = 0

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def find_one(self, collection: str, filter: dict):
        if collection == self._collection and self.failures > 0:
            self.failures -= 1
            self.failed_calls += 1
            raise TransientError(f"{collection} temporarily unavailable")
        return await self._inner.find_one(collection, filter)


@pytest.fixture(autouse=True)
def no_llm_keys(monkeypatch):
    """Keep tests from reaching real LLM APIs."""
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from landing_pad.storage import Storage

    st = Storage(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def registry():
    """Schema registry holding the full catalog."""
    from landing_pad.message_bus import default_registry

    return default_registry()


@pytest_asyncio.fixture
async def message_bus(registry):
    """Create MessageBus with a fast retry policy."""
    from landing_pad.message_bus import MessageBus

    bus = MessageBus(registry, config={"retry": FAST_RETRY, "graceful_shutdown_seconds": 1})
    yield bus
    await bus.shutdown(0.1)


@pytest.fixture
def dead_letter_queue(storage, message_bus):
    from landing_pad.dead_letter import DeadLetterQueue

    return DeadLetterQueue(storage, message_bus)


@pytest_asyncio.fixture
async def recovery(message_bus, dead_letter_queue):
    """Recovery service attached to the bus."""
    from landing_pad.recovery import RecoveryService, RestartBreaker

    service = RecoveryService(
        message_bus,
        dead_letter_queue,
        breaker=RestartBreaker(failure_threshold=3, window_seconds=60, hold_seconds=0.01),
    )
    message_bus.attach_recovery(service)
    yield service
    await service.stop()


@pytest_asyncio.fixture
async def tracker(message_bus, storage):
    """Started workflow tracker."""
    from landing_pad.tracker import WorkflowTracker

    tr = WorkflowTracker(message_bus, storage)
    await tr.start()
    yield tr
    await tr.stop()


@pytest_asyncio.fixture
async def events(message_bus):
    """Collector subscribed to every event."""
    collector = EventCollector()
    subscription = await message_bus.subscribe_event("#", collector, owner="test")
    yield collector
    await subscription.unsubscribe()


@pytest.fixture
def stub_llm():
    """Create mock LLM provider."""
    llm = Mock()
    llm.generate_text = AsyncMock(return_value="Generated text")
    llm.generate_embeddings = AsyncMock(return_value=[0.1, 0.2, 0.3])
    llm.close = AsyncMock()
    return llm


@pytest_asyncio.fixture
async def make_agent(message_bus, storage):
    """Factory creating started agents that are stopped at teardown."""
    from landing_pad.agents import create_agent

    agents = []

    async def factory(name: str, config: dict | None = None, storage_override=None, llm=None):
        agent = create_agent(
            name,
            FAST_AGENT_CONFIG.get(name, {}) if config is None else config,
            message_bus,
            storage_override or storage,
            llm,
        )
        await agent.start()
        agents.append(agent)
        return agent

    yield factory
    for agent in reversed(agents):
        await agent.stop()


@pytest.fixture
def flaky_storage(storage):
    """Factory wrapping the storage fixture with injected transient failures."""

    def factory(collection: str, failures: int) -> FlakyStorage:
        return FlakyStorage(storage, collection, failures)

    return factory
