"""Application bootstrap and lifecycle management."""

import os
from typing import Protocol

from .agents import AGENT_TYPES, BaseAgent, create_agent
from .config import AppConfig, load_config
from .dead_letter import DeadLetterQueue
from .errors import ConfigurationError, NotFoundError, classify
from .llm import build_llm_provider
from .logging_config import get_logger
from .message_bus import MessageBus
from .monitoring import HealthMonitor
from .recovery import RecoveryService, RestartBreaker
from .storage import IStorage, Storage
from .tracker import WorkflowTracker

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self, grace_seconds: float | None = None) -> None:
        """Shutdown in reverse order."""
        ...

    async def submit_command(self, agent: str, type: str, payload: dict, meta: dict | None = None) -> str:
        """Publish a command on behalf of an external actor."""
        ...


class Application:
    """Builds the runtime: storage, bus, dead-letter queue, recovery, tracker, agents."""

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        agents: list[str] | None = None,
        db_path: str | None = None,
        storage: IStorage | None = None,
        llm_provider=None,
    ):
        self._config = config
        self._agent_names = agents
        self._db_path = db_path
        self._llm = llm_provider
        self._owns_llm = False

        # Components (initialized in start())
        self._storage: IStorage | None = storage
        self._owns_storage = storage is None
        self._bus: MessageBus | None = None
        self._dlq: DeadLetterQueue | None = None
        self._recovery: RecoveryService | None = None
        self._tracker: WorkflowTracker | None = None
        self._health: HealthMonitor | None = None
        self._agents: dict[str, BaseAgent] = {}
        self._started = False

    def _selected_agents(self, config: AppConfig) -> list[str]:
        if self._agent_names is not None:
            names = list(self._agent_names)
        else:
            names = [
                name for name in AGENT_TYPES
                if (config.agents.get(name) or {}).get("enabled", True)
            ]
        unknown = [name for name in names if name not in AGENT_TYPES]
        if unknown:
            raise ConfigurationError(f"Unknown agents: {', '.join(unknown)}")
        return names

    async def start(self) -> None:
        """Initialize components in dependency order."""
        if self._started:
            return
        logger.info("Starting application")

        if self._config is None:
            self._config = load_config()
        config = self._config
        names = self._selected_agents(config)
        self._agents = {}

        # 1. Storage (no dependencies)
        if self._storage is None:
            uri = self._db_path or config.storage.get("uri") or os.getenv("DATABASE_URL")
            self._storage = Storage(uri)
        if self._owns_storage:
            await self._storage.init()

        # 2. Bus, then DLQ, then recovery attached to the bus
        self._bus = MessageBus(config=config.messaging)
        self._dlq = DeadLetterQueue(self._storage, self._bus)
        self._recovery = RecoveryService(
            self._bus,
            self._dlq,
            breaker=RestartBreaker.from_config(config.messaging.get("recovery")),
        )
        self._bus.attach_recovery(self._recovery)

        # 3. Observability
        self._tracker = WorkflowTracker(
            self._bus,
            self._storage,
            max_workflows=config.messaging.get("tracker_max_workflows", 1000),
        )
        await self._tracker.start()
        self._health = HealthMonitor(
            self._bus,
            self._storage,
            interval_seconds=config.messaging.get("health_interval_seconds", 30),
        )

        # 4. LLM (optional)
        if self._llm is None:
            self._llm = build_llm_provider(config.external_services)
            self._owns_llm = self._llm is not None

        # 5. Agents
        for name in names:
            agent = create_agent(name, config.agent(name), self._bus, self._storage, self._llm)
            self._agents[name] = agent
            self._recovery.register_agent(agent)
            self._health.register(agent)
            try:
                await agent.start()
            except Exception as e:
                logger.error("Agent %s failed to start", name, exc_info=True)
                self._recovery.record_start_failure(name, classify(e))

        await self._health.start()
        self._started = True
        logger.info("Application started with agents %s", names)

    async def stop(self, grace_seconds: float | None = None) -> None:
        """Shutdown in reverse order."""
        if not self._started:
            return
        logger.info("Stopping application")

        if self._health:
            await self._health.stop()
        # Failures during the grace period are still decided by recovery,
        # which refuses new restarts once the bus is closing
        if self._bus:
            await self._bus.shutdown(grace_seconds)
        if self._recovery:
            await self._recovery.stop()
        for agent in reversed(list(self._agents.values())):
            await agent.stop()
        if self._tracker:
            await self._tracker.stop()
        if self._owns_llm:
            await self._llm.close()
        if self._storage and self._owns_storage:
            await self._storage.close()
            logger.info("Storage closed")

        self._started = False
        logger.info("Application stopped")

    async def reset(self) -> None:
        """Clear stored data between test runs."""
        await self.storage.clear()
        logger.info("Storage cleared")

    async def submit_command(self, agent: str, type: str, payload: dict, meta: dict | None = None) -> str:
        """Publish a command on behalf of an external actor."""
        return await self.message_bus.publish_command(agent, type, payload, meta)

    async def restart_agent(self, name: str, user_id: str | None = None) -> None:
        await self.recovery.restart_agent(name, user_id)

    def agent(self, name: str) -> BaseAgent:
        agent = self._agents.get(name)
        if agent is None:
            raise NotFoundError(f"Agent {name} is not running in this process", {"agent": name})
        return agent

    def _require(self, component):
        if component is None:
            raise RuntimeError("Application not started")
        return component

    @property
    def config(self) -> AppConfig:
        return self._require(self._config)

    @property
    def agents(self) -> dict[str, BaseAgent]:
        return dict(self._agents)

    @property
    def storage(self) -> IStorage:
        return self._require(self._storage)

    @property
    def message_bus(self) -> MessageBus:
        return self._require(self._bus)

    @property
    def dead_letter_queue(self) -> DeadLetterQueue:
        return self._require(self._dlq)

    @property
    def recovery(self) -> RecoveryService:
        return self._require(self._recovery)

    @property
    def tracker(self) -> WorkflowTracker:
        return self._require(self._tracker)

    @property
    def health(self) -> HealthMonitor:
        return self._require(self._health)
