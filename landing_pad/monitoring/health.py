"""Health monitor: periodic snapshots of agents, storage and bus."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from ..logging_config import get_logger
from ..models import AgentHealth, AgentSnapshot, Message
from ..storage import IStorage

logger = get_logger(__name__)


class ISnapshotSource(Protocol):
    name: str

    def snapshot(self) -> AgentSnapshot:
        ...


@dataclass
class HealthReport:
    """One health check result."""

    checked_at: datetime
    agents: dict[str, AgentHealth] = field(default_factory=dict)
    storage_ok: bool = False
    bus: dict = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return (
            self.storage_ok
            and bool(self.bus.get("connected"))
            and all(agent.is_running for agent in self.agents.values())
        )

    def to_dict(self) -> dict:
        return {
            "status": "healthy" if self.healthy else "degraded",
            "checked_at": self.checked_at.isoformat(),
            "storage": {"reachable": self.storage_ok},
            "bus": self.bus,
            "agents": {name: health.to_dict() for name, health in self.agents.items()},
        }


class HealthMonitor:
    """Tracks per-agent liveness and the reachability of storage and bus."""

    def __init__(self, message_bus, storage: IStorage, interval_seconds: float = 30):
        self._bus = message_bus
        self._storage = storage
        self._interval = interval_seconds
        self._agents: dict[str, ISnapshotSource] = {}
        self._restarts: dict[str, int] = {}
        self._latest: HealthReport | None = None
        self._task: asyncio.Task | None = None
        self._subscription = None

    def register(self, agent: ISnapshotSource) -> None:
        self._agents[agent.name] = agent

    def unregister(self, name: str) -> None:
        self._agents.pop(name, None)

    @property
    def latest(self) -> HealthReport | None:
        return self._latest

    async def _on_restarted(self, event: Message) -> None:
        name = event.payload.get("agent", event.agent)
        self._restarts[name] = self._restarts.get(name, 0) + 1

    def restart_count(self, name: str) -> int:
        return self._restarts.get(name, 0)

    def _agent_health(self, agent: ISnapshotSource) -> AgentHealth:
        snapshot = agent.snapshot()
        return AgentHealth(
            name=snapshot.name,
            is_running=snapshot.is_running,
            module_count=snapshot.module_count,
            last_activity=snapshot.last_activity,
            restarts=self.restart_count(snapshot.name),
            details={"in_flight": snapshot.in_flight},
        )

    def agent_status(self, name: str) -> AgentHealth | None:
        agent = self._agents.get(name)
        return self._agent_health(agent) if agent else None

    async def check(self) -> HealthReport:
        """Take a snapshot now."""
        report = HealthReport(checked_at=datetime.now(timezone.utc))
        for name, agent in self._agents.items():
            report.agents[name] = self._agent_health(agent)
        report.storage_ok = await self._storage.ping()
        report.bus = self._bus.status()
        self._latest = report

        if not report.healthy:
            logger.warning(
                "Health check degraded",
                extra={"context": {"storage": report.storage_ok, "bus": report.bus.get("connected")}},
            )
        return report

    async def start(self) -> None:
        if self._subscription is None:
            self._subscription = await self._bus.subscribe_event(
                "*.restarted", self._on_restarted, owner="health_monitor"
            )
        if self._task is None:
            self._task = asyncio.create_task(self._loop())
        logger.info("Health monitor started (interval %ss)", self._interval)

    async def _loop(self) -> None:
        while True:
            try:
                await self.check()
            except Exception:
                logger.error("Health check failed", exc_info=True)
            await asyncio.sleep(self._interval)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        if self._subscription is not None:
            await self._subscription.unsubscribe()
            self._subscription = None
