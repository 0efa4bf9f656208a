"""Agent-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class RecoveryStrategy(str, Enum):
    """Decision recorded by the recovery service."""

    RETRY = "retry"
    RESTART = "restart"
    SKIP = "skip"
    DEAD_LETTER = "dead_letter"


@dataclass(frozen=True)
class ModuleStatus:
    """Point-in-time state of one module."""

    name: str
    is_initialized: bool
    is_running: bool


@dataclass(frozen=True)
class AgentSnapshot:
    """Copy-on-read view of an agent for health checks and the API."""

    name: str
    is_running: bool
    modules: tuple[ModuleStatus, ...]
    last_activity: datetime | None
    in_flight: int = 0
    commands: tuple[str, ...] = ()

    @property
    def module_count(self) -> int:
        return len(self.modules)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "is_running": self.is_running,
            "module_count": self.module_count,
            "modules": [
                {"name": m.name, "initialized": m.is_initialized, "running": m.is_running}
                for m in self.modules
            ],
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
            "in_flight": self.in_flight,
            "commands": list(self.commands),
        }


@dataclass(frozen=True)
class RecoveryRecord:
    """One recovery decision. Append-only."""

    agent_id: str
    timestamp: datetime
    strategy: RecoveryStrategy
    error: dict
    command_type: str | None = None
    message_id: str | None = None
    attempt: int = 0

    def to_dict(self) -> dict:
        return {
            "agent_id": self.agent_id,
            "timestamp": self.timestamp.isoformat(),
            "strategy": self.strategy.value,
            "error": self.error,
            "command_type": self.command_type,
            "message_id": self.message_id,
            "attempt": self.attempt,
        }


@dataclass
class AgentHealth:
    """Health row for one registered agent."""

    name: str
    is_running: bool
    module_count: int
    last_activity: datetime | None
    restarts: int = 0
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "is_running": self.is_running,
            "module_count": self.module_count,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
            "restarts": self.restarts,
            **self.details,
        }
