"""Agent core: lifecycle, command dispatch and correlated publishing."""

import asyncio
import json
import re
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, ClassVar, Mapping, Protocol

from ..errors import UnsupportedError, ValidationError
from ..logging_config import get_logger
from ..models import AgentSnapshot, Message
from ..storage import IStorage
from .modules import ModuleFactory, ModuleRegistry

logger = get_logger(__name__)

CommandHandler = Callable[[Message], Awaitable[Any]]

_HANDLER_NAME = re.compile(r"^handle_(?P<command>[a-z0-9_]+)_command$")

_PROPAGATED = ("workflow_id", "user_id", "session_id")


def payload_value(payload: Mapping[str, Any], name: str, default: Any = None) -> Any:
    """Payload field by its snake_case name; senders may use the camelCase alias."""
    if payload.get(name) is not None:
        return payload[name]
    head, *rest = name.split("_")
    alias = head + "".join(part.title() for part in rest)
    value = payload.get(alias)
    return default if value is None else value


def content_id_of(payload: Mapping[str, Any]) -> str | None:
    return payload_value(payload, "content_id") or None


def brief_id_of(payload: Mapping[str, Any]) -> str | None:
    return payload_value(payload, "brief_id") or None


class IAgent(Protocol):
    """A named long-lived consumer of commands and publisher of events."""

    name: str

    async def initialize(self) -> None:
        """Load modules and subscribe."""
        ...

    async def start(self) -> None:
        """Start modules. Idempotent."""
        ...

    async def stop(self) -> None:
        """Stop modules and unsubscribe. Idempotent."""
        ...

    def snapshot(self) -> AgentSnapshot:
        """Consistent copy of the agent's state."""
        ...


class BaseAgent:
    """Binds a module registry to the message bus.

    Command handlers are methods named ``handle_<command_type>_command``;
    further handlers can be added with ``register()``. Peer events are
    declared in ``event_subscriptions`` as ``{routing_pattern: method_name}``.
    """

    module_factories: ClassVar[Mapping[str, ModuleFactory]] = {}
    event_subscriptions: ClassVar[Mapping[str, str]] = {}

    def __init__(
        self,
        name: str,
        config: Mapping[str, Any] | None,
        message_bus,
        storage: IStorage,
        llm_provider=None,
    ):
        self.name = name
        if not config:
            logger.warning("Agent %s has no configuration, running with defaults", name)
        self.config = dict(config or {})
        self.bus = message_bus
        self.storage = storage
        self.llm = llm_provider
        self.registry = ModuleRegistry(name, self.module_factories, storage, llm_provider)

        self.is_running = False
        self.last_activity: datetime | None = None
        self._initialized = False
        self._subscribed = False
        self._subscriptions: list = []
        self._in_flight = 0
        self._lock = asyncio.Lock()

        self._handlers: dict[str, CommandHandler] = {}
        for attr in dir(type(self)):
            match = _HANDLER_NAME.match(attr)
            if match:
                self._handlers[match.group("command")] = getattr(self, attr)

    def register(self, command_type: str, handler: CommandHandler) -> None:
        """Add a command handler."""
        self._handlers[command_type] = handler

    @property
    def commands(self) -> list[str]:
        return sorted(self._handlers)

    def module(self, name: str):
        """Get a loaded module; raises UnsupportedError when it is not loaded."""
        return self.registry.require(name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        async with self._lock:
            if self._initialized:
                return
            loaded = await self.registry.load(self.config.get("modules"))
            await self._subscribe()
            self._initialized = True
            logger.info("Agent %s initialized with modules %s", self.name, loaded)

    async def start(self) -> None:
        await self.initialize()
        async with self._lock:
            if self.is_running:
                logger.debug("Agent %s already running", self.name)
                return
            if not self._subscribed:
                await self._subscribe()
            await self.registry.start_all()
            self.is_running = True
            logger.info("Agent %s started", self.name)

    async def stop(self) -> None:
        async with self._lock:
            if not self.is_running and not self._subscribed:
                logger.debug("Agent %s already stopped", self.name)
                return
            await self._unsubscribe()
            await self.registry.stop_all()
            self.is_running = False
            logger.info("Agent %s stopped", self.name)

    async def restart(self) -> None:
        await self.stop()
        await self.start()

    async def _subscribe(self) -> None:
        await self.bus.subscribe_command(
            self.name,
            self.handle_command,
            concurrency=self.config.get("concurrency"),
        )
        await self.bus.subscribe_query(self.name, self.handle_query)
        for pattern, method_name in self.event_subscriptions.items():
            subscription = await self.bus.subscribe_event(pattern, getattr(self, method_name), owner=self.name)
            self._subscriptions.append(subscription)
        self._subscribed = True

    async def _unsubscribe(self) -> None:
        await self.bus.unsubscribe_command(self.name)
        await self.bus.unsubscribe_query(self.name)
        for subscription in self._subscriptions:
            await subscription.unsubscribe()
        self._subscriptions.clear()
        self._subscribed = False

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def handle_command(self, command: Message) -> Any:
        """Dispatch a command to its handler; the bus turns the result into an outcome event."""
        handler = self._handlers.get(command.type)
        if handler is None:
            raise UnsupportedError(
                f"Agent {self.name} does not support command {command.type}",
                {"agent": self.name, "command": command.type},
            )

        self._in_flight += 1
        try:
            return await handler(command)
        finally:
            self._in_flight -= 1
            self.last_activity = datetime.now(timezone.utc)

    async def handle_query(self, query: Message) -> dict:
        if query.type == "agent_status":
            return self.snapshot().to_dict()
        raise UnsupportedError(f"Agent {self.name} does not answer {query.type}")

    async def handle_cli_request_command(self, command: Message) -> dict:
        """``help`` or ``<command_type> <json payload>``."""
        text = command.payload["text"].strip()
        if not text or text == "help":
            return {"commands": self.commands}

        command_type, _, raw = text.partition(" ")
        try:
            payload = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid JSON payload: {e.msg}") from e
        if not isinstance(payload, dict):
            raise ValidationError("Command payload must be a JSON object")
        if command_type not in self._handlers:
            raise UnsupportedError(
                f"Unknown command {command_type}, try 'help'",
                {"command": command_type},
            )

        message_id = await self.publish_command(self.name, command_type, payload, cause=command)
        return {"submitted": command_type, "message_id": message_id}

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def _meta(self, cause: Message | None, meta: Mapping[str, Any] | None) -> dict:
        fields = dict(meta or {})
        fields.setdefault("source", self.name)
        if cause is not None:
            fields.setdefault("correlation_id", cause.message_id)
            for attr in _PROPAGATED:
                value = getattr(cause.metadata, attr)
                if value is not None:
                    fields.setdefault(attr, value)
        return fields

    async def publish_event(
        self,
        type: str,
        payload: dict,
        *,
        cause: Message | None = None,
        meta: Mapping[str, Any] | None = None,
    ) -> str:
        """Publish ``<agent>.<type>``, correlated with ``cause`` when given."""
        return await self.bus.publish_event(self.name, type, payload, self._meta(cause, meta))

    async def publish_command(
        self,
        agent: str,
        type: str,
        payload: dict,
        *,
        cause: Message | None = None,
        delay: float = 0.0,
        meta: Mapping[str, Any] | None = None,
    ) -> str:
        return await self.bus.publish_command(agent, type, payload, self._meta(cause, meta), delay=delay)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def snapshot(self) -> AgentSnapshot:
        return AgentSnapshot(
            name=self.name,
            is_running=self.is_running,
            modules=tuple(self.registry.statuses()),
            last_activity=self.last_activity,
            in_flight=self._in_flight,
            commands=tuple(self.commands),
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, running={self.is_running})"
