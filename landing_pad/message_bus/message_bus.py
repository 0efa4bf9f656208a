"""In-memory message broker: commands, events and queries."""

import asyncio
import functools
import itertools
import json
from typing import Any, Awaitable, Callable, Protocol

from ..config import MESSAGING_DEFAULTS, deep_merge
from ..errors import (
    AgentError,
    ConflictError,
    HandlerCancelledError,
    MessageValidationError,
    QueryTimeoutError,
    TransientError,
    classify,
)
from ..logging_config import get_logger, message_context
from ..models.messages import (
    Message,
    MessageKind,
    MessageMetadata,
    command_queue_name,
    failure_type,
    success_type,
)
from .catalog import default_registry
from .retry import RetryDecision, RetryPolicies, decide
from .schemas import SchemaRegistry

logger = get_logger(__name__)

CommandHandler = Callable[[Message], Awaitable[Any]]
EventHandler = Callable[[Message], Awaitable[None]]
QueryHandler = Callable[[Message], Awaitable[Any]]

# Time allowed for subscribers to finish pending events during shutdown
EVENT_DRAIN_SECONDS = 2.0
DRAIN_POLL_SECONDS = 0.005


class IRecovery(Protocol):
    """Failure decisions for delivered commands."""

    async def decide(self, command: Message, error: AgentError, invocations: int) -> RetryDecision:
        """Decide retry, skip or dead-letter after a failed invocation."""
        ...

    async def on_success(self, command: Message) -> None:
        """Called after a command handler succeeded."""
        ...


class IMessageBus(Protocol):
    """Commands (point-to-point), events (fan-out) and queries (request/reply)."""

    async def publish_command(
        self,
        agent: str,
        type: str,
        payload: dict,
        meta: dict | None = None,
        *,
        delay: float = 0.0,
    ) -> str:
        """Validate and enqueue a command on the agent's queue. Returns the message id."""
        ...

    async def publish_event(self, agent: str, type: str, payload: dict, meta: dict | None = None) -> str:
        """Validate and fan out an event with routing key ``<agent>.<type>``."""
        ...

    async def subscribe_command(self, agent: str, handler: CommandHandler, *, concurrency: int | None = None) -> None:
        """Attach the single command consumer of an agent."""
        ...

    async def unsubscribe_command(self, agent: str) -> None:
        """Detach an agent's command consumer. Queued commands stay queued."""
        ...

    async def subscribe_event(self, pattern: str, handler: EventHandler, *, owner: str = "system") -> "Subscription":
        """Subscribe to events matching an AMQP-style routing pattern."""
        ...

    async def unsubscribe(self, subscription: "Subscription") -> None:
        """Remove an event subscription."""
        ...

    async def query(self, agent: str, type: str, payload: dict, timeout: float = 5.0) -> dict:
        """Request/reply; raises QueryTimeoutError when no reply arrives in time."""
        ...

    def status(self) -> dict:
        """Queue depths, in-flight counts and subscription count."""
        ...


def topic_matches(pattern: str, routing_key: str) -> bool:
    """AMQP topic match: ``*`` is one segment, ``#`` is zero or more."""
    return _match(pattern.split("."), routing_key.split("."))


def _match(pattern: list[str], key: list[str]) -> bool:
    if not pattern:
        return not key
    head, rest = pattern[0], pattern[1:]
    if head == "#":
        return any(_match(rest, key[i:]) for i in range(len(key) + 1))
    if not key:
        return False
    if head == "*" or head == key[0]:
        return _match(rest, key[1:])
    return False


def _outcome_payload(result: Any) -> dict:
    if result is None:
        return {}
    if isinstance(result, dict):
        return result
    return {"result": result}


class Subscription:
    """One event subscription with its own queue and consumer task."""

    def __init__(self, bus: "MessageBus", pattern: str, handler: EventHandler, owner: str):
        self.pattern = pattern
        self.owner = owner
        self.handler = handler
        self.queue: asyncio.Queue[str] = asyncio.Queue()
        self.busy = False
        self.task: asyncio.Task | None = None
        self._bus = bus

    def matches(self, routing_key: str) -> bool:
        return topic_matches(self.pattern, routing_key)

    @property
    def active(self) -> bool:
        return self.task is not None and not self.task.done()

    async def unsubscribe(self) -> None:
        await self._bus.unsubscribe(self)

    def __repr__(self) -> str:
        return f"Subscription(pattern={self.pattern!r}, owner={self.owner!r})"


class _CommandQueue:
    """Per-agent priority queue with its consumer state."""

    def __init__(self, agent: str):
        self.agent = agent
        self.name = command_queue_name(agent)
        # (-priority, sequence, wire data): highest priority first, FIFO within one
        self.queue: asyncio.PriorityQueue = asyncio.PriorityQueue()
        self.handler: CommandHandler | None = None
        self.dispatcher: asyncio.Task | None = None
        self.in_flight: set[asyncio.Task] = set()


class MessageBus:
    """In-memory broker.

    Messages are serialized to JSON on publish and decoded and re-validated
    on receive. Every delivered command ends in exactly one outcome event,
    ``<agent>.<command>.success`` or ``<agent>.<command>.failure``, whose
    correlation id is the command's message id.
    """

    def __init__(
        self,
        registry: SchemaRegistry | None = None,
        config: dict | None = None,
        retry_policies: RetryPolicies | None = None,
    ):
        self._registry = registry or default_registry()
        self._config = deep_merge(MESSAGING_DEFAULTS, config or {})
        self._topic = self._config["topic"]
        self._retry_policies = retry_policies or RetryPolicies.from_config(self._config.get("retry"))
        self._recovery: IRecovery | None = None

        self._queues: dict[str, _CommandQueue] = {}
        self._subscriptions: list[Subscription] = []
        self._responders: dict[str, QueryHandler] = {}
        self._timers: set[asyncio.Task] = set()
        self._sequence = itertools.count()
        self._connected = True
        self._closing = False

    @property
    def registry(self) -> SchemaRegistry:
        return self._registry

    @property
    def retry_policies(self) -> RetryPolicies:
        return self._retry_policies

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def is_closing(self) -> bool:
        return self._closing

    def attach_recovery(self, recovery: IRecovery) -> None:
        """Route failure decisions through the recovery service."""
        self._recovery = recovery

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def _build(self, kind: MessageKind, agent: str, type: str, payload: dict, meta: dict | None) -> Message:
        fields = dict(meta or {})
        source = fields.pop("source", None) or "system"
        try:
            metadata = MessageMetadata.new(source, **fields)
        except TypeError as e:
            raise MessageValidationError(f"Invalid envelope fields: {e}") from e
        return Message(kind=kind, type=type, agent=agent, payload=payload, metadata=metadata)

    def _encode(self, message: Message) -> str:
        try:
            return json.dumps(message.to_wire(), default=str)
        except (TypeError, ValueError) as e:
            raise MessageValidationError(f"Message {message.type} is not serializable: {e}") from e

    def _decode(self, data: str) -> Message:
        message = Message.from_wire(json.loads(data))
        self._registry.validate(message)
        return message

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise TransientError("Message bus is not connected")

    async def publish_command(
        self,
        agent: str,
        type: str,
        payload: dict,
        meta: dict | None = None,
        *,
        delay: float = 0.0,
    ) -> str:
        """Validate and enqueue a command on the agent's queue. Returns the message id."""
        self._ensure_connected()
        command = self._build(MessageKind.COMMAND, agent, type, payload, meta)
        self._registry.validate(command)
        data = self._encode(command)

        if delay > 0:
            timer = asyncio.create_task(self._enqueue_later(command, data, delay))
            self._timers.add(timer)
            timer.add_done_callback(self._timers.discard)
        else:
            self._enqueue(command, data)

        logger.info(
            "Command %s published to %s",
            type,
            command_queue_name(agent),
            extra=message_context(command, delay=delay),
        )
        return command.message_id

    async def publish_event(self, agent: str, type: str, payload: dict, meta: dict | None = None) -> str:
        """Validate and fan out an event with routing key ``<agent>.<type>``."""
        self._ensure_connected()
        event = self._build(MessageKind.EVENT, agent, type, payload, meta)
        self._registry.validate(event)
        self._fanout(event)
        return event.message_id

    def _queue_for(self, agent: str) -> _CommandQueue:
        queue = self._queues.get(agent)
        if queue is None:
            queue = self._queues[agent] = _CommandQueue(agent)
        return queue

    def _enqueue(self, command: Message, data: str) -> None:
        queue = self._queue_for(command.agent)
        queue.queue.put_nowait((-command.metadata.priority, next(self._sequence), data))

    async def _enqueue_later(self, command: Message, data: str, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._closing:
            logger.info("Dropping delayed command %s, bus is shutting down", command.type)
            return
        self._enqueue(command, data)

    def _fanout(self, event: Message) -> None:
        data = self._encode(event)
        routing_key = event.routing_key
        delivered = 0
        for subscription in self._subscriptions:
            if subscription.matches(routing_key):
                subscription.queue.put_nowait(data)
                delivered += 1
        logger.debug("Event %s delivered to %d subscribers", routing_key, delivered)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def subscribe_command(self, agent: str, handler: CommandHandler, *, concurrency: int | None = None) -> None:
        """Attach the single command consumer of an agent."""
        self._ensure_connected()
        queue = self._queue_for(agent)
        if queue.handler is not None:
            raise ConflictError(f"Command queue {queue.name} already has a consumer", {"agent": agent})

        limit = concurrency or self._config["default_concurrency"]
        queue.handler = handler
        queue.dispatcher = asyncio.create_task(
            self._dispatch(queue, handler, asyncio.Semaphore(limit)),
            name=f"dispatch:{queue.name}",
        )
        logger.info("Consumer attached to %s (concurrency %d)", queue.name, limit)

    async def unsubscribe_command(self, agent: str) -> None:
        """Detach an agent's command consumer. Queued commands stay queued."""
        queue = self._queues.get(agent)
        if queue is None or queue.handler is None:
            return
        queue.handler = None
        await self._stop_dispatcher(queue)
        logger.info("Consumer detached from %s", queue.name)

    async def _stop_dispatcher(self, queue: _CommandQueue) -> None:
        dispatcher, queue.dispatcher = queue.dispatcher, None
        if dispatcher is None:
            return
        dispatcher.cancel()
        await asyncio.gather(dispatcher, return_exceptions=True)

    async def _dispatch(self, queue: _CommandQueue, handler: CommandHandler, semaphore: asyncio.Semaphore) -> None:
        while True:
            await semaphore.acquire()
            try:
                _, _, data = await queue.queue.get()
            except asyncio.CancelledError:
                semaphore.release()
                raise
            task = asyncio.create_task(self._run_command(queue, handler, data))
            queue.in_flight.add(task)
            task.add_done_callback(functools.partial(self._command_done, queue, semaphore))

    def _command_done(self, queue: _CommandQueue, semaphore: asyncio.Semaphore, task: asyncio.Task) -> None:
        queue.in_flight.discard(task)
        semaphore.release()
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Command task on %s crashed",
                queue.name,
                exc_info=task.exception(),
            )

    def _timeout_for(self, command_type: str) -> float:
        timeouts = self._config.get("command_timeouts") or {}
        return float(timeouts.get(command_type, self._config["default_timeout_seconds"]))

    async def _run_command(self, queue: _CommandQueue, handler: CommandHandler, data: str) -> None:
        command = Message.from_wire(json.loads(data))
        try:
            self._registry.validate(command)
        except MessageValidationError as e:
            # Validation failures are terminal
            logger.error("Rejected invalid command %s on %s: %s", command.type, queue.name, e.message)
            self._publish_failure(command, e, 0, None)
            return
        await self._deliver(command, handler)

    async def _deliver(self, command: Message, handler: CommandHandler) -> None:
        timeout = self._timeout_for(command.type)
        current = command
        invocations = 0
        logger.info(
            "Received command %s for %s",
            command.type,
            command.agent,
            extra=message_context(command, retry_count=command.metadata.retry_count),
        )

        try:
            while True:
                invocations += 1
                try:
                    result = await asyncio.wait_for(handler(current), timeout)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    error = classify(exc)
                    decision = await self._decide(current, error, invocations)
                    if decision.should_retry:
                        logger.warning(
                            "Command %s failed with %s, retrying in %.2fs (attempt %d)",
                            current.type,
                            error.kind.value,
                            decision.delay,
                            invocations,
                            extra=message_context(current, error=error.message),
                        )
                        await asyncio.sleep(decision.delay)
                        current = current.with_retry()
                        continue
                    self._publish_failure(current, error, invocations, decision.dead_letter_key)
                    return

                self._publish_success(current, result)
                await self._after_success(current)
                return
        except asyncio.CancelledError:
            reason = "shutdown" if self._closing else "cancelled"
            error = HandlerCancelledError("Handler cancelled", {"reason": reason})
            self._publish_failure(current, error, invocations, None)

    async def _decide(self, command: Message, error: AgentError, invocations: int) -> RetryDecision:
        if self._recovery is not None:
            return await self._recovery.decide(command, error, invocations)
        policy = self._retry_policies.for_command(command.agent, command.type)
        return decide(policy, error, invocations)

    async def _after_success(self, command: Message) -> None:
        if self._recovery is None:
            return
        try:
            await self._recovery.on_success(command)
        except Exception:
            logger.error("Recovery success hook failed for %s", command.message_id, exc_info=True)

    def _outcome_metadata(self, command: Message) -> MessageMetadata:
        return MessageMetadata.new(
            command.agent,
            correlation_id=command.message_id,
            priority=command.metadata.priority,
            user_id=command.metadata.user_id,
            session_id=command.metadata.session_id,
            workflow_id=command.metadata.workflow_id,
        )

    def _publish_success(self, command: Message, result: Any) -> None:
        event = Message(
            kind=MessageKind.EVENT,
            type=success_type(command.type),
            agent=command.agent,
            payload=_outcome_payload(result),
            metadata=self._outcome_metadata(command),
        )
        self._fanout(event)

    def _publish_failure(self, command: Message, error: AgentError, invocations: int, dead_letter_key: str | None) -> None:
        event = Message(
            kind=MessageKind.EVENT,
            type=failure_type(command.type),
            agent=command.agent,
            payload={
                "command": command.type,
                "error": error.to_envelope().to_dict(),
                "attempts": invocations,
                "dead_letter_key": dead_letter_key,
            },
            metadata=self._outcome_metadata(command),
        )
        logger.info(
            "Command %s for %s failed with %s",
            command.type,
            command.agent,
            error.kind.value,
            extra=message_context(command, attempts=invocations),
        )
        self._fanout(event)

    def in_flight(self, agent: str) -> int:
        queue = self._queues.get(agent)
        return len(queue.in_flight) if queue else 0

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def subscribe_event(self, pattern: str, handler: EventHandler, *, owner: str = "system") -> Subscription:
        """Subscribe to events matching an AMQP-style routing pattern."""
        self._ensure_connected()
        subscription = Subscription(self, pattern, handler, owner)
        subscription.task = asyncio.create_task(
            self._consume_events(subscription),
            name=f"subscription:{owner}:{pattern}",
        )
        self._subscriptions.append(subscription)
        logger.debug("%s subscribed to %s", owner, pattern)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        """Remove an event subscription."""
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
        task, subscription.task = subscription.task, None
        if task is None or task.done():
            return
        task.cancel()
        if task is not asyncio.current_task():
            await asyncio.gather(task, return_exceptions=True)

    async def _consume_events(self, subscription: Subscription) -> None:
        while True:
            data = await subscription.queue.get()
            subscription.busy = True
            try:
                event = self._decode(data)
                await subscription.handler(event)
            except MessageValidationError as e:
                logger.error("Dropping invalid event for %s: %s", subscription.pattern, e.message)
            except Exception:
                # Events are not retried
                logger.error(
                    "Subscriber %s failed handling event on %s",
                    subscription.owner,
                    subscription.pattern,
                    exc_info=True,
                )
            finally:
                subscription.busy = False

    def subscriptions(self) -> list[dict]:
        """Current subscription table."""
        table = [
            {"kind": "command", "pattern": queue.name, "owner": queue.agent}
            for queue in self._queues.values()
            if queue.handler is not None
        ]
        table.extend(
            {"kind": "event", "pattern": sub.pattern, "owner": sub.owner}
            for sub in self._subscriptions
        )
        table.extend(
            {"kind": "query", "pattern": agent, "owner": agent}
            for agent in self._responders
        )
        return table

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def subscribe_query(self, agent: str, handler: QueryHandler) -> None:
        if agent in self._responders:
            raise ConflictError(f"Agent {agent} already answers queries", {"agent": agent})
        self._responders[agent] = handler

    async def unsubscribe_query(self, agent: str) -> None:
        self._responders.pop(agent, None)

    async def query(
        self,
        agent: str,
        type: str,
        payload: dict,
        timeout: float = 5.0,
        meta: dict | None = None,
    ) -> dict:
        """Request/reply; raises QueryTimeoutError when no reply arrives in time."""
        self._ensure_connected()
        request = self._build(MessageKind.QUERY, agent, type, payload, meta)
        self._registry.validate(request)
        data = self._encode(request)

        async def ask() -> Message:
            responder = self._responders.get(agent)
            if responder is None:
                # Nobody listening: the request sits until it times out
                await asyncio.Event().wait()
            received = self._decode(data)
            result = await responder(received)
            reply = Message(
                kind=MessageKind.REPLY,
                type=type,
                agent=agent,
                payload=_outcome_payload(result),
                metadata=MessageMetadata.new(agent, correlation_id=received.message_id),
            )
            return self._decode(self._encode(reply))

        try:
            reply = await asyncio.wait_for(ask(), timeout)
        except asyncio.TimeoutError:
            raise QueryTimeoutError(
                f"No reply to {type} from {agent} within {timeout}s",
                {"agent": agent, "type": type},
            ) from None
        return reply.payload

    # ------------------------------------------------------------------
    # Lifecycle and health checks
    # ------------------------------------------------------------------

    def _is_idle(self) -> bool:
        for queue in self._queues.values():
            if queue.in_flight:
                return False
            if queue.dispatcher is not None and not queue.queue.empty():
                return False
        for subscription in self._subscriptions:
            if subscription.busy or not subscription.queue.empty():
                return False
        if self._timers and not self._closing:
            return False
        return True

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait until no command, event or delayed delivery is pending."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self._is_idle():
            if loop.time() >= deadline:
                raise TimeoutError(f"Message bus did not drain within {timeout}s")
            await asyncio.sleep(DRAIN_POLL_SECONDS)

    async def shutdown(self, grace_seconds: float | None = None) -> None:
        """Stop dispatching, let in-flight handlers finish, cancel the rest."""
        if not self._connected:
            return
        grace = self._config["graceful_shutdown_seconds"] if grace_seconds is None else grace_seconds
        self._closing = True
        logger.info("Message bus shutting down (grace %ss)", grace)

        for timer in list(self._timers):
            timer.cancel()

        for queue in self._queues.values():
            await self._stop_dispatcher(queue)

        in_flight = {task for queue in self._queues.values() for task in queue.in_flight}
        if in_flight:
            logger.info("Waiting for %d in-flight handlers", len(in_flight))
            _, pending = await asyncio.wait(in_flight, timeout=grace)
            if pending:
                logger.warning("Cancelling %d handlers still running after %ss", len(pending), grace)
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        try:
            await self.drain(timeout=EVENT_DRAIN_SECONDS)
        except TimeoutError:
            logger.warning("Pending events dropped at shutdown")

        for subscription in list(self._subscriptions):
            await self.unsubscribe(subscription)
        for queue in self._queues.values():
            queue.handler = None
        self._responders.clear()
        self._connected = False
        logger.info("Message bus stopped")

    def status(self) -> dict:
        """Queue depths, in-flight counts and subscription count."""
        return {
            "connected": self._connected and not self._closing,
            "topic": self._topic,
            "queues": {queue.name: queue.queue.qsize() for queue in self._queues.values()},
            "consumers": sorted(q.agent for q in self._queues.values() if q.handler is not None),
            "in_flight": {queue.agent: len(queue.in_flight) for queue in self._queues.values()},
            "subscriptions": len(self._subscriptions),
            "delayed": len(self._timers),
        }
