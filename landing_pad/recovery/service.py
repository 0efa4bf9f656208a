"""Recovery service: retry decisions, dead-lettering and agent restarts."""

import asyncio
import time
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Callable, Protocol

from ..dead_letter import DeadLetterQueue, dlq_key_of
from ..errors import AgentError, ErrorKind, NotFoundError, classify
from ..logging_config import get_logger
from ..message_bus.retry import RetryDecision, RetryPolicies, decide
from ..models import Message, RecoveryRecord, RecoveryStrategy

logger = get_logger(__name__)


class IRestartable(Protocol):
    name: str

    async def restart(self) -> None:
        ...


class RestartBreaker:
    """Counts failures per agent; trips after ``failure_threshold`` within the window."""

    def __init__(
        self,
        failure_threshold: int = 3,
        window_seconds: float = 300,
        hold_seconds: float = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.hold_seconds = hold_seconds
        self._clock = clock
        self._failures: dict[str, deque[float]] = defaultdict(deque)
        self._open: set[str] = set()

    @classmethod
    def from_config(cls, config: dict | None) -> "RestartBreaker":
        config = config or {}
        return cls(
            failure_threshold=config.get("failure_threshold", 3),
            window_seconds=config.get("window_seconds", 300),
            hold_seconds=config.get("hold_seconds", 30),
        )

    def record_failure(self, agent: str) -> bool:
        """Record a failure; True when this failure trips the breaker."""
        if agent in self._open:
            return False
        now = self._clock()
        failures = self._failures[agent]
        failures.append(now)
        while failures and now - failures[0] > self.window_seconds:
            failures.popleft()
        if len(failures) >= self.failure_threshold:
            self._open.add(agent)
            failures.clear()
            return True
        return False

    def is_open(self, agent: str) -> bool:
        return agent in self._open

    def failure_count(self, agent: str) -> int:
        return len(self._failures[agent])

    def close(self, agent: str) -> None:
        self._open.discard(agent)
        self._failures.pop(agent, None)


class RecoveryService:
    """Decides what happens to failed commands and records each decision.

    Wired after the bus and the dead-letter queue, then attached with
    ``message_bus.attach_recovery(service)``.
    """

    def __init__(
        self,
        message_bus,
        dead_letter_queue: DeadLetterQueue,
        policies: RetryPolicies | None = None,
        breaker: RestartBreaker | None = None,
    ):
        self._bus = message_bus
        self._dlq = dead_letter_queue
        self._policies = policies or message_bus.retry_policies
        self._breaker = breaker or RestartBreaker()
        self._history: dict[str, list[RecoveryRecord]] = defaultdict(list)
        self._agents: dict[str, IRestartable] = {}
        self._restarts: set[asyncio.Task] = set()
        self._stopping = False

    @property
    def breaker(self) -> RestartBreaker:
        return self._breaker

    @property
    def policies(self) -> RetryPolicies:
        return self._policies

    def register_agent(self, agent: IRestartable) -> None:
        self._agents[agent.name] = agent

    def unregister_agent(self, name: str) -> None:
        self._agents.pop(name, None)

    def history(self, agent_id: str) -> list[RecoveryRecord]:
        """Recovery decisions for an agent, oldest first."""
        return list(self._history.get(agent_id, []))

    def _record(
        self,
        agent_id: str,
        strategy: RecoveryStrategy,
        error: AgentError,
        command: Message | None = None,
        attempt: int = 0,
    ) -> RecoveryRecord:
        record = RecoveryRecord(
            agent_id=agent_id,
            timestamp=datetime.now(timezone.utc),
            strategy=strategy,
            error=error.to_envelope().to_dict(),
            command_type=command.type if command else None,
            message_id=command.message_id if command else None,
            attempt=attempt,
        )
        self._history[agent_id].append(record)
        return record

    async def decide(self, command: Message, error: AgentError, invocations: int) -> RetryDecision:
        """Decide retry, skip or dead-letter after a failed invocation."""
        policy = self._policies.for_command(command.agent, command.type)
        decision = decide(policy, error, invocations)
        self._record(command.agent, decision.strategy, error, command, invocations)

        if decision.strategy is RecoveryStrategy.RETRY:
            return decision

        replay_key = dlq_key_of(command)
        if replay_key is not None:
            # A failed replay never creates a second entry
            self._dlq.replay_failed(replay_key)
            if decision.strategy is RecoveryStrategy.DEAD_LETTER:
                decision = RetryDecision(decision.strategy, dead_letter_key=replay_key)
        elif decision.strategy is RecoveryStrategy.DEAD_LETTER:
            try:
                key = await self._dlq.insert(command, error, invocations)
            except AgentError as e:
                logger.error("Could not dead-letter %s: %s", command.message_id, e.message)
            else:
                decision = RetryDecision(decision.strategy, dead_letter_key=key)

        if error.kind is ErrorKind.INTERNAL:
            self.record_agent_failure(command.agent, error)

        return decision

    async def on_success(self, command: Message) -> None:
        replay_key = dlq_key_of(command)
        if replay_key is not None:
            await self._dlq.resolve(replay_key)

    @property
    def accepting(self) -> bool:
        """False once the service or the bus is shutting down."""
        return not self._stopping and not getattr(self._bus, "is_closing", False)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._restarts.add(task)
        task.add_done_callback(self._restarts.discard)

    def record_agent_failure(self, agent_id: str, error: AgentError) -> bool:
        """Count a failure toward the restart breaker; schedules a restart when it trips."""
        if not self.accepting:
            logger.info("Shutting down, not counting failure of %s", agent_id)
            return False
        if not self._breaker.record_failure(agent_id):
            return False

        self._record(agent_id, RecoveryStrategy.RESTART, error)
        logger.warning(
            "Restart breaker tripped for %s, restarting in %ss",
            agent_id,
            self._breaker.hold_seconds,
        )
        self._spawn(self._restart_after_hold(agent_id))
        return True

    def record_start_failure(self, agent_id: str, error: AgentError, attempt: int = 1) -> None:
        """An agent failed to start: start it again with backoff until the breaker trips."""
        if self.record_agent_failure(agent_id, error) or not self.accepting:
            return
        self._record(agent_id, RecoveryStrategy.RETRY, error, attempt=attempt)
        self._spawn(self._retry_start(agent_id, attempt))

    async def _retry_start(self, agent_id: str, attempt: int) -> None:
        await asyncio.sleep(self._policies.default.delay(attempt - 1))
        agent = self._agents.get(agent_id)
        if agent is None:
            return
        try:
            await agent.start()
        except Exception as e:
            logger.error("Agent %s failed to start (attempt %d)", agent_id, attempt + 1, exc_info=True)
            self.record_start_failure(agent_id, classify(e), attempt + 1)
        else:
            logger.info("Agent %s started after %d failed attempts", agent_id, attempt)

    async def _restart_after_hold(self, agent_id: str) -> None:
        await asyncio.sleep(self._breaker.hold_seconds)
        try:
            await self.restart_agent(agent_id)
        except Exception as e:
            logger.error("Automatic restart of %s failed", agent_id, exc_info=True)
            # Reopen counting so the agent keeps being retried
            self._breaker.close(agent_id)
            self.record_start_failure(agent_id, classify(e))

    async def restart_agent(self, name: str, user_id: str | None = None) -> None:
        """Restart an agent and publish ``<agent>.restarted``."""
        agent = self._agents.get(name)
        if agent is None:
            raise NotFoundError(f"Agent {name} is not registered", {"agent": name})

        manual = user_id is not None
        logger.info("Restarting agent %s", name, extra={"context": {"manual": manual, "user_id": user_id}})
        await agent.restart()
        self._breaker.close(name)

        await self._bus.publish_event(
            name,
            "restarted",
            {"agent": name, "manual": manual, "restarted_by": user_id},
            {"user_id": user_id},
        )

    async def wait_for_restarts(self) -> None:
        if self._restarts:
            await asyncio.gather(*list(self._restarts), return_exceptions=True)

    async def stop(self) -> None:
        self._stopping = True
        for task in list(self._restarts):
            task.cancel()
        await asyncio.gather(*list(self._restarts), return_exceptions=True)
