"""Dead-letter queue over the storage collaborator."""

from datetime import datetime, timezone
from enum import Enum
from typing import Protocol

from ..errors import AgentError
from ..logging_config import get_logger
from ..models import DeadLetterEntry, Message
from ..storage import IStorage

logger = get_logger(__name__)

COLLECTION = "dead_letters"

# Envelope extra field linking a replayed command to its entry
DLQ_KEY_FIELD = "dlqKey"


class DeadLetterResult(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"


class IDeadLetterQueue(Protocol):
    """Durable holding area for commands that failed beyond policy."""

    async def insert(self, command: Message, error: AgentError, attempts: int) -> str:
        """Store a failed command; returns the entry key."""
        ...

    async def list(self, agent_id: str | None = None) -> list[DeadLetterEntry]:
        """List entries, newest first."""
        ...

    async def retry(self, key: str) -> DeadLetterResult:
        """Republish the original command."""
        ...

    async def delete(self, key: str) -> DeadLetterResult:
        """Remove an entry."""
        ...


def dlq_key_of(command: Message) -> str | None:
    """Entry key carried by a replayed command, if any."""
    return command.metadata.extra.get(DLQ_KEY_FIELD)


class DeadLetterQueue:
    """Dead-letter entries keyed by the failed command's message id.

    Entries are never modified in place. A replayed command carries the
    entry key in its envelope; the entry is removed once that replay
    succeeds and left untouched when it fails.
    """

    def __init__(self, storage: IStorage, message_bus):
        self._storage = storage
        self._bus = message_bus
        self._replaying: set[str] = set()

    async def insert(self, command: Message, error: AgentError, attempts: int) -> str:
        """Store a failed command; returns the entry key."""
        key = command.message_id
        entry = DeadLetterEntry(
            key=key,
            agent_id=command.agent,
            message=command,
            error=error.to_envelope(),
            first_failed_at=datetime.now(timezone.utc),
            attempts=attempts,
        )

        async with self._storage.transaction() as tx:
            if await tx.find_one(COLLECTION, {"_id": key}) is not None:
                return key
            await tx.store(COLLECTION, entry.to_document())

        logger.info(
            "Dead-lettered %s for %s after %d attempts",
            command.type,
            command.agent,
            attempts,
            extra={"context": {"key": key, "error": error.kind.value}},
        )
        return key

    async def get(self, key: str) -> DeadLetterEntry | None:
        doc = await self._storage.find_one(COLLECTION, {"_id": key})
        return DeadLetterEntry.from_document(doc) if doc else None

    async def list(self, agent_id: str | None = None) -> list[DeadLetterEntry]:
        """List entries, newest first."""
        filter = {"agent_id": agent_id} if agent_id else None
        docs = await self._storage.find(COLLECTION, filter, sort="first_failed_at", descending=True)
        return [DeadLetterEntry.from_document(doc) for doc in docs]

    async def count(self, agent_id: str | None = None) -> int:
        return len(await self.list(agent_id))

    async def retry(self, key: str) -> DeadLetterResult:
        """Republish the original command with a fresh id and a reset retry count."""
        entry = await self.get(key)
        if entry is None:
            return DeadLetterResult.NOT_FOUND
        if key in self._replaying:
            logger.info("Replay of %s already in flight", key)
            return DeadLetterResult.OK

        original = entry.message
        meta = original.metadata
        self._replaying.add(key)
        try:
            await self._bus.publish_command(
                original.agent,
                original.type,
                original.payload,
                {
                    "source": meta.source,
                    "correlation_id": meta.correlation_id or meta.message_id,
                    "priority": meta.priority,
                    "user_id": meta.user_id,
                    "session_id": meta.session_id,
                    "workflow_id": meta.workflow_id,
                    "extra": {**meta.extra, DLQ_KEY_FIELD: key},
                },
            )
        except Exception:
            self._replaying.discard(key)
            raise

        logger.info("Replaying dead letter %s", key)
        return DeadLetterResult.OK

    async def resolve(self, key: str) -> None:
        """A replay succeeded: remove the entry."""
        self._replaying.discard(key)
        removed = await self._storage.delete(COLLECTION, {"_id": key})
        if removed:
            logger.info("Dead letter %s resolved by replay", key)

    def replay_failed(self, key: str) -> None:
        """A replay failed: the entry stays and may be retried again."""
        self._replaying.discard(key)
        logger.info("Replay of dead letter %s failed, entry kept", key)

    async def delete(self, key: str) -> DeadLetterResult:
        """Remove an entry."""
        self._replaying.discard(key)
        removed = await self._storage.delete(COLLECTION, {"_id": key})
        return DeadLetterResult.OK if removed else DeadLetterResult.NOT_FOUND
