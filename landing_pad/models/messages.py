"""Message envelope, commands, events and queries."""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# Envelope attribute -> wire field name
WIRE_FIELDS = {
    "message_id": "messageId",
    "correlation_id": "correlationId",
    "timestamp": "timestamp",
    "source": "source",
    "retry_count": "retryCount",
    "priority": "priority",
    "user_id": "userId",
    "session_id": "sessionId",
    "workflow_id": "workflowId",
}

DEFAULT_PRIORITY = 5


class MessageKind(str, Enum):
    """The three bus primitives plus query replies."""

    COMMAND = "command"
    EVENT = "event"
    QUERY = "query"
    REPLY = "reply"


def new_message_id() -> str:
    return uuid.uuid4().hex


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class MessageMetadata:
    """Universal envelope carried by every message. Immutable once created."""

    message_id: str
    timestamp: str
    source: str
    correlation_id: str | None = None
    retry_count: int = 0
    priority: int = DEFAULT_PRIORITY
    user_id: str | None = None
    session_id: str | None = None
    workflow_id: str | None = None
    # Unknown wire fields, forwarded untouched
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def new(cls, source: str, **fields: Any) -> "MessageMetadata":
        """Create fresh metadata with a new message id and timestamp."""
        extra = dict(fields.pop("extra", None) or {})
        return cls(
            message_id=fields.pop("message_id", None) or new_message_id(),
            timestamp=fields.pop("timestamp", None) or utc_now_iso(),
            source=source,
            extra=extra,
            **fields,
        )

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.extra)
        for attr, wire_name in WIRE_FIELDS.items():
            value = getattr(self, attr)
            if value is not None:
                data[wire_name] = value
        return data

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "MessageMetadata":
        known = {attr: data[wire] for attr, wire in WIRE_FIELDS.items() if wire in data}
        extra = {k: v for k, v in data.items() if k not in WIRE_FIELDS.values()}
        known.setdefault("retry_count", 0)
        known.setdefault("priority", DEFAULT_PRIORITY)
        return cls(extra=extra, **known)


@dataclass(frozen=True)
class Message:
    """A command, event, query or reply travelling over the bus.

    ``agent`` is the target agent for commands and queries and the
    publishing agent for events.
    """

    kind: MessageKind
    type: str
    agent: str
    payload: dict[str, Any]
    metadata: MessageMetadata

    @property
    def message_id(self) -> str:
        return self.metadata.message_id

    @property
    def correlation_id(self) -> str | None:
        return self.metadata.correlation_id

    @property
    def routing_key(self) -> str:
        """Event routing key (``<agent>.<type>``) or command queue name."""
        if self.kind is MessageKind.COMMAND:
            return command_queue_name(self.agent)
        return f"{self.agent}.{self.type}"

    def with_retry(self) -> "Message":
        """Copy with retry_count incremented (same message id)."""
        return replace(
            self,
            metadata=replace(self.metadata, retry_count=self.metadata.retry_count + 1),
        )

    def to_wire(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "type": self.type,
            "agent": self.agent,
            "payload": self.payload,
            "metadata": self.metadata.to_wire(),
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "Message":
        return cls(
            kind=MessageKind(data["kind"]),
            type=data["type"],
            agent=data["agent"],
            payload=data.get("payload") or {},
            metadata=MessageMetadata.from_wire(data.get("metadata") or {}),
        )


# Readability aliases used in handler signatures
Command = Message
Event = Message


def command_queue_name(agent: str) -> str:
    return f"{agent}_commands"


def success_type(command_type: str) -> str:
    return f"{command_type}.success"


def failure_type(command_type: str) -> str:
    return f"{command_type}.failure"


def is_outcome_type(event_type: str) -> bool:
    return event_type.endswith(".success") or event_type.endswith(".failure")
