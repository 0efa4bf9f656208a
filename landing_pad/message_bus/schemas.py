"""Schema registry: envelope schema plus the catalog of payload shapes."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..errors import MessageValidationError
from ..models.messages import Message, MessageKind, is_outcome_type


class Payload(BaseModel):
    """Base for payload schemas. Unknown fields are allowed and kept."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class EmptyPayload(Payload):
    pass


class MetadataSchema(BaseModel):
    """Universal envelope carried by every message."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    message_id: str = Field(alias="messageId", min_length=1)
    timestamp: str = Field(min_length=1)
    source: str = Field(min_length=1)
    correlation_id: Optional[str] = Field(default=None, alias="correlationId")
    retry_count: int = Field(default=0, alias="retryCount", ge=0)
    priority: int = Field(default=5, ge=1, le=10)
    user_id: Optional[str] = Field(default=None, alias="userId")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    workflow_id: Optional[str] = Field(default=None, alias="workflowId")


class ErrorSchema(Payload):
    code: str
    message: str
    details: dict = Field(default_factory=dict)


class FailurePayload(Payload):
    """Payload of every ``<command>.failure`` outcome event."""

    command: str
    error: ErrorSchema
    attempts: int = Field(ge=0)
    dead_letter_key: Optional[str] = None


def _describe(exc: PydanticValidationError) -> list[dict]:
    return [
        {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
        for err in exc.errors()
    ]


class SchemaRegistry:
    """Static catalog of command, event and query types.

    Command types that are not registered are accepted: the target agent
    owns its command vocabulary and answers unknown ones with an
    ``unsupported`` failure. Unknown event and query types are rejected.
    """

    def __init__(self):
        self._commands: dict[str, type[BaseModel]] = {}
        self._events: dict[str, type[BaseModel]] = {}
        self._queries: dict[str, type[BaseModel]] = {}

    def register_command(self, type: str, schema: type[BaseModel] = EmptyPayload) -> None:
        self._commands[type] = schema

    def register_event(self, type: str, schema: type[BaseModel] = EmptyPayload) -> None:
        self._events[type] = schema

    def register_query(self, type: str, schema: type[BaseModel] = EmptyPayload) -> None:
        self._queries[type] = schema

    def has_command(self, type: str) -> bool:
        return type in self._commands

    def has_event(self, type: str) -> bool:
        return type in self._events or is_outcome_type(type)

    def has_query(self, type: str) -> bool:
        return type in self._queries

    @property
    def command_types(self) -> list[str]:
        return sorted(self._commands)

    @property
    def event_types(self) -> list[str]:
        return sorted(self._events)

    def validate_metadata(self, wire: dict) -> None:
        try:
            MetadataSchema.model_validate(wire)
        except PydanticValidationError as e:
            raise MessageValidationError(
                "Invalid message envelope",
                {"errors": _describe(e)},
            ) from e

    def validate_payload(self, kind: MessageKind, type: str, payload: dict) -> None:
        """Validate a payload against its registered schema."""
        if not isinstance(payload, dict):
            raise MessageValidationError(f"Payload of {type} must be an object")

        schema = self._schema_for(kind, type)
        if schema is None:
            return
        try:
            schema.model_validate(payload)
        except PydanticValidationError as e:
            raise MessageValidationError(
                f"Invalid payload for {kind.value} {type}",
                {"type": type, "errors": _describe(e)},
            ) from e

    def validate(self, message: Message) -> None:
        """Validate envelope and payload of a message."""
        if not message.type:
            raise MessageValidationError("Message type is required")
        if not message.agent:
            raise MessageValidationError(f"Message {message.type} has no agent")
        self.validate_metadata(message.metadata.to_wire())
        self.validate_payload(message.kind, message.type, message.payload)

    def _schema_for(self, kind: MessageKind, type: str) -> type[BaseModel] | None:
        if kind is MessageKind.COMMAND:
            return self._commands.get(type)

        if kind is MessageKind.EVENT:
            if type.endswith(".failure"):
                return FailurePayload
            if type.endswith(".success"):
                return None
            if type not in self._events:
                raise MessageValidationError(f"Unknown event type: {type}", {"type": type})
            return self._events[type]

        if kind is MessageKind.QUERY:
            if type not in self._queries:
                raise MessageValidationError(f"Unknown query type: {type}", {"type": type})
            return self._queries[type]

        # Replies are shaped by the responder
        return None
