"""Dead-letter queue entry model."""

from dataclasses import dataclass
from datetime import datetime

from ..errors import ErrorEnvelope
from .messages import Message


@dataclass(frozen=True)
class DeadLetterEntry:
    """A command whose handler failed beyond policy. Never modified in place."""

    key: str
    agent_id: str
    message: Message
    error: ErrorEnvelope
    first_failed_at: datetime
    attempts: int

    def to_document(self) -> dict:
        return {
            "_id": self.key,
            "agent_id": self.agent_id,
            "message": self.message.to_wire(),
            "error": self.error.to_dict(),
            "first_failed_at": self.first_failed_at.isoformat(),
            "attempts": self.attempts,
        }

    @classmethod
    def from_document(cls, doc: dict) -> "DeadLetterEntry":
        return cls(
            key=doc["_id"],
            agent_id=doc["agent_id"],
            message=Message.from_wire(doc["message"]),
            error=ErrorEnvelope.from_dict(doc["error"]),
            first_failed_at=datetime.fromisoformat(doc["first_failed_at"]),
            attempts=doc["attempts"],
        )

    def to_dict(self) -> dict:
        data = self.to_document()
        data["key"] = data.pop("_id")
        return data
