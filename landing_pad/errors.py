"""Error taxonomy shared by agents, the message bus and the dead-letter queue."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Error kinds used on the wire and in dead-letter entries."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    CONFLICT = "conflict"
    UNSUPPORTED = "unsupported"
    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


# Surfaced immediately, never retried.
PERMANENT_KINDS = frozenset(
    {
        ErrorKind.VALIDATION,
        ErrorKind.NOT_FOUND,
        ErrorKind.UNAUTHORIZED,
        ErrorKind.CONFLICT,
        ErrorKind.UNSUPPORTED,
    }
)

RETRYABLE_KINDS = frozenset({ErrorKind.TRANSIENT, ErrorKind.TIMEOUT})


@dataclass(frozen=True)
class ErrorEnvelope:
    """Typed error shape put on the wire: {code, message, details?}."""

    code: ErrorKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ErrorEnvelope":
        return cls(
            code=ErrorKind(data["code"]),
            message=data.get("message", ""),
            details=data.get("details") or {},
        )


class AgentError(Exception):
    """Base class for all runtime errors carrying an ErrorKind."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_envelope(self) -> ErrorEnvelope:
        return ErrorEnvelope(code=self.kind, message=self.message, details=self.details)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class ValidationError(AgentError):
    kind = ErrorKind.VALIDATION


class MessageValidationError(ValidationError):
    """Envelope or payload does not match the schema registry."""


class NotFoundError(AgentError):
    kind = ErrorKind.NOT_FOUND


class UnauthorizedError(AgentError):
    kind = ErrorKind.UNAUTHORIZED


class ConflictError(AgentError):
    kind = ErrorKind.CONFLICT


class UnsupportedError(AgentError):
    kind = ErrorKind.UNSUPPORTED


class TransientError(AgentError):
    kind = ErrorKind.TRANSIENT


class HandlerTimeoutError(AgentError):
    kind = ErrorKind.TIMEOUT


class QueryTimeoutError(HandlerTimeoutError):
    """No reply arrived for a query within its timeout."""


class HandlerCancelledError(AgentError):
    kind = ErrorKind.CANCELLED


class InternalError(AgentError):
    kind = ErrorKind.INTERNAL


class ModuleStateError(InternalError):
    """A module lifecycle hook was called out of order."""


class ConfigurationError(Exception):
    """Configuration is missing, malformed, or incomplete for the environment."""


_KIND_TO_ERROR: dict[ErrorKind, type[AgentError]] = {
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.UNAUTHORIZED: UnauthorizedError,
    ErrorKind.CONFLICT: ConflictError,
    ErrorKind.UNSUPPORTED: UnsupportedError,
    ErrorKind.TRANSIENT: TransientError,
    ErrorKind.TIMEOUT: HandlerTimeoutError,
    ErrorKind.CANCELLED: HandlerCancelledError,
    ErrorKind.INTERNAL: InternalError,
}


def error_for_kind(kind: ErrorKind, message: str, details: dict | None = None) -> AgentError:
    """Build the AgentError subclass matching an ErrorKind."""
    return _KIND_TO_ERROR[kind](message, details)


def classify(exc: BaseException) -> AgentError:
    """Map any exception onto the error taxonomy."""
    if isinstance(exc, AgentError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return HandlerTimeoutError(str(exc) or "Handler deadline exceeded")
    if isinstance(exc, asyncio.CancelledError):
        return HandlerCancelledError("Handler cancelled")
    if isinstance(exc, (ConnectionError, OSError)):
        return TransientError(str(exc) or exc.__class__.__name__)
    return InternalError(
        str(exc) or exc.__class__.__name__,
        {"exception": exc.__class__.__name__},
    )
