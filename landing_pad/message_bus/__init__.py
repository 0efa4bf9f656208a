"""Message bus module."""

from .catalog import COMMANDS, EVENTS, QUERIES, default_registry
from .message_bus import IMessageBus, IRecovery, MessageBus, Subscription, topic_matches
from .retry import RetryDecision, RetryPolicies, RetryPolicy, decide
from .schemas import MetadataSchema, Payload, SchemaRegistry

__all__ = [
    "COMMANDS",
    "EVENTS",
    "QUERIES",
    "default_registry",
    "IMessageBus",
    "IRecovery",
    "MessageBus",
    "Subscription",
    "topic_matches",
    "RetryDecision",
    "RetryPolicies",
    "RetryPolicy",
    "decide",
    "MetadataSchema",
    "Payload",
    "SchemaRegistry",
]
