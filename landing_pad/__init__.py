"""Landing pad: event-driven runtime for the content agents."""

from .agents import AGENT_TYPES, BaseAgent, BaseModule, ModuleRegistry, create_agent
from .app import Application, IApplication
from .config import AppConfig, ConfigLoader, load_config
from .dead_letter import DeadLetterQueue, DeadLetterResult, IDeadLetterQueue
from .errors import AgentError, ConfigurationError, ErrorEnvelope, ErrorKind, classify
from .llm import ILLMProvider, LLMProvider
from .message_bus import IMessageBus, MessageBus, RetryPolicy, SchemaRegistry
from .models import (
    AgentSnapshot,
    DeadLetterEntry,
    Message,
    MessageKind,
    MessageMetadata,
    RecoveryRecord,
    WorkflowStep,
)
from .monitoring import HealthMonitor
from .recovery import RecoveryService, RestartBreaker
from .storage import IStorage, Storage
from .tracker import ITracker, WorkflowTracker

__version__ = "0.1.0"

__all__ = [
    # Application
    "Application",
    "IApplication",
    "AppConfig",
    "ConfigLoader",
    "load_config",
    # Errors
    "AgentError",
    "ConfigurationError",
    "ErrorEnvelope",
    "ErrorKind",
    "classify",
    # Models
    "Message",
    "MessageKind",
    "MessageMetadata",
    "AgentSnapshot",
    "DeadLetterEntry",
    "RecoveryRecord",
    "WorkflowStep",
    # Components
    "IMessageBus",
    "MessageBus",
    "RetryPolicy",
    "SchemaRegistry",
    "IDeadLetterQueue",
    "DeadLetterQueue",
    "DeadLetterResult",
    "RecoveryService",
    "RestartBreaker",
    "HealthMonitor",
    "ITracker",
    "WorkflowTracker",
    "IStorage",
    "Storage",
    "ILLMProvider",
    "LLMProvider",
    # Agents
    "AGENT_TYPES",
    "create_agent",
    "BaseAgent",
    "BaseModule",
    "ModuleRegistry",
]
