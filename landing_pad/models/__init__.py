"""Core data models for the agent runtime."""

from .agents import AgentHealth, AgentSnapshot, ModuleStatus, RecoveryRecord, RecoveryStrategy
from .dead_letter import DeadLetterEntry
from .messages import (
    Command,
    Event,
    Message,
    MessageKind,
    MessageMetadata,
    command_queue_name,
    failure_type,
    is_outcome_type,
    success_type,
)
from .workflow import StepStatus, WorkflowStep

__all__ = [
    # Messages
    "Message",
    "MessageKind",
    "MessageMetadata",
    "Command",
    "Event",
    "command_queue_name",
    "success_type",
    "failure_type",
    "is_outcome_type",
    # Agents
    "AgentSnapshot",
    "ModuleStatus",
    "AgentHealth",
    "RecoveryRecord",
    "RecoveryStrategy",
    # Dead letters
    "DeadLetterEntry",
    # Workflow
    "StepStatus",
    "WorkflowStep",
]
