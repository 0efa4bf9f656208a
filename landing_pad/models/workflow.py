"""Workflow tracking data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class StepStatus(str, Enum):
    """Workflow step status. Transitions only move forward."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def can_move_to(self, other: "StepStatus") -> bool:
        return other.rank > self.rank


_RANKS = {
    StepStatus.PENDING: 0,
    StepStatus.IN_PROGRESS: 1,
    StepStatus.COMPLETED: 2,
    StepStatus.ERROR: 2,
}


@dataclass
class WorkflowStep:
    """One observed step of a workflow."""

    workflow_id: str
    step_id: str
    agent: str
    status: StepStatus = StepStatus.PENDING
    position: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    output: dict[str, Any] | None = None
    event_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "workflow_id": self.workflow_id,
            "step_id": self.step_id,
            "agent": self.agent,
            "status": self.status.value,
            "position": self.position,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "output": self.output,
            "event_ids": list(self.event_ids),
        }
