"""Workflow tracker: reconstructs per-entity step progress from observed events."""

from collections import OrderedDict
from datetime import datetime, timezone
from itertools import count
from typing import Protocol

from ..errors import AgentError
from ..logging_config import get_logger
from ..models import Message, StepStatus, WorkflowStep
from ..storage import IStorage

logger = get_logger(__name__)

COLLECTION = "workflow_steps"
DEFAULT_MAX_WORKFLOWS = 1000

# Choreography order used to list steps, independent of arrival order
CANONICAL_STEPS = (
    "brief_created",
    "brief_updated",
    "content_created",
    "content_categorised",
    "content_tracked",
    "review_completed",
    "content_needs_revision",
    "content_edited",
    "seo_recommendations",
    "seo_recommendations_applied",
    "content_approved",
    "workflow_status_updated",
    "content_scheduled",
)
_UNRANKED = len(CANONICAL_STEPS)


class ITracker(Protocol):
    """Observability-only listener for workflow events."""

    async def start(self) -> None:
        """Subscribe to all events."""
        ...

    async def stop(self) -> None:
        """Unsubscribe."""
        ...

    def steps(self, workflow_id: str) -> list[WorkflowStep]:
        """Steps of a workflow in choreography order."""
        ...

    async def stored_steps(self, workflow_id: str) -> list[dict]:
        """Persisted steps of a workflow."""
        ...


def _first(payload: dict, *names: str) -> str | None:
    for name in names:
        value = payload.get(name)
        if value:
            return str(value)
    return None


def _step_rank(step_id: str) -> int:
    event_type = step_id.split(".", 1)[-1]
    try:
        return CANONICAL_STEPS.index(event_type)
    except ValueError:
        return _UNRANKED


class WorkflowTracker:
    """Groups events by workflow key and keeps a step table per workflow.

    Workflow key: the envelope ``workflowId``, else the payload content id,
    else the brief id. An event naming both a content id and a brief id
    merges the brief's workflow into the content's.

    At most ``max_workflows`` are kept in memory; the least recently updated
    one is dropped first. Every step is also persisted to ``workflow_steps``
    when storage is given, so dropped workflows stay readable through
    ``stored_steps()``.
    """

    def __init__(
        self,
        message_bus,
        storage: IStorage | None = None,
        max_workflows: int = DEFAULT_MAX_WORKFLOWS,
    ):
        self._bus = message_bus
        self._storage = storage
        self._max_workflows = max_workflows
        self._subscription = None
        self._workflows: OrderedDict[str, dict[str, WorkflowStep]] = OrderedDict()
        self._aliases: dict[str, str] = {}
        self._observed = count()

    async def start(self) -> None:
        """Subscribe to all events."""
        if self._subscription is None:
            self._subscription = await self._bus.subscribe_event("#", self.observe, owner="workflow_tracker")

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.unsubscribe()
            self._subscription = None

    def _resolve(self, workflow_id: str) -> str:
        while workflow_id in self._aliases:
            workflow_id = self._aliases[workflow_id]
        return workflow_id

    def _workflow_key(self, event: Message) -> str | None:
        if event.metadata.workflow_id:
            return self._resolve(event.metadata.workflow_id)

        content_id = _first(event.payload, "content_id", "contentId")
        brief_id = _first(event.payload, "brief_id", "briefId")

        if content_id and brief_id:
            self._merge(self._resolve(f"brief:{brief_id}"), self._resolve(f"content:{content_id}"))
        if content_id:
            return self._resolve(f"content:{content_id}")
        if brief_id:
            return self._resolve(f"brief:{brief_id}")
        return None

    def _merge(self, source: str, target: str) -> None:
        if source == target:
            return
        self._aliases[source] = target
        moved = self._workflows.pop(source, {})
        steps = self._workflows.setdefault(target, {})
        for step_id, step in moved.items():
            step.workflow_id = target
            existing = steps.get(step_id)
            if existing is None:
                steps[step_id] = step
            elif existing.status.can_move_to(step.status):
                existing.status = step.status
                existing.completed_at = step.completed_at

    async def observe(self, event: Message) -> None:
        """Record one event. Never raises into the bus."""
        if event.type.endswith(".success"):
            return

        workflow_id = self._workflow_key(event)
        if workflow_id is None:
            return

        if event.type.endswith(".failure"):
            step_id = f"{event.agent}.{event.type.rsplit('.', 1)[0]}"
            status = StepStatus.ERROR
        else:
            step_id = event.routing_key
            status = StepStatus.COMPLETED
        now = datetime.now(timezone.utc)

        steps = self._workflows.setdefault(workflow_id, {})
        self._workflows.move_to_end(workflow_id)
        step = steps.get(step_id)
        if step is None:
            step = steps[step_id] = WorkflowStep(
                workflow_id=workflow_id,
                step_id=step_id,
                agent=event.agent,
                position=next(self._observed),
                started_at=now,
            )
        elif event.message_id in step.event_ids:
            logger.debug("Duplicate event %s for %s ignored", event.message_id, step_id)
            return

        step.event_ids.append(event.message_id)
        if step.status.can_move_to(status):
            step.status = status
            step.completed_at = now
            step.output = event.payload

        await self._persist(step)
        self._evict()

    def _evict(self) -> None:
        while len(self._workflows) > self._max_workflows:
            workflow_id, _ = self._workflows.popitem(last=False)
            stale = [alias for alias in self._aliases if self._resolve(alias) == workflow_id]
            for alias in stale:
                del self._aliases[alias]
            logger.debug("Workflow %s dropped from memory", workflow_id)

    async def _persist(self, step: WorkflowStep) -> None:
        if self._storage is None:
            return
        doc_id = f"{step.workflow_id}|{step.step_id}"
        doc = {"_id": doc_id, **step.to_dict()}
        try:
            if await self._storage.update(COLLECTION, {"_id": doc_id}, doc) is None:
                await self._storage.store(COLLECTION, doc)
        except AgentError as e:
            logger.warning("Could not persist workflow step %s: %s", doc_id, e.message)

    def steps(self, workflow_id: str) -> list[WorkflowStep]:
        """Steps of a workflow in choreography order."""
        steps = self._workflows.get(self._lookup(workflow_id), {})
        return sorted(steps.values(), key=lambda s: (_step_rank(s.step_id), s.position))

    def _lookup(self, workflow_id: str) -> str:
        if workflow_id in self._workflows or workflow_id in self._aliases:
            return self._resolve(workflow_id)
        for prefix in ("content:", "brief:"):
            key = prefix + workflow_id
            if key in self._workflows or key in self._aliases:
                return self._resolve(key)
        return workflow_id

    def workflows(self) -> list[str]:
        return sorted(self._workflows)

    async def stored_steps(self, workflow_id: str) -> list[dict]:
        """Persisted steps of a workflow, including ones no longer held in memory."""
        if self._storage is None:
            return []
        for key in (self._lookup(workflow_id), f"content:{workflow_id}", f"brief:{workflow_id}"):
            docs = await self._storage.find(COLLECTION, {"workflow_id": key})
            if docs:
                docs.sort(key=lambda d: (_step_rank(d["step_id"]), d["position"]))
                return [{k: v for k, v in doc.items() if k != "_id"} for doc in docs]
        return []
