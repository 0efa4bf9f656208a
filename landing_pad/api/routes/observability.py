"""Observability API routes: health and workflow progress."""

from fastapi import APIRouter

from ...app import Application
from ...errors import NotFoundError


def create_observability_router(app: Application) -> APIRouter:
    """Create observability router."""
    router = APIRouter(prefix="/api", tags=["observability"])

    @router.get("/health")
    async def get_health() -> dict:
        """Run a health check now."""
        report = await app.health.check()
        return report.to_dict()

    @router.get("/workflows/{workflow_id}")
    async def get_workflow(workflow_id: str) -> dict:
        """Tracked steps of a workflow in choreography order."""
        steps = [step.to_dict() for step in app.tracker.steps(workflow_id)]
        if not steps:
            # No longer held in memory
            steps = await app.tracker.stored_steps(workflow_id)
        if not steps:
            raise NotFoundError(f"Workflow {workflow_id} not found", {"workflow_id": workflow_id})
        return {"workflow_id": workflow_id, "steps": steps}

    return router
