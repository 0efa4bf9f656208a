"""Agent API routes: status, command submission and restart."""

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, Field

from ...app import Application


class CommandRequest(BaseModel):
    """Request model for submitting a command."""

    type: str = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(default=5, ge=1, le=10)
    user_id: str | None = None
    session_id: str | None = None
    workflow_id: str | None = None


class CommandResponse(BaseModel):
    """Response model for an accepted command."""

    message_id: str
    agent: str
    type: str


class RestartRequest(BaseModel):
    user_id: str | None = None


class StatusResponse(BaseModel):
    """Response model for status."""

    status: str


def create_agents_router(app: Application) -> APIRouter:
    """Create agents router."""
    router = APIRouter(prefix="/api/agents", tags=["agents"])

    @router.get("")
    async def list_agents() -> list[dict]:
        """Snapshots of the agents running in this process."""
        return [agent.snapshot().to_dict() for agent in app.agents.values()]

    @router.get("/{name}")
    async def get_agent(name: str) -> dict:
        snapshot = app.agent(name).snapshot().to_dict()
        snapshot["restarts"] = app.health.restart_count(name)
        snapshot["recovery_history"] = [r.to_dict() for r in app.recovery.history(name)]
        return snapshot

    @router.post("/{name}/commands", response_model=CommandResponse, status_code=202)
    async def submit_command(name: str, request: CommandRequest) -> dict:
        """Publish a command to an agent's queue."""
        app.agent(name)
        meta = {
            "source": "api",
            "priority": request.priority,
            "user_id": request.user_id,
            "session_id": request.session_id,
            "workflow_id": request.workflow_id,
        }
        message_id = await app.submit_command(name, request.type, request.payload, meta)
        return {"message_id": message_id, "agent": name, "type": request.type}

    @router.post("/{name}/restart", response_model=StatusResponse)
    async def restart_agent(name: str, request: RestartRequest | None = None) -> dict:
        """Manually restart an agent."""
        user_id = request.user_id if request and request.user_id else "api"
        await app.restart_agent(name, user_id)
        return {"status": "ok"}

    return router
