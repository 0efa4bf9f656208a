"""Dead-letter API routes."""

from fastapi import APIRouter, Query

from ...app import Application
from ...dead_letter import DeadLetterResult
from ...errors import NotFoundError


def create_dead_letters_router(app: Application) -> APIRouter:
    """Create dead-letter router."""
    router = APIRouter(prefix="/api/dead-letters", tags=["dead-letters"])

    @router.get("")
    async def list_dead_letters(
        agent: str | None = Query(None, description="Filter by agent"),
    ) -> list[dict]:
        """Entries, newest first."""
        entries = await app.dead_letter_queue.list(agent)
        return [entry.to_dict() for entry in entries]

    @router.post("/{key}/retry", status_code=202)
    async def retry_dead_letter(key: str) -> dict:
        """Replay the original command."""
        result = await app.dead_letter_queue.retry(key)
        if result is DeadLetterResult.NOT_FOUND:
            raise NotFoundError(f"Dead letter {key} not found", {"key": key})
        return {"status": result.value}

    @router.delete("/{key}")
    async def delete_dead_letter(key: str) -> dict:
        result = await app.dead_letter_queue.delete(key)
        if result is DeadLetterResult.NOT_FOUND:
            raise NotFoundError(f"Dead letter {key} not found", {"key": key})
        return {"status": result.value}

    return router
