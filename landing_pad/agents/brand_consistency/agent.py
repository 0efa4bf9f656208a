"""Brand consistency agent: reviews content against the brand guidelines."""

from datetime import datetime, timezone

from ...errors import NotFoundError
from ...logging_config import get_logger
from ...models import Message
from ..base import BaseAgent, content_id_of, payload_value
from .modules import MODULES, score

logger = get_logger(__name__)

NAME = "brand_consistency"

GUIDELINES_ID = "current"
DEFAULT_APPROVAL_THRESHOLD = 7
DEFAULT_AUTO_REVIEW_DELAY = 1.0


def review_status(review_score: float, issues: list[dict], threshold: float) -> str:
    if review_score < threshold or any(issue.get("severity") == "high" for issue in issues):
        return "needs_revision"
    if issues:
        return "approved_with_notes"
    return "approved"


class BrandConsistencyAgent(BaseAgent):
    module_factories = MODULES
    event_subscriptions = {
        "content_creation.content_created": "on_content_ready",
        "content_creation.content_edited": "on_content_ready",
    }

    async def _guidelines(self) -> dict:
        doc = await self.storage.find_one("brand_guidelines", {"_id": GUIDELINES_ID})
        return doc or {}

    async def handle_review_content_command(self, command: Message) -> dict:
        content_id = content_id_of(command.payload)
        content = await self.storage.find_one("content", {"_id": content_id})
        if content is None:
            raise NotFoundError(f"Content {content_id} not found", {"content_id": content_id})

        guidelines = await self._guidelines()
        consistency = await self.module("consistency_checker").check(content, guidelines)
        issues = list(consistency["issues"])
        terminology = self.registry.get("terminology_checker")
        if terminology is not None:
            issues.extend(await terminology.check(f"{content.get('title', '')}\n{content.get('body', '')}", guidelines))

        review_score = score(issues)
        threshold = self.config.get("approval_threshold", DEFAULT_APPROVAL_THRESHOLD)
        status = review_status(review_score, issues, threshold)

        review = {
            "content_id": content_id,
            "status": status,
            "score": review_score,
            "issues": issues,
            "reviewed_at": datetime.now(timezone.utc).isoformat(),
        }
        await self.storage.store("reviews", dict(review))
        logger.info("Reviewed %s: %s (%.1f)", content_id, status, review_score)

        await self.publish_event("review_completed", review, cause=command)
        return review

    async def handle_update_guidelines_command(self, command: Message) -> dict:
        guidelines = command.payload["guidelines"]
        async with self.storage.transaction() as tx:
            await tx.delete("brand_guidelines", {"_id": GUIDELINES_ID})
            await tx.store("brand_guidelines", {"_id": GUIDELINES_ID, **guidelines})
        await self.publish_event("guidelines_updated", {"keys": sorted(guidelines)}, cause=command)
        return {"updated": sorted(guidelines)}

    async def handle_check_terminology_command(self, command: Message) -> dict:
        issues = await self.module("terminology_checker").check(command.payload["text"], await self._guidelines())
        return {"issues": issues, "score": score(issues)}

    async def on_content_ready(self, event: Message) -> None:
        if not payload_value(event.payload, "requires_review", True):
            return
        # Deferred so the content write settles before the review reads it
        delay = self.config.get("auto_review_delay_seconds", DEFAULT_AUTO_REVIEW_DELAY)
        await self.publish_command(
            self.name,
            "review_content",
            {"content_id": content_id_of(event.payload)},
            cause=event,
            delay=delay,
        )
