"""Content creation agent: generates, edits and finalises content."""

import uuid
from datetime import datetime, timezone

from ...errors import NotFoundError, ValidationError
from ...logging_config import get_logger
from ...models import Message
from ..base import BaseAgent, brief_id_of, content_id_of, payload_value
from .modules import MODULES

logger = get_logger(__name__)

NAME = "content_creation"

DEFAULT_AUTO_GENERATE_TYPES = ["blog", "social_media", "email", "website_copy"]
DEFAULT_MAX_REVISIONS = 3


class ContentCreationAgent(BaseAgent):
    module_factories = MODULES
    event_subscriptions = {
        "content_strategy.brief_created": "on_brief_created",
        "content_strategy.brief_updated": "on_brief_updated",
        "optimisation.seo_recommendations": "on_seo_recommendations",
        "brand_consistency.review_completed": "on_review_completed",
    }

    def _generator(self, content_type: str):
        return self.module(f"{content_type}_generator")

    async def _load_content(self, content_id: str) -> dict:
        content = await self.storage.find_one("content", {"_id": content_id})
        if content is None:
            raise NotFoundError(f"Content {content_id} not found", {"content_id": content_id})
        return content

    # --- Commands ----------------------------------------------------------

    async def handle_generate_content_command(self, command: Message) -> dict:
        payload = command.payload
        brief_id = brief_id_of(payload)
        brief: dict = {}
        if brief_id:
            brief = await self.storage.find_one("briefs", {"_id": brief_id})
            if brief is None:
                raise NotFoundError(f"Brief {brief_id} not found", {"brief_id": brief_id})

        content_type = payload_value(payload, "content_type") or brief.get("type")
        topic = payload.get("topic") or brief.get("topic")
        if not content_type or not topic:
            raise ValidationError("generate_content needs a brief or a content type and topic")

        keywords = payload.get("keywords") or brief.get("keywords", [])
        generated = await self._generator(content_type).generate_content(topic, keywords, brief.get("outline"))

        content_id = uuid.uuid4().hex
        requires_review = self.config.get("require_review", True)
        await self.storage.store(
            "content",
            {
                "_id": content_id,
                "brief_id": brief_id,
                "content_type": content_type,
                "keywords": keywords,
                "status": "draft",
                "revisions": 0,
                "created_at": datetime.now(timezone.utc).isoformat(),
                **generated,
            },
        )

        await self.publish_event(
            "content_created",
            {
                "content_id": content_id,
                "brief_id": brief_id,
                "content_type": content_type,
                "requires_review": requires_review,
            },
            cause=command,
        )
        return {"content_id": content_id}

    async def handle_edit_content_command(self, command: Message) -> dict:
        content_id = content_id_of(command.payload)
        content = await self._load_content(content_id)
        body = await self.module("content_editor").revise(
            content["body"],
            command.payload.get("issues", []),
            command.payload.get("instructions"),
        )
        await self.storage.update(
            "content",
            {"_id": content_id},
            {"body": body, "status": "revised", "revisions": content.get("revisions", 0) + 1},
        )
        await self.publish_event(
            "content_edited",
            {"content_id": content_id, "requires_review": self.config.get("require_review", True)},
            cause=command,
        )
        return {"content_id": content_id, "revisions": content.get("revisions", 0) + 1}

    async def handle_generate_headlines_command(self, command: Message) -> dict:
        headlines = await self.module("headline_generator").headlines(
            command.payload["topic"],
            command.payload.get("count", 5),
        )
        return {"headlines": headlines}

    async def handle_process_review_command(self, command: Message) -> dict:
        content_id = content_id_of(command.payload)
        status = command.payload["status"]
        content = await self._load_content(content_id)

        if status.startswith("approved"):
            await self.storage.update("content", {"_id": content_id}, {"status": "approved"})
            await self.publish_event("content_approved", {"content_id": content_id}, cause=command)
            return {"content_id": content_id, "status": "approved"}

        revisions = content.get("revisions", 0)
        max_revisions = self.config.get("max_revisions", DEFAULT_MAX_REVISIONS)
        if self.config.get("auto_revise_content", False) and revisions < max_revisions:
            await self.publish_command(
                self.name,
                "edit_content",
                {"content_id": content_id, "issues": command.payload.get("issues", [])},
                cause=command,
            )
            return {"content_id": content_id, "status": "revising"}

        await self.storage.update("content", {"_id": content_id}, {"status": "needs_revision"})
        await self.publish_event("content_needs_revision", {"content_id": content_id}, cause=command)
        return {"content_id": content_id, "status": "needs_revision"}

    async def handle_apply_seo_recommendations_command(self, command: Message) -> dict:
        content_id = content_id_of(command.payload)
        await self._load_content(content_id)
        recommendations = command.payload.get("recommendations", [])
        await self.storage.update(
            "content",
            {"_id": content_id},
            {"seo_recommendations": recommendations, "seo_applied_at": datetime.now(timezone.utc).isoformat()},
        )
        await self.publish_event("seo_recommendations_applied", {"content_id": content_id}, cause=command)
        return {"content_id": content_id, "applied": len(recommendations)}

    async def handle_store_brief_update_command(self, command: Message) -> dict:
        brief_id = brief_id_of(command.payload)
        doc_id = await self.storage.store(
            "brief_update_suggestions",
            {
                "brief_id": brief_id,
                "updates": command.payload.get("updates", {}),
                "received_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        return {"suggestion_id": doc_id}

    # --- Reactions ---------------------------------------------------------

    async def on_brief_created(self, event: Message) -> None:
        auto_types = self.config.get("auto_generate_types", DEFAULT_AUTO_GENERATE_TYPES)
        if event.payload.get("type") not in auto_types:
            return
        await self.publish_command(
            self.name,
            "generate_content",
            {"brief_id": brief_id_of(event.payload)},
            cause=event,
        )

    async def on_brief_updated(self, event: Message) -> None:
        await self.publish_command(
            self.name,
            "store_brief_update",
            {"brief_id": brief_id_of(event.payload), "updates": event.payload.get("updates", {})},
            cause=event,
        )

    async def on_seo_recommendations(self, event: Message) -> None:
        await self.publish_command(
            self.name,
            "apply_seo_recommendations",
            {
                "content_id": content_id_of(event.payload),
                "recommendations": event.payload.get("recommendations", []),
            },
            cause=event,
        )

    async def on_review_completed(self, event: Message) -> None:
        await self.publish_command(
            self.name,
            "process_review",
            {
                "content_id": content_id_of(event.payload),
                "status": event.payload["status"],
                "score": event.payload.get("score"),
                "issues": event.payload.get("issues", []),
            },
            cause=event,
        )
