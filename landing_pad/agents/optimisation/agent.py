"""Optimisation agent: SEO recommendations, performance analysis, metrics."""

from datetime import datetime, timezone

from ...errors import NotFoundError
from ...logging_config import get_logger
from ...models import Message
from ..base import BaseAgent, content_id_of, payload_value
from .modules import MODULES

logger = get_logger(__name__)

NAME = "optimisation"

DEFAULT_AUTO_SEO_TYPES = ["blog", "website_copy"]
DEFAULT_AUTO_SEO_DELAY = 1.0


class OptimisationAgent(BaseAgent):
    module_factories = MODULES
    event_subscriptions = {
        "content_creation.content_created": "on_content_created",
        "content_management.content_categorised": "on_content_categorised",
    }

    async def handle_generate_seo_recommendations_command(self, command: Message) -> dict:
        content_id = content_id_of(command.payload)
        content = await self.storage.find_one("content", {"_id": content_id})
        if content is None:
            raise NotFoundError(f"Content {content_id} not found", {"content_id": content_id})

        keywords = command.payload.get("keywords") or content.get("keywords", [])
        recommendations = await self.module("seo_optimizer").recommend(content, keywords)
        await self.storage.store(
            "seo_recommendations",
            {
                "content_id": content_id,
                "recommendations": recommendations,
                "created_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        await self.publish_event(
            "seo_recommendations",
            {"content_id": content_id, "recommendations": recommendations},
            cause=command,
        )
        return {"content_id": content_id, "count": len(recommendations)}

    async def handle_analyse_performance_command(self, command: Message) -> dict:
        content_id = content_id_of(command.payload)
        samples = await self.storage.find("metrics", {"content_id": content_id})
        report = await self.module("performance_analyzer").analyse(samples)
        report["content_id"] = content_id
        await self.storage.store("performance_reports", dict(report))
        await self.publish_event("analysis_completed", report, cause=command)
        return report

    async def handle_track_metrics_command(self, command: Message) -> dict:
        content_id = content_id_of(command.payload)
        metrics = command.payload["metrics"]
        record_id = await self.module("metrics_tracker").record(
            content_id,
            metrics,
            datetime.now(timezone.utc).isoformat(),
        )
        await self.publish_event("metrics_tracked", {"content_id": content_id, "metrics": metrics}, cause=command)
        return {"record_id": record_id}

    async def handle_store_categories_command(self, command: Message) -> dict:
        content_id = content_id_of(command.payload)
        categories = command.payload.get("categories", [])
        updated = await self.storage.update("content_categories", {"content_id": content_id}, {"categories": categories})
        if updated is None:
            await self.storage.store("content_categories", {"content_id": content_id, "categories": categories})
        return {"content_id": content_id, "categories": categories}

    async def on_content_created(self, event: Message) -> None:
        auto_types = self.config.get("auto_seo_types", DEFAULT_AUTO_SEO_TYPES)
        if payload_value(event.payload, "content_type") not in auto_types:
            return
        await self.publish_command(
            self.name,
            "generate_seo_recommendations",
            {"content_id": content_id_of(event.payload)},
            cause=event,
            delay=self.config.get("auto_seo_delay_seconds", DEFAULT_AUTO_SEO_DELAY),
        )

    async def on_content_categorised(self, event: Message) -> None:
        await self.publish_command(
            self.name,
            "store_categories",
            {"content_id": content_id_of(event.payload), "categories": event.payload.get("categories", [])},
            cause=event,
        )
