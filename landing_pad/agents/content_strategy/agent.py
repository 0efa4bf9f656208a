"""Content strategy agent: briefs, audience analysis and trend research."""

import uuid
from datetime import datetime, timezone

from ...errors import NotFoundError
from ...logging_config import get_logger
from ...models import Message
from ..base import BaseAgent, brief_id_of, content_id_of
from .modules import MODULES

logger = get_logger(__name__)

NAME = "content_strategy"


class ContentStrategyAgent(BaseAgent):
    module_factories = MODULES
    event_subscriptions = {
        "optimisation.analysis_completed": "on_analysis_completed",
    }

    async def handle_create_brief_command(self, command: Message) -> dict:
        payload = command.payload
        brief = await self.module("brief_generator").build(
            payload["type"],
            payload["topic"],
            payload.get("keywords", []),
            payload.get("target_audience") or payload.get("targetAudience"),
        )
        brief_id = uuid.uuid4().hex
        brief.update(
            {
                "_id": brief_id,
                "status": "created",
                "created_at": datetime.now(timezone.utc).isoformat(),
                "created_by": command.metadata.user_id,
            }
        )
        await self.storage.store("briefs", brief)

        await self.publish_event(
            "brief_created",
            {
                "brief_id": brief_id,
                "type": brief["type"],
                "topic": brief["topic"],
                "keywords": brief["keywords"],
            },
            cause=command,
        )
        return {"brief_id": brief_id}

    async def handle_update_brief_command(self, command: Message) -> dict:
        brief_id = brief_id_of(command.payload)
        updates = command.payload["updates"]
        brief = await self.storage.update(
            "briefs",
            {"_id": brief_id},
            {**updates, "updated_at": datetime.now(timezone.utc).isoformat()},
        )
        if brief is None:
            raise NotFoundError(f"Brief {brief_id} not found", {"brief_id": brief_id})

        await self.publish_event("brief_updated", {"brief_id": brief_id, "updates": updates}, cause=command)
        return {"brief_id": brief_id}

    async def handle_analyze_audience_command(self, command: Message) -> dict:
        insights = await self.module("audience_insights").analyse(command.payload["audience"])
        await self.storage.store("audience_insights", dict(insights))
        await self.publish_event("audience_analyzed", insights, cause=command)
        return insights

    async def handle_research_trend_command(self, command: Message) -> dict:
        topic = command.payload["topic"]
        trends = await self.module("trend_analyzer").research(topic, command.payload.get("industry"))
        result = {"topic": topic, "trends": trends}
        await self.storage.store("trend_research", dict(result))
        await self.publish_event("trend_researched", result, cause=command)
        return result

    async def handle_store_insights_command(self, command: Message) -> dict:
        doc_id = await self.storage.store(
            "strategy_insights",
            {
                "content_id": content_id_of(command.payload),
                "insights": command.payload.get("insights", {}),
                "received_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        return {"insight_id": doc_id}

    async def on_analysis_completed(self, event: Message) -> None:
        await self.publish_command(
            self.name,
            "store_insights",
            {
                "content_id": content_id_of(event.payload),
                "insights": {
                    key: event.payload[key]
                    for key in ("insights", "averages", "samples")
                    if key in event.payload
                },
            },
            cause=event,
        )
