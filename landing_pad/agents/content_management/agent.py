"""Content management agent: tracking, categorisation, workflow status and scheduling."""

from datetime import datetime, timedelta, timezone

from ...errors import NotFoundError, ValidationError
from ...logging_config import get_logger
from ...models import Message
from ..base import BaseAgent, brief_id_of, content_id_of, payload_value
from .modules import MODULES

logger = get_logger(__name__)

NAME = "content_management"

DEFAULT_SCHEDULE_DELAY_HOURS = 24


class ContentManagementAgent(BaseAgent):
    module_factories = MODULES
    event_subscriptions = {
        "content_creation.content_created": "on_content_created",
        "content_creation.content_approved": "on_content_approved",
        "content_strategy.brief_created": "on_brief_created",
    }

    async def _load_content(self, content_id: str) -> dict:
        content = await self.storage.find_one("content", {"_id": content_id})
        if content is None:
            raise NotFoundError(f"Content {content_id} not found", {"content_id": content_id})
        return content

    async def _set_status(self, content_id: str, status: str) -> str | None:
        tracker = self.module("content_tracker")
        record = await tracker.get(content_id)
        previous = record.get("status") if record else None
        self.module("workflow_manager").validate_transition(previous, status)
        await tracker.track(content_id, {"status": status})
        return previous

    # --- Commands ----------------------------------------------------------

    async def handle_track_content_command(self, command: Message) -> dict:
        payload = command.payload
        content_id = content_id_of(payload)
        brief_id = brief_id_of(payload)
        item_id = content_id or brief_id
        if not item_id:
            raise ValidationError("track_content needs a content_id or a brief_id")

        fields = {
            "content_id": content_id,
            "brief_id": brief_id,
            "content_type": payload_value(payload, "content_type"),
            "status": payload.get("status") or "created",
        }
        record = await self.module("content_tracker").track(item_id, {k: v for k, v in fields.items() if v})

        event_payload = {k: v for k, v in fields.items() if v}
        await self.publish_event("content_tracked", event_payload, cause=command)
        return {"tracked": item_id, "status": record.get("status")}

    async def handle_categorise_content_command(self, command: Message) -> dict:
        content_id = content_id_of(command.payload)
        content = await self._load_content(content_id)
        categories = await self.module("content_categoriser").categorise(content)
        await self.storage.update("content", {"_id": content_id}, {"categories": categories})
        await self.publish_event(
            "content_categorised",
            {"content_id": content_id, "categories": categories},
            cause=command,
        )
        return {"content_id": content_id, "categories": categories}

    async def handle_update_workflow_status_command(self, command: Message) -> dict:
        content_id = content_id_of(command.payload)
        status = command.payload["status"]
        previous = await self._set_status(content_id, status)

        payload = {"content_id": content_id, "status": status, "previous_status": previous}
        if command.payload.get("notes"):
            payload["notes"] = command.payload["notes"]
        await self.publish_event("workflow_status_updated", payload, cause=command)

        if status == "ready_for_publishing" and self.config.get("auto_schedule", False):
            await self.publish_command(self.name, "schedule_content", {"content_id": content_id}, cause=command)
        return payload

    async def handle_schedule_content_command(self, command: Message) -> dict:
        content_id = content_id_of(command.payload)
        publish_at = command.payload.get("publish_at") or command.payload.get("publishAt")
        if publish_at is None:
            hours = self.config.get("default_schedule_delay_hours", DEFAULT_SCHEDULE_DELAY_HOURS)
            publish_at = (datetime.now(timezone.utc) + timedelta(hours=hours)).isoformat()
        else:
            try:
                datetime.fromisoformat(publish_at)
            except ValueError as e:
                raise ValidationError(f"Invalid publish_at {publish_at}") from e

        await self._set_status(content_id, "scheduled")
        await self.storage.store(
            "schedules",
            {"content_id": content_id, "publish_at": publish_at, "channel": command.payload.get("channel")},
        )
        await self.publish_event(
            "content_scheduled",
            {"content_id": content_id, "publish_at": publish_at},
            cause=command,
        )
        return {"content_id": content_id, "publish_at": publish_at}

    async def handle_check_content_freshness_command(self, command: Message) -> dict:
        max_age_days = command.payload.get("max_age_days") or command.payload.get("maxAgeDays") or 180
        items = await self.storage.find("content")
        stale = await self.module("freshness_checker").stale(items, max_age_days)
        for item in stale:
            await self.publish_event("content_needs_refresh", item, cause=command)
        return {"checked": len(items), "stale": stale}

    # --- Reactions ---------------------------------------------------------

    async def on_content_created(self, event: Message) -> None:
        content_id = content_id_of(event.payload)
        await self.publish_command(self.name, "categorise_content", {"content_id": content_id}, cause=event)
        await self.publish_command(
            self.name,
            "track_content",
            {
                "content_id": content_id,
                "brief_id": event.payload.get("brief_id"),
                "content_type": payload_value(event.payload, "content_type"),
                "status": "created",
            },
            cause=event,
        )

    async def on_content_approved(self, event: Message) -> None:
        await self.publish_command(
            self.name,
            "update_workflow_status",
            {"content_id": content_id_of(event.payload), "status": "ready_for_publishing"},
            cause=event,
        )

    async def on_brief_created(self, event: Message) -> None:
        await self.publish_command(
            self.name,
            "track_content",
            {"brief_id": brief_id_of(event.payload), "content_type": "brief", "status": "created"},
            cause=event,
        )
