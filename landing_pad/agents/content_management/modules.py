"""Content management modules."""

from datetime import datetime, timedelta, timezone

from pydantic import Field

from ...errors import ConflictError, ValidationError
from ..modules import BaseModule

# status -> statuses reachable from it
WORKFLOW_TRANSITIONS = {
    "created": {"in_review", "needs_revision", "approved", "ready_for_publishing", "archived"},
    "in_review": {"needs_revision", "approved", "archived"},
    "needs_revision": {"in_review", "created", "archived"},
    "approved": {"ready_for_publishing", "needs_revision", "archived"},
    "ready_for_publishing": {"scheduled", "published", "needs_revision", "archived"},
    "scheduled": {"published", "ready_for_publishing", "archived"},
    "published": {"archived", "needs_revision"},
    "archived": set(),
}

CATEGORY_KEYWORDS = {
    "technology": ["ai", "software", "website", "automation", "cloud", "data"],
    "marketing": ["seo", "brand", "campaign", "audience", "content", "social"],
    "business": ["revenue", "growth", "strategy", "sales", "customers"],
    "education": ["guide", "how", "learn", "tutorial", "tips"],
}


class ContentCategoriser(BaseModule):
    class Options(BaseModule.Options):
        max_categories: int = Field(default=3, ge=1)
        default_category: str = "general"

    async def categorise(self, content: dict) -> list[str]:
        text = " ".join(
            [content.get("title", ""), content.get("body", ""), " ".join(content.get("keywords", []))]
        ).lower()
        words = set(text.replace(",", " ").replace(".", " ").split())
        scored = sorted(
            ((sum(1 for kw in keywords if kw in words), category) for category, keywords in CATEGORY_KEYWORDS.items()),
            reverse=True,
        )
        categories = [category for hits, category in scored if hits > 0][: self.options.max_categories]
        return categories or [self.options.default_category]


class ContentTracker(BaseModule):
    """Keeps one tracking record per content item or brief."""

    COLLECTION = "content_tracking"

    async def track(self, item_id: str, fields: dict) -> dict:
        now = datetime.now(timezone.utc).isoformat()
        updated = await self.storage.update(self.COLLECTION, {"_id": item_id}, {**fields, "updated_at": now})
        if updated is not None:
            return updated
        record = {"_id": item_id, "tracked_at": now, "updated_at": now, **fields}
        await self.storage.store(self.COLLECTION, record)
        return record

    async def get(self, item_id: str) -> dict | None:
        return await self.storage.find_one(self.COLLECTION, {"_id": item_id})


class WorkflowManager(BaseModule):
    def validate_transition(self, previous: str | None, status: str) -> None:
        if status not in WORKFLOW_TRANSITIONS:
            raise ValidationError(f"Unknown workflow status {status}", {"status": status})
        if previous is None or previous not in WORKFLOW_TRANSITIONS or previous == status:
            return
        if status not in WORKFLOW_TRANSITIONS[previous]:
            raise ConflictError(
                f"Cannot move content from {previous} to {status}",
                {"from": previous, "to": status},
            )


class FreshnessChecker(BaseModule):
    async def stale(self, items: list[dict], max_age_days: int) -> list[dict]:
        cutoff = datetime.now(timezone.utc) - timedelta(days=max_age_days)
        stale = []
        for item in items:
            created = item.get("created_at")
            if not created:
                continue
            created_at = datetime.fromisoformat(created)
            if created_at < cutoff:
                stale.append({"content_id": item["_id"], "age_days": (datetime.now(timezone.utc) - created_at).days})
        return stale


MODULES = {
    "content_categoriser": ContentCategoriser,
    "content_tracker": ContentTracker,
    "workflow_manager": WorkflowManager,
    "freshness_checker": FreshnessChecker,
}
