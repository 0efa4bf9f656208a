"""Payload catalog for every agent's commands, events and queries."""

from typing import Any, Optional

from pydantic import Field

from .schemas import EmptyPayload, Payload, SchemaRegistry


class ContentRef(Payload):
    content_id: str = Field(alias="contentId", min_length=1)


class BriefRef(Payload):
    brief_id: str = Field(alias="briefId", min_length=1)


# --- Commands ------------------------------------------------------------

class CliRequest(Payload):
    text: str


class CreateBrief(Payload):
    type: str = Field(min_length=1)
    topic: str = Field(min_length=1)
    keywords: list[str] = Field(default_factory=list)
    target_audience: Optional[str] = Field(default=None, alias="targetAudience")


class UpdateBrief(BriefRef):
    updates: dict[str, Any]


class AnalyzeAudience(Payload):
    audience: str = Field(min_length=1)


class ResearchTrend(Payload):
    topic: str = Field(min_length=1)
    industry: Optional[str] = None


class StoreInsights(Payload):
    content_id: Optional[str] = Field(default=None, alias="contentId")
    insights: dict[str, Any] = Field(default_factory=dict)


class GenerateContent(Payload):
    brief_id: Optional[str] = Field(default=None, alias="briefId")
    content_type: Optional[str] = Field(default=None, alias="contentType")
    topic: Optional[str] = None
    keywords: list[str] = Field(default_factory=list)


class EditContent(ContentRef):
    instructions: Optional[str] = None
    issues: list[dict] = Field(default_factory=list)


class GenerateHeadlines(Payload):
    topic: str = Field(min_length=1)
    count: int = Field(default=5, ge=1, le=20)


class ProcessReview(ContentRef):
    status: str
    score: Optional[float] = None
    issues: list[dict] = Field(default_factory=list)


class ApplySeoRecommendations(ContentRef):
    recommendations: list[dict] = Field(default_factory=list)


class StoreBriefUpdate(BriefRef):
    updates: dict[str, Any] = Field(default_factory=dict)


class ReviewContent(ContentRef):
    pass


class UpdateGuidelines(Payload):
    guidelines: dict[str, Any]


class CheckTerminology(Payload):
    text: str


class GenerateSeoRecommendations(ContentRef):
    keywords: list[str] = Field(default_factory=list)


class AnalysePerformance(ContentRef):
    period_days: int = Field(default=30, alias="periodDays", ge=1)


class TrackMetrics(ContentRef):
    metrics: dict[str, float]


class StoreCategories(ContentRef):
    categories: list[str] = Field(default_factory=list)


class TrackContent(Payload):
    content_id: Optional[str] = Field(default=None, alias="contentId")
    brief_id: Optional[str] = Field(default=None, alias="briefId")
    content_type: Optional[str] = Field(default=None, alias="contentType")
    status: Optional[str] = None


class CategoriseContent(ContentRef):
    pass


class ScheduleContent(ContentRef):
    publish_at: Optional[str] = Field(default=None, alias="publishAt")
    channel: Optional[str] = None


class UpdateWorkflowStatus(ContentRef):
    status: str = Field(min_length=1)
    notes: Optional[str] = None


class CheckContentFreshness(Payload):
    max_age_days: int = Field(default=180, alias="maxAgeDays", ge=1)


# --- Events --------------------------------------------------------------

class BriefCreated(BriefRef):
    type: str
    topic: str


class ContentCreated(ContentRef):
    brief_id: Optional[str] = Field(default=None, alias="briefId")
    content_type: str = Field(alias="contentType")
    requires_review: bool = Field(default=True, alias="requiresReview")


class ContentEdited(ContentRef):
    requires_review: bool = Field(default=True, alias="requiresReview")


class ReviewCompleted(ContentRef):
    status: str
    score: float


class SeoRecommendations(ContentRef):
    recommendations: list[dict]


class ContentCategorised(ContentRef):
    categories: list[str]


class ContentScheduled(ContentRef):
    publish_at: str = Field(alias="publishAt")


class WorkflowStatusUpdated(ContentRef):
    status: str
    previous_status: Optional[str] = Field(default=None, alias="previousStatus")


class Restarted(Payload):
    agent: str
    manual: bool
    restarted_by: Optional[str] = None


COMMANDS: dict[str, type[Payload]] = {
    "cli_request": CliRequest,
    # content_strategy
    "create_brief": CreateBrief,
    "update_brief": UpdateBrief,
    "analyze_audience": AnalyzeAudience,
    "research_trend": ResearchTrend,
    "store_insights": StoreInsights,
    # content_creation
    "generate_content": GenerateContent,
    "edit_content": EditContent,
    "generate_headlines": GenerateHeadlines,
    "process_review": ProcessReview,
    "apply_seo_recommendations": ApplySeoRecommendations,
    "store_brief_update": StoreBriefUpdate,
    # brand_consistency
    "review_content": ReviewContent,
    "update_guidelines": UpdateGuidelines,
    "check_terminology": CheckTerminology,
    # optimisation
    "generate_seo_recommendations": GenerateSeoRecommendations,
    "analyse_performance": AnalysePerformance,
    "track_metrics": TrackMetrics,
    "store_categories": StoreCategories,
    # content_management
    "track_content": TrackContent,
    "categorise_content": CategoriseContent,
    "schedule_content": ScheduleContent,
    "update_workflow_status": UpdateWorkflowStatus,
    "check_content_freshness": CheckContentFreshness,
}

EVENTS: dict[str, type[Payload]] = {
    "brief_created": BriefCreated,
    "brief_updated": BriefRef,
    "audience_analyzed": EmptyPayload,
    "trend_researched": EmptyPayload,
    "content_created": ContentCreated,
    "content_edited": ContentEdited,
    "content_approved": ContentRef,
    "content_needs_revision": ContentRef,
    "seo_recommendations_applied": ContentRef,
    "review_completed": ReviewCompleted,
    "guidelines_updated": EmptyPayload,
    "seo_recommendations": SeoRecommendations,
    "analysis_completed": ContentRef,
    "metrics_tracked": ContentRef,
    "content_tracked": EmptyPayload,
    "content_categorised": ContentCategorised,
    "content_scheduled": ContentScheduled,
    "workflow_status_updated": WorkflowStatusUpdated,
    "content_needs_refresh": ContentRef,
    "restarted": Restarted,
}

QUERIES: dict[str, type[Payload]] = {
    "agent_status": EmptyPayload,
}


def default_registry() -> SchemaRegistry:
    """Build a registry holding the full message catalog."""
    registry = SchemaRegistry()
    for name, schema in COMMANDS.items():
        registry.register_command(name, schema)
    for name, schema in EVENTS.items():
        registry.register_event(name, schema)
    for name, schema in QUERIES.items():
        registry.register_query(name, schema)
    return registry
