"""Tests for the five content agents."""

from datetime import datetime, timedelta, timezone

import pytest

from landing_pad.agents import AGENT_TYPES, ContentStrategyAgent, create_agent
from landing_pad.agents.base import brief_id_of, content_id_of, payload_value

CLEAN_BODY = "This article looks at AI and what it means for your marketing team, with practical examples."


async def store_content(storage, content_id="C", **fields):
    doc = {
        "_id": content_id,
        "title": "AI for marketing teams",
        "body": CLEAN_BODY,
        "content_type": "blog",
        "keywords": ["ai"],
        "status": "draft",
        "revisions": 0,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    doc.update(fields)
    await storage.store("content", doc)
    return doc


async def send(bus, agent, type, payload, **meta):
    message_id = await bus.publish_command(agent, type, payload, meta or None)
    await bus.drain()
    return message_id


class TestAgentFactory:
    def test_known_agents(self):
        assert sorted(AGENT_TYPES) == [
            "brand_consistency",
            "content_creation",
            "content_management",
            "content_strategy",
            "optimisation",
        ]

    def test_create_agent(self, message_bus, storage):
        agent = create_agent("content_strategy", {}, message_bus, storage)
        assert isinstance(agent, ContentStrategyAgent)
        assert agent.name == "content_strategy"

    def test_unknown_agent(self, message_bus, storage):
        with pytest.raises(KeyError):
            create_agent("weather", {}, message_bus, storage)


class TestContentStrategy:
    @pytest.mark.asyncio
    async def test_create_brief(self, make_agent, message_bus, storage, events):
        await make_agent("content_strategy")
        message_id = await send(
            message_bus, "content_strategy", "create_brief", {"type": "blog", "topic": "AI", "keywords": ["ai"]}, user_id="u1"
        )

        [created] = events.of_type("content_strategy.brief_created")
        brief_id = created.payload["brief_id"]
        assert created.payload == {"brief_id": brief_id, "type": "blog", "topic": "AI", "keywords": ["ai"]}
        assert created.correlation_id == message_id

        brief = await storage.find_one("briefs", {"_id": brief_id})
        assert brief["outline"] == ["Introduction to AI", "Key benefits", "Practical examples", "Next steps"]
        assert brief["created_by"] == "u1"
        assert brief["status"] == "created"

    @pytest.mark.asyncio
    async def test_create_brief_uses_llm(self, make_agent, message_bus, storage, events, stub_llm):
        await make_agent("content_strategy", llm=stub_llm)
        await send(message_bus, "content_strategy", "create_brief", {"type": "blog", "topic": "AI"})

        brief_id = events.of_type("content_strategy.brief_created")[0].payload["brief_id"]
        assert (await storage.find_one("briefs", {"_id": brief_id}))["outline"] == ["Generated text"]

    @pytest.mark.asyncio
    async def test_update_brief(self, make_agent, message_bus, storage, events):
        await make_agent("content_strategy")
        await storage.store("briefs", {"_id": "B", "topic": "AI"})
        await send(message_bus, "content_strategy", "update_brief", {"brief_id": "B", "updates": {"topic": "ML"}})

        assert (await storage.find_one("briefs", {"_id": "B"}))["topic"] == "ML"
        assert events.of_type("content_strategy.brief_updated")[0].payload["updates"] == {"topic": "ML"}

    @pytest.mark.asyncio
    async def test_update_missing_brief(self, make_agent, message_bus, events):
        await make_agent("content_strategy")
        await send(message_bus, "content_strategy", "update_brief", {"brief_id": "missing", "updates": {}})

        [failure] = events.of_type("content_strategy.update_brief.failure")
        assert failure.payload["error"]["code"] == "not_found"

    @pytest.mark.asyncio
    async def test_research_trend(self, make_agent, message_bus, storage, events):
        await make_agent("content_strategy")
        await send(message_bus, "content_strategy", "research_trend", {"topic": "AI", "industry": "retail"})

        [researched] = events.of_type("content_strategy.trend_researched")
        assert researched.payload["topic"] == "AI"
        assert [t["rank"] for t in researched.payload["trends"]] == [1, 2, 3]
        assert len(await storage.find("trend_research")) == 1

    @pytest.mark.asyncio
    async def test_analyze_audience(self, make_agent, message_bus, events):
        await make_agent("content_strategy")
        await send(message_bus, "content_strategy", "analyze_audience", {"audience": "CTOs"})

        [analysed] = events.of_type("content_strategy.audience_analyzed")
        assert analysed.payload["audience"] == "CTOs"

    @pytest.mark.asyncio
    async def test_stores_performance_insights(self, make_agent, message_bus, storage):
        await make_agent("content_strategy")
        await message_bus.publish_event(
            "optimisation", "analysis_completed", {"content_id": "C", "samples": 2, "insights": ["Performing as expected"]}
        )
        await message_bus.drain()

        [stored] = await storage.find("strategy_insights")
        assert stored["content_id"] == "C"
        assert stored["insights"] == {"insights": ["Performing as expected"], "samples": 2}


class TestContentCreation:
    @pytest.mark.asyncio
    async def test_generate_from_topic(self, make_agent, message_bus, storage, events):
        await make_agent("content_creation")
        await send(message_bus, "content_creation", "generate_content", {"content_type": "email", "topic": "AI"})

        [created] = events.of_type("content_creation.content_created")
        assert created.payload["content_type"] == "email"
        assert created.payload["requires_review"] is True

        content = await storage.find_one("content", {"_id": created.payload["content_id"]})
        assert content["status"] == "draft"
        assert content["revisions"] == 0
        assert content["title"] == "AI"
        assert "guide on AI" in content["body"]

    @pytest.mark.asyncio
    async def test_generate_from_brief(self, make_agent, message_bus, storage, events):
        await make_agent("content_creation")
        await storage.store("briefs", {"_id": "B", "type": "blog", "topic": "AI", "keywords": ["ai"], "outline": ["Basics"]})
        await send(message_bus, "content_creation", "generate_content", {"brief_id": "B"})

        [created] = events.of_type("content_creation.content_created")
        assert created.payload["brief_id"] == "B"
        content = await storage.find_one("content", {"_id": created.payload["content_id"]})
        assert content["keywords"] == ["ai"]
        assert "Basics" in content["body"]

    @pytest.mark.asyncio
    async def test_generate_missing_brief(self, make_agent, message_bus, events):
        await make_agent("content_creation")
        await send(message_bus, "content_creation", "generate_content", {"brief_id": "missing"})
        assert events.of_type("content_creation.generate_content.failure")[0].payload["error"]["code"] == "not_found"

    @pytest.mark.asyncio
    async def test_generate_needs_type_and_topic(self, make_agent, message_bus, events):
        await make_agent("content_creation")
        await send(message_bus, "content_creation", "generate_content", {"topic": "AI"})
        assert events.of_type("content_creation.generate_content.failure")[0].payload["error"]["code"] == "validation"

    @pytest.mark.asyncio
    async def test_brief_created_triggers_generation(self, make_agent, message_bus, storage, events):
        await make_agent("content_creation")
        await storage.store("briefs", {"_id": "B", "type": "blog", "topic": "AI"})
        await storage.store("briefs", {"_id": "E", "type": "email", "topic": "AI"})
        await message_bus.publish_event("content_strategy", "brief_created", {"brief_id": "B", "type": "blog", "topic": "AI"})
        await message_bus.publish_event("content_strategy", "brief_created", {"brief_id": "E", "type": "email", "topic": "AI"})
        await message_bus.drain()

        created = events.of_type("content_creation.content_created")
        assert [e.payload["brief_id"] for e in created] == ["B"]

    @pytest.mark.asyncio
    async def test_approved_review(self, make_agent, message_bus, storage, events):
        await make_agent("content_creation")
        await store_content(storage)
        await message_bus.publish_event(
            "brand_consistency", "review_completed", {"content_id": "C", "status": "approved_with_notes", "score": 8.5}
        )
        await message_bus.drain()

        assert len(events.of_type("content_creation.content_approved")) == 1
        assert (await storage.find_one("content", {"_id": "C"}))["status"] == "approved"

    @pytest.mark.asyncio
    async def test_review_needing_revision(self, make_agent, message_bus, storage, events):
        await make_agent("content_creation")
        await store_content(storage)
        await send(message_bus, "content_creation", "process_review", {"content_id": "C", "status": "needs_revision"})

        assert len(events.of_type("content_creation.content_needs_revision")) == 1
        assert (await storage.find_one("content", {"_id": "C"}))["status"] == "needs_revision"

    @pytest.mark.asyncio
    async def test_auto_revision(self, make_agent, message_bus, storage, events):
        await make_agent("content_creation", {"auto_revise_content": True, "auto_generate_types": []})
        await store_content(storage, body="Our cheap plans help with your web site.")
        issues = [{"type": "terminology", "severity": "medium", "term": "web site", "suggestion": "website"}]
        await send(message_bus, "content_creation", "process_review", {"content_id": "C", "status": "needs_revision", "issues": issues})

        assert len(events.of_type("content_creation.content_edited")) == 1
        content = await storage.find_one("content", {"_id": "C"})
        assert content["body"] == "Our cheap plans help with your website."
        assert content["revisions"] == 1
        assert content["status"] == "revised"

    @pytest.mark.asyncio
    async def test_revision_limit(self, make_agent, message_bus, storage, events):
        await make_agent("content_creation", {"auto_revise_content": True, "max_revisions": 1})
        await store_content(storage, revisions=1)
        await send(message_bus, "content_creation", "process_review", {"content_id": "C", "status": "needs_revision"})

        assert events.of_type("content_creation.content_edited") == []
        assert len(events.of_type("content_creation.content_needs_revision")) == 1

    @pytest.mark.asyncio
    async def test_generate_headlines(self, make_agent, message_bus, events):
        await make_agent("content_creation")
        await send(message_bus, "content_creation", "generate_headlines", {"topic": "AI", "count": 3})

        [success] = events.of_type("content_creation.generate_headlines.success")
        assert success.payload["headlines"] == [
            "AI: a practical guide",
            "How AI changes the way you work",
            "3 things to know about AI",
        ]

    @pytest.mark.asyncio
    async def test_applies_seo_recommendations(self, make_agent, message_bus, storage, events):
        await make_agent("content_creation")
        await store_content(storage)
        recommendations = [{"type": "keyword", "priority": "high", "keyword": "ml"}]
        await message_bus.publish_event(
            "optimisation", "seo_recommendations", {"content_id": "C", "recommendations": recommendations}
        )
        await message_bus.drain()

        assert len(events.of_type("content_creation.seo_recommendations_applied")) == 1
        assert (await storage.find_one("content", {"_id": "C"}))["seo_recommendations"] == recommendations

    @pytest.mark.asyncio
    async def test_stores_brief_update(self, make_agent, message_bus, storage):
        await make_agent("content_creation")
        await message_bus.publish_event("content_strategy", "brief_updated", {"brief_id": "B", "updates": {"topic": "ML"}})
        await message_bus.drain()

        [suggestion] = await storage.find("brief_update_suggestions")
        assert suggestion["updates"] == {"topic": "ML"}


class TestBrandConsistency:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body, status, score",
        [
            (CLEAN_BODY, "approved", 10.0),
            (CLEAN_BODY + " Send us an e-mail.", "approved_with_notes", 8.5),
            (CLEAN_BODY + " Our cheap plans.", "needs_revision", 7.0),
            ("Too short.", "approved_with_notes", 8.5),
        ],
    )
    async def test_review_status(self, make_agent, message_bus, storage, events, body, status, score):
        await make_agent("brand_consistency")
        await store_content(storage, body=body)
        await send(message_bus, "brand_consistency", "review_content", {"content_id": "C"})

        [review] = events.of_type("brand_consistency.review_completed")
        assert review.payload["status"] == status
        assert review.payload["score"] == score
        assert len(await storage.find("reviews", {"content_id": "C"})) == 1

    @pytest.mark.asyncio
    async def test_low_score_needs_revision(self, make_agent, message_bus, storage, events):
        await make_agent("brand_consistency", {"approval_threshold": 9})
        await store_content(storage, body=CLEAN_BODY + " Log-in to your web site.")
        await send(message_bus, "brand_consistency", "review_content", {"content_id": "C"})

        review = events.of_type("brand_consistency.review_completed")[0].payload
        assert review["score"] == 7.0
        assert review["status"] == "needs_revision"

    @pytest.mark.asyncio
    async def test_review_missing_content(self, make_agent, message_bus, events):
        await make_agent("brand_consistency")
        await send(message_bus, "brand_consistency", "review_content", {"content_id": "missing"})
        assert events.of_type("brand_consistency.review_content.failure")[0].payload["error"]["code"] == "not_found"

    @pytest.mark.asyncio
    async def test_guidelines_override_defaults(self, make_agent, message_bus, events):
        await make_agent("brand_consistency")
        await send(message_bus, "brand_consistency", "update_guidelines", {"guidelines": {"terminology": {"AI": "artificial intelligence"}}})
        await send(message_bus, "brand_consistency", "check_terminology", {"text": "AI on your web site"})

        [checked] = events.of_type("brand_consistency.check_terminology.success")
        assert [issue["term"] for issue in checked.payload["issues"]] == ["AI"]
        assert events.of_type("brand_consistency.guidelines_updated")[0].payload == {"keys": ["terminology"]}

    @pytest.mark.asyncio
    async def test_content_created_triggers_review(self, make_agent, message_bus, storage, events):
        await make_agent("brand_consistency")
        await store_content(storage)
        await message_bus.publish_event(
            "content_creation", "content_created", {"content_id": "C", "content_type": "blog"}
        )
        await message_bus.publish_event(
            "content_creation", "content_created", {"content_id": "D", "content_type": "blog", "requires_review": False}
        )
        await message_bus.drain()

        [review] = events.of_type("brand_consistency.review_completed")
        assert review.payload["content_id"] == "C"
        [success] = events.of_type("brand_consistency.review_content.success")
        # The review command is correlated with the triggering event
        assert review.correlation_id == success.correlation_id


class TestOptimisation:
    @pytest.mark.asyncio
    async def test_seo_recommendations(self, make_agent, message_bus, storage, events):
        await make_agent("optimisation")
        await store_content(storage, keywords=["examples", "ml"])
        await send(message_bus, "optimisation", "generate_seo_recommendations", {"content_id": "C"})

        [event] = events.of_type("optimisation.seo_recommendations")
        types = [r["type"] for r in event.payload["recommendations"]]
        assert types == ["title_length", "content_length", "keyword_title", "keyword", "meta_description"]
        assert len(await storage.find("seo_recommendations")) == 1

    @pytest.mark.asyncio
    async def test_content_created_triggers_seo_for_blogs(self, make_agent, message_bus, storage, events):
        await make_agent("optimisation")
        await store_content(storage)
        await message_bus.publish_event("content_creation", "content_created", {"content_id": "C", "content_type": "blog"})
        await message_bus.publish_event("content_creation", "content_created", {"content_id": "C", "content_type": "email"})
        await message_bus.drain()

        assert len(events.of_type("optimisation.seo_recommendations")) == 1

    @pytest.mark.asyncio
    async def test_metrics_and_analysis(self, make_agent, message_bus, storage, events):
        await make_agent("optimisation")
        for bounce in (0.7, 0.9):
            await send(message_bus, "optimisation", "track_metrics", {"content_id": "C", "metrics": {"bounce_rate": bounce, "conversion_rate": 0.005}})
        await send(message_bus, "optimisation", "analyse_performance", {"content_id": "C"})

        assert len(events.of_type("optimisation.metrics_tracked")) == 2
        [report] = events.of_type("optimisation.analysis_completed")
        assert report.payload["samples"] == 2
        assert report.payload["averages"]["bounce_rate"] == pytest.approx(0.8)
        assert report.payload["insights"] == [
            "High bounce rate: review the introduction",
            "Low conversion: strengthen the call to action",
        ]
        assert await storage.increment("metrics:C", by=0) == 2

    @pytest.mark.asyncio
    async def test_analysis_without_metrics(self, make_agent, message_bus, events):
        await make_agent("optimisation")
        await send(message_bus, "optimisation", "analyse_performance", {"content_id": "C"})
        assert events.of_type("optimisation.analysis_completed")[0].payload["samples"] == 0

    @pytest.mark.asyncio
    async def test_stores_categories(self, make_agent, message_bus, storage):
        await make_agent("optimisation")
        for categories in (["technology"], ["technology", "marketing"]):
            await message_bus.publish_event("content_management", "content_categorised", {"content_id": "C", "categories": categories})
            await message_bus.drain()

        [stored] = await storage.find("content_categories")
        assert stored["categories"] == ["technology", "marketing"]


class TestContentManagement:
    @pytest.mark.asyncio
    async def test_content_created_is_tracked_and_categorised(self, make_agent, message_bus, storage, events):
        await make_agent("content_management")
        await store_content(storage, title="SEO guide", body="Learn how your brand reaches its audience with content.")
        await message_bus.publish_event(
            "content_creation", "content_created", {"content_id": "C", "brief_id": "B", "content_type": "blog"}
        )
        await message_bus.drain()

        [categorised] = events.of_type("content_management.content_categorised")
        assert categorised.payload["categories"][0] == "marketing"
        tracked = events.of_type("content_management.content_tracked")[0].payload
        assert tracked == {"content_id": "C", "brief_id": "B", "content_type": "blog", "status": "created"}
        assert (await storage.find_one("content_tracking", {"_id": "C"}))["status"] == "created"

    @pytest.mark.asyncio
    async def test_brief_created_is_tracked(self, make_agent, message_bus, storage):
        await make_agent("content_management")
        await message_bus.publish_event("content_strategy", "brief_created", {"brief_id": "B", "type": "blog", "topic": "AI"})
        await message_bus.drain()

        record = await storage.find_one("content_tracking", {"_id": "B"})
        assert record["content_type"] == "brief"

    @pytest.mark.asyncio
    async def test_track_content_needs_an_id(self, make_agent, message_bus, events):
        await make_agent("content_management")
        await send(message_bus, "content_management", "track_content", {"status": "created"})
        assert events.of_type("content_management.track_content.failure")[0].payload["error"]["code"] == "validation"

    @pytest.mark.asyncio
    async def test_workflow_transitions(self, make_agent, message_bus, events):
        await make_agent("content_management")
        await send(message_bus, "content_management", "track_content", {"content_id": "C"})
        await send(message_bus, "content_management", "update_workflow_status", {"content_id": "C", "status": "in_review"})
        await send(message_bus, "content_management", "update_workflow_status", {"content_id": "C", "status": "published"})

        [updated] = events.of_type("content_management.workflow_status_updated")
        assert updated.payload == {"content_id": "C", "status": "in_review", "previous_status": "created"}
        [failure] = events.of_type("content_management.update_workflow_status.failure")
        assert failure.payload["error"]["code"] == "conflict"
        assert failure.payload["error"]["details"] == {"from": "in_review", "to": "published"}

    @pytest.mark.asyncio
    async def test_unknown_workflow_status(self, make_agent, message_bus, events):
        await make_agent("content_management")
        await send(message_bus, "content_management", "update_workflow_status", {"content_id": "C", "status": "lost"})
        assert events.of_type("content_management.update_workflow_status.failure")[0].payload["error"]["code"] == "validation"

    @pytest.mark.asyncio
    async def test_approved_content_auto_scheduled(self, make_agent, message_bus, storage, events):
        await make_agent("content_management", {"auto_schedule": True, "default_schedule_delay_hours": 2})
        await send(message_bus, "content_management", "track_content", {"content_id": "C"})
        await message_bus.publish_event("content_creation", "content_approved", {"content_id": "C"})
        await message_bus.drain()

        statuses = [e.payload["status"] for e in events.of_type("content_management.workflow_status_updated")]
        assert statuses == ["ready_for_publishing"]
        [scheduled] = events.of_type("content_management.content_scheduled")
        publish_at = datetime.fromisoformat(scheduled.payload["publish_at"])
        assert publish_at > datetime.now(timezone.utc) + timedelta(hours=1)
        assert (await storage.find_one("content_tracking", {"_id": "C"}))["status"] == "scheduled"
        assert len(await storage.find("schedules")) == 1

    @pytest.mark.asyncio
    async def test_schedule_with_invalid_time(self, make_agent, message_bus, events):
        await make_agent("content_management")
        await send(message_bus, "content_management", "schedule_content", {"content_id": "C", "publish_at": "next tuesday"})
        assert events.of_type("content_management.schedule_content.failure")[0].payload["error"]["code"] == "validation"

    @pytest.mark.asyncio
    async def test_freshness_check(self, make_agent, message_bus, storage, events):
        await make_agent("content_management")
        old = (datetime.now(timezone.utc) - timedelta(days=400)).isoformat()
        await store_content(storage, "OLD", created_at=old)
        await store_content(storage, "NEW")
        await send(message_bus, "content_management", "check_content_freshness", {"max_age_days": 365})

        [stale] = events.of_type("content_management.content_needs_refresh")
        assert stale.payload["content_id"] == "OLD"
        assert stale.payload["age_days"] >= 399


class TestCamelCaseEvents:
    """Peer events may carry the camelCase field names their schemas accept."""

    @pytest.mark.asyncio
    async def test_review_triggered(self, make_agent, message_bus, storage, events):
        await make_agent("brand_consistency")
        await store_content(storage)
        await message_bus.publish_event("content_creation", "content_created", {"contentId": "C", "contentType": "blog"})
        await message_bus.publish_event(
            "content_creation", "content_created", {"contentId": "D", "contentType": "blog", "requiresReview": False}
        )
        await message_bus.drain()

        [review] = events.of_type("brand_consistency.review_completed")
        assert review.payload["content_id"] == "C"

    @pytest.mark.asyncio
    async def test_seo_triggered(self, make_agent, message_bus, storage, events):
        await make_agent("optimisation")
        await store_content(storage)
        await message_bus.publish_event("content_creation", "content_created", {"contentId": "C", "contentType": "blog"})
        await message_bus.drain()

        [event] = events.of_type("optimisation.seo_recommendations")
        assert event.payload["content_id"] == "C"

    @pytest.mark.asyncio
    async def test_content_tracked(self, make_agent, message_bus, storage, events):
        await make_agent("content_management")
        await store_content(storage)
        await message_bus.publish_event(
            "content_creation", "content_created", {"contentId": "C", "briefId": "B", "contentType": "blog"}
        )
        await message_bus.drain()

        tracked = events.of_type("content_management.content_tracked")[0].payload
        assert tracked["content_id"] == "C"
        assert tracked["brief_id"] == "B"
        assert tracked["content_type"] == "blog"

    @pytest.mark.asyncio
    async def test_content_generated_for_brief(self, make_agent, message_bus, storage, events):
        await make_agent("content_creation")
        await storage.store("briefs", {"_id": "B", "type": "blog", "topic": "AI"})
        await message_bus.publish_event("content_strategy", "brief_created", {"briefId": "B", "type": "blog", "topic": "AI"})
        await message_bus.drain()

        [created] = events.of_type("content_creation.content_created")
        assert created.payload["brief_id"] == "B"


class TestPayloadValue:
    def test_snake_case_preferred(self):
        assert payload_value({"content_id": "a", "contentId": "b"}, "content_id") == "a"

    def test_camel_case_alias(self):
        assert payload_value({"requiresReview": False}, "requires_review", True) is False
        assert content_id_of({"contentId": "C"}) == "C"
        assert brief_id_of({"briefId": "B"}) == "B"

    def test_default(self):
        assert payload_value({}, "requires_review", True) is True
        assert content_id_of({}) is None
