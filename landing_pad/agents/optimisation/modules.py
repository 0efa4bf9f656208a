"""Optimisation modules: SEO, performance analysis and metrics."""

import re
from statistics import mean

from pydantic import Field

from ..modules import BaseModule


class SeoOptimizer(BaseModule):
    class Options(BaseModule.Options):
        min_words: int = Field(default=300, ge=0)
        title_range: tuple[int, int] = (30, 60)

    async def recommend(self, content: dict, keywords: list[str]) -> list[dict]:
        title = content.get("title", "")
        body = content.get("body", "")
        words = re.findall(r"\w+", body.lower())
        recommendations = []

        low, high = self.options.title_range
        if not low <= len(title) <= high:
            recommendations.append(
                {"type": "title_length", "priority": "medium", "message": f"Keep the title between {low} and {high} characters"}
            )
        if len(words) < self.options.min_words:
            recommendations.append(
                {"type": "content_length", "priority": "low", "message": f"Expand the body to at least {self.options.min_words} words"}
            )
        for keyword in keywords:
            if keyword.lower() not in words:
                recommendations.append(
                    {"type": "keyword", "priority": "high", "keyword": keyword, "message": f"Use the keyword '{keyword}' in the body"}
                )
            elif keyword.lower() not in title.lower():
                recommendations.append(
                    {"type": "keyword_title", "priority": "low", "keyword": keyword, "message": f"Consider '{keyword}' in the title"}
                )

        meta = await self.generate(
            f"Write a 150 character meta description for: {title}",
            fallback=body[:150].replace("\n", " "),
            max_tokens=100,
        )
        recommendations.append({"type": "meta_description", "priority": "medium", "value": meta})
        return recommendations


class PerformanceAnalyzer(BaseModule):
    async def analyse(self, samples: list[dict]) -> dict:
        if not samples:
            return {"samples": 0, "insights": ["No metrics recorded yet"]}

        names = sorted({name for sample in samples for name in sample.get("metrics", {})})
        averages = {
            name: mean(s["metrics"][name] for s in samples if name in s.get("metrics", {}))
            for name in names
        }
        insights = []
        if averages.get("bounce_rate", 0) > 0.6:
            insights.append("High bounce rate: review the introduction")
        if averages.get("conversion_rate", 1) < 0.01:
            insights.append("Low conversion: strengthen the call to action")
        return {"samples": len(samples), "averages": averages, "insights": insights or ["Performing as expected"]}


class MetricsTracker(BaseModule):
    async def record(self, content_id: str, metrics: dict[str, float], recorded_at: str) -> str:
        await self.storage.increment(f"metrics:{content_id}")
        return await self.storage.store(
            "metrics",
            {"content_id": content_id, "metrics": metrics, "recorded_at": recorded_at},
        )


MODULES = {
    "seo_optimizer": SeoOptimizer,
    "performance_analyzer": PerformanceAnalyzer,
    "metrics_tracker": MetricsTracker,
}
