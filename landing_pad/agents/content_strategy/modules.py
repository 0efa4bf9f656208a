"""Content strategy modules."""

from pydantic import Field

from ..modules import BaseModule


class TrendAnalyzer(BaseModule):
    class Options(BaseModule.Options):
        max_trends: int = Field(default=5, ge=1)

    async def research(self, topic: str, industry: str | None = None) -> list[dict]:
        scope = f"{topic} in {industry}" if industry else topic
        text = await self.generate(
            f"List current trends for {scope}, one per line.",
            fallback="\n".join(
                [
                    f"Growing search interest in {topic}",
                    f"Short-form video about {topic}",
                    f"Comparison guides for {topic}",
                ]
            ),
            max_tokens=400,
        )
        lines = [line.strip("-* ").strip() for line in text.splitlines() if line.strip()]
        return [{"trend": line, "rank": i + 1} for i, line in enumerate(lines[: self.options.max_trends])]


class AudienceInsights(BaseModule):
    async def analyse(self, audience: str) -> dict:
        summary = await self.generate(
            f"Summarise the content preferences of this audience: {audience}",
            fallback=f"{audience} prefer practical, example-driven content.",
            max_tokens=300,
        )
        return {
            "audience": audience,
            "summary": summary,
            "preferred_formats": ["blog", "email"],
        }


class BriefGenerator(BaseModule):
    class Options(BaseModule.Options):
        default_word_count: int = Field(default=1200, ge=100)

    async def build(self, type: str, topic: str, keywords: list[str], target_audience: str | None) -> dict:
        outline = await self.generate(
            f"Write a short outline for a {type} about {topic} targeting {target_audience or 'a general audience'}. "
            f"Keywords: {', '.join(keywords)}",
            fallback=f"Introduction to {topic}\nKey benefits\nPractical examples\nNext steps",
            max_tokens=500,
        )
        return {
            "type": type,
            "topic": topic,
            "keywords": keywords,
            "target_audience": target_audience,
            "outline": [line.strip() for line in outline.splitlines() if line.strip()],
            "word_count": self.options.default_word_count,
        }


MODULES = {
    "trend_analyzer": TrendAnalyzer,
    "audience_insights": AudienceInsights,
    "brief_generator": BriefGenerator,
}
