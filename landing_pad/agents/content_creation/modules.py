"""Content creation modules: one generator per content type plus headlines and editing."""

import re

from pydantic import Field

from ..modules import BaseModule


class ContentGenerator(BaseModule):
    """Base for generators. Subclasses set ``content_type`` and the template."""

    content_type = "generic"

    class Options(BaseModule.Options):
        tone: str = "friendly"
        max_tokens: int = Field(default=1500, ge=100)

    def template(self, topic: str, keywords: list[str], outline: list[str]) -> str:
        sections = "\n\n".join(f"{heading}\n{topic} explained through {heading.lower()}." for heading in outline)
        return sections or f"{topic} explained."

    async def generate_content(self, topic: str, keywords: list[str], outline: list[str] | None = None) -> dict:
        outline = outline or []
        body = await self.generate(
            f"Write a {self.options.tone} {self.content_type.replace('_', ' ')} about {topic}. "
            f"Cover: {'; '.join(outline) or 'the essentials'}. Use the keywords: {', '.join(keywords)}.",
            fallback=self.template(topic, keywords, outline),
            max_tokens=self.options.max_tokens,
        )
        title = topic.strip()
        return {"title": title[:1].upper() + title[1:], "body": body}


class BlogGenerator(ContentGenerator):
    content_type = "blog"

    def template(self, topic: str, keywords: list[str], outline: list[str]) -> str:
        intro = f"This article looks at {topic} and what it means for your team."
        if keywords:
            intro += f" We focus on {', '.join(keywords)}."
        return intro + "\n\n" + super().template(topic, keywords, outline)


class SocialMediaGenerator(ContentGenerator):
    content_type = "social_media"

    class Options(ContentGenerator.Options):
        max_length: int = Field(default=280, ge=20)

    def template(self, topic: str, keywords: list[str], outline: list[str]) -> str:
        tags = " ".join(f"#{re.sub(r'[^a-z0-9]', '', k.lower())}" for k in keywords)
        return f"New on our blog: {topic}. {tags}".strip()[: self.options.max_length]


class EmailGenerator(ContentGenerator):
    content_type = "email"

    def template(self, topic: str, keywords: list[str], outline: list[str]) -> str:
        return f"Hello,\n\nWe put together a short guide on {topic}.\n\nRead it today and let us know what you think."


class WebsiteCopyGenerator(ContentGenerator):
    content_type = "website_copy"

    def template(self, topic: str, keywords: list[str], outline: list[str]) -> str:
        return f"{topic}\n\nEverything you need to get started, in one place."


class HeadlineGenerator(BaseModule):
    async def headlines(self, topic: str, count: int) -> list[str]:
        patterns = [
            "{topic}: a practical guide",
            "How {topic} changes the way you work",
            "{n} things to know about {topic}",
            "Getting started with {topic}",
            "Why teams are adopting {topic}",
        ]
        fallback = "\n".join(p.format(topic=topic, n=count) for p in patterns)
        text = await self.generate(f"Write {count} headlines about {topic}, one per line.", fallback=fallback)
        lines = [line.strip("-* ").strip() for line in text.splitlines() if line.strip()]
        return lines[:count]


class ContentEditor(BaseModule):
    """Applies review issues to a piece of content."""

    async def revise(self, body: str, issues: list[dict], instructions: str | None = None) -> str:
        revised = body
        for issue in issues:
            term = issue.get("term")
            if not term:
                continue
            replacement = issue.get("suggestion") or ""
            revised = re.sub(re.escape(term), replacement, revised, flags=re.IGNORECASE)
        revised = re.sub(r"  +", " ", revised)

        if instructions and self.llm is not None:
            revised = await self.generate(
                f"Revise the following text. Instructions: {instructions}\n\n{revised}",
                fallback=revised,
            )
        return revised


MODULES = {
    "blog_generator": BlogGenerator,
    "social_media_generator": SocialMediaGenerator,
    "email_generator": EmailGenerator,
    "website_copy_generator": WebsiteCopyGenerator,
    "headline_generator": HeadlineGenerator,
    "content_editor": ContentEditor,
}
