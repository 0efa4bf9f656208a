"""Content management agent."""

from .agent import NAME, ContentManagementAgent

__all__ = ["NAME", "ContentManagementAgent"]
