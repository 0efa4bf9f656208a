"""Content creation agent."""

from .agent import NAME, ContentCreationAgent

__all__ = ["NAME", "ContentCreationAgent"]
