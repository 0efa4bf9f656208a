"""Content strategy agent."""

from .agent import NAME, ContentStrategyAgent

__all__ = ["NAME", "ContentStrategyAgent"]
