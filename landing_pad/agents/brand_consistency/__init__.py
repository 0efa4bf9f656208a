"""Brand consistency agent."""

from .agent import NAME, BrandConsistencyAgent

__all__ = ["NAME", "BrandConsistencyAgent"]
