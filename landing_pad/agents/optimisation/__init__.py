"""Optimisation agent."""

from .agent import NAME, OptimisationAgent

__all__ = ["NAME", "OptimisationAgent"]
