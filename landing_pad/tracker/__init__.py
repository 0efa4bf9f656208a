"""Workflow tracker module."""

from .tracker import CANONICAL_STEPS, ITracker, WorkflowTracker

__all__ = ["CANONICAL_STEPS", "ITracker", "WorkflowTracker"]
