"""Health monitoring module."""

from .health import HealthMonitor, HealthReport

__all__ = ["HealthMonitor", "HealthReport"]
