"""Recovery module."""

from .service import RecoveryService, RestartBreaker

__all__ = ["RecoveryService", "RestartBreaker"]
