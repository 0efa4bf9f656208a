"""Agents: the agent core and the five content agents."""

from .base import BaseAgent, IAgent
from .brand_consistency import BrandConsistencyAgent
from .content_creation import ContentCreationAgent
from .content_management import ContentManagementAgent
from .content_strategy import ContentStrategyAgent
from .modules import BaseModule, ModuleRegistry
from .optimisation import OptimisationAgent

# Startup-time registry of agent constructors keyed by name
AGENT_TYPES: dict[str, type[BaseAgent]] = {
    "content_strategy": ContentStrategyAgent,
    "content_creation": ContentCreationAgent,
    "brand_consistency": BrandConsistencyAgent,
    "optimisation": OptimisationAgent,
    "content_management": ContentManagementAgent,
}


def create_agent(name: str, config, message_bus, storage, llm_provider=None) -> BaseAgent:
    """Instantiate a known agent by name; KeyError for unknown names."""
    return AGENT_TYPES[name](name, config, message_bus, storage, llm_provider)


__all__ = [
    "AGENT_TYPES",
    "create_agent",
    "BaseAgent",
    "IAgent",
    "BaseModule",
    "ModuleRegistry",
    "ContentStrategyAgent",
    "ContentCreationAgent",
    "BrandConsistencyAgent",
    "OptimisationAgent",
    "ContentManagementAgent",
]
