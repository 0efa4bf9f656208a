"""Agent modules and the per-agent module registry."""

from typing import Any, Callable, Iterator, Mapping

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from ..errors import AgentError, ModuleStateError, TransientError, UnsupportedError, ValidationError
from ..logging_config import get_logger
from ..models import ModuleStatus

logger = get_logger(__name__)


class BaseModule:
    """A unit of capability inside an agent.

    Subclasses declare their options as a nested pydantic ``Options``
    model; options are validated during ``initialize()``.
    """

    class Options(BaseModel):
        model_config = ConfigDict(extra="allow")

    def __init__(self, name: str, config: Mapping[str, Any] | None, storage, llm_provider=None):
        self.name = name
        self.config = dict(config or {})
        self.storage = storage
        self.llm = llm_provider
        self.options = None
        self.is_initialized = False
        self.is_running = False

    async def initialize(self) -> None:
        if self.is_initialized:
            return
        try:
            self.options = self.Options.model_validate(self.config.get("options") or {})
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid options for module {self.name}",
                {"errors": [err["msg"] for err in e.errors()]},
            ) from e
        await self.on_initialize()
        self.is_initialized = True

    async def start(self) -> None:
        if not self.is_initialized:
            raise ModuleStateError(f"Module {self.name} must be initialized before start")
        if self.is_running:
            logger.debug("Module %s already running", self.name)
            return
        await self.on_start()
        self.is_running = True

    async def stop(self) -> None:
        if not self.is_running:
            logger.debug("Module %s already stopped", self.name)
            return
        await self.on_stop()
        self.is_running = False

    async def on_initialize(self) -> None:
        pass

    async def on_start(self) -> None:
        pass

    async def on_stop(self) -> None:
        pass

    def status(self) -> ModuleStatus:
        return ModuleStatus(self.name, self.is_initialized, self.is_running)

    async def generate(self, prompt: str, fallback: str, **kwargs: Any) -> str:
        """Generate text with the LLM, or return ``fallback`` when none is configured."""
        if self.llm is None:
            return fallback
        try:
            return await self.llm.generate_text(prompt, **kwargs)
        except AgentError:
            raise
        except Exception as e:
            raise TransientError(f"LLM call failed in {self.name}: {e}") from e


ModuleFactory = Callable[[str, Mapping[str, Any] | None, Any, Any], BaseModule]


class ModuleRegistry:
    """Loads, starts and stops the modules an agent's config declares."""

    def __init__(self, agent_name: str, factories: Mapping[str, ModuleFactory], storage, llm_provider=None):
        self._agent_name = agent_name
        self._factories = dict(factories)
        self._storage = storage
        self._llm = llm_provider
        self._modules: dict[str, BaseModule] = {}

    async def load(self, modules_config: Mapping[str, Any] | None = None) -> list[str]:
        """Instantiate and initialize modules in declaration order.

        Without a ``modules`` section every known module loads with default
        options. Unknown or failing modules are skipped with a warning.
        """
        if modules_config is None:
            declared = {name: {} for name in self._factories}
        else:
            declared = dict(modules_config)

        for name, module_config in declared.items():
            module_config = module_config or {}
            if not module_config.get("enabled", True):
                logger.info("Module %s.%s disabled", self._agent_name, name)
                continue

            factory = self._factories.get(name)
            if factory is None:
                logger.warning("Unknown module %s for agent %s, skipping", name, self._agent_name)
                continue

            module = factory(name, module_config, self._storage, self._llm)
            try:
                await module.initialize()
            except Exception:
                logger.warning(
                    "Module %s failed to initialize for agent %s, skipping",
                    name,
                    self._agent_name,
                    exc_info=True,
                )
                continue

            self._modules[name] = module
            logger.info("Module %s.%s initialized", self._agent_name, name)

        return list(self._modules)

    def get(self, name: str) -> BaseModule | None:
        return self._modules.get(name)

    def require(self, name: str) -> BaseModule:
        module = self._modules.get(name)
        if module is None:
            raise UnsupportedError(
                f"Module {name} is not available in agent {self._agent_name}",
                {"module": name, "agent": self._agent_name},
            )
        return module

    async def start_all(self) -> None:
        for module in self._modules.values():
            try:
                await module.start()
            except Exception:
                logger.warning("Module %s.%s failed to start", self._agent_name, module.name, exc_info=True)

    async def stop_all(self) -> None:
        for module in reversed(list(self._modules.values())):
            try:
                await module.stop()
            except Exception:
                logger.error("Module %s.%s failed to stop", self._agent_name, module.name, exc_info=True)

    def statuses(self) -> list[ModuleStatus]:
        return [module.status() for module in self._modules.values()]

    @property
    def names(self) -> list[str]:
        return list(self._modules)

    def __contains__(self, name: str) -> bool:
        return name in self._modules

    def __iter__(self) -> Iterator[BaseModule]:
        return iter(self._modules.values())

    def __len__(self) -> int:
        return len(self._modules)
