"""Project paths and the layered configuration loader.

Configuration is assembled from three layers, later layers winning:

1. file defaults: ``config/<file>.json`` (falling back to
   ``config/default/<file>.json``)
2. environment overrides: ``config/environments/<env>.json``
3. environment variables: ``CONFIG_<SECTION>_<KEY>=<value>``
"""

import copy
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Union

from .errors import ConfigurationError

PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
DATA_DIR = PROJECT_ROOT / "data"
LOGS_DIR = PROJECT_ROOT / "logs"
PID_DIR = DATA_DIR / "pids"
DEFAULT_DB_PATH = DATA_DIR / "landing_pad.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)

# logging_config imports this module, so use the stdlib accessor directly.
logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

ENVIRONMENTS = ("development", "test", "staging", "production")

# section name -> file name
CONFIG_FILES = {
    "agents": "agents.json",
    "messaging": "messaging.json",
    "storage": "storage.json",
    "external_services": "external-services.json",
}

REQUIRED_SECTIONS = ("agents", "messaging", "storage")

KNOWN_AGENTS = (
    "content_strategy",
    "content_creation",
    "brand_consistency",
    "optimisation",
    "content_management",
)

ENV_PREFIX = "CONFIG_"

MESSAGING_DEFAULTS: dict[str, Any] = {
    "topic": "agent_events",
    "default_concurrency": 8,
    "default_timeout_seconds": 30,
    "command_timeouts": {},
    "graceful_shutdown_seconds": 20,
    "tracker_max_workflows": 1000,
    "retry": {
        "attempts": 3,
        "initial_delay": 0.5,
        "factor": 2.0,
        "max_delay": 30.0,
        "overrides": {},
    },
    "recovery": {
        "failure_threshold": 3,
        "window_seconds": 300,
        "hold_seconds": 30,
    },
    "url": None,
}


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    value = str(env_value)
    if value.startswith("sqlite:///"):
        value = value[len("sqlite:///"):]

    candidate = Path(value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def deep_merge(base: dict, override: Mapping) -> dict:
    """Return a copy of base with override merged in recursively."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def parse_env_value(value: str) -> Any:
    """Parse booleans and numbers out of an environment variable string."""
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


@dataclass
class AppConfig:
    """Fully layered configuration."""

    environment: str = "development"
    agents: dict[str, dict] = field(default_factory=dict)
    messaging: dict[str, Any] = field(default_factory=lambda: copy.deepcopy(MESSAGING_DEFAULTS))
    storage: dict[str, Any] = field(default_factory=dict)
    external_services: dict[str, Any] = field(default_factory=dict)

    def agent(self, name: str) -> dict:
        """Get one agent's config slice; empty (with a warning) when absent."""
        section = self.agents.get(name)
        if section is None:
            logger.warning("No configuration for agent %s, running with defaults", name)
            return {}
        return section

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_sections(cls, environment: str = "development", **sections: dict) -> "AppConfig":
        """Build a config directly from section dicts (messaging defaults applied)."""
        return cls(
            environment=environment,
            agents=sections.get("agents", {}),
            messaging=deep_merge(MESSAGING_DEFAULTS, sections.get("messaging", {})),
            storage=sections.get("storage", {}),
            external_services=sections.get("external_services", {}),
        )


class ConfigLoader:
    """Loads and validates configuration files for the agent system."""

    def __init__(
        self,
        config_dir: PathLike | None = None,
        environment: str | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        self._environ = os.environ if environ is None else environ
        self._config_dir = Path(config_dir) if config_dir else CONFIG_DIR
        self._environment = environment or self._environ.get("APP_ENV", "development")

        if self._environment not in ENVIRONMENTS:
            raise ConfigurationError(
                f"Unknown environment '{self._environment}', expected one of {', '.join(ENVIRONMENTS)}"
            )

    @property
    def environment(self) -> str:
        return self._environment

    def load(self) -> AppConfig:
        """Load all layers and validate the result."""
        sections: dict[str, dict] = {}
        for section, filename in CONFIG_FILES.items():
            data = self._load_file(filename)
            if data is not None:
                sections[section] = data

        sections = self._apply_environment_file(sections)
        sections = self._apply_env_vars(sections)
        self._validate(sections)

        config = AppConfig.from_sections(self._environment, **sections)
        if config.is_production:
            self._verify_credentials(config)

        logger.info(
            "Configuration loaded for %s",
            self._environment,
            extra={"context": {"sections": sorted(sections)}},
        )
        return config

    def _read_json(self, path: Path) -> dict:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in configuration file {path.name}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Error loading configuration file {path.name}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {path.name} must hold a JSON object")
        return data

    def _load_file(self, filename: str) -> dict | None:
        primary = self._config_dir / filename
        if primary.exists():
            return self._read_json(primary)

        fallback = self._config_dir / "default" / filename
        if fallback.exists():
            return self._read_json(fallback)

        return None

    def _apply_environment_file(self, sections: dict[str, dict]) -> dict[str, dict]:
        env_path = self._config_dir / "environments" / f"{self._environment}.json"
        if not env_path.exists():
            return sections

        overrides = self._read_json(env_path)
        for section, values in overrides.items():
            if section not in CONFIG_FILES:
                logger.warning("Ignoring unknown section %s in %s", section, env_path.name)
                continue
            sections[section] = deep_merge(sections.get(section, {}), values)
        return sections

    def _apply_env_vars(self, sections: dict[str, dict]) -> dict[str, dict]:
        # Longest section first so EXTERNAL_SERVICES is not read as EXTERNAL
        section_names = sorted(CONFIG_FILES, key=len, reverse=True)

        for key, raw in self._environ.items():
            if not key.startswith(ENV_PREFIX):
                continue
            rest = key[len(ENV_PREFIX):]

            for section in section_names:
                prefix = section.upper() + "_"
                if rest.startswith(prefix) and len(rest) > len(prefix):
                    path = rest[len(prefix):].lower().split("__")
                    target = sections.setdefault(section, {})
                    for part in path[:-1]:
                        child = target.get(part)
                        if not isinstance(child, dict):
                            child = target[part] = {}
                        target = child
                    target[path[-1]] = parse_env_value(raw)
                    break

        return sections

    def _validate(self, sections: dict[str, dict]) -> None:
        for section in REQUIRED_SECTIONS:
            if section not in sections:
                raise ConfigurationError(f"Missing required configuration section: {section}")

        for agent in KNOWN_AGENTS:
            if agent not in sections["agents"]:
                logger.warning("Missing configuration for agent %s, it will run with reduced functionality", agent)

    def _verify_credentials(self, config: AppConfig) -> None:
        missing = []
        if not (config.messaging.get("url") or self._environ.get("BROKER_URL")):
            missing.append("broker URL (messaging.url or BROKER_URL)")
        if not (config.storage.get("uri") or self._environ.get("DATABASE_URL")):
            missing.append("storage URI (storage.uri or DATABASE_URL)")
        if not self._environ.get("JWT_SECRET"):
            missing.append("JWT_SECRET")
        if not (self._environ.get("ANTHROPIC_API_KEY") or self._environ.get("OPENAI_API_KEY")):
            missing.append("an LLM provider key (ANTHROPIC_API_KEY or OPENAI_API_KEY)")

        if missing:
            raise ConfigurationError("Missing production credentials: " + ", ".join(missing))


def load_config(environment: str | None = None, config_dir: PathLike | None = None) -> AppConfig:
    """Load configuration with the default loader."""
    return ConfigLoader(config_dir=config_dir, environment=environment).load()
