"""
Configuration.

Centralized settings for connectors, projections and logging, loaded from a
YAML or JSON file with environment variable overrides.

Usage:
    from polystore.config import get_config, load_config

    config = load_config("config/polystore.yaml")
    url = config.relational.resolve_database_url()
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import SchemaError

logger = logging.getLogger(__name__)


def _resolve_env(value: str | None) -> str | None:
    """Resolve ``${VAR}`` / ``$VAR`` references, keeping the raw value when unset."""
    if not value:
        return value
    if value.startswith("${") and value.endswith("}"):
        return os.environ.get(value[2:-1], value)
    if value.startswith("$"):
        return os.environ.get(value[1:], value)
    return value


@dataclass
class RelationalSettings:
    """
    Relational store settings.

    Attributes:
        database_url: SQLAlchemy async URL (``postgresql+asyncpg://``, ``sqlite+aiosqlite://``)
        pool_size: Connection pool size
        echo_sql: Whether to echo SQL statements
    """
    database_url: str = "sqlite+aiosqlite:///polystore.db"
    pool_size: int = 10
    echo_sql: bool = False

    def resolve_database_url(self) -> str:
        return _resolve_env(self.database_url) or self.database_url


@dataclass
class KeyValueSettings:
    """
    Key-value store settings.

    Attributes:
        backend: ``redis`` or ``memory``
        redis_url: Redis URL (for redis backend)
        key_prefix: Prefix prepended to every namespace key
        list_page_size: Default page size for in-process listing
    """
    backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "polystore"
    list_page_size: int = 250

    def resolve_redis_url(self) -> str:
        return _resolve_env(self.redis_url) or self.redis_url


@dataclass
class EventLogSettings:
    """
    Event log settings.

    Attributes:
        backend: ``kurrentdb`` or ``memory``
        uri: KurrentDB connection string
        context: Bounded context used in stream names (overrides the schema)
        version: Model version used in stream names (overrides the schema)
    """
    backend: str = "memory"
    uri: str = "kurrentdb://localhost:2113?tls=false"
    context: str | None = None
    version: str | None = None

    def resolve_uri(self) -> str:
        return _resolve_env(self.uri) or self.uri


@dataclass
class ProjectionSettings:
    """
    Projection subsystem settings.

    Attributes:
        checkpoint_backend: ``redis`` or ``memory``
        checkpoint_prefix: Key prefix of stored checkpoints
        max_retries: Attempts per event before the runner gives up
        base_delay: First retry delay in seconds, doubled per attempt
        max_delay: Upper bound of a single retry delay
        default_page_size: Page size when list options carry none
    """
    checkpoint_backend: str = "memory"
    checkpoint_prefix: str = "checkpoint:"
    max_retries: int = 3
    base_delay: float = 0.1
    max_delay: float = 5.0
    default_page_size: int = 20


@dataclass
class LoggingSettings:
    level: str = "INFO"
    file: str | None = None
    structured_console: bool = False


@dataclass
class PolystoreConfig:
    """
    Complete polystore configuration.

    Attributes:
        schema_path: Schema file or directory
        relational: Relational store settings
        key_value: Key-value store settings
        event_log: Event log settings
        projection: Projection settings
        logging: Logging settings
    """
    schema_path: str | None = None
    relational: RelationalSettings = field(default_factory=RelationalSettings)
    key_value: KeyValueSettings = field(default_factory=KeyValueSettings)
    event_log: EventLogSettings = field(default_factory=EventLogSettings)
    projection: ProjectionSettings = field(default_factory=ProjectionSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PolystoreConfig":
        """Create from dictionary."""
        sections = {
            "relational": RelationalSettings,
            "key_value": KeyValueSettings,
            "event_log": EventLogSettings,
            "projection": ProjectionSettings,
            "logging": LoggingSettings,
        }
        kwargs: dict[str, Any] = {"schema_path": data.get("schema_path")}
        for name, settings_cls in sections.items():
            section = data.get(name) or {}
            try:
                kwargs[name] = settings_cls(**section)
            except TypeError as e:
                raise SchemaError(f"Invalid '{name}' configuration: {e}") from e
        return cls(**kwargs)


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "POLYSTORE_",
) -> PolystoreConfig:
    """
    Load configuration from file and environment.

    Args:
        config_path: Path to config file (YAML or JSON)
        env_prefix: Environment variable prefix

    Returns:
        Loaded configuration
    """
    config_data: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path, "r", encoding="utf-8") as f:
                if path.suffix in (".yaml", ".yml"):
                    config_data = yaml.safe_load(f) or {}
                elif path.suffix == ".json":
                    config_data = json.load(f)
                else:
                    logger.warning(f"Unknown config format: {path.suffix}")
        else:
            logger.warning(f"Config file not found: {path}, using defaults")

    _apply_env_overrides(config_data, env_prefix)

    return PolystoreConfig.from_dict(config_data)


_ENV_CASTS = {
    ("projection", "max_retries"): int,
    ("projection", "base_delay"): float,
    ("relational", "pool_size"): int,
}


def _apply_env_overrides(config: dict[str, Any], prefix: str) -> None:
    """Apply environment variable overrides to config."""
    env_mappings = {
        f"{prefix}SCHEMA_PATH": (None, "schema_path"),
        f"{prefix}DATABASE_URL": ("relational", "database_url"),
        f"{prefix}POOL_SIZE": ("relational", "pool_size"),
        f"{prefix}REDIS_URL": ("key_value", "redis_url"),
        f"{prefix}KEY_VALUE_BACKEND": ("key_value", "backend"),
        f"{prefix}EVENT_LOG_URI": ("event_log", "uri"),
        f"{prefix}EVENT_LOG_BACKEND": ("event_log", "backend"),
        f"{prefix}CHECKPOINT_BACKEND": ("projection", "checkpoint_backend"),
        f"{prefix}PROJECTION_MAX_RETRIES": ("projection", "max_retries"),
        f"{prefix}PROJECTION_BASE_DELAY": ("projection", "base_delay"),
        f"{prefix}LOG_LEVEL": ("logging", "level"),
    }

    for env_var, (section, key) in env_mappings.items():
        value = os.environ.get(env_var)
        if not value:
            continue
        cast = _ENV_CASTS.get((section, key))
        typed: Any = cast(value) if cast else value
        if section is None:
            config[key] = typed
            continue
        config.setdefault(section, {})
        config[section][key] = typed


_global_config: PolystoreConfig | None = None


def get_config() -> PolystoreConfig:
    """Get the global configuration."""
    global _global_config
    if _global_config is None:
        config_path = os.environ.get("POLYSTORE_CONFIG", "config/polystore.yaml")
        _global_config = load_config(config_path)
    return _global_config


def set_config(config: PolystoreConfig | None) -> None:
    """Set the global configuration."""
    global _global_config
    _global_config = config
