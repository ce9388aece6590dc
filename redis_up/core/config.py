"""Configuration management with environment variable integration and validation."""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, Protocol

from .types import RedisUpConfig, TimeoutConfig, InfrastructureConfig, ImageConfig
from .errors import ConfigurationError

ENV_PREFIX = "REDIS_UP_"
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "redis-up"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"


def load_env_overrides(prefix: str = ENV_PREFIX) -> Dict[str, Any]:
    """Load environment variables with the given prefix and convert to appropriate types."""
    overrides: Dict[str, Any] = {}

    for key, value in os.environ.items():
        if key.startswith(prefix):
            field_name = key[len(prefix) :].lower()

            # Nested sections, e.g. REDIS_UP_TIMEOUTS__NODE_READY
            if "__" in field_name:
                parts = field_name.split("__")
                if len(parts) == 2:
                    section, sub_field = parts
                    overrides.setdefault(section, {})[sub_field] = _convert_env_value(value)
                continue

            overrides[field_name] = _convert_env_value(value)

    return overrides


def _convert_env_value(value: str) -> Any:
    """Convert string environment value to appropriate Python type."""
    if not value:
        return None

    # Try to convert to int first (before boolean check)
    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    if value.lower() in ("true", "yes", "on"):
        return True
    elif value.lower() in ("false", "no", "off"):
        return False

    return value


def _merge_section(config_data: Dict[str, Any], overrides: Dict[str, Any]) -> None:
    """Merge overrides into config data, descending one level into sections."""
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(config_data.get(key), dict):
            config_data[key] = {**config_data[key], **value}
        else:
            config_data[key] = value


class ConfigProvider(Protocol):
    """Protocol for configuration providers to enable dependency injection."""

    @property
    def timeouts(self) -> TimeoutConfig:
        """Timeout configuration."""

    @property
    def infrastructure(self) -> InfrastructureConfig:
        """Infrastructure configuration."""

    @property
    def images(self) -> ImageConfig:
        """Container image configuration."""

    @property
    def registry_path(self) -> Optional[Path]:
        """Path of the instance registry document."""


class ConfigManager:
    """Central configuration management."""

    def __init__(self) -> None:
        self._config: Optional[RedisUpConfig] = None

    def load_config(
        self, config_file: Optional[Path] = None, **overrides: Any
    ) -> RedisUpConfig:
        """Load configuration from file and environment with CLI overrides."""

        # Precedence, highest first:
        # 1. CLI overrides
        # 2. Environment variables
        # 3. Config file data
        # 4. Model defaults

        config_data: Dict[str, Any] = {}

        if config_file is None and DEFAULT_CONFIG_FILE.exists():
            config_file = DEFAULT_CONFIG_FILE

        if config_file is not None:
            if not config_file.exists():
                raise ConfigurationError(
                    f"Config file not found: {config_file}",
                    details={"config_file": str(config_file)},
                )
            config_data.update(self._load_from_file(config_file))

        _merge_section(config_data, load_env_overrides())
        _merge_section(config_data, {k: v for k, v in overrides.items() if v is not None})

        self._config = RedisUpConfig(**config_data)

        return self._config

    def _load_from_file(self, config_file: Path) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if config_file.suffix.lower() not in (".yml", ".yaml"):
            raise ConfigurationError(
                f"Unsupported config file format: {config_file.suffix}",
                details={"config_file": str(config_file)},
            )
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to load config file {config_file}: {e}",
                details={"config_file": str(config_file)},
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Config file {config_file} must contain a mapping",
                details={"config_file": str(config_file)},
            )
        return data


# Global config manager instance
_config_manager = ConfigManager()


def load_config(**kwargs: Any) -> RedisUpConfig:
    """Load global configuration."""
    return _config_manager.load_config(**kwargs)

