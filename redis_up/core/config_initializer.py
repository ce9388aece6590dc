"""Configuration initialization with side effects separated from validation.

Usage:
    # Step 1: Create and validate config (no side effects)
    config = RedisUpConfig(log_level="INFO")

    # Step 2: Initialize config (side effects: resolve paths, create dirs)
    config = initialize_config(config)

    # Step 3: Use initialized config
    app_context = ApplicationContext.create(config)
"""

from .types import RedisUpConfig
from .config import DEFAULT_CONFIG_DIR
from .errors import PathError
from .log import get_logger

logger = get_logger(__name__)

REGISTRY_FILE_NAME = "instances.json"


def initialize_config(config: RedisUpConfig) -> RedisUpConfig:
    """Initialize configuration with side effects.

    Resolves the config directory and registry path when they were left
    unset, then makes sure the directory holding the registry exists so the
    first atomic write has somewhere to land.

    Raises:
        PathError: If the registry directory cannot be created
    """
    logger.debug("Initializing configuration with side effects")

    if config.config_dir is None:
        config.config_dir = DEFAULT_CONFIG_DIR
        logger.debug("Using default config_dir: %s", config.config_dir)

    if config.registry_path is None:
        config.registry_path = config.config_dir / REGISTRY_FILE_NAME
        logger.debug("Using default registry_path: %s", config.registry_path)

    registry_dir = config.registry_path.parent
    try:
        registry_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise PathError(
            f"Failed to create registry directory {registry_dir}: {e}",
            details={"path": str(registry_dir)},
        ) from e

    logger.debug("Configuration initialization complete")
    return config
