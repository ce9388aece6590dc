"""Structured logging with JSON file output and rich terminal formatting."""

import logging
from typing import Any, Dict, Optional, Union, Protocol
from pathlib import Path

from .logger_factory import IsolatedLogManager

ROOT_NAMESPACE = "redis_up"


class Logger(Protocol):
    """Protocol for logger instances to enable dependency injection."""

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log debug message."""

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log info message."""

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log warning message."""

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log error message."""

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log exception with traceback."""


class LogManager:
    """Central logging configuration and management."""

    def __init__(self) -> None:
        self._manager = IsolatedLogManager(ROOT_NAMESPACE)

    def configure(
        self,
        level: Union[int, str] = logging.WARNING,
        log_file: Optional[Path] = None,
        enable_json: bool = True,
        enable_console: bool = True,
        console_level: Optional[Union[int, str]] = None,
    ) -> None:
        """Configure logging system.

        Loggers handed out before configuration pick up the handlers too,
        so module-level ``logger = get_logger(__name__)`` works as expected.
        """
        self._manager.configure(
            level=level,
            log_file=log_file,
            enable_json=enable_json,
            enable_console=enable_console,
            console_level=console_level,
        )

    def get_logger(self, name: str) -> logging.Logger:
        """Get a logger instance."""
        if name == ROOT_NAMESPACE:
            name = ""
        elif name.startswith(ROOT_NAMESPACE + "."):
            name = name[len(ROOT_NAMESPACE) + 1 :]
        return self._manager.create_logger(name)

    def context(self, **kwargs: Any) -> Any:
        return self._manager.context(**kwargs)

    def get_context(self) -> Dict[str, Any]:
        return self._manager.get_context()

    def reset_configuration(self) -> None:
        """Reset configuration to allow reconfiguration in tests."""
        self._manager.shutdown()
        self._manager = IsolatedLogManager(ROOT_NAMESPACE)


# Global log manager instance
_log_manager = LogManager()


def configure_logging(**kwargs: Any) -> None:
    """Configure the global logging system."""
    _log_manager.configure(**kwargs)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return _log_manager.get_logger(name)


def reset_logging() -> None:
    """Reset logging configuration to allow reconfiguration."""
    _log_manager.reset_configuration()


def log_event(
    logger: Logger, event_type: str, message: str, **kwargs: Any
) -> None:
    """Log a structured event with context."""
    logger.info(message, extra={"event_type": event_type, **kwargs})


def log_node_event(
    logger: Logger,
    event: str,
    container: Optional[str] = None,
    **kwargs: Any,
) -> None:
    """Log a node-related event (created, started, ready, removed)."""
    extra: Dict[str, Any] = {"event_type": "node", "node_event": event}
    if container is not None:
        extra["container"] = container
    extra.update(kwargs)
    logger.info("Node %s %s", container, event, extra=extra)


def get_log_context() -> Dict[str, Any]:
    """Get current logging context."""
    return _log_manager.get_context()


def log_context(**kwargs: Any) -> Any:
    """Context manager for temporary logging context."""
    return _log_manager.context(**kwargs)
