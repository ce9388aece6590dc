"""Log record formatting: JSON lines for files, rich styling for the console."""

import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text
from rich.theme import Theme

# Attributes every LogRecord carries; anything else arrived through ``extra``
_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime"}

# Extras lifted to the top level of a JSON line
_TOP_LEVEL_FIELDS = ("instance", "container", "event_type")

_REDACTED = "***"

# event_type -> console style
EVENT_STYLES: Dict[str, str] = {
    "event": "bright_green",
    "node": "bright_cyan",
    "wiring": "bright_magenta",
    "rollback": "bright_yellow",
}


def _redact(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: _REDACTED if value and "password" in key.lower() else value
        for key, value in fields.items()
    }


class LogContext:
    """Per-thread stack of context frames; inner frames override outer ones."""

    def __init__(self) -> None:
        self._local = threading.local()

    def _frames(self) -> List[Dict[str, Any]]:
        frames = getattr(self._local, "frames", None)
        if frames is None:
            frames = self._local.frames = [{}]
        return frames

    def set_context(self, **kwargs: Any) -> None:
        self._frames()[-1].update(kwargs)

    def get_context(self) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        for frame in self._frames():
            merged.update(frame)
        return merged

    def clear_context(self) -> None:
        self._local.frames = [{}]

    @contextmanager
    def context(self, **kwargs: Any) -> Iterator[None]:
        frames = self._frames()
        frames.append(dict(kwargs))
        try:
            yield
        finally:
            frames.pop()


class StructuredFormatter(logging.Formatter):
    """One JSON object per line.

    ``instance``, ``container`` and ``event_type`` sit at the top level,
    taken from the record extras or else from the logging context, so a log
    file can be filtered per instance. Remaining extras go under ``fields``
    and remaining context under ``context``. Values whose key names a
    password are masked. Exceptions carrying ``details`` (every RedisUpError)
    keep them.
    """

    def __init__(
        self, context_getter: Optional[Callable[[], Dict[str, Any]]] = None
    ) -> None:
        super().__init__()
        self._context_getter = context_getter

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES
        }
        context = self._context_getter() if self._context_getter else {}
        for key in _TOP_LEVEL_FIELDS:
            value = extras.pop(key, None)
            inherited = context.pop(key, None)
            if value is None:
                value = inherited
            if value is not None:
                entry[key] = value
        if extras:
            entry["fields"] = _redact(extras)
        if context:
            entry["context"] = _redact(context)

        if record.exc_info and record.exc_info[0] is not None:
            error = record.exc_info[1]
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(error),
                "traceback": self.formatException(record.exc_info),
            }
            details = getattr(error, "details", None)
            if details:
                entry["exception"]["details"] = details

        return json.dumps(entry, default=str)


class RedisUpRichHandler(RichHandler):
    """Console handler styled by event type.

    Records tied to a container, other than node events which already name
    it, are prefixed with the container name.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        theme = Theme(
            {
                "logging.level.debug": "dim cyan",
                "logging.level.info": "dim blue",
                "logging.level.warning": "yellow",
                "logging.level.error": "red",
                "logging.level.critical": "bold red",
                **{f"redis_up.{name}": style for name, style in EVENT_STYLES.items()},
            }
        )
        super().__init__(*args, console=Console(theme=theme, stderr=True), **kwargs)

    def render_message(self, record: logging.LogRecord, message: str) -> Text:
        event_type = getattr(record, "event_type", None)
        container = getattr(record, "container", None)
        text = Text()
        if container and event_type != "node":
            text.append(f"[{container}] ", style="dim")
        style = f"redis_up.{event_type}" if event_type in EVENT_STYLES else ""
        text.append(message, style=style)
        return text
