"""Per-invocation wiring shared by CLI commands."""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from pydantic import BaseModel, ConfigDict, Field
from rich.console import Console

from ..core.config import load_config
from ..core.config_initializer import initialize_config
from ..core.context import ApplicationContext
from ..core.errors import DeploymentCancelledError, RedisUpError
from ..core.log import configure_logging, get_logger
from ..instances.manager import InstanceManager

console = Console()
err_console = Console(stderr=True)
logger = get_logger(__name__)


class GlobalCliOptions(BaseModel):
    """Global CLI options that can be used across all commands."""

    verbose: int = Field(0, description="Increase verbosity level")
    config_file: Optional[Path] = Field(None, description="Configuration file path")
    log_level: str = Field(
        "WARNING", description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    model_config = ConfigDict(use_enum_values=True)


def cli_options(ctx: typer.Context) -> GlobalCliOptions:
    obj = ctx.ensure_object(dict)
    return obj.get("cli_options") or GlobalCliOptions()


def build_app_context(ctx: typer.Context) -> ApplicationContext:
    """Application context for this invocation.

    A context placed in ``ctx.obj["app_context"]`` beforehand is used as is.
    """
    obj = ctx.ensure_object(dict)
    if obj.get("app_context") is not None:
        return obj["app_context"]

    options = cli_options(ctx)
    config = initialize_config(
        load_config(
            config_file=options.config_file,
            log_level=options.log_level,
            verbose=options.verbose,
        )
    )
    if config.log_file:
        configure_logging(
            level=options.log_level,
            log_file=config.log_file,
            enable_json=True,
            enable_console=True,
        )
    app_context = ApplicationContext.create(config)
    obj["app_context"] = app_context
    return app_context


def report_error(error: RedisUpError) -> None:
    """Print a domain error with its most useful details."""
    err_console.print(f"[red]Error: {error.message}[/red]")
    details = error.details or {}
    for key in ("rollback_errors", "errors"):
        for line in details.get(key) or []:
            err_console.print(f"  [yellow]- {line}[/yellow]")
    leftovers = details.get("leftover_containers") or []
    if leftovers or details.get("leftover_network"):
        err_console.print(
            "[yellow]Some resources could not be removed; "
            "run 'redis-up cleanup' to retry.[/yellow]"
        )
    if details.get("hint"):
        err_console.print(f"[dim]Hint: {details['hint']}[/dim]")
    logger.debug("Error details: %s", details)


@contextmanager
def manager_session(ctx: typer.Context) -> Iterator[InstanceManager]:
    """Yield an InstanceManager; domain errors exit with status 1.

    A cancelled deployment exits with 130 like any interrupted command.
    """
    try:
        with InstanceManager(build_app_context(ctx)) as manager:
            yield manager
    except DeploymentCancelledError as e:
        report_error(e)
        raise typer.Exit(130) from e
    except RedisUpError as e:
        report_error(e)
        raise typer.Exit(1) from e
