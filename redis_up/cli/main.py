"""Main CLI entry point for redis-up."""

import sys
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from ..core.errors import RedisUpError
from ..core.log import configure_logging, get_logger
from .commands.manage import cleanup, deploy, examples, list_instances, logs
from .commands.topologies import (
    basic_app,
    cluster_app,
    enterprise_app,
    sentinel_app,
    stack_app,
)
from .session import GlobalCliOptions, console, err_console, report_error

app = typer.Typer(
    name="redis-up",
    help="Provision local Redis topologies in containers",
    no_args_is_help=True,
    rich_markup_mode="markdown",
)
app.add_typer(basic_app, name="basic", help="Single Redis node")
app.add_typer(stack_app, name="stack", help="Redis Stack node")
app.add_typer(cluster_app, name="cluster", help="Redis Cluster")
app.add_typer(sentinel_app, name="sentinel", help="Sentinel-monitored replication")
app.add_typer(enterprise_app, name="enterprise", help="Redis Enterprise cluster")
app.command("list")(list_instances)
app.command()(logs)
app.command()(cleanup)
app.command()(deploy)
app.command()(examples)
logger = get_logger(__name__)


@app.callback()
def main(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0, "--verbose", "-v", count=True, help="Increase verbosity level"
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR) - explicit level",
    ),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file path"
    ),
) -> None:
    """redis-up: local Redis topologies in one command."""
    if verbose > 0 and log_level is not None:
        err_console.print("[red]Error: Cannot specify both --verbose and --log-level[/red]")
        raise typer.Exit(1)

    if log_level is None:
        resolved_log_level = (
            "DEBUG" if verbose >= 2 else "INFO" if verbose == 1 else "WARNING"
        )
    else:
        resolved_log_level = log_level.upper()

    cli_options = GlobalCliOptions(
        verbose=verbose,
        config_file=config_file,
        log_level=resolved_log_level,
    )

    ctx.ensure_object(dict)
    ctx.obj["cli_options"] = cli_options

    configure_logging(
        level=cli_options.log_level, enable_console=True, enable_json=False
    )
    logger.debug("CLI options: %s", cli_options.model_dump())


@app.command()
def version() -> None:
    """Show version information."""
    from importlib.metadata import PackageNotFoundError
    from importlib.metadata import version as package_version

    from .. import __version__

    table = Table(title="redis-up Version Information")
    table.add_column("Component", style="cyan")
    table.add_column("Version", style="green")
    table.add_row("redis-up", __version__)
    for dependency in ("docker", "pydantic", "typer"):
        try:
            table.add_row(dependency, package_version(dependency))
        except PackageNotFoundError:
            table.add_row(dependency, "[red]Not installed[/red]")
    console.print(table)


@app.command()
def config(ctx: typer.Context) -> None:
    """Show current configuration."""
    from ..core.config import load_config
    from ..core.config_initializer import initialize_config

    options = ctx.obj["cli_options"]
    try:
        current_config = initialize_config(
            load_config(config_file=options.config_file, log_level=options.log_level)
        )
    except RedisUpError as e:
        report_error(e)
        raise typer.Exit(1) from e

    table = Table(title="redis-up Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Registry", str(current_config.registry_path))
    table.add_row("Log Level", current_config.log_level)
    if current_config.log_file:
        table.add_row("Log File", str(current_config.log_file))
    timeouts = current_config.timeouts
    table.add_row("Node Ready Timeout", f"{timeouts.node_ready}s")
    table.add_row("Probe Interval", f"{timeouts.probe_interval}s")
    table.add_row("Wiring Command Timeout", f"{timeouts.wiring_command}s")
    table.add_row("Cluster Converge Timeout", f"{timeouts.cluster_converge}s")
    table.add_row("Container Stop Timeout", f"{timeouts.container_stop}s")
    infrastructure = current_config.infrastructure
    table.add_row("Orchestrator Max Workers", str(infrastructure.orchestrator_max_workers))
    table.add_row("Max Port Probes", str(infrastructure.max_port_probes))
    table.add_row("Probe Host Ports", str(infrastructure.probe_host_ports))
    images = current_config.images
    table.add_row("Redis Image", images.redis)
    table.add_row("Stack Image", images.stack)
    table.add_row("Enterprise Image", images.enterprise)
    table.add_row("Insight Image", images.insight)
    console.print(table)


def cli_main() -> None:
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except RedisUpError as e:
        report_error(e)
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
