"""Cross-topology commands: list, logs, cleanup, deploy, examples."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from ...core.enums import DeploymentType
from ...core.errors import DeploymentCancelledError, RedisUpError
from ...core.log import get_logger
from ...instances.deployment_document import load_document, write_examples
from ...utils.output import write_stdout
from ..render import OUTPUT_FORMATS, render_record, render_views
from ..session import err_console, manager_session, report_error

console = Console()
logger = get_logger(__name__)


def _parse_type(value: Optional[str]) -> Optional[DeploymentType]:
    if value is None:
        return None
    try:
        return DeploymentType(value.lower())
    except ValueError:
        choices = ", ".join(t.value for t in DeploymentType)
        err_console.print(f"[red]Unknown type '{value}'; choose from {choices}[/red]")
        raise typer.Exit(2)


def list_instances(
    ctx: typer.Context,
    deployment_type: Optional[str] = typer.Option(None, "--type", "-t", help="Only this type"),
    output_format: str = typer.Option("table", "--format", "-f", help="Output format: table, json"),
) -> None:
    """List registered instances with their live health."""
    if output_format not in OUTPUT_FORMATS:
        err_console.print(f"[red]Unknown format: {output_format}[/red]")
        raise typer.Exit(2)
    selected = _parse_type(deployment_type)
    with manager_session(ctx) as manager:
        views = manager.list_instances(selected)
    render_views(console, views, output_format)


def logs(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Instance name (newest if omitted)"),
    node: Optional[str] = typer.Option(
        None, "--node", help="Container name or suffix such as 'node-2'"
    ),
    follow: bool = typer.Option(False, "--follow", "-f", help="Stream new output"),
    tail: Optional[int] = typer.Option(None, "--tail", help="Only the last N lines"),
    timestamps: bool = typer.Option(False, "--timestamps", help="Prefix lines with timestamps"),
) -> None:
    """Show the logs of one node of an instance."""
    with manager_session(ctx) as manager:
        for chunk in manager.logs(
            name, node, follow=follow, tail=tail, timestamps=timestamps
        ):
            write_stdout(chunk)


def cleanup(
    ctx: typer.Context,
    deployment_type: Optional[str] = typer.Option(None, "--type", "-t", help="Only this type"),
    force: bool = typer.Option(False, "--force", help="Do not ask for confirmation"),
    volumes: bool = typer.Option(False, "--volumes", help="Also remove data volumes"),
) -> None:
    """Remove every instance (or every instance of one type)."""
    selected = _parse_type(deployment_type)
    with manager_session(ctx) as manager:
        candidates = manager.registry.list(selected)
        if not candidates:
            console.print("[dim]Nothing to clean up[/dim]")
            return
        if not force:
            names = ", ".join(record.name for record in candidates)
            if not typer.confirm(f"Remove {len(candidates)} instance(s): {names}?"):
                console.print("[yellow]Aborted[/yellow]")
                raise typer.Exit(1)
        result = manager.cleanup(selected, remove_volumes=volumes)

    for removed in result.removed:
        console.print(f"[green]Removed {removed}[/green]")
    for failed, errors in result.failed.items():
        err_console.print(f"[red]Could not fully remove {failed}[/red]")
        for error in errors:
            err_console.print(f"  [yellow]- {error}[/yellow]")
    if result.failed:
        raise typer.Exit(1)


def deploy(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="YAML deployment document"),
) -> None:
    """Start every deployment listed in a YAML document."""
    with manager_session(ctx) as manager:
        document = load_document(file)
        console.print(
            f"Deploying {len(document.deployments)} deployment(s) from {file}"
        )
        failed = []
        for request in document.deployments:
            console.print(f"[bold]{request.name}[/bold] ({request.deployment_type.value})")
            try:
                record = manager.start(request)
            except DeploymentCancelledError:
                raise
            except RedisUpError as e:
                report_error(e)
                logger.info("Deployment %s failed: %s", request.name, e.message)
                failed.append(request.name)
                continue
            render_record(console, record)

    if failed:
        err_console.print(f"[red]Failed deployments: {', '.join(failed)}[/red]")
        raise typer.Exit(1)
    console.print("[green]All deployments complete[/green]")


def examples(
    directory: Path = typer.Argument(
        Path("redis-up-examples"), help="Directory to write the examples into"
    ),
) -> None:
    """Write example deployment documents."""
    try:
        written = write_examples(directory)
    except RedisUpError as e:
        report_error(e)
        raise typer.Exit(1) from e
    for path in written:
        console.print(f"  [green]Created[/green] {path}")
    console.print(f"Example documents written to {directory}")
