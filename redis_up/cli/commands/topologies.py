"""Per-topology CLI groups: basic, stack, cluster, sentinel, enterprise."""

from typing import Any, List, Optional, Type

import typer
from pydantic import ValidationError
from rich.console import Console

from ...core.enums import DeploymentType
from ...core.log import get_logger
from ...instances.deployment_request import (
    DEFAULT_ENTERPRISE_DB_PORT,
    DEFAULT_INSIGHT_PORT,
    DEFAULT_SENTINEL_PORT,
    BasicRequest,
    ClusterRequest,
    EnterpriseRequest,
    SentinelRequest,
    StackRequest,
    _RequestBase,
)
from ..render import OUTPUT_FORMATS, render_record, render_view
from ..session import err_console, manager_session

console = Console()
logger = get_logger(__name__)

basic_app = typer.Typer(help="Single standalone Redis node", no_args_is_help=True)
stack_app = typer.Typer(help="Redis with the Stack modules", no_args_is_help=True)
cluster_app = typer.Typer(help="Redis Cluster (sharded)", no_args_is_help=True)
sentinel_app = typer.Typer(help="Masters, replicas and sentinels", no_args_is_help=True)
enterprise_app = typer.Typer(help="Redis Enterprise cluster", no_args_is_help=True)

NAME_OPTION = typer.Option(None, "--name", "-n", help="Instance name (generated if omitted)")
PASSWORD_OPTION = typer.Option(None, "--password", "-p", help="Password (generated if omitted)")
PERSIST_OPTION = typer.Option(False, "--persist", help="Keep data in named volumes")
MEMORY_OPTION = typer.Option(None, "--memory", "-m", help="Memory limit per container, e.g. 512m")
INSIGHT_OPTION = typer.Option(False, "--with-insight", help="Also start Redis Insight")
INSIGHT_PORT_OPTION = typer.Option(DEFAULT_INSIGHT_PORT, "--insight-port", help="Host port for Redis Insight")
FORMAT_OPTION = typer.Option("table", "--format", "-f", help="Output format: table, json")


def _check_format(output_format: str) -> None:
    if output_format not in OUTPUT_FORMATS:
        err_console.print(f"[red]Unknown format: {output_format}[/red]")
        raise typer.Exit(2)


def _build_request(request_cls: Type[_RequestBase], **fields: Any) -> _RequestBase:
    """Validate CLI values into a request; unset options keep model defaults."""
    try:
        return request_cls(**{k: v for k, v in fields.items() if v is not None})
    except ValidationError as e:
        for error in e.errors(include_url=False):
            location = ".".join(str(part) for part in error["loc"]) or "request"
            err_console.print(f"[red]Invalid {location}: {error['msg']}[/red]")
        raise typer.Exit(2) from e


def _start(ctx: typer.Context, request: _RequestBase, output_format: str) -> None:
    logger.debug("Start request: %s", request.model_dump(by_alias=True, exclude={"password"}))
    with manager_session(ctx) as manager:
        record = manager.start(request)
    if output_format == "table":
        console.print(
            f"[green]Started {record.deployment_type.value} instance {record.name}[/green]"
        )
    render_record(console, record, output_format)


def _register_lifecycle(group: typer.Typer, deployment_type: DeploymentType) -> None:
    """Add ``stop`` and ``info`` to a topology group."""

    @group.command()
    def stop(
        ctx: typer.Context,
        name: Optional[str] = typer.Argument(None, help="Instance name (latest if omitted)"),
        keep_containers: bool = typer.Option(
            False, "--keep-containers", help="Stop containers without removing them"
        ),
        volumes: bool = typer.Option(False, "--volumes", help="Also remove data volumes"),
    ) -> None:
        """Stop an instance and remove its containers."""
        with manager_session(ctx) as manager:
            record = manager.stop(
                name,
                deployment_type,
                keep_containers=keep_containers,
                remove_volumes=volumes,
            )
        verb = "Stopped" if keep_containers else "Removed"
        console.print(f"[green]{verb} {record.name}[/green]")

    @group.command()
    def info(
        ctx: typer.Context,
        name: Optional[str] = typer.Argument(None, help="Instance name (latest if omitted)"),
        output_format: str = FORMAT_OPTION,
    ) -> None:
        """Show an instance with live status."""
        _check_format(output_format)
        with manager_session(ctx) as manager:
            view = manager.info(name, deployment_type)
        render_view(console, view, output_format)


@basic_app.command("start")
def start_basic(
    ctx: typer.Context,
    name: Optional[str] = NAME_OPTION,
    password: Optional[str] = PASSWORD_OPTION,
    port: Optional[int] = typer.Option(None, "--port", help="Host port (default 6379)"),
    persist: bool = PERSIST_OPTION,
    memory: Optional[str] = MEMORY_OPTION,
    with_insight: bool = INSIGHT_OPTION,
    insight_port: int = INSIGHT_PORT_OPTION,
    output_format: str = FORMAT_OPTION,
) -> None:
    """Start a single Redis node."""
    _check_format(output_format)
    request = _build_request(
        BasicRequest,
        name=name,
        password=password,
        port_base=port,
        persist=persist,
        memory=memory,
        with_insight=with_insight,
        insight_port=insight_port,
    )
    _start(ctx, request, output_format)


@stack_app.command("start")
def start_stack(
    ctx: typer.Context,
    name: Optional[str] = NAME_OPTION,
    password: Optional[str] = PASSWORD_OPTION,
    port: Optional[int] = typer.Option(None, "--port", help="Host port (default 6379)"),
    modules: Optional[List[str]] = typer.Option(
        None, "--module", help="Module to load (repeatable; default all)"
    ),
    persist: bool = PERSIST_OPTION,
    memory: Optional[str] = MEMORY_OPTION,
    with_insight: bool = INSIGHT_OPTION,
    insight_port: int = INSIGHT_PORT_OPTION,
    output_format: str = FORMAT_OPTION,
) -> None:
    """Start a Redis Stack node."""
    _check_format(output_format)
    request = _build_request(
        StackRequest,
        name=name,
        password=password,
        port_base=port,
        modules=modules or None,
        persist=persist,
        memory=memory,
        with_insight=with_insight,
        insight_port=insight_port,
    )
    _start(ctx, request, output_format)


@cluster_app.command("start")
def start_cluster(
    ctx: typer.Context,
    name: Optional[str] = NAME_OPTION,
    password: Optional[str] = PASSWORD_OPTION,
    masters: int = typer.Option(3, "--masters", help="Number of masters (at least 3)"),
    replicas: int = typer.Option(0, "--replicas", help="Replicas per master"),
    port_base: Optional[int] = typer.Option(
        None, "--port-base", help="First host port (default 7000)"
    ),
    persist: bool = PERSIST_OPTION,
    memory: Optional[str] = MEMORY_OPTION,
    with_insight: bool = INSIGHT_OPTION,
    insight_port: int = INSIGHT_PORT_OPTION,
    output_format: str = FORMAT_OPTION,
) -> None:
    """Start a Redis Cluster."""
    _check_format(output_format)
    request = _build_request(
        ClusterRequest,
        name=name,
        password=password,
        masters=masters,
        replicas=replicas,
        port_base=port_base,
        persist=persist,
        memory=memory,
        with_insight=with_insight,
        insight_port=insight_port,
    )
    _start(ctx, request, output_format)


@sentinel_app.command("start")
def start_sentinel(
    ctx: typer.Context,
    name: Optional[str] = NAME_OPTION,
    password: Optional[str] = PASSWORD_OPTION,
    masters: int = typer.Option(1, "--masters", help="Number of master groups"),
    replicas: int = typer.Option(0, "--replicas", help="Replicas per master"),
    sentinels: int = typer.Option(3, "--sentinels", help="Number of sentinels"),
    quorum: Optional[int] = typer.Option(
        None, "--quorum", help="Sentinels needed to agree (default majority)"
    ),
    port: Optional[int] = typer.Option(
        None, "--port", help="First Redis host port (default 6379)"
    ),
    sentinel_port: int = typer.Option(
        DEFAULT_SENTINEL_PORT, "--sentinel-port", help="First sentinel host port"
    ),
    persist: bool = PERSIST_OPTION,
    memory: Optional[str] = MEMORY_OPTION,
    with_insight: bool = INSIGHT_OPTION,
    insight_port: int = INSIGHT_PORT_OPTION,
    output_format: str = FORMAT_OPTION,
) -> None:
    """Start masters and replicas monitored by sentinels."""
    _check_format(output_format)
    request = _build_request(
        SentinelRequest,
        name=name,
        password=password,
        masters=masters,
        replicas=replicas,
        sentinels=sentinels,
        quorum=quorum,
        port_base=port,
        sentinel_port_base=sentinel_port,
        persist=persist,
        memory=memory,
        with_insight=with_insight,
        insight_port=insight_port,
    )
    _start(ctx, request, output_format)


@sentinel_app.command()
def failover(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Instance name (latest if omitted)"),
    master: int = typer.Option(1, "--master", help="Master group to fail over"),
) -> None:
    """Force a sentinel failover of one master group."""
    with manager_session(ctx) as manager:
        sentinel = manager.failover(name, master)
    console.print(f"[green]Failover of master-{master} accepted by {sentinel}[/green]")


@enterprise_app.command("start")
def start_enterprise(
    ctx: typer.Context,
    name: Optional[str] = NAME_OPTION,
    password: Optional[str] = PASSWORD_OPTION,
    nodes: int = typer.Option(3, "--nodes", help="Number of enterprise nodes"),
    port_base: Optional[int] = typer.Option(
        None, "--port-base", help="First UI host port (default 8443)"
    ),
    create_db: Optional[str] = typer.Option(
        None, "--create-db", help="Create a database with this name"
    ),
    db_port: int = typer.Option(
        DEFAULT_ENTERPRISE_DB_PORT, "--db-port", help="Port of the created database"
    ),
    containers_only: bool = typer.Option(
        False, "--containers-only", help="Start containers without forming the cluster"
    ),
    persist: bool = PERSIST_OPTION,
    memory: Optional[str] = MEMORY_OPTION,
    with_insight: bool = INSIGHT_OPTION,
    insight_port: int = INSIGHT_PORT_OPTION,
    output_format: str = FORMAT_OPTION,
) -> None:
    """Start a Redis Enterprise cluster."""
    _check_format(output_format)
    request = _build_request(
        EnterpriseRequest,
        name=name,
        password=password,
        nodes=nodes,
        port_base=port_base,
        create_db=create_db,
        db_port=db_port,
        containers_only=containers_only,
        persist=persist,
        memory=memory,
        with_insight=with_insight,
        insight_port=insight_port,
    )
    _start(ctx, request, output_format)


for _group, _type in (
    (basic_app, DeploymentType.BASIC),
    (stack_app, DeploymentType.STACK),
    (cluster_app, DeploymentType.CLUSTER),
    (sentinel_app, DeploymentType.SENTINEL),
    (enterprise_app, DeploymentType.ENTERPRISE),
):
    _register_lifecycle(_group, _type)
