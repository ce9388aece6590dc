"""Table and JSON rendering of instances."""

from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from ..core.types import DeploymentType, InstanceRecord, NodeRole
from ..instances.manager import InstanceView
from ..utils.codec import to_json_string

OUTPUT_FORMATS = ("table", "json")

_HEALTH_STYLES = {
    "ok": "green",
    "degraded": "yellow",
    "stale": "red",
    "unknown": "dim",
}


def connection_hints(record: InstanceRecord, host: str = "localhost") -> List[str]:
    """Human-oriented ways to reach an instance."""
    password = record.credentials.password
    auth = f" -a {password}" if password else ""
    hints = []
    if record.deployment_type in (DeploymentType.BASIC, DeploymentType.STACK):
        node = record.primary_node()
        if node is not None:
            hints.append(f"redis-cli -h {host} -p {node.host_port}{auth}")
            credentials = f":{password}@" if password else ""
            hints.append(f"redis://{credentials}{host}:{node.host_port}")
    elif record.deployment_type == DeploymentType.CLUSTER:
        node = record.primary_node()
        if node is not None:
            hints.append(f"redis-cli -c -h {host} -p {node.host_port}{auth}")
    elif record.deployment_type == DeploymentType.SENTINEL:
        for sentinel in record.nodes_with_role(NodeRole.SENTINEL)[:1]:
            hints.append(f"redis-cli -h {host} -p {sentinel.host_port} SENTINEL MASTERS")
        for master in record.nodes_with_role(NodeRole.MASTER):
            hints.append(f"redis-cli -h {host} -p {master.host_port}{auth}")
    elif record.deployment_type == DeploymentType.ENTERPRISE:
        nodes = record.nodes_with_role(NodeRole.ENTERPRISE_NODE)
        if nodes:
            hints.append(f"https://{host}:{nodes[0].host_port} ({record.credentials.username})")
            if "db" in nodes[0].extra_ports:
                hints.append(f"redis-cli -h {host} -p {nodes[0].extra_ports['db']}")
    for insight in record.nodes_with_role(NodeRole.INSIGHT):
        hints.append(f"http://{host}:{insight.host_port} (Redis Insight)")
    return hints


def view_to_dict(view: InstanceView) -> Dict[str, Any]:
    data = view.record.model_dump(mode="json")
    data["health"] = view.health
    data["missing_containers"] = view.missing_containers
    if view.live:
        data["live"] = view.live
    return data


def render_record(console: Console, record: InstanceRecord, output_format: str = "table") -> None:
    """Render a freshly started or stopped instance."""
    if output_format == "json":
        console.print_json(to_json_string(record.model_dump(mode="json")))
        return
    console.print(_nodes_table(record))
    for hint in connection_hints(record):
        console.print(f"  [cyan]{hint}[/cyan]")
    if record.credentials.password:
        console.print(f"  Password: [bold]{record.credentials.password}[/bold]")


def render_view(console: Console, view: InstanceView, output_format: str = "table") -> None:
    if output_format == "json":
        console.print_json(to_json_string(view_to_dict(view)))
        return
    record = view.record
    summary = Table(title=f"{record.name} ({record.deployment_type.value})", show_header=False)
    summary.add_column("Setting", style="cyan")
    summary.add_column("Value", style="green")
    summary.add_row("Status", record.status.value)
    summary.add_row("Health", _health_cell(view.health))
    summary.add_row("Created", record.created_at.isoformat(timespec="seconds"))
    summary.add_row("Network", record.network)
    if record.deployment_type == DeploymentType.SENTINEL:
        summary.add_row("Quorum", str(record.topology.quorum))
    if record.credentials.username:
        summary.add_row("Username", record.credentials.username)
    if record.credentials.password:
        summary.add_row("Password", record.credentials.password)
    for key, value in view.live.items():
        summary.add_row(key, str(value))
    console.print(summary)
    console.print(_nodes_table(record, missing=view.missing_containers))
    for hint in connection_hints(record):
        console.print(f"  [cyan]{hint}[/cyan]")


def render_views(console: Console, views: List[InstanceView], output_format: str = "table") -> None:
    if output_format == "json":
        console.print_json(to_json_string([view_to_dict(view) for view in views]))
        return
    if not views:
        console.print("[dim]No instances[/dim]")
        return
    table = Table(title="Instances")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Health")
    table.add_column("Nodes", justify="right")
    table.add_column("Ports")
    table.add_column("Created")
    for view in views:
        record = view.record
        table.add_row(
            record.name,
            record.deployment_type.value,
            record.status.value,
            _health_cell(view.health),
            str(len(record.nodes)),
            _port_summary(record.host_ports),
            record.created_at.isoformat(timespec="seconds"),
        )
    console.print(table)


def _nodes_table(record: InstanceRecord, missing: Optional[List[str]] = None) -> Table:
    missing = missing or []
    table = Table(title="Nodes")
    table.add_column("Container", style="cyan")
    table.add_column("Role")
    table.add_column("Host port", justify="right")
    table.add_column("Internal", justify="right")
    table.add_column("Extra ports")
    table.add_column("Shard", justify="right")
    for node in record.nodes:
        name = f"[red]{node.container_name} (missing)[/red]" if node.container_name in missing else node.container_name
        table.add_row(
            name,
            node.role.value,
            str(node.host_port),
            str(node.internal_port),
            ", ".join(f"{k}={v}" for k, v in sorted(node.extra_ports.items())),
            "" if node.shard is None else str(node.shard + 1),
        )
    return table


def _health_cell(health: str) -> str:
    style = _HEALTH_STYLES.get(health, "white")
    return f"[{style}]{health}[/{style}]"


def _port_summary(ports: List[int]) -> str:
    if not ports:
        return "-"
    ports = sorted(ports)
    if len(ports) <= 3:
        return ", ".join(str(p) for p in ports)
    return f"{ports[0]}..{ports[-1]} ({len(ports)})"
