"""Core type definitions for redis-up."""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Any
from pathlib import Path

from pydantic import BaseModel, Field, model_validator

from .enums import DeploymentType, NodeRole, InstanceStatus, OrchestrationState

__all__ = [
    "DeploymentType",
    "NodeRole",
    "InstanceStatus",
    "OrchestrationState",
    "TimeoutConfig",
    "InfrastructureConfig",
    "ImageConfig",
    "RedisUpConfig",
    "NodeRecord",
    "Credentials",
    "TopologySpec",
    "InstanceRecord",
    "HealthStatus",
    "ExecResult",
]


class TimeoutConfig(BaseModel):
    """Centralized timeout configuration to eliminate magical constants."""

    # Readiness probing
    node_ready: float = 30.0
    probe_interval: float = 0.5
    http_probe: float = 5.0

    # Wiring
    wiring_command: float = 60.0
    cluster_converge: float = 30.0

    # Container lifecycle
    container_stop: float = 10.0
    image_pull: float = 600.0


class InfrastructureConfig(BaseModel):
    """Infrastructure and system-level configuration constants."""

    # Thread pool configuration
    orchestrator_max_workers: int = 8

    # Port management
    max_port_probes: int = 1000
    probe_host_ports: bool = True

    # Host that published ports are reachable on
    host: str = "localhost"


class ImageConfig(BaseModel):
    """Container images used per node kind."""

    redis: str = "redis:7-alpine"
    stack: str = "redis/redis-stack-server:latest"
    enterprise: str = "redislabs/redis:latest"
    insight: str = "redis/redisinsight:latest"


class RedisUpConfig(BaseModel):
    """Main redis-up configuration."""

    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    infrastructure: InfrastructureConfig = Field(default_factory=InfrastructureConfig)
    images: ImageConfig = Field(default_factory=ImageConfig)

    # Registry location; resolved by initialize_config() when unset
    registry_path: Optional[Path] = None
    config_dir: Optional[Path] = None

    log_level: str = "WARNING"
    log_file: Optional[Path] = None
    verbose: int = 0

    @model_validator(mode="after")
    def validate_config(self) -> "RedisUpConfig":
        """Validate configuration - NO SIDE EFFECTS.

        Directory creation and path defaults belong to initialize_config()
        in core.config_initializer.
        """
        from .errors import ConfigurationError

        if self.timeouts.node_ready <= 0:  # pylint: disable=no-member
            raise ConfigurationError("Node readiness timeout must be positive")
        if self.timeouts.probe_interval <= 0:  # pylint: disable=no-member
            raise ConfigurationError("Probe interval must be positive")
        if self.infrastructure.max_port_probes < 1:  # pylint: disable=no-member
            raise ConfigurationError("max_port_probes must be at least 1")
        if self.infrastructure.orchestrator_max_workers < 1:  # pylint: disable=no-member
            raise ConfigurationError("orchestrator_max_workers must be at least 1")

        return self


# Registry record types
class NodeRecord(BaseModel):
    """One container of a recorded instance."""

    container_name: str
    role: NodeRole
    host_port: int
    internal_port: int
    container_id: Optional[str] = None
    shard: Optional[int] = None
    extra_ports: Dict[str, int] = Field(default_factory=dict)


class Credentials(BaseModel):
    """Credentials needed to talk to an instance."""

    password: Optional[str] = None
    username: Optional[str] = None


class TopologySpec(BaseModel):
    """Role counts persisted so info and failover can rebuild wiring."""

    masters: int = 1
    replicas: int = 0
    sentinels: int = 0
    quorum: Optional[int] = None
    nodes: int = 1


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InstanceRecord(BaseModel):
    """Persisted unit of registry state."""

    name: str
    deployment_type: DeploymentType
    created_at: datetime = Field(default_factory=_utc_now)
    network: str
    nodes: List[NodeRecord] = Field(default_factory=list)
    credentials: Credentials = Field(default_factory=Credentials)
    status: InstanceStatus = InstanceStatus.STARTING
    topology: TopologySpec = Field(default_factory=TopologySpec)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def container_names(self) -> List[str]:
        return [node.container_name for node in self.nodes]

    @property
    def host_ports(self) -> List[int]:
        ports: List[int] = []
        for node in self.nodes:
            ports.append(node.host_port)
            ports.extend(node.extra_ports.values())
        return ports

    def nodes_with_role(self, role: NodeRole) -> List[NodeRecord]:
        return [node for node in self.nodes if node.role == role]

    def primary_node(self) -> Optional[NodeRecord]:
        """First data-bearing node, used for connection summaries."""
        for node in self.nodes:
            if node.role != NodeRole.INSIGHT:
                return node
        return self.nodes[0] if self.nodes else None


# Health and runtime result types
class HealthStatus(BaseModel):
    """Node readiness probe outcome."""

    is_healthy: bool
    response_time: float
    error_message: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class ExecResult(BaseModel):
    """Result of running a command inside a container."""

    exit_code: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0
