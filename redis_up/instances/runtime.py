"""Container runtime contract consumed by the orchestrator and manager."""

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Protocol

from ..core.types import ExecResult, HealthStatus

LABEL_MANAGED = "redis-up.managed"
LABEL_INSTANCE = "redis-up.instance"
LABEL_ROLE = "redis-up.role"


@dataclass(frozen=True)
class ContainerSpec:
    """Everything the runtime needs to create one container."""

    name: str
    image: str
    command: Optional[List[str]] = None
    environment: Dict[str, str] = field(default_factory=dict)
    # internal port -> host port
    ports: Dict[int, int] = field(default_factory=dict)
    network: Optional[str] = None
    # volume name -> mount path
    volumes: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    mem_limit: Optional[str] = None
    cap_add: List[str] = field(default_factory=list)


class HealthProbe(Protocol):
    """Protocol-specific readiness check for one container."""

    def check(self, runtime: "ContainerRuntime", container: str) -> HealthStatus:
        """Run the check once."""


class ContainerRuntime(Protocol):
    """Protocol for container runtimes to enable dependency injection.

    Calls that remove things treat an already missing target as success so
    rollback and cleanup can be repeated.
    """

    def ping(self) -> None:
        """Raise RuntimeUnavailableError if the runtime cannot be reached."""

    def ensure_image(self, image: str) -> None:
        """Pull the image if it is not present locally."""

    def create_network(self, name: str, labels: Optional[Dict[str, str]] = None) -> bool:
        """Create a bridge network. Returns False if it already existed."""

    def remove_network(self, name: str) -> None:
        """Remove a network."""

    def create_container(self, spec: ContainerSpec) -> str:
        """Create a container and return its id."""

    def start_container(self, name: str) -> None:
        """Start a created container."""

    def stop_container(self, name: str, timeout: float = 10.0) -> None:
        """Stop a running container."""

    def remove_container(self, name: str) -> None:
        """Force-remove a container."""

    def volume_exists(self, name: str) -> bool:
        """Whether a named volume is already present."""

    def remove_volume(self, name: str) -> None:
        """Remove a named volume."""

    def container_status(self, name: str) -> Optional[str]:
        """Runtime status string ("running", "exited", ...) or None if missing."""

    def container_address(self, name: str, network: str) -> str:
        """IP address of the container on the given network."""

    def exec(self, name: str, command: List[str]) -> ExecResult:
        """Run a command inside a running container."""

    def wait_for_ready(
        self, name: str, probe: HealthProbe, timeout: float, interval: float = 0.5
    ) -> HealthStatus:
        """Poll the probe until it passes or the timeout elapses."""

    def tail_logs(
        self, name: str, follow: bool = False, tail: Optional[int] = None,
        timestamps: bool = False,
    ) -> Iterator[str]:
        """Yield log text from the container."""
