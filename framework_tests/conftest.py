"""Test configuration and fixtures for framework unit tests."""

import threading
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple

import pytest

from redis_up.core.context import ApplicationContext
from redis_up.core.errors import (
    ContainerRuntimeError,
    NodeNotReadyError,
    RuntimeUnavailableError,
)
from redis_up.core.types import ExecResult, HealthStatus
from redis_up.instances.runtime import ContainerSpec, HealthProbe


class FakeRuntime:
    """In-memory ContainerRuntime.

    Containers, networks and volumes live in dicts and sets. Redis commands
    sent through ``exec`` get canned answers good enough for wiring; tests
    override single commands through ``exec_handler``.
    """

    def __init__(self) -> None:
        self.containers: Dict[str, str] = {}
        self.specs: Dict[str, ContainerSpec] = {}
        self.networks: Set[str] = set()
        self.volumes: Set[str] = set()
        self.images: List[str] = []
        self.calls: List[Tuple[str, str]] = []
        self.exec_calls: List[Tuple[str, List[str]]] = []
        self.logs: Dict[str, str] = {}
        # container -> slot tokens it claims in CLUSTER NODES, e.g. "0-5460"
        self.claimed_slots: Dict[str, str] = {}

        self.unavailable = False
        self.not_ready: Set[str] = set()
        self.fail_create: Set[str] = set()
        self.fail_remove: Set[str] = set()
        self.start_errors: Dict[str, BaseException] = {}
        self.exec_handler: Optional[Callable[[str, List[str]], Optional[ExecResult]]] = None
        self._lock = threading.Lock()

    def _record(self, action: str, target: str) -> None:
        with self._lock:
            self.calls.append((action, target))

    def _check(self) -> None:
        if self.unavailable:
            raise RuntimeUnavailableError("Container runtime is not reachable: fake")

    def calls_for(self, action: str) -> List[str]:
        return [target for name, target in self.calls if name == action]

    def ping(self) -> None:
        self._check()

    def ensure_image(self, image: str) -> None:
        self._check()
        self.images.append(image)

    def create_network(self, name: str, labels: Optional[Dict[str, str]] = None) -> bool:
        self._check()
        self._record("create_network", name)
        created = name not in self.networks
        self.networks.add(name)
        return created

    def remove_network(self, name: str) -> None:
        self._check()
        self._record("remove_network", name)
        self.networks.discard(name)

    def create_container(self, spec: ContainerSpec) -> str:
        self._check()
        self._record("create_container", spec.name)
        if spec.name in self.fail_create:
            raise ContainerRuntimeError(
                f"Runtime rejected create container: {spec.name}",
                details={"container": spec.name},
            )
        self.containers[spec.name] = "created"
        self.specs[spec.name] = spec
        self.volumes.update(spec.volumes)
        return f"id-{spec.name}"

    def start_container(self, name: str) -> None:
        self._check()
        self._record("start_container", name)
        if name in self.start_errors:
            raise self.start_errors[name]
        self.containers[name] = "running"

    def stop_container(self, name: str, timeout: float = 10.0) -> None:
        self._check()
        self._record("stop_container", name)
        if name in self.containers:
            self.containers[name] = "exited"

    def remove_container(self, name: str) -> None:
        self._check()
        self._record("remove_container", name)
        if name in self.fail_remove:
            raise ContainerRuntimeError(
                f"Runtime rejected remove container: {name}", details={"container": name}
            )
        self.containers.pop(name, None)

    def volume_exists(self, name: str) -> bool:
        self._check()
        return name in self.volumes

    def remove_volume(self, name: str) -> None:
        self._check()
        self._record("remove_volume", name)
        self.volumes.discard(name)

    def container_status(self, name: str) -> Optional[str]:
        self._check()
        return self.containers.get(name)

    def container_address(self, name: str, network: str) -> str:
        self._check()
        return f"10.0.0.{sorted(self.containers).index(name) + 2}"

    def exec(self, name: str, command: List[str]) -> ExecResult:
        self._check()
        with self._lock:
            self.exec_calls.append((name, list(command)))
        if self.exec_handler is not None:
            result = self.exec_handler(name, command)
            if result is not None:
                return result
        return ExecResult(exit_code=0, output=self._redis_answer(name, command))

    def _redis_answer(self, name: str, command: List[str]) -> str:
        words = [part.lower() for part in command]
        if "ping" in words:
            return "PONG"
        if "myid" in words:
            return f"id-{name}"
        if "nodes" in words and "cluster" in words:
            slots = self.claimed_slots.get(name, "")
            return (
                f"id-{name} 10.0.0.2:6379@16379 myself,master - 0 0 0 connected {slots}"
            ).rstrip() + "\n"
        if "reset" in words and "cluster" in words:
            self.claimed_slots.pop(name, None)
            return "OK"
        if "info" in words and "cluster" in words:
            prefix = name.rsplit("-node-", 1)[0]
            members = [c for c in self.containers if c.startswith(prefix + "-node-")]
            return (
                "cluster_state:ok\r\n"
                "cluster_slots_assigned:16384\r\n"
                f"cluster_known_nodes:{len(members)}\r\n"
            )
        if "info" in words:
            return "# Server\r\nredis_version:7.2.4\r\nuptime_in_seconds:42\r\n"
        if "get-master-addr-by-name" in words:
            return "10.0.0.2\n6379\n"
        if command and command[0] in ("rladmin", "curl"):
            return "ok"
        return "OK"

    def wait_for_ready(
        self, name: str, probe: HealthProbe, timeout: float, interval: float = 0.5
    ) -> HealthStatus:
        self._check()
        self._record("wait_for_ready", name)
        if name in self.not_ready:
            raise NodeNotReadyError(
                f"Container {name} not ready after {timeout:.0f}s",
                timeout,
                details={"container": name},
            )
        return HealthStatus(is_healthy=True, response_time=0.0)

    def tail_logs(
        self, name: str, follow: bool = False, tail: Optional[int] = None,
        timestamps: bool = False,
    ) -> Iterator[str]:
        self._check()
        if name not in self.containers:
            raise ContainerRuntimeError(f"Container {name} does not exist")
        yield self.logs.get(name, "")


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for tests."""
    return tmp_path


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def app_context(temp_dir: Path, fake_runtime: FakeRuntime) -> ApplicationContext:
    """Application context with a temp registry and the fake runtime."""
    return ApplicationContext.for_testing(temp_dir, runtime=fake_runtime)
