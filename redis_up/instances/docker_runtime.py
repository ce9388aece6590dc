"""Container runtime backed by the Docker Engine API."""

from typing import Dict, Iterator, List, Optional

import docker
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from ..core.errors import ContainerRuntimeError, RuntimeUnavailableError
from ..core.log import get_logger
from ..core.types import ExecResult, HealthStatus
from .health_checker import poll_until_ready
from .runtime import LABEL_MANAGED, ContainerSpec, HealthProbe

logger = get_logger(__name__)


class DockerRuntime:
    """ContainerRuntime implementation using the docker SDK.

    The client is created lazily so commands that never touch containers
    (e.g. ``list`` on an empty registry) work without a daemon.
    """

    def __init__(self, client: Optional[docker.DockerClient] = None) -> None:
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as e:
                raise RuntimeUnavailableError(
                    f"Container runtime is not reachable: {e}",
                    details={"hint": "is the Docker daemon running?"},
                ) from e
        return self._client

    def ping(self) -> None:
        self._call("ping", lambda: self.client.ping())

    def ensure_image(self, image: str) -> None:
        try:
            self.client.images.get(image)
            return
        except ImageNotFound:
            pass
        except requests.exceptions.ConnectionError as e:
            raise self._unavailable(e) from e
        except APIError as e:
            raise self._rejected("inspect image", e, image=image) from e

        logger.info("Pulling image %s", image)
        self._call("pull image", lambda: self.client.images.pull(image), image=image)

    def create_network(self, name: str, labels: Optional[Dict[str, str]] = None) -> bool:
        existing = self._call(
            "list networks", lambda: self.client.networks.list(names=[name]), network=name
        )
        # names= is a substring filter on the daemon side
        if any(net.name == name for net in existing):
            logger.debug("Network %s already exists", name)
            return False
        self._call(
            "create network",
            lambda: self.client.networks.create(
                name, driver="bridge", labels={LABEL_MANAGED: "true", **(labels or {})}
            ),
            network=name,
        )
        return True

    def remove_network(self, name: str) -> None:
        try:
            self.client.networks.get(name).remove()
        except NotFound:
            logger.debug("Network %s already gone", name)
        except requests.exceptions.ConnectionError as e:
            raise self._unavailable(e) from e
        except APIError as e:
            raise self._rejected("remove network", e, network=name) from e

    def create_container(self, spec: ContainerSpec) -> str:
        container = self._call(
            "create container",
            lambda: self.client.containers.create(
                spec.image,
                command=spec.command,
                name=spec.name,
                hostname=spec.name,
                environment=spec.environment or None,
                ports={f"{internal}/tcp": host for internal, host in spec.ports.items()},
                network=spec.network,
                volumes={
                    volume: {"bind": path, "mode": "rw"}
                    for volume, path in spec.volumes.items()
                }
                or None,
                labels={LABEL_MANAGED: "true", **spec.labels},
                mem_limit=spec.mem_limit,
                cap_add=spec.cap_add or None,
                detach=True,
            ),
            container=spec.name,
        )
        return container.id

    def start_container(self, name: str) -> None:
        container = self._get(name)
        self._call("start container", container.start, container=name)

    def stop_container(self, name: str, timeout: float = 10.0) -> None:
        try:
            self.client.containers.get(name).stop(timeout=int(timeout))
        except NotFound:
            logger.debug("Container %s already gone", name)
        except requests.exceptions.ConnectionError as e:
            raise self._unavailable(e) from e
        except APIError as e:
            raise self._rejected("stop container", e, container=name) from e

    def remove_container(self, name: str) -> None:
        try:
            self.client.containers.get(name).remove(force=True)
        except NotFound:
            logger.debug("Container %s already gone", name)
        except requests.exceptions.ConnectionError as e:
            raise self._unavailable(e) from e
        except APIError as e:
            raise self._rejected("remove container", e, container=name) from e

    def volume_exists(self, name: str) -> bool:
        try:
            self.client.volumes.get(name)
            return True
        except NotFound:
            return False
        except requests.exceptions.ConnectionError as e:
            raise self._unavailable(e) from e
        except APIError as e:
            raise self._rejected("inspect volume", e, volume=name) from e

    def remove_volume(self, name: str) -> None:
        try:
            self.client.volumes.get(name).remove(force=True)
        except NotFound:
            logger.debug("Volume %s already gone", name)
        except requests.exceptions.ConnectionError as e:
            raise self._unavailable(e) from e
        except APIError as e:
            raise self._rejected("remove volume", e, volume=name) from e

    def container_status(self, name: str) -> Optional[str]:
        try:
            return self.client.containers.get(name).status
        except NotFound:
            return None
        except requests.exceptions.ConnectionError as e:
            raise self._unavailable(e) from e
        except APIError as e:
            raise self._rejected("inspect container", e, container=name) from e

    def container_address(self, name: str, network: str) -> str:
        container = self._get(name)
        networks = container.attrs.get("NetworkSettings", {}).get("Networks", {})
        address = networks.get(network, {}).get("IPAddress")
        if not address:
            raise ContainerRuntimeError(
                f"Container {name} has no address on network {network}",
                details={"container": name, "network": network},
            )
        return address

    def exec(self, name: str, command: List[str]) -> ExecResult:
        container = self._get(name)
        result = self._call(
            "exec", lambda: container.exec_run(command, demux=False), container=name
        )
        output = result.output.decode("utf-8", errors="replace") if result.output else ""
        return ExecResult(exit_code=result.exit_code, output=output)

    def wait_for_ready(
        self, name: str, probe: HealthProbe, timeout: float, interval: float = 0.5
    ) -> HealthStatus:
        return poll_until_ready(self, name, probe, timeout, interval)

    def tail_logs(
        self, name: str, follow: bool = False, tail: Optional[int] = None,
        timestamps: bool = False,
    ) -> Iterator[str]:
        container = self._get(name)
        logs = self._call(
            "read logs",
            lambda: container.logs(
                stream=follow,
                follow=follow,
                tail=tail if tail is not None else "all",
                timestamps=timestamps,
            ),
            container=name,
        )
        if not follow:
            yield logs.decode("utf-8", errors="replace")
            return
        for chunk in logs:
            yield chunk.decode("utf-8", errors="replace")

    def _get(self, name: str):
        try:
            container = self.client.containers.get(name)
        except NotFound as e:
            raise ContainerRuntimeError(
                f"Container {name} does not exist", details={"container": name}
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise self._unavailable(e) from e
        except APIError as e:
            raise self._rejected("inspect container", e, container=name) from e
        return container

    def _call(self, action: str, fn, **details):
        try:
            return fn()
        except requests.exceptions.ConnectionError as e:
            raise self._unavailable(e) from e
        except APIError as e:
            raise self._rejected(action, e, **details) from e
        except DockerException as e:
            raise self._rejected(action, e, **details) from e

    @staticmethod
    def _unavailable(error: Exception) -> RuntimeUnavailableError:
        return RuntimeUnavailableError(f"Container runtime is not reachable: {error}")

    @staticmethod
    def _rejected(action: str, error: Exception, **details) -> ContainerRuntimeError:
        explanation = getattr(error, "explanation", None) or str(error)
        return ContainerRuntimeError(
            f"Runtime rejected {action}: {explanation}", details=details
        )
