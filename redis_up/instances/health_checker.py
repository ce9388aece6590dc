"""Readiness probes for Redis, sentinel, enterprise and insight containers."""

import asyncio
import time
from typing import List, Optional, Union

import aiohttp

from ..core.errors import ContainerRuntimeError, NodeNotReadyError
from ..core.log import get_logger
from ..core.types import HealthStatus, NodeRecord, NodeRole
from .deployment_plan import NodeAllocation
from .runtime import ContainerRuntime, HealthProbe

logger = get_logger(__name__)

Node = Union[NodeAllocation, NodeRecord]


def redis_cli(port: int, password: Optional[str], *args: str) -> List[str]:
    """Build a redis-cli invocation against a port inside the container."""
    command = ["redis-cli", "-p", str(port)]
    if password:
        command += ["-a", password, "--no-auth-warning"]
    return command + list(args)


class RedisPingProbe:
    """PING through redis-cli inside the container; ready when it answers PONG."""

    def __init__(self, port: int, password: Optional[str] = None) -> None:
        self.port = port
        self.password = password

    def check(self, runtime: ContainerRuntime, container: str) -> HealthStatus:
        start_time = time.time()
        try:
            result = runtime.exec(container, redis_cli(self.port, self.password, "ping"))
        except ContainerRuntimeError as e:
            return HealthStatus(
                is_healthy=False,
                response_time=time.time() - start_time,
                error_message=f"exec failed: {e.message}",
            )
        response_time = time.time() - start_time
        if result.ok and result.output.strip() == "PONG":
            return HealthStatus(is_healthy=True, response_time=response_time)
        return HealthStatus(
            is_healthy=False,
            response_time=response_time,
            error_message=result.output.strip() or f"exit code {result.exit_code}",
        )


class HttpProbe:
    """HTTP GET against a published host port."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        verify_ssl: bool = True,
        max_status: int = 299,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.max_status = max_status

    def check(self, runtime: ContainerRuntime, container: str) -> HealthStatus:
        start_time = time.time()
        try:
            return asyncio.run(self._async_check())
        except (aiohttp.ClientError, OSError) as e:
            return HealthStatus(
                is_healthy=False,
                response_time=time.time() - start_time,
                error_message=f"Health check error: {e}",
            )

    async def _async_check(self) -> HealthStatus:
        start_time = time.time()
        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as session:
                async with session.get(self.url, ssl=self.verify_ssl) as response:
                    response_time = time.time() - start_time
                    if response.status <= self.max_status:
                        return HealthStatus(
                            is_healthy=True,
                            response_time=response_time,
                            details={"status": response.status},
                        )
                    return HealthStatus(
                        is_healthy=False,
                        response_time=response_time,
                        error_message=f"HTTP {response.status}: {response.reason}",
                    )
        except asyncio.TimeoutError:
            return HealthStatus(
                is_healthy=False,
                response_time=time.time() - start_time,
                error_message="Connection timeout",
            )
        except (aiohttp.ClientError, OSError) as e:
            return HealthStatus(
                is_healthy=False,
                response_time=time.time() - start_time,
                error_message=f"Connection error: {e}",
            )


def probe_for(
    node: Node, password: Optional[str], host: str = "localhost", http_timeout: float = 5.0
) -> HealthProbe:
    """Pick the readiness probe matching a node's role."""
    if node.role == NodeRole.INSIGHT:
        return HttpProbe(f"http://{host}:{node.host_port}/api/health/", timeout=http_timeout)
    if node.role == NodeRole.ENTERPRISE_NODE:
        api_port = node.extra_ports.get("api", node.host_port)
        # The bootstrap endpoint answers once the node can be clustered;
        # anything short of a server error counts as up.
        return HttpProbe(
            f"https://{host}:{api_port}/v1/bootstrap",
            timeout=http_timeout,
            verify_ssl=False,
            max_status=499,
        )
    if node.role == NodeRole.SENTINEL:
        return RedisPingProbe(node.internal_port)
    return RedisPingProbe(node.internal_port, password)


def poll_until_ready(
    runtime: ContainerRuntime,
    container: str,
    probe: HealthProbe,
    timeout: float,
    interval: float = 0.5,
) -> HealthStatus:
    """Run a probe until it passes.

    Gives up early if the container stops running.

    Raises:
        NodeNotReadyError: If the probe did not pass within the timeout
    """
    deadline = time.time() + timeout
    status = HealthStatus(is_healthy=False, response_time=0.0, error_message="not probed")
    while True:
        state = runtime.container_status(container) or "missing"
        if state not in ("created", "running", "restarting"):
            raise NodeNotReadyError(
                f"Container {container} is {state} before becoming ready",
                timeout,
                details={"container": container, "state": state},
            )
        if state == "running":
            status = probe.check(runtime, container)
            if status.is_healthy:
                logger.debug("Container %s ready in %.2fs", container, status.response_time)
                return status
        if time.time() >= deadline:
            raise NodeNotReadyError(
                f"Container {container} not ready after {timeout:.0f}s: {status.error_message}",
                timeout,
                details={"container": container, "last_error": status.error_message},
            )
        time.sleep(interval)
