"""Container spec construction for each node role."""

import shlex
from typing import Dict, List, Optional

from ..core.config import ConfigProvider
from ..core.log import Logger
from ..core.types import DeploymentType, NodeRole
from .deployment_plan import NodeAllocation, ResourcePlan
from .runtime import LABEL_INSTANCE, LABEL_ROLE, ContainerSpec

DATA_DIR = "/data"
# Outside DATA_DIR: node ids and peer tables never survive a container restart
CLUSTER_CONFIG_FILE = "/tmp/nodes.conf"
ENTERPRISE_PERSIST_DIR = "/var/opt/redislabs/persist"
STACK_MODULE_DIR = "/opt/redis-stack/lib"

STACK_MODULE_FILES: Dict[str, str] = {
    "json": "rejson.so",
    "search": "redisearch.so",
    "timeseries": "redistimeseries.so",
    "bloom": "redisbloom.so",
    "graph": "redisgraph.so",
}


def volume_name(container_name: str) -> str:
    return f"{container_name}-data"


class ContainerSpecBuilder:
    """Builds ContainerSpecs from a resource plan, one node at a time."""

    def __init__(self, config_provider: ConfigProvider, logger: Logger) -> None:
        self._config_provider = config_provider
        self._logger = logger

    def build(self, plan: ResourcePlan, node: NodeAllocation) -> ContainerSpec:
        """Build the spec for one planned node."""
        images = self._config_provider.images
        persist = bool(plan.metadata.get("persist"))
        memory = plan.metadata.get("memory")
        labels = {LABEL_INSTANCE: plan.instance_name, LABEL_ROLE: node.role.value}

        ports = {node.internal_port: node.host_port}
        volumes: Dict[str, str] = {}
        cap_add: List[str] = []
        command: Optional[List[str]]

        if node.role == NodeRole.INSIGHT:
            image = images.insight
            command = None
            memory = None
        elif node.role == NodeRole.SENTINEL:
            image = images.redis
            command = self._sentinel_command(node)
            memory = None
        elif node.role == NodeRole.ENTERPRISE_NODE:
            image = images.enterprise
            command = None
            cap_add = ["SYS_RESOURCE"]
            ports[9443] = node.extra_ports["api"]
            if "db" in node.extra_ports:
                ports[node.extra_ports["db"]] = node.extra_ports["db"]
            if persist:
                volumes[volume_name(node.container_name)] = ENTERPRISE_PERSIST_DIR
        else:
            image = images.stack if plan.deployment_type == DeploymentType.STACK else images.redis
            command = self._redis_command(plan, node)
            if persist:
                volumes[volume_name(node.container_name)] = DATA_DIR

        spec = ContainerSpec(
            name=node.container_name,
            image=image,
            command=command,
            ports=ports,
            network=plan.network,
            volumes=volumes,
            labels=labels,
            mem_limit=str(memory) if memory else None,
            cap_add=cap_add,
        )
        self._logger.debug(
            "Container spec for %s: image=%s command=%s",
            node.container_name,
            image,
            " ".join(command) if command else "<image default>",
        )
        return spec

    def _redis_command(self, plan: ResourcePlan, node: NodeAllocation) -> List[str]:
        command = ["redis-server", "--port", str(node.internal_port)]
        if plan.password:
            command += ["--requirepass", plan.password, "--masterauth", plan.password]
        if plan.metadata.get("persist"):
            command += ["--appendonly", "yes", "--dir", DATA_DIR]

        if plan.deployment_type == DeploymentType.STACK:
            for module in plan.metadata.get("modules", []):
                command += ["--loadmodule", f"{STACK_MODULE_DIR}/{STACK_MODULE_FILES[module]}"]
        elif plan.deployment_type == DeploymentType.CLUSTER:
            command += [
                "--cluster-enabled", "yes",
                "--cluster-config-file", CLUSTER_CONFIG_FILE,
                "--cluster-node-timeout", "5000",
            ]
        elif plan.deployment_type == DeploymentType.SENTINEL and node.role == NodeRole.REPLICA:
            master = plan.get_masters()[node.shard]
            command += ["--replicaof", master.container_name, str(master.internal_port)]
        return command

    def _sentinel_command(self, node: NodeAllocation) -> List[str]:
        """Sentinels rewrite their config file, so it has to be writable."""
        config_lines = [
            f"port {node.internal_port}",
            "sentinel resolve-hostnames yes",
            "sentinel announce-hostnames yes",
        ]
        config = "\\n".join(config_lines) + "\\n"
        script = (
            f"printf {shlex.quote(config)} > /tmp/sentinel.conf"
            " && exec redis-sentinel /tmp/sentinel.conf"
        )
        return ["sh", "-c", script]
