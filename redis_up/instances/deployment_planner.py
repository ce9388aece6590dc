"""Resource planning for Redis deployments.

The planner turns a DeploymentRequest plus a registry snapshot into a
ResourcePlan. It only reads the snapshot; nothing is created here.
"""

from typing import Dict, List, Optional

from ..core.config import ConfigProvider
from ..core.errors import NameConflictError, PortConflictError
from ..core.log import Logger
from ..core.types import DeploymentType, NodeRole
from ..core.value_objects import InstanceName
from ..utils.crypto import generate_password
from ..utils.ports import PortAllocator, PortProbe, host_port_is_free
from .deployment_plan import NodeAllocation, ResourcePlan
from .deployment_request import (
    ClusterRequest,
    DeploymentRequest,
    EnterpriseRequest,
    SentinelRequest,
    StackRequest,
)
from .instance_registry import RegistryState

REDIS_PORT = 6379
SENTINEL_PORT = 26379
ENTERPRISE_UI_PORT = 8443
ENTERPRISE_API_PORT = 9443
INSIGHT_PORT = 5540

ENTERPRISE_ADMIN = "admin@redis.local"

# Data-node base port used when the request does not name one
DEFAULT_BASE_PORTS: Dict[DeploymentType, int] = {
    DeploymentType.BASIC: 6379,
    DeploymentType.STACK: 6379,
    DeploymentType.CLUSTER: 7000,
    DeploymentType.SENTINEL: 6379,
    DeploymentType.ENTERPRISE: ENTERPRISE_UI_PORT,
}

# Enterprise REST API ports sit this far above the UI ports
ENTERPRISE_API_OFFSET = ENTERPRISE_API_PORT - ENTERPRISE_UI_PORT


def network_name(instance_name: str) -> str:
    return f"{instance_name}-net"


class DeploymentPlanner:
    """Creates conflict-free resource plans for every deployment type.

    Port scans start at the request's explicit base port when one is given;
    the type default is used only when none was given, and an exhausted
    scan from an explicit base never falls back to the default.
    """

    def __init__(
        self,
        logger: Logger,
        config_provider: ConfigProvider,
        probe: Optional[PortProbe] = None,
    ) -> None:
        self._logger = logger
        self._config_provider = config_provider
        infrastructure = config_provider.infrastructure
        if probe is None and infrastructure.probe_host_ports:
            probe = host_port_is_free
        self._probe = probe

    def plan(self, request: DeploymentRequest, snapshot: RegistryState) -> ResourcePlan:
        """Resolve name, network, container names and host ports.

        Raises:
            NameConflictError: Requested name or a derived container name is taken
            PortRangeExhaustedError: A port scan found nothing within the probe bound
        """
        deployment_type = request.deployment_type
        name = self._resolve_name(request, deployment_type, snapshot)

        allocator = PortAllocator(
            reserved=snapshot.used_ports(),
            max_probes=self._config_provider.infrastructure.max_port_probes,
            probe=self._probe,
        )
        base_port = request.port_base or DEFAULT_BASE_PORTS[deployment_type]

        if isinstance(request, ClusterRequest):
            nodes = self._plan_cluster(name, request, allocator, base_port)
        elif isinstance(request, SentinelRequest):
            nodes = self._plan_sentinel(name, request, allocator, base_port)
        elif isinstance(request, EnterpriseRequest):
            nodes = self._plan_enterprise(name, request, allocator, base_port)
        else:
            nodes = [
                NodeAllocation(
                    role=NodeRole.STANDALONE,
                    container_name=name,
                    host_port=allocator.allocate(base_port),
                    internal_port=REDIS_PORT,
                )
            ]

        if request.with_insight:
            nodes.append(
                NodeAllocation(
                    role=NodeRole.INSIGHT,
                    container_name=f"{name}-insight",
                    host_port=allocator.allocate(request.insight_port),
                    internal_port=INSIGHT_PORT,
                )
            )

        plan = ResourcePlan(
            instance_name=name,
            deployment_type=deployment_type,
            network=network_name(name),
            nodes=nodes,
            topology=request.topology(),
            password=self._resolve_password(request),
            username=ENTERPRISE_ADMIN if isinstance(request, EnterpriseRequest) else None,
            metadata=self._metadata(request),
        )
        self._check_container_names(plan, snapshot)

        self._logger.info(
            "Planned %s '%s': %d node(s) on ports %s",
            deployment_type.value,
            name,
            len(plan.nodes),
            ", ".join(str(p) for p in plan.host_ports),
        )
        return plan

    def revalidate(self, plan: ResourcePlan, snapshot: RegistryState) -> None:
        """Re-check a plan against a fresher snapshot before any mutation.

        Raises:
            NameConflictError: Instance or container name taken in the meantime
            PortConflictError: A planned host port was recorded in the meantime
        """
        if plan.instance_name in snapshot.names():
            raise NameConflictError(
                plan.instance_name, details={"instance": plan.instance_name}
            )
        self._check_container_names(plan, snapshot)

        taken = sorted(set(plan.host_ports) & snapshot.used_ports())
        if taken:
            raise PortConflictError(
                taken, details={"instance": plan.instance_name, "ports": taken}
            )

    def _resolve_name(
        self,
        request: DeploymentRequest,
        deployment_type: DeploymentType,
        snapshot: RegistryState,
    ) -> str:
        existing = snapshot.names()
        if request.name is not None:
            if request.name in existing:
                raise NameConflictError(request.name, details={"instance": request.name})
            return request.name

        # Lowest unused suffix >= 1, so freed suffixes are reused
        taken = existing | snapshot.container_names()
        suffix = 1
        while str(InstanceName.generated(deployment_type, suffix)) in taken:
            suffix += 1
        return str(InstanceName.generated(deployment_type, suffix))

    def _check_container_names(self, plan: ResourcePlan, snapshot: RegistryState) -> None:
        taken = snapshot.container_names() | snapshot.names()
        for container_name in plan.container_names:
            if container_name in taken:
                raise NameConflictError(
                    container_name,
                    details={"instance": plan.instance_name, "container": container_name},
                )

    def _plan_cluster(
        self, name: str, request: ClusterRequest, allocator: PortAllocator, base_port: int
    ) -> List[NodeAllocation]:
        """Masters first, then replicas grouped by the master they follow."""
        total = request.masters * (1 + request.replicas)
        ports = allocator.allocate_many(base_port, total)
        nodes = []
        for index, port in enumerate(ports):
            is_master = index < request.masters
            shard = index if is_master else (index - request.masters) // max(request.replicas, 1)
            nodes.append(
                NodeAllocation(
                    role=NodeRole.MASTER if is_master else NodeRole.REPLICA,
                    container_name=f"{name}-node-{index + 1}",
                    # Cluster nodes announce their own port, so it must match the host side
                    host_port=port,
                    internal_port=port,
                    shard=shard,
                )
            )
        return nodes

    def _plan_sentinel(
        self, name: str, request: SentinelRequest, allocator: PortAllocator, base_port: int
    ) -> List[NodeAllocation]:
        data_ports = allocator.allocate_many(base_port, request.masters * (1 + request.replicas))
        nodes = []
        for master in range(request.masters):
            nodes.append(
                NodeAllocation(
                    role=NodeRole.MASTER,
                    container_name=f"{name}-master-{master + 1}",
                    host_port=data_ports[master],
                    internal_port=REDIS_PORT,
                    shard=master,
                )
            )
        cursor = request.masters
        for master in range(request.masters):
            for replica in range(request.replicas):
                nodes.append(
                    NodeAllocation(
                        role=NodeRole.REPLICA,
                        container_name=f"{name}-replica-{master + 1}-{replica + 1}",
                        host_port=data_ports[cursor],
                        internal_port=REDIS_PORT,
                        shard=master,
                    )
                )
                cursor += 1

        sentinel_ports = allocator.allocate_many(request.sentinel_port_base, request.sentinels)
        for index, port in enumerate(sentinel_ports):
            nodes.append(
                NodeAllocation(
                    role=NodeRole.SENTINEL,
                    container_name=f"{name}-sentinel-{index + 1}",
                    host_port=port,
                    internal_port=SENTINEL_PORT,
                )
            )
        return nodes

    def _plan_enterprise(
        self, name: str, request: EnterpriseRequest, allocator: PortAllocator, base_port: int
    ) -> List[NodeAllocation]:
        ui_ports = allocator.allocate_many(base_port, request.nodes)
        api_ports = allocator.allocate_many(base_port + ENTERPRISE_API_OFFSET, request.nodes)
        db_port: Optional[int] = None
        if request.create_db and not request.containers_only:
            db_port = allocator.allocate(request.db_port)

        nodes = []
        for index, (ui_port, api_port) in enumerate(zip(ui_ports, api_ports)):
            extra_ports = {"api": api_port}
            if index == 0 and db_port is not None:
                extra_ports["db"] = db_port
            nodes.append(
                NodeAllocation(
                    role=NodeRole.ENTERPRISE_NODE,
                    container_name=f"{name}-node-{index + 1}",
                    host_port=ui_port,
                    internal_port=ENTERPRISE_UI_PORT,
                    extra_ports=extra_ports,
                )
            )
        return nodes

    def _resolve_password(self, request: DeploymentRequest) -> str:
        if request.password is not None:
            return request.password
        return generate_password()

    def _metadata(self, request: DeploymentRequest) -> Dict[str, object]:
        metadata: Dict[str, object] = {"persist": request.persist}
        if request.memory:
            metadata["memory"] = request.memory
        if isinstance(request, StackRequest):
            metadata["modules"] = list(request.modules)
        if isinstance(request, EnterpriseRequest):
            metadata["containers_only"] = request.containers_only
            if request.create_db:
                metadata["database"] = request.create_db
        return metadata

