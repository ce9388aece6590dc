"""Resource plan data structures for Redis deployments."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..core.types import (
    Credentials,
    DeploymentType,
    InstanceRecord,
    InstanceStatus,
    NodeRecord,
    NodeRole,
    TopologySpec,
)


@dataclass(frozen=True)
class NodeAllocation:
    """Name and ports assigned to one container of a planned instance."""

    role: NodeRole
    container_name: str
    host_port: int
    internal_port: int
    shard: Optional[int] = None
    extra_ports: Dict[str, int] = field(default_factory=dict)

    @property
    def all_host_ports(self) -> List[int]:
        return [self.host_port, *self.extra_ports.values()]

    def to_record(self, container_id: Optional[str] = None) -> NodeRecord:
        return NodeRecord(
            container_name=self.container_name,
            role=self.role,
            host_port=self.host_port,
            internal_port=self.internal_port,
            container_id=container_id,
            shard=self.shard,
            extra_ports=dict(self.extra_ports),
        )


@dataclass
class ResourcePlan:
    """Fully resolved names, ports and network for one instance.

    Node order is creation order: masters, replicas, sentinels or enterprise
    nodes, then insight.
    """

    instance_name: str
    deployment_type: DeploymentType
    network: str
    nodes: List[NodeAllocation] = field(default_factory=list)
    topology: TopologySpec = field(default_factory=TopologySpec)
    password: Optional[str] = None
    username: Optional[str] = None
    metadata: Dict[str, object] = field(default_factory=dict)

    @property
    def container_names(self) -> List[str]:
        return [node.container_name for node in self.nodes]

    @property
    def host_ports(self) -> List[int]:
        ports: List[int] = []
        for node in self.nodes:
            ports.extend(node.all_host_ports)
        return ports

    def nodes_with_role(self, role: NodeRole) -> List[NodeAllocation]:
        return [node for node in self.nodes if node.role == role]

    def get_masters(self) -> List[NodeAllocation]:
        return self.nodes_with_role(NodeRole.MASTER)

    def get_replicas(self) -> List[NodeAllocation]:
        return self.nodes_with_role(NodeRole.REPLICA)

    def get_sentinels(self) -> List[NodeAllocation]:
        return self.nodes_with_role(NodeRole.SENTINEL)

    def to_record(
        self,
        status: InstanceStatus,
        container_ids: Optional[Dict[str, str]] = None,
        only: Optional[List[str]] = None,
    ) -> InstanceRecord:
        """Build the registry record for this plan.

        Args:
            status: Status to record
            container_ids: Runtime ids keyed by container name, where known
            only: Restrict the node list to these container names
        """
        container_ids = container_ids or {}
        nodes = [
            node.to_record(container_ids.get(node.container_name))
            for node in self.nodes
            if only is None or node.container_name in only
        ]
        return InstanceRecord(
            name=self.instance_name,
            deployment_type=self.deployment_type,
            network=self.network,
            nodes=nodes,
            credentials=Credentials(password=self.password, username=self.username),
            status=status,
            topology=self.topology,
            metadata=dict(self.metadata),
        )
