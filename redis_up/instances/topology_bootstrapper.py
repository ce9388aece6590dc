"""Topology wiring for cluster, sentinel and enterprise deployments.

Wiring runs after every node passed its readiness probe. Each bootstrapper
either completes or raises WiringFailedError; none of them retries or
migrates slots incrementally.
"""

import json
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from functools import partial
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Set, Tuple, TypeVar

from ..core.errors import ContainerRuntimeError, WiringFailedError
from ..core.log import Logger, log_event
from ..core.types import NodeRole, TimeoutConfig
from .deployment_plan import NodeAllocation, ResourcePlan
from .health_checker import redis_cli
from .runtime import ContainerRuntime

CLUSTER_SLOTS = 16384

SENTINEL_DOWN_AFTER_MS = 5000
SENTINEL_FAILOVER_TIMEOUT_MS = 10000
SENTINEL_PARALLEL_SYNCS = 1

ENTERPRISE_DB_MEMORY_BYTES = 100 * 1024 * 1024

T = TypeVar("T")


@dataclass(frozen=True)
class SlotRange:
    """Contiguous, inclusive range of hash slots owned by one master."""

    start: int
    end: int

    @property
    def count(self) -> int:
        return self.end - self.start + 1

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


def compute_slot_ranges(masters: int) -> List[SlotRange]:
    """Split the hash slots into contiguous ranges, one per master.

    Every master gets ``CLUSTER_SLOTS // masters`` slots and the last master
    also takes the remainder.
    """
    if masters < 1:
        raise ValueError("At least one master is required")
    per_master = CLUSTER_SLOTS // masters
    ranges = []
    for index in range(masters):
        start = index * per_master
        end = CLUSTER_SLOTS - 1 if index == masters - 1 else start + per_master - 1
        ranges.append(SlotRange(start, end))
    return ranges


def parse_owned_slots(cluster_nodes: str) -> Set[int]:
    """Slots the answering node claims for itself in CLUSTER NODES output.

    Migrating and importing markers (``[slot->-id]``) are ignored.
    """
    for line in cluster_nodes.splitlines():
        fields = line.split()
        if len(fields) < 8 or "myself" not in fields[2].split(","):
            continue
        owned: Set[int] = set()
        for token in fields[8:]:
            if token.startswith("["):
                continue
            start, _, end = token.partition("-")
            owned.update(range(int(start), int(end or start) + 1))
        return owned
    return set()


def missing_slot_ranges(slot_range: SlotRange, owned: Set[int]) -> List[SlotRange]:
    """Parts of ``slot_range`` not yet in ``owned``, as contiguous ranges."""
    missing = []
    start: Optional[int] = None
    for slot in range(slot_range.start, slot_range.end + 1):
        if slot not in owned:
            if start is None:
                start = slot
        elif start is not None:
            missing.append(SlotRange(start, slot - 1))
            start = None
    if start is not None:
        missing.append(SlotRange(start, slot_range.end))
    return missing


def sentinel_master_name(shard: int) -> str:
    return f"master-{shard + 1}"


def default_quorum(sentinels: int) -> int:
    return sentinels // 2 + 1


class TopologyBootstrapper(Protocol):
    """Protocol for per-type wiring steps."""

    def bootstrap(self, plan: ResourcePlan) -> None:
        """Wire the ready nodes of a plan into a working topology."""


class _ExecMixin:
    """Shared exec and fan-out helpers."""

    _runtime: ContainerRuntime
    _executor: ThreadPoolExecutor
    _timeouts: TimeoutConfig
    _logger: Logger

    def _exec_ok(self, container: str, command: List[str], expect: Optional[str] = "OK") -> str:
        """Run a wiring command; raise WiringFailedError unless it succeeded."""
        try:
            result = self._runtime.exec(container, command)
        except ContainerRuntimeError as e:
            raise WiringFailedError(
                f"Wiring command failed on {container}: {e.message}",
                details={"container": container, **e.details},
            ) from e
        output = result.output.strip()
        if not result.ok or (expect is not None and output != expect):
            raise WiringFailedError(
                f"Wiring command rejected by {container}: {output or result.exit_code}",
                details={"container": container, "exit_code": result.exit_code, "output": output},
            )
        return output

    def _fan_out(self, tasks: List[Tuple[str, Callable[[], T]]]) -> Dict[str, T]:
        """Run independent tasks concurrently and join them before returning.

        Raises the first failure after every task finished.
        """
        futures = [(key, self._executor.submit(fn)) for key, fn in tasks]
        results: Dict[str, T] = {}
        first_error: Optional[BaseException] = None
        for key, future in futures:
            try:
                results[key] = future.result(timeout=self._timeouts.wiring_command)
            except (WiringFailedError, ContainerRuntimeError, FutureTimeoutError) as e:
                if first_error is None:
                    first_error = e
        if first_error is not None:
            if isinstance(first_error, WiringFailedError):
                raise first_error
            raise WiringFailedError(f"Wiring step failed: {first_error}") from first_error
        return results


class ClusterBootstrapper(_ExecMixin):
    """Creates a Redis Cluster from freshly started cluster-enabled nodes.

    The slot partition from compute_slot_ranges is applied as planned, minus
    the slots a master already claims from persisted data. Then nodes are
    introduced to each other, replicas attached, and the cluster is
    polled until every node agrees it is healthy.
    """

    def __init__(
        self,
        logger: Logger,
        runtime: ContainerRuntime,
        executor: ThreadPoolExecutor,
        timeout_config: Optional[TimeoutConfig] = None,
        poll_interval: float = 0.5,
    ) -> None:
        self._logger = logger
        self._runtime = runtime
        self._executor = executor
        self._timeouts = timeout_config or TimeoutConfig()
        self._poll_interval = poll_interval

    def bootstrap(self, plan: ResourcePlan) -> None:
        masters = plan.get_masters()
        replicas = plan.get_replicas()
        data_nodes = masters + replicas
        password = plan.password
        ranges = compute_slot_ranges(len(masters))
        self._logger.info(
            "Creating cluster %s: %d masters (%s), %d replica(s) per master",
            plan.instance_name,
            len(masters),
            ", ".join(str(r) for r in ranges),
            plan.topology.replicas,
        )

        # Nodes restarted on persisted data claim the slots of the keys they load
        owned = self._fan_out(
            [
                (n.container_name, partial(self._owned_slots, n, password))
                for n in data_nodes
            ]
        )
        for master, slot_range in zip(masters, ranges):
            stray = owned[master.container_name] - set(
                range(slot_range.start, slot_range.end + 1)
            )
            if stray:
                raise WiringFailedError(
                    f"Node {master.container_name} holds data for slots outside "
                    f"its range {slot_range}",
                    details={
                        "container": master.container_name,
                        "stray_slots": len(stray),
                        "hint": "start with the previous master count, or stop with "
                        "--volumes to discard the data",
                    },
                )
        self._fan_out(
            [
                (replica.container_name, partial(self._reset_node, replica, password))
                for replica in replicas
                if owned[replica.container_name]
            ]
        )

        node_ids = self._fan_out(
            [
                (n.container_name, partial(self._node_id, n, password))
                for n in data_nodes
            ]
        )

        assignments = []
        for master, slot_range in zip(masters, ranges):
            missing = missing_slot_ranges(slot_range, owned[master.container_name])
            if not missing:
                continue
            bounds = [str(bound) for r in missing for bound in (r.start, r.end)]
            assignments.append(
                (
                    master.container_name,
                    partial(
                        self._exec_ok,
                        master.container_name,
                        redis_cli(
                            master.internal_port, password,
                            "cluster", "addslotsrange", *bounds,
                        ),
                    ),
                )
            )
        self._fan_out(assignments)

        seed = masters[0]
        seed_address = self._runtime.container_address(seed.container_name, plan.network)
        self._fan_out(
            [
                (
                    node.container_name,
                    partial(
                        self._exec_ok,
                        node.container_name,
                        redis_cli(
                            node.internal_port, password,
                            "cluster", "meet", seed_address, str(seed.internal_port),
                        ),
                    ),
                )
                for node in data_nodes[1:]
            ]
        )
        self._wait_for(
            lambda: self._known_nodes(seed, password) == len(data_nodes),
            f"all {len(data_nodes)} nodes to join cluster {plan.instance_name}",
            seed.container_name,
        )

        masters_by_shard = {m.shard: m for m in masters}
        self._fan_out(
            [
                (
                    replica.container_name,
                    partial(
                        self._exec_ok,
                        replica.container_name,
                        redis_cli(
                            replica.internal_port, password,
                            "cluster", "replicate",
                            node_ids[masters_by_shard[replica.shard].container_name],
                        ),
                    ),
                )
                for replica in replicas
            ]
        )

        self._wait_for(
            lambda: self._cluster_healthy(seed, password),
            f"cluster {plan.instance_name} to report cluster_state:ok",
            seed.container_name,
        )
        log_event(
            self._logger,
            "wiring",
            f"Cluster {plan.instance_name} created with {CLUSTER_SLOTS} slots assigned",
            instance=plan.instance_name,
        )

    def _node_id(self, node: NodeAllocation, password: Optional[str]) -> str:
        return self._exec_ok(
            node.container_name, redis_cli(node.internal_port, password, "cluster", "myid"),
            expect=None,
        )

    def _owned_slots(self, node: NodeAllocation, password: Optional[str]) -> Set[int]:
        output = self._exec_ok(
            node.container_name, redis_cli(node.internal_port, password, "cluster", "nodes"),
            expect=None,
        )
        return parse_owned_slots(output)

    def _reset_node(self, node: NodeAllocation, password: Optional[str]) -> None:
        """Drop a replica's stale copy; it resyncs from its master after REPLICATE."""
        self._logger.info("Resetting %s before it joins as a replica", node.container_name)
        self._exec_ok(node.container_name, redis_cli(node.internal_port, password, "flushall"))
        self._exec_ok(
            node.container_name,
            redis_cli(node.internal_port, password, "cluster", "reset", "hard"),
        )

    def _cluster_info(self, node: NodeAllocation, password: Optional[str]) -> Dict[str, str]:
        output = self._exec_ok(
            node.container_name, redis_cli(node.internal_port, password, "cluster", "info"),
            expect=None,
        )
        return parse_info(output)

    def _known_nodes(self, node: NodeAllocation, password: Optional[str]) -> int:
        return int(self._cluster_info(node, password).get("cluster_known_nodes", "0"))

    def _cluster_healthy(self, node: NodeAllocation, password: Optional[str]) -> bool:
        info = self._cluster_info(node, password)
        return (
            info.get("cluster_state") == "ok"
            and info.get("cluster_slots_assigned") == str(CLUSTER_SLOTS)
        )

    def _wait_for(self, condition: Callable[[], bool], what: str, container: str) -> None:
        deadline = time.time() + self._timeouts.cluster_converge
        while True:
            if condition():
                return
            if time.time() >= deadline:
                raise WiringFailedError(
                    f"Timed out after {self._timeouts.cluster_converge:.0f}s waiting for {what}",
                    details={"container": container},
                )
            time.sleep(self._poll_interval)


class SentinelBootstrapper(_ExecMixin):
    """Registers every master with every sentinel.

    Registrations are independent per sentinel and are issued concurrently;
    wiring succeeds only when every sentinel acknowledged every master.
    """

    def __init__(
        self,
        logger: Logger,
        runtime: ContainerRuntime,
        executor: ThreadPoolExecutor,
        timeout_config: Optional[TimeoutConfig] = None,
    ) -> None:
        self._logger = logger
        self._runtime = runtime
        self._executor = executor
        self._timeouts = timeout_config or TimeoutConfig()

    def bootstrap(self, plan: ResourcePlan) -> None:
        sentinels = plan.get_sentinels()
        masters = plan.get_masters()
        quorum = plan.topology.quorum or default_quorum(len(sentinels))
        self._logger.info(
            "Registering %d master(s) with %d sentinel(s), quorum %d",
            len(masters),
            len(sentinels),
            quorum,
        )

        futures = [
            (sentinel, self._executor.submit(self._register, sentinel, masters, plan.password, quorum))
            for sentinel in sentinels
        ]
        acknowledged: List[str] = []
        failures: Dict[str, str] = {}
        for sentinel, future in futures:
            try:
                future.result(timeout=self._timeouts.wiring_command)
                acknowledged.append(sentinel.container_name)
            except (WiringFailedError, ContainerRuntimeError, FutureTimeoutError) as e:
                failures[sentinel.container_name] = str(e)
                self._logger.warning(
                    "Sentinel %s did not acknowledge monitor registration: %s",
                    sentinel.container_name,
                    e,
                )

        if failures:
            raise WiringFailedError(
                f"{len(acknowledged)} of {len(sentinels)} sentinels acknowledged "
                f"(quorum {quorum}) for {plan.instance_name}",
                details={
                    "instance": plan.instance_name,
                    "acknowledged": acknowledged,
                    "failed": failures,
                    "quorum": quorum,
                },
            )
        log_event(
            self._logger,
            "wiring",
            f"All {len(sentinels)} sentinels monitor {len(masters)} master(s) for {plan.instance_name}",
            instance=plan.instance_name,
        )

    def _register(
        self,
        sentinel: NodeAllocation,
        masters: List[NodeAllocation],
        password: Optional[str],
        quorum: int,
    ) -> None:
        port = sentinel.internal_port
        for master in masters:
            name = sentinel_master_name(master.shard or 0)
            commands = [
                ["sentinel", "monitor", name, master.container_name, str(master.internal_port), str(quorum)],
                ["sentinel", "set", name, "down-after-milliseconds", str(SENTINEL_DOWN_AFTER_MS)],
                ["sentinel", "set", name, "failover-timeout", str(SENTINEL_FAILOVER_TIMEOUT_MS)],
                ["sentinel", "set", name, "parallel-syncs", str(SENTINEL_PARALLEL_SYNCS)],
            ]
            if password:
                commands.append(["sentinel", "set", name, "auth-pass", password])
            for args in commands:
                self._exec_ok(sentinel.container_name, redis_cli(port, None, *args))


class EnterpriseBootstrapper(_ExecMixin):
    """Forms an enterprise cluster and optionally creates a database."""

    def __init__(
        self,
        logger: Logger,
        runtime: ContainerRuntime,
        executor: ThreadPoolExecutor,
        timeout_config: Optional[TimeoutConfig] = None,
    ) -> None:
        self._logger = logger
        self._runtime = runtime
        self._executor = executor
        self._timeouts = timeout_config or TimeoutConfig()

    def bootstrap(self, plan: ResourcePlan) -> None:
        if plan.metadata.get("containers_only"):
            self._logger.info("Skipping cluster formation for %s", plan.instance_name)
            return

        nodes = plan.nodes_with_role(NodeRole.ENTERPRISE_NODE)
        first = nodes[0]
        username = plan.username or ""
        password = plan.password or ""

        self._exec_ok(
            first.container_name,
            [
                "rladmin", "cluster", "create",
                "name", f"{plan.instance_name}.local",
                "username", username,
                "password", password,
            ],
            expect=None,
        )
        self._logger.info("Enterprise cluster created on %s", first.container_name)

        if len(nodes) > 1:
            first_address = self._runtime.container_address(first.container_name, plan.network)
            # Joins go one at a time; the cluster serializes membership changes
            for node in nodes[1:]:
                self._exec_ok(
                    node.container_name,
                    [
                        "rladmin", "cluster", "join",
                        "nodes", first_address,
                        "username", username,
                        "password", password,
                    ],
                    expect=None,
                )
                self._logger.info("Node %s joined %s", node.container_name, plan.instance_name)

        database = plan.metadata.get("database")
        if database:
            self._create_database(first, str(database), username, password)

    def _create_database(
        self, node: NodeAllocation, database: str, username: str, password: str
    ) -> None:
        body = json.dumps(
            {
                "name": database,
                "port": node.extra_ports["db"],
                "memory_size": ENTERPRISE_DB_MEMORY_BYTES,
            }
        )
        self._exec_ok(
            node.container_name,
            [
                "curl", "-sfk",
                "-u", f"{username}:{password}",
                "-X", "POST",
                "-H", "Content-Type: application/json",
                "-d", body,
                "https://localhost:9443/v1/bdbs",
            ],
            expect=None,
        )
        self._logger.info("Database %s created on port %s", database, node.extra_ports["db"])


def parse_info(output: str) -> Dict[str, str]:
    """Parse INFO-style ``key:value`` lines."""
    info: Dict[str, str] = {}
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or ":" not in line:
            continue
        key, _, value = line.partition(":")
        info[key] = value
    return info
