"""Instance Manager: lifecycle operations over the registry and runtime."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, Dict, Iterator, List, Optional, Type

from ..core.context import ApplicationContext
from ..core.errors import (
    ContainerRuntimeError,
    InstanceNotFoundError,
    InstanceTypeMismatchError,
    RedisUpError,
    RuntimeUnavailableError,
    WiringFailedError,
)
from ..core.log import get_logger, log_context, log_event
from ..core.types import DeploymentType, InstanceRecord, InstanceStatus, NodeRole
from ..core.value_objects import generated_suffix
from .deployment_orchestrator import DeploymentOrchestrator, TeardownReport
from .deployment_request import DeploymentRequest
from .health_checker import redis_cli
from .instance_registry import RegistryState
from .topology_bootstrapper import (
    ClusterBootstrapper,
    EnterpriseBootstrapper,
    SentinelBootstrapper,
    parse_info,
    sentinel_master_name,
)

logger = get_logger(__name__)


@dataclass
class ThreadingResources:
    """Threading resources for parallel operations."""

    executor: ThreadPoolExecutor

    @classmethod
    def create(cls, max_workers: int) -> "ThreadingResources":
        return cls(
            executor=ThreadPoolExecutor(
                max_workers=max_workers,
                thread_name_prefix="RedisUp",
            ),
        )


@dataclass
class InstanceView:
    """A registry record reconciled against the runtime.

    Reconciliation is read-only: a record whose containers are gone is
    reported as stale, never deleted.
    """

    record: InstanceRecord
    missing_containers: List[str] = field(default_factory=list)
    runtime_reachable: bool = True
    live: Dict[str, Any] = field(default_factory=dict)

    @property
    def health(self) -> str:
        if not self.runtime_reachable:
            return "unknown"
        if not self.missing_containers:
            return "ok"
        if len(self.missing_containers) == len(self.record.nodes):
            return "stale"
        return "degraded"


@dataclass
class CleanupResult:
    """Outcome of removing a set of instances."""

    removed: List[str] = field(default_factory=list)
    failed: Dict[str, List[str]] = field(default_factory=dict)


class InstanceManager:
    """Provisions, inspects and removes instances.

    The registry is the durable source of truth: a record is committed as
    Starting before the runtime is touched, then rewritten as Running or
    removed once orchestration settles. The manager owns a worker pool for
    readiness probes and wiring fan-out and shuts it down on exit.
    """

    def __init__(self, app_context: ApplicationContext) -> None:
        self._app_context = app_context
        config = app_context.config
        self._threading = ThreadingResources.create(
            max_workers=config.infrastructure.orchestrator_max_workers
        )

        bootstrapper_args = dict(
            logger=app_context.logger,
            runtime=app_context.runtime,
            executor=self._threading.executor,
            timeout_config=config.timeouts,
        )
        self._orchestrator = DeploymentOrchestrator(
            logger=app_context.logger,
            runtime=app_context.runtime,
            executor=self._threading.executor,
            spec_builder=app_context.spec_builder,
            bootstrappers={
                DeploymentType.CLUSTER: ClusterBootstrapper(
                    poll_interval=config.timeouts.probe_interval, **bootstrapper_args
                ),
                DeploymentType.SENTINEL: SentinelBootstrapper(**bootstrapper_args),
                DeploymentType.ENTERPRISE: EnterpriseBootstrapper(**bootstrapper_args),
            },
            timeout_config=config.timeouts,
            infrastructure=config.infrastructure,
        )

    def __enter__(self) -> "InstanceManager":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self._threading.executor.shutdown(wait=True)

    @property
    def registry(self):
        return self._app_context.registry

    @property
    def runtime(self):
        return self._app_context.runtime

    # Provisioning

    def start(self, request: DeploymentRequest) -> InstanceRecord:
        """Plan, commit and bring up one instance.

        The planned record is committed as Starting in the same registry
        update that re-checks names and ports, so a registry write failure
        aborts before any container exists.

        Raises:
            PlanningError: Name conflict or no free ports
            RegistryError: Registry unreadable or unwritable
            OrchestrationError, ContainerRuntimeError: bring-up failed; the
                record was removed, or kept as PartiallyFailed when rollback
                left resources behind
        """
        snapshot = self.registry.load()
        plan = self._app_context.planner.plan(request, snapshot)

        def _commit(state: RegistryState) -> None:
            self._app_context.planner.revalidate(plan, state)
            state.instances[plan.instance_name] = plan.to_record(InstanceStatus.STARTING)

        self.registry.update(_commit)
        log_event(
            logger,
            "event",
            f"Starting {plan.deployment_type.value} instance {plan.instance_name}",
            ports=plan.host_ports,
        )

        try:
            run = self._orchestrator.deploy(plan)
        except RedisUpError as e:
            self._settle_failed_start(plan, e)
            raise

        record = plan.to_record(InstanceStatus.RUNNING, run.container_ids)
        self.registry.upsert(record)
        return record

    def _settle_failed_start(self, plan, error: RedisUpError) -> None:
        leftover_containers = error.details.get("leftover_containers") or []
        leftover_network = error.details.get("leftover_network")
        if not leftover_containers and not leftover_network:
            self.registry.remove(plan.instance_name)
            return
        record = plan.to_record(
            InstanceStatus.PARTIALLY_FAILED,
            error.details.get("container_ids"),
            only=leftover_containers,
        )
        self.registry.upsert(record)
        error.details["status"] = InstanceStatus.PARTIALLY_FAILED.value
        logger.warning(
            "Instance %s left resources behind; run cleanup to remove them",
            plan.instance_name,
        )

    # Lookup

    def resolve(
        self, name: Optional[str], deployment_type: Optional[DeploymentType] = None
    ) -> InstanceRecord:
        """Find a record by name, or the latest instance of a type.

        Without a name the instance with the highest generated suffix wins;
        if none follows the generated pattern, the newest one does.
        """
        state = self.registry.load()
        if name is not None:
            record = state.find(name)
            if record is None:
                raise InstanceNotFoundError(
                    f"No instance named '{name}'", details={"name": name}
                )
            if deployment_type is not None and record.deployment_type != deployment_type:
                raise InstanceTypeMismatchError(
                    f"Instance '{name}' is a {record.deployment_type.value} instance, "
                    f"not {deployment_type.value}",
                    details={
                        "name": name,
                        "expected": deployment_type.value,
                        "actual": record.deployment_type.value,
                    },
                )
            return record

        records = state.records(deployment_type)
        if not records:
            kind = f"{deployment_type.value} " if deployment_type else ""
            raise InstanceNotFoundError(f"No {kind}instances found")
        if deployment_type is not None:
            numbered = [
                (generated_suffix(record.name, deployment_type), record)
                for record in records
            ]
            numbered = [(n, record) for n, record in numbered if n is not None]
            if numbered:
                return max(numbered, key=lambda item: item[0])[1]
        return records[0]

    # Teardown

    def stop(
        self,
        name: Optional[str],
        deployment_type: Optional[DeploymentType] = None,
        *,
        keep_containers: bool = False,
        remove_volumes: bool = False,
    ) -> InstanceRecord:
        """Stop an instance.

        By default containers and network are removed together with the
        record. With ``keep_containers`` containers are only stopped and
        the record is kept as Stopped.
        """
        record = self.resolve(name, deployment_type)
        with log_context(instance=record.name):
            if keep_containers:
                report = self._orchestrator.stop_containers(record)
                if report.errors:
                    raise ContainerRuntimeError(
                        f"Failed to stop {record.name}", details={"errors": report.errors}
                    )
                stopped = record.model_copy(update={"status": InstanceStatus.STOPPED})
                self.registry.upsert(stopped)
                log_event(logger, "event", f"Stopped {record.name}")
                return stopped

            report = self._orchestrator.teardown(record, remove_volumes=remove_volumes)
            if not report.clean:
                self._keep_partial(record, report)
                raise ContainerRuntimeError(
                    f"Failed to remove every resource of {record.name}",
                    details={
                        "errors": report.errors,
                        "leftover_containers": report.leftover_containers,
                        "leftover_network": report.leftover_network,
                    },
                )
            self.registry.remove(record.name)
            log_event(logger, "event", f"Removed {record.name}")
            return record

    def cleanup(
        self,
        deployment_type: Optional[DeploymentType] = None,
        remove_volumes: bool = False,
    ) -> CleanupResult:
        """Remove every instance, or every instance of one type.

        Instances that cannot be removed completely are kept as
        PartiallyFailed with only their leftover containers.
        """
        result = CleanupResult()
        for record in self.registry.list(deployment_type):
            with log_context(instance=record.name):
                report = self._orchestrator.teardown(record, remove_volumes=remove_volumes)
            if report.clean:
                self.registry.remove(record.name)
                result.removed.append(record.name)
            else:
                self._keep_partial(record, report)
                result.failed[record.name] = report.errors
        return result

    def _keep_partial(self, record: InstanceRecord, report: TeardownReport) -> None:
        leftover = set(report.leftover_containers)
        partial = record.model_copy(
            update={
                "status": InstanceStatus.PARTIALLY_FAILED,
                "nodes": [n for n in record.nodes if n.container_name in leftover],
            }
        )
        self.registry.upsert(partial)

    # Inspection

    def list_instances(self, deployment_type: Optional[DeploymentType] = None) -> List[InstanceView]:
        """Registry records newest first, reconciled with the runtime."""
        return [self._reconcile(record) for record in self.registry.list(deployment_type)]

    def info(
        self, name: Optional[str], deployment_type: Optional[DeploymentType] = None
    ) -> InstanceView:
        """Reconciled view of one instance plus live topology details."""
        view = self._reconcile(self.resolve(name, deployment_type))
        if view.runtime_reachable and not view.missing_containers:
            try:
                view.live = self._live_details(view.record)
            except RedisUpError as e:
                logger.debug("Live details for %s unavailable: %s", view.record.name, e)
                view.live = {"error": e.message}
        return view

    def logs(
        self,
        name: Optional[str] = None,
        node: Optional[str] = None,
        *,
        follow: bool = False,
        tail: Optional[int] = None,
        timestamps: bool = False,
    ) -> Iterator[str]:
        """Log output of one node; defaults to the newest instance's first node."""
        record = self.resolve(name)
        container = self._select_node(record, node)
        return self.runtime.tail_logs(
            container, follow=follow, tail=tail, timestamps=timestamps
        )

    @staticmethod
    def _select_node(record: InstanceRecord, node: Optional[str]) -> str:
        names = record.container_names
        if not names:
            raise InstanceNotFoundError(f"Instance '{record.name}' has no containers")
        if node is None:
            return names[0]
        for candidate in (node, f"{record.name}-{node}"):
            if candidate in names:
                return candidate
        raise InstanceNotFoundError(
            f"Instance '{record.name}' has no node '{node}'",
            details={"nodes": names},
        )

    def _reconcile(self, record: InstanceRecord) -> InstanceView:
        view = InstanceView(record=record)
        try:
            for node in record.nodes:
                if self.runtime.container_status(node.container_name) is None:
                    view.missing_containers.append(node.container_name)
        except RuntimeUnavailableError:
            view.runtime_reachable = False
            view.missing_containers = []
        return view

    def _live_details(self, record: InstanceRecord) -> Dict[str, Any]:
        password = record.credentials.password
        if record.deployment_type == DeploymentType.CLUSTER:
            node = record.nodes[0]
            result = self.runtime.exec(
                node.container_name, redis_cli(node.internal_port, password, "cluster", "info")
            )
            info = parse_info(result.output)
            return {
                key: info.get(key)
                for key in ("cluster_state", "cluster_slots_assigned", "cluster_known_nodes")
            }

        if record.deployment_type == DeploymentType.SENTINEL:
            sentinel = record.nodes_with_role(NodeRole.SENTINEL)[0]
            details: Dict[str, Any] = {}
            for shard in range(record.topology.masters):
                master = sentinel_master_name(shard)
                result = self.runtime.exec(
                    sentinel.container_name,
                    redis_cli(
                        sentinel.internal_port, None,
                        "sentinel", "get-master-addr-by-name", master,
                    ),
                )
                details[master] = ":".join(result.output.split()) or None
            return details

        if record.deployment_type == DeploymentType.ENTERPRISE:
            return {}

        node = record.primary_node()
        result = self.runtime.exec(
            node.container_name, redis_cli(node.internal_port, password, "info", "server")
        )
        info = parse_info(result.output)
        return {key: info.get(key) for key in ("redis_version", "uptime_in_seconds")}

    # Sentinel operations

    def failover(self, name: Optional[str], master: int = 1) -> str:
        """Force a sentinel failover of one master group.

        The request goes to the first sentinel that accepts it.

        Returns:
            Container name of the sentinel that accepted the request
        """
        record = self.resolve(name, DeploymentType.SENTINEL)
        if not 1 <= master <= record.topology.masters:
            raise InstanceNotFoundError(
                f"Instance '{record.name}' has no master {master}",
                details={"masters": record.topology.masters},
            )
        master_name = sentinel_master_name(master - 1)
        errors = []
        for sentinel in record.nodes_with_role(NodeRole.SENTINEL):
            try:
                result = self.runtime.exec(
                    sentinel.container_name,
                    redis_cli(sentinel.internal_port, None, "sentinel", "failover", master_name),
                )
            except RuntimeUnavailableError:
                raise
            except ContainerRuntimeError as e:
                errors.append(f"{sentinel.container_name}: {e.message}")
                continue
            if result.ok and result.output.strip() == "OK":
                log_event(
                    logger,
                    "event",
                    f"Failover of {master_name} requested via {sentinel.container_name}",
                    instance=record.name,
                )
                return sentinel.container_name
            errors.append(f"{sentinel.container_name}: {result.output.strip()}")

        raise WiringFailedError(
            f"No sentinel of {record.name} accepted the failover of {master_name}",
            details={"errors": errors},
        )
