"""Topology orchestration: bring-up state machine with reverse-order rollback."""

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..core.errors import (
    ContainerRuntimeError,
    DeploymentCancelledError,
    NodeNotReadyError,
    RedisUpError,
    RuntimeUnavailableError,
)
from ..core.log import Logger, log_context, log_event, log_node_event
from ..core.types import (
    DeploymentType,
    InfrastructureConfig,
    InstanceRecord,
    OrchestrationState,
    TimeoutConfig,
)
from .container_spec_builder import ContainerSpecBuilder, volume_name
from .deployment_plan import NodeAllocation, ResourcePlan
from .health_checker import probe_for
from .runtime import LABEL_INSTANCE, ContainerRuntime
from .topology_bootstrapper import TopologyBootstrapper

# Legal forward transitions; FAILED is reachable from any non-terminal state
_TRANSITIONS: Dict[OrchestrationState, OrchestrationState] = {
    OrchestrationState.PLANNED: OrchestrationState.NETWORK_READY,
    OrchestrationState.NETWORK_READY: OrchestrationState.NODES_STARTING,
    OrchestrationState.NODES_STARTING: OrchestrationState.NODES_READY,
    OrchestrationState.NODES_READY: OrchestrationState.WIRING,
    OrchestrationState.WIRING: OrchestrationState.WIRED,
}


@dataclass
class _UndoStep:
    """Reverse action for one forward step."""

    description: str
    action: Callable[[], None]
    container: Optional[str] = None
    network: Optional[str] = None


@dataclass
class DeploymentRun:
    """Transient state of one orchestration attempt. Never persisted."""

    plan: ResourcePlan
    state: OrchestrationState = OrchestrationState.PLANNED
    history: List[OrchestrationState] = field(
        default_factory=lambda: [OrchestrationState.PLANNED]
    )
    container_ids: Dict[str, str] = field(default_factory=dict)
    undo: List[_UndoStep] = field(default_factory=list)

    def advance(self, target: OrchestrationState) -> None:
        """Move to the next state; phases are never skipped or reordered."""
        expected = _TRANSITIONS.get(self.state)
        # Types without wiring go straight from NodesReady to Wired
        skip_wiring = (
            self.state == OrchestrationState.NODES_READY
            and target == OrchestrationState.WIRED
        )
        if target != expected and not skip_wiring:
            raise RuntimeError(f"Illegal transition {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)


@dataclass
class TeardownReport:
    """What a rollback or teardown could not remove."""

    errors: List[str] = field(default_factory=list)
    leftover_containers: List[str] = field(default_factory=list)
    leftover_network: Optional[str] = None

    @property
    def clean(self) -> bool:
        return not self.errors


class DeploymentOrchestrator:
    """Drives the runtime through bring-up of a ResourcePlan.

    Forward steps register their undo action as they complete. Any failure
    moves the run to FAILED and replays the undo actions newest first, so
    containers are removed in reverse creation order and the network last.
    Rollback problems are attached to the original error, never raised in
    its place.
    """

    def __init__(
        self,
        logger: Logger,
        runtime: ContainerRuntime,
        executor: ThreadPoolExecutor,
        spec_builder: ContainerSpecBuilder,
        bootstrappers: Optional[Dict[DeploymentType, TopologyBootstrapper]] = None,
        timeout_config: Optional[TimeoutConfig] = None,
        infrastructure: Optional[InfrastructureConfig] = None,
    ) -> None:
        self._logger = logger
        self._runtime = runtime
        self._executor = executor
        self._spec_builder = spec_builder
        self._bootstrappers = bootstrappers or {}
        self._timeouts = timeout_config or TimeoutConfig()
        self._infrastructure = infrastructure or InfrastructureConfig()

    def deploy(self, plan: ResourcePlan) -> DeploymentRun:
        """Bring the plan up to WIRED.

        Raises:
            RuntimeUnavailableError: Runtime unreachable; nothing was touched
            NodeNotReadyError, WiringFailedError, ContainerRuntimeError:
                after rollback, with rollback details attached
            DeploymentCancelledError: interrupted by the user, after rollback
        """
        run = DeploymentRun(plan=plan)
        start_time = time.time()
        with log_context(instance=plan.instance_name):
            self._runtime.ping()
            try:
                self._prepare_images(plan)
                self._create_network(run)
                self._start_nodes(run)
                self._wait_for_nodes(run)
                self._wire(run)
            except KeyboardInterrupt as e:
                cancelled = DeploymentCancelledError(
                    f"Deployment of {plan.instance_name} cancelled",
                    details={"instance": plan.instance_name},
                )
                self._fail(run, cancelled)
                raise cancelled from e
            except RedisUpError as e:
                self._fail(run, e)
                raise
            except OSError as e:
                wrapped = ContainerRuntimeError(
                    f"Deployment of {plan.instance_name} failed: {e}",
                    details={"instance": plan.instance_name},
                )
                self._fail(run, wrapped)
                raise wrapped from e

            log_event(
                self._logger,
                "event",
                f"Instance {plan.instance_name} is up ({len(plan.nodes)} node(s), "
                f"{time.time() - start_time:.1f}s)",
                instance=plan.instance_name,
            )
            return run

    def teardown(self, record: InstanceRecord, remove_volumes: bool = False) -> TeardownReport:
        """Stop and remove every container of a record, then its network.

        Containers go in reverse creation order. Missing resources count as
        removed, so teardown can be repeated after a partial failure.
        """
        report = TeardownReport()
        with log_context(instance=record.name):
            for node in reversed(record.nodes):
                try:
                    self._remove_container(node.container_name)
                except RuntimeUnavailableError:
                    raise
                except (RedisUpError, OSError) as e:
                    report.errors.append(f"container {node.container_name}: {e}")
                    report.leftover_containers.append(node.container_name)

            try:
                self._runtime.remove_network(record.network)
            except RuntimeUnavailableError:
                raise
            except (RedisUpError, OSError) as e:
                report.errors.append(f"network {record.network}: {e}")
                report.leftover_network = record.network

            if remove_volumes:
                for node in record.nodes:
                    try:
                        self._runtime.remove_volume(volume_name(node.container_name))
                    except RuntimeUnavailableError:
                        raise
                    except (RedisUpError, OSError) as e:
                        report.errors.append(f"volume {volume_name(node.container_name)}: {e}")
        return report

    def stop_containers(self, record: InstanceRecord) -> TeardownReport:
        """Stop containers without removing them, newest first."""
        report = TeardownReport()
        for node in reversed(record.nodes):
            try:
                self._runtime.stop_container(
                    node.container_name, timeout=self._timeouts.container_stop
                )
                log_node_event(self._logger, "stopped", node.container_name)
            except RuntimeUnavailableError:
                raise
            except (RedisUpError, OSError) as e:
                report.errors.append(f"container {node.container_name}: {e}")
        return report

    def _prepare_images(self, plan: ResourcePlan) -> None:
        images = []
        for node in plan.nodes:
            image = self._spec_builder.build(plan, node).image
            if image not in images:
                images.append(image)
        for image in images:
            self._runtime.ensure_image(image)

    def _create_network(self, run: DeploymentRun) -> None:
        network = run.plan.network
        created = self._runtime.create_network(
            network, labels={LABEL_INSTANCE: run.plan.instance_name}
        )
        if not created:
            self._logger.info("Reusing existing network %s", network)
        run.undo.append(
            _UndoStep(
                f"remove network {network}",
                lambda: self._runtime.remove_network(network),
                network=network,
            )
        )
        run.advance(OrchestrationState.NETWORK_READY)

    def _start_nodes(self, run: DeploymentRun) -> None:
        """Create and start containers strictly in plan order."""
        run.advance(OrchestrationState.NODES_STARTING)
        plan = run.plan
        for node in plan.nodes:
            spec = self._spec_builder.build(plan, node)
            # Volumes kept by an earlier stop hold user data; rollback leaves them
            for volume in spec.volumes:
                if self._runtime.volume_exists(volume):
                    self._logger.info("Reusing existing volume %s", volume)
                    continue
                run.undo.append(
                    _UndoStep(
                        f"remove volume {volume}",
                        lambda volume=volume: self._runtime.remove_volume(volume),
                    )
                )
            container_id = self._runtime.create_container(spec)
            run.container_ids[node.container_name] = container_id
            run.undo.append(
                _UndoStep(
                    f"remove container {node.container_name}",
                    lambda name=node.container_name: self._remove_container(name),
                    container=node.container_name,
                )
            )
            log_node_event(
                self._logger, "created", node.container_name,
                role=node.role.value, port=node.host_port,
            )
            self._runtime.start_container(node.container_name)
            log_node_event(self._logger, "started", node.container_name)

    def _wait_for_nodes(self, run: DeploymentRun) -> None:
        """Probe every node concurrently; join before advancing."""
        plan = run.plan
        timeout = self._timeouts.node_ready
        futures = [
            (
                node,
                self._executor.submit(
                    self._runtime.wait_for_ready,
                    node.container_name,
                    probe_for(
                        node,
                        plan.password,
                        host=self._infrastructure.host,
                        http_timeout=self._timeouts.http_probe,
                    ),
                    timeout,
                    self._timeouts.probe_interval,
                ),
            )
            for node in plan.nodes
        ]
        first_error: Optional[RedisUpError] = None
        for node, future in futures:
            try:
                future.result(timeout=timeout + self._timeouts.http_probe)
                log_node_event(self._logger, "ready", node.container_name)
            except FutureTimeoutError:
                first_error = first_error or self._not_ready(node, timeout)
            except RedisUpError as e:
                first_error = first_error or e
        if first_error is not None:
            raise first_error
        run.advance(OrchestrationState.NODES_READY)

    def _wire(self, run: DeploymentRun) -> None:
        bootstrapper = self._bootstrappers.get(run.plan.deployment_type)
        if bootstrapper is None:
            run.advance(OrchestrationState.WIRED)
            return
        run.advance(OrchestrationState.WIRING)
        bootstrapper.bootstrap(run.plan)
        run.advance(OrchestrationState.WIRED)

    def _fail(self, run: DeploymentRun, error: RedisUpError) -> None:
        failed_state = run.state
        run.state = OrchestrationState.FAILED
        run.history.append(OrchestrationState.FAILED)
        self._logger.error(
            "Deployment of %s failed in state %s: %s",
            run.plan.instance_name,
            failed_state.value,
            error.message,
        )
        report = self._rollback(run)
        error.details.setdefault("instance", run.plan.instance_name)
        error.details["failed_state"] = failed_state.value
        error.details["rollback_errors"] = report.errors
        error.details["leftover_containers"] = report.leftover_containers
        error.details["leftover_network"] = report.leftover_network
        error.details["container_ids"] = {
            name: cid
            for name, cid in run.container_ids.items()
            if name in report.leftover_containers
        }

    def _rollback(self, run: DeploymentRun) -> TeardownReport:
        """Replay undo steps newest first; keep going past failures."""
        report = TeardownReport()
        while run.undo:
            step = run.undo.pop()
            try:
                step.action()
                log_event(self._logger, "rollback", f"Rolled back: {step.description}")
            except (RedisUpError, OSError) as e:
                self._logger.warning("Rollback step '%s' failed: %s", step.description, e)
                report.errors.append(f"{step.description}: {e}")
                if step.container:
                    report.leftover_containers.append(step.container)
                if step.network:
                    report.leftover_network = step.network
        return report

    def _remove_container(self, name: str) -> None:
        try:
            self._runtime.stop_container(name, timeout=self._timeouts.container_stop)
        except RuntimeUnavailableError:
            raise
        except ContainerRuntimeError as e:
            # Removal is forced, so a failed stop is not fatal on its own
            self._logger.debug("Stopping %s failed before removal: %s", name, e)
        self._runtime.remove_container(name)
        log_node_event(self._logger, "removed", name)

    @staticmethod
    def _not_ready(node: NodeAllocation, timeout: float) -> NodeNotReadyError:
        return NodeNotReadyError(
            f"Container {node.container_name} not ready after {timeout:.0f}s",
            timeout,
            details={"container": node.container_name, "port": node.host_port},
        )
