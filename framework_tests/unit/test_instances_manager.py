"""Tests for InstanceManager lifecycle operations."""

import pytest

from redis_up.core.enums import DeploymentType, InstanceStatus, NodeRole
from redis_up.core.errors import (
    ContainerRuntimeError,
    InstanceNotFoundError,
    InstanceTypeMismatchError,
    NameConflictError,
    NodeNotReadyError,
    RuntimeUnavailableError,
    WiringFailedError,
)
from redis_up.core.types import ExecResult
from redis_up.instances.deployment_request import (
    BasicRequest,
    ClusterRequest,
    EnterpriseRequest,
    SentinelRequest,
    StackRequest,
)
from redis_up.instances.manager import InstanceManager, InstanceView


class _ManagerTestBase:
    @pytest.fixture(autouse=True)
    def _setup(self, app_context, fake_runtime):
        self.runtime = fake_runtime
        self.registry = app_context.registry
        with InstanceManager(app_context) as manager:
            self.manager = manager
            yield


class TestStart(_ManagerTestBase):
    """Provisioning commits the record before touching the runtime."""

    def test_basic_start_records_running_instance(self):
        record = self.manager.start(BasicRequest(name="cache", password="pw"))

        assert record.status == InstanceStatus.RUNNING
        assert record.nodes[0].container_id == "id-cache"
        assert record.credentials.password == "pw"
        stored = self.registry.find("cache")
        assert stored.status == InstanceStatus.RUNNING
        assert self.runtime.containers == {"cache": "running"}

    def test_generated_names_increase(self):
        first = self.manager.start(BasicRequest())
        second = self.manager.start(BasicRequest())
        assert (first.name, second.name) == ("basic-1", "basic-2")
        assert first.nodes[0].host_port != second.nodes[0].host_port

    def test_cluster_start(self):
        record = self.manager.start(ClusterRequest(name="c", replicas=1))
        assert len(record.nodes) == 6
        assert record.topology.replicas == 1
        assert any("addslotsrange" in command for _, command in self.runtime.exec_calls)

    def test_sentinel_start(self):
        record = self.manager.start(SentinelRequest(name="s", replicas=1))
        assert len(record.nodes_with_role(NodeRole.SENTINEL)) == 3
        assert record.topology.quorum == 2

    def test_stack_and_enterprise_start(self):
        stack = self.manager.start(StackRequest(name="st", modules=["json"]))
        enterprise = self.manager.start(EnterpriseRequest(name="e", nodes=2))
        assert stack.metadata["modules"] == ["json"]
        assert enterprise.credentials.username == "admin@redis.local"

    def test_name_conflict_touches_nothing(self):
        self.manager.start(BasicRequest(name="cache"))
        self.runtime.calls.clear()

        with pytest.raises(NameConflictError):
            self.manager.start(BasicRequest(name="cache"))
        assert self.runtime.calls == []

    def test_failure_leaves_no_record(self):
        self.runtime.not_ready.add("cache")
        with pytest.raises(NodeNotReadyError):
            self.manager.start(BasicRequest(name="cache"))
        assert self.registry.find("cache") is None
        assert self.runtime.containers == {}

    def test_failure_with_leftovers_is_recorded(self):
        self.runtime.not_ready.add("c-node-2")
        self.runtime.fail_remove.add("c-node-1")

        with pytest.raises(NodeNotReadyError) as exc_info:
            self.manager.start(ClusterRequest(name="c"))

        assert exc_info.value.details["status"] == "partially_failed"
        stored = self.registry.find("c")
        assert stored.status == InstanceStatus.PARTIALLY_FAILED
        assert stored.container_names == ["c-node-1"]
        assert stored.nodes[0].container_id == "id-c-node-1"

    def test_unreachable_runtime_removes_starting_record(self):
        self.runtime.unavailable = True
        with pytest.raises(RuntimeUnavailableError):
            self.manager.start(BasicRequest(name="cache"))
        assert self.registry.list() == []


class TestResolve(_ManagerTestBase):
    """Lookup by name or by latest instance of a type."""

    def test_latest_generated_suffix_wins(self):
        self.manager.start(BasicRequest())
        self.manager.start(BasicRequest())
        self.manager.start(BasicRequest(name="zzz"))
        assert self.manager.resolve(None, DeploymentType.BASIC).name == "basic-2"

    def test_newest_when_no_generated_names(self):
        self.manager.start(BasicRequest(name="one"))
        self.manager.start(BasicRequest(name="two"))
        assert self.manager.resolve(None, DeploymentType.BASIC).name == "two"

    def test_unknown_name(self):
        with pytest.raises(InstanceNotFoundError):
            self.manager.resolve("nope")

    def test_empty_registry(self):
        with pytest.raises(InstanceNotFoundError, match="No cluster instances"):
            self.manager.resolve(None, DeploymentType.CLUSTER)

    def test_type_mismatch(self):
        self.manager.start(BasicRequest(name="cache"))
        with pytest.raises(InstanceTypeMismatchError) as exc_info:
            self.manager.resolve("cache", DeploymentType.CLUSTER)
        assert exc_info.value.details["expected"] == "cluster"
        assert exc_info.value.details["actual"] == "basic"


class TestStop(_ManagerTestBase):
    """Stop removes by default and keeps containers on request."""

    def test_stop_removes_containers_and_record(self):
        self.manager.start(BasicRequest(name="cache"))
        record = self.manager.stop("cache", DeploymentType.BASIC)
        assert record.name == "cache"
        assert self.registry.find("cache") is None
        assert self.runtime.containers == {}
        assert self.runtime.networks == set()

    def test_stop_frees_generated_suffix(self):
        self.manager.start(BasicRequest())
        self.manager.start(BasicRequest())
        self.manager.stop("basic-1")
        assert self.manager.start(BasicRequest()).name == "basic-1"

    def test_keep_containers(self):
        self.manager.start(BasicRequest(name="cache"))
        stopped = self.manager.stop("cache", keep_containers=True)
        assert stopped.status == InstanceStatus.STOPPED
        assert self.registry.find("cache").status == InstanceStatus.STOPPED
        assert self.runtime.containers == {"cache": "exited"}

    def test_incomplete_removal_keeps_partial_record(self):
        self.manager.start(ClusterRequest(name="c"))
        self.runtime.fail_remove.add("c-node-3")

        with pytest.raises(ContainerRuntimeError) as exc_info:
            self.manager.stop("c")

        assert exc_info.value.details["leftover_containers"] == ["c-node-3"]
        stored = self.registry.find("c")
        assert stored.status == InstanceStatus.PARTIALLY_FAILED
        assert stored.container_names == ["c-node-3"]

    def test_failed_restart_keeps_volume_from_stop(self):
        self.manager.start(BasicRequest(name="cache", persist=True))
        self.manager.stop("cache")
        assert self.runtime.volumes == {"cache-data"}

        self.runtime.not_ready.add("cache")
        with pytest.raises(NodeNotReadyError):
            self.manager.start(BasicRequest(name="cache", persist=True))
        assert self.runtime.volumes == {"cache-data"}
        assert self.registry.find("cache") is None

    def test_persisted_cluster_stop_and_start_again(self):
        self.manager.start(ClusterRequest(name="c", replicas=1, persist=True))
        self.manager.stop("c", DeploymentType.CLUSTER)
        kept = set(self.runtime.volumes)
        assert len(kept) == 6

        # Restarted nodes claim the slots of the keys they reload
        self.runtime.claimed_slots = {
            "c-node-1": "0-5460",
            "c-node-2": "5461-10921",
            "c-node-3": "10922-16383",
            "c-node-5": "5461-10921",
        }
        self.runtime.exec_calls.clear()
        record = self.manager.start(ClusterRequest(name="c", replicas=1, persist=True))

        assert record.status == InstanceStatus.RUNNING
        assert self.runtime.volumes == kept
        assert not any("addslotsrange" in command for _, command in self.runtime.exec_calls)
        assert any(
            name == "c-node-5" and command[-3:] == ["cluster", "reset", "hard"]
            for name, command in self.runtime.exec_calls
        )

    def test_stop_latest_of_type(self):
        self.manager.start(BasicRequest())
        self.manager.start(ClusterRequest(name="c"))
        assert self.manager.stop(None, DeploymentType.BASIC).name == "basic-1"
        assert [r.name for r in self.registry.list()] == ["c"]


class TestCleanup(_ManagerTestBase):
    def test_cleanup_all(self):
        self.manager.start(BasicRequest(name="a"))
        self.manager.start(StackRequest(name="b"))
        result = self.manager.cleanup()
        assert sorted(result.removed) == ["a", "b"]
        assert result.failed == {}
        assert self.registry.list() == []

    def test_cleanup_by_type(self):
        self.manager.start(BasicRequest(name="a"))
        self.manager.start(StackRequest(name="b"))
        result = self.manager.cleanup(DeploymentType.STACK)
        assert result.removed == ["b"]
        assert [r.name for r in self.registry.list()] == ["a"]

    def test_cleanup_failures_are_reported(self):
        self.manager.start(BasicRequest(name="a"))
        self.runtime.fail_remove.add("a")
        result = self.manager.cleanup()
        assert result.removed == []
        assert list(result.failed) == ["a"]
        assert self.registry.find("a").status == InstanceStatus.PARTIALLY_FAILED

    def test_cleanup_removes_stale_records(self):
        self.manager.start(BasicRequest(name="a"))
        self.runtime.containers.clear()
        result = self.manager.cleanup()
        assert result.removed == ["a"]


class TestInspection(_ManagerTestBase):
    """List and info reconcile records with the runtime without mutating them."""

    def test_list_healthy(self):
        self.manager.start(BasicRequest(name="a"))
        (view,) = self.manager.list_instances()
        assert view.health == "ok"

    def test_list_stale_and_degraded(self):
        self.manager.start(BasicRequest(name="a"))
        self.manager.start(ClusterRequest(name="c"))
        del self.runtime.containers["a"]
        del self.runtime.containers["c-node-2"]

        views = {view.record.name: view for view in self.manager.list_instances()}
        assert views["a"].health == "stale"
        assert views["c"].health == "degraded"
        assert views["c"].missing_containers == ["c-node-2"]
        assert self.registry.find("a") is not None

    def test_list_with_unreachable_runtime(self):
        self.manager.start(BasicRequest(name="a"))
        self.runtime.unavailable = True
        (view,) = self.manager.list_instances()
        assert view.health == "unknown"
        assert not view.runtime_reachable

    def test_list_filtered_by_type(self):
        self.manager.start(BasicRequest(name="a"))
        self.manager.start(StackRequest(name="b"))
        assert [v.record.name for v in self.manager.list_instances(DeploymentType.STACK)] == ["b"]

    def test_info_basic(self):
        self.manager.start(BasicRequest(name="a"))
        view = self.manager.info("a")
        assert view.live == {"redis_version": "7.2.4", "uptime_in_seconds": "42"}

    def test_info_cluster(self):
        self.manager.start(ClusterRequest(name="c"))
        view = self.manager.info("c", DeploymentType.CLUSTER)
        assert view.live == {
            "cluster_state": "ok",
            "cluster_slots_assigned": "16384",
            "cluster_known_nodes": "3",
        }

    def test_info_sentinel(self):
        self.manager.start(SentinelRequest(name="s"))
        view = self.manager.info("s")
        assert view.live == {"master-1": "10.0.0.2:6379"}

    def test_info_skips_live_details_for_stale_instance(self):
        self.manager.start(BasicRequest(name="a"))
        self.runtime.containers.clear()
        view = self.manager.info("a")
        assert view.health == "stale"
        assert view.live == {}

    def test_info_live_error_is_reported(self):
        self.manager.start(BasicRequest(name="a"))

        def _handler(name, command):
            raise ContainerRuntimeError("Runtime rejected exec: boom")

        self.runtime.exec_handler = _handler
        view = self.manager.info("a")
        assert view.live == {"error": "Runtime rejected exec: boom"}

    def test_view_health_unknown_when_unreachable(self):
        record = self.manager.start(BasicRequest(name="a"))
        assert InstanceView(record=record, runtime_reachable=False).health == "unknown"


class TestLogs(_ManagerTestBase):
    def test_default_node_of_latest_instance(self):
        self.manager.start(ClusterRequest(name="c"))
        self.runtime.logs["c-node-1"] = "Ready to accept connections\n"
        assert list(self.manager.logs()) == ["Ready to accept connections\n"]

    def test_node_by_suffix_or_full_name(self):
        self.manager.start(ClusterRequest(name="c"))
        self.runtime.logs["c-node-2"] = "second"
        assert list(self.manager.logs("c", "node-2")) == ["second"]
        assert list(self.manager.logs("c", "c-node-2")) == ["second"]

    def test_unknown_node(self):
        self.manager.start(BasicRequest(name="a"))
        with pytest.raises(InstanceNotFoundError) as exc_info:
            list(self.manager.logs("a", "node-9"))
        assert exc_info.value.details["nodes"] == ["a"]


class TestFailover(_ManagerTestBase):
    """Failover goes to the first sentinel that accepts it."""

    def test_first_sentinel_accepts(self):
        self.manager.start(SentinelRequest(name="s"))
        assert self.manager.failover("s") == "s-sentinel-1"
        command = self.runtime.exec_calls[-1][1]
        assert command[-3:] == ["sentinel", "failover", "master-1"]

    def test_falls_through_to_next_sentinel(self):
        self.manager.start(SentinelRequest(name="s"))

        def _handler(name, command):
            if "failover" not in command:
                return None
            if name == "s-sentinel-1":
                raise ContainerRuntimeError("Runtime rejected exec: not running")
            if name == "s-sentinel-2":
                return ExecResult(exit_code=0, output="NOGOODSLAVE No suitable replica")
            return None

        self.runtime.exec_handler = _handler
        assert self.manager.failover("s") == "s-sentinel-3"

    def test_all_sentinels_refuse(self):
        self.manager.start(SentinelRequest(name="s", sentinels=2))
        self.runtime.exec_handler = lambda name, command: (
            ExecResult(exit_code=0, output="INPROG") if "failover" in command else None
        )
        with pytest.raises(WiringFailedError) as exc_info:
            self.manager.failover("s")
        assert len(exc_info.value.details["errors"]) == 2

    def test_unknown_master_group(self):
        self.manager.start(SentinelRequest(name="s"))
        with pytest.raises(InstanceNotFoundError):
            self.manager.failover("s", master=2)

    def test_requires_sentinel_instance(self):
        self.manager.start(BasicRequest(name="a"))
        with pytest.raises(InstanceTypeMismatchError):
            self.manager.failover("a")
