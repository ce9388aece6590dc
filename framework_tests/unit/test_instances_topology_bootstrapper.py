"""Tests for cluster, sentinel and enterprise wiring."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from redis_up.core.errors import WiringFailedError
from redis_up.core.log import get_logger
from redis_up.core.types import ExecResult, InfrastructureConfig, RedisUpConfig, TimeoutConfig
from redis_up.instances.deployment_planner import DeploymentPlanner
from redis_up.instances.deployment_request import (
    ClusterRequest,
    EnterpriseRequest,
    SentinelRequest,
)
from redis_up.instances.instance_registry import RegistryState
from redis_up.instances.topology_bootstrapper import (
    CLUSTER_SLOTS,
    ClusterBootstrapper,
    EnterpriseBootstrapper,
    SentinelBootstrapper,
    SlotRange,
    compute_slot_ranges,
    missing_slot_ranges,
    parse_info,
    parse_owned_slots,
)

TIMEOUTS = TimeoutConfig(cluster_converge=0.2, wiring_command=5.0)


class TestComputeSlotRanges:
    """Slot partitioning is contiguous and covers every slot exactly once."""

    def test_three_masters(self):
        ranges = compute_slot_ranges(3)
        assert [(r.start, r.end) for r in ranges] == [
            (0, 5460),
            (5461, 10921),
            (10922, 16383),
        ]
        assert [r.count for r in ranges] == [5461, 5461, 5462]

    def test_remainder_goes_to_last_master(self):
        ranges = compute_slot_ranges(5)
        assert [r.count for r in ranges] == [3276, 3276, 3276, 3276, 3280]

    @pytest.mark.parametrize("masters", [1, 3, 7, 10])
    def test_full_coverage(self, masters):
        ranges = compute_slot_ranges(masters)
        assert ranges[0].start == 0
        assert ranges[-1].end == CLUSTER_SLOTS - 1
        for previous, current in zip(ranges, ranges[1:]):
            assert current.start == previous.end + 1
        assert sum(r.count for r in ranges) == CLUSTER_SLOTS

    def test_zero_masters(self):
        with pytest.raises(ValueError):
            compute_slot_ranges(0)

    def test_str(self):
        assert str(compute_slot_ranges(3)[1]) == "5461-10921"


def test_parse_info_skips_comments():
    info = parse_info("# Cluster\r\ncluster_state:ok\r\n\r\nbad line\r\nkey:a:b\r\n")
    assert info == {"cluster_state": "ok", "key": "a:b"}


class TestSlotOwnership:
    """Slots a node already claims when it restarts on persisted data."""

    def test_parse_owned_slots_reads_only_myself(self):
        output = (
            "aaa 10.0.0.3:7001@17001 master - 0 0 1 connected 100-200\n"
            "bbb 10.0.0.2:7000@17000 myself,master - 0 0 0 connected 0-2 7 "
            "[8->-aaa]\n"
        )
        assert parse_owned_slots(output) == {0, 1, 2, 7}

    def test_parse_owned_slots_fresh_node(self):
        output = "bbb :7000@17000 myself,master - 0 0 0 connected\n"
        assert parse_owned_slots(output) == set()

    def test_missing_ranges_around_owned_slots(self):
        missing = missing_slot_ranges(SlotRange(0, 10), {0, 1, 5, 10})
        assert [(r.start, r.end) for r in missing] == [(2, 4), (6, 9)]

    def test_nothing_missing(self):
        assert missing_slot_ranges(SlotRange(3, 5), {3, 4, 5}) == []

    def test_nothing_owned(self):
        assert missing_slot_ranges(SlotRange(3, 5), set()) == [SlotRange(3, 5)]


class _BootstrapTestBase:
    @pytest.fixture(autouse=True)
    def _setup(self, fake_runtime):
        self.runtime = fake_runtime
        self.executor = ThreadPoolExecutor(max_workers=4)
        self.logger = get_logger("test.bootstrap")
        config = RedisUpConfig(infrastructure=InfrastructureConfig(probe_host_ports=False))
        self.planner = DeploymentPlanner(logger=self.logger, config_provider=config)
        yield
        self.executor.shutdown(wait=True)

    def _plan(self, request):
        plan = self.planner.plan(request, RegistryState())
        for name in plan.container_names:
            self.runtime.containers[name] = "running"
        return plan

    def _commands(self, container=None):
        return [
            command
            for name, command in self.runtime.exec_calls
            if container is None or name == container
        ]


class TestClusterBootstrapper(_BootstrapTestBase):
    """Explicit cluster wiring against the fake runtime."""

    def _bootstrapper(self):
        return ClusterBootstrapper(
            self.logger, self.runtime, self.executor, TIMEOUTS, poll_interval=0.01
        )

    def test_wires_masters_and_replicas(self):
        plan = self._plan(ClusterRequest(name="c", masters=3, replicas=1, password="pw"))
        self._bootstrapper().bootstrap(plan)

        addslots = [c for c in self._commands() if "addslotsrange" in c]
        assert sorted(c[-2:] for c in addslots) == [
            ["0", "5460"], ["10922", "16383"], ["5461", "10921"]
        ]
        meets = [c for c in self._commands() if "meet" in c]
        assert len(meets) == 5
        seed_address = self.runtime.container_address("c-node-1", plan.network)
        assert all(c[-2:] == [seed_address, "7000"] for c in meets)

        replicate = {
            name: command[-1]
            for name, command in self.runtime.exec_calls
            if "replicate" in command
        }
        assert replicate == {
            "c-node-4": "id-c-node-1",
            "c-node-5": "id-c-node-2",
            "c-node-6": "id-c-node-3",
        }
        assert all("-a" in c and "pw" in c for c in self._commands())

    def test_rejected_slot_assignment(self):
        plan = self._plan(ClusterRequest(name="c"))

        def _handler(name, command):
            if "addslotsrange" in command and name == "c-node-2":
                return ExecResult(exit_code=0, output="ERR Slot 5461 is already busy")
            return None

        self.runtime.exec_handler = _handler
        with pytest.raises(WiringFailedError) as exc_info:
            self._bootstrapper().bootstrap(plan)
        assert exc_info.value.details["container"] == "c-node-2"

    def test_restart_on_persisted_data_assigns_only_missing_slots(self):
        plan = self._plan(ClusterRequest(name="c", replicas=1, persist=True))
        self.runtime.claimed_slots = {
            "c-node-1": "0-99 200",
            "c-node-2": "5461-10921",
            "c-node-4": "0-5460",
        }
        self._bootstrapper().bootstrap(plan)

        addslots = {
            name: command[command.index("addslotsrange") + 1:]
            for name, command in self.runtime.exec_calls
            if "addslotsrange" in command
        }
        assert addslots == {
            "c-node-1": ["100", "199", "201", "5460"],
            "c-node-3": ["10922", "16383"],
        }
        assert any(c[-1] == "flushall" for c in self._commands("c-node-4"))
        assert any(c[-3:] == ["cluster", "reset", "hard"] for c in self._commands("c-node-4"))
        assert not any("flushall" in c for c in self._commands("c-node-1"))

    def test_master_holding_slots_of_another_master(self):
        plan = self._plan(ClusterRequest(name="c", persist=True))
        self.runtime.claimed_slots = {"c-node-1": "0-5460 6000"}

        with pytest.raises(WiringFailedError) as exc_info:
            self._bootstrapper().bootstrap(plan)
        assert exc_info.value.details["container"] == "c-node-1"
        assert exc_info.value.details["stray_slots"] == 1
        assert not any("addslotsrange" in c for c in self._commands())

    def test_convergence_timeout(self):
        plan = self._plan(ClusterRequest(name="c"))

        def _handler(name, command):
            if "info" in command:
                return ExecResult(
                    exit_code=0,
                    output="cluster_state:fail\r\ncluster_slots_assigned:16384\r\n"
                    "cluster_known_nodes:3\r\n",
                )
            return None

        self.runtime.exec_handler = _handler
        with pytest.raises(WiringFailedError, match="cluster_state:ok"):
            self._bootstrapper().bootstrap(plan)


class TestSentinelBootstrapper(_BootstrapTestBase):
    """Every sentinel must acknowledge every master."""

    def _bootstrapper(self):
        return SentinelBootstrapper(self.logger, self.runtime, self.executor, TIMEOUTS)

    def test_registers_master_with_every_sentinel(self):
        plan = self._plan(SentinelRequest(name="s", sentinels=3, password="pw"))
        self._bootstrapper().bootstrap(plan)

        for index in (1, 2, 3):
            commands = self._commands(f"s-sentinel-{index}")
            monitor = commands[0]
            assert monitor[-6:] == ["sentinel", "monitor", "master-1", "s-master-1", "6379", "2"]
            assert "-a" not in monitor
            assert [c[-2] for c in commands[1:]] == [
                "down-after-milliseconds", "failover-timeout", "parallel-syncs", "auth-pass"
            ]
            assert commands[-1][-1] == "pw"

    def test_one_master_per_shard(self):
        plan = self._plan(SentinelRequest(name="s", masters=2, sentinels=1))
        self._bootstrapper().bootstrap(plan)
        monitors = [c for c in self._commands() if "monitor" in c]
        assert [c[-4] for c in monitors] == ["master-1", "master-2"]

    def test_rejection_reports_acknowledged_and_failed(self):
        plan = self._plan(SentinelRequest(name="s", sentinels=3, quorum=2))

        def _handler(name, command):
            if name == "s-sentinel-2" and "monitor" in command:
                return ExecResult(exit_code=1, output="ERR Invalid IP address")
            return None

        self.runtime.exec_handler = _handler
        with pytest.raises(WiringFailedError) as exc_info:
            self._bootstrapper().bootstrap(plan)
        details = exc_info.value.details
        assert details["acknowledged"] == ["s-sentinel-1", "s-sentinel-3"]
        assert list(details["failed"]) == ["s-sentinel-2"]
        assert details["quorum"] == 2


class TestEnterpriseBootstrapper(_BootstrapTestBase):
    """Cluster formation, joins and database creation."""

    def _bootstrapper(self):
        return EnterpriseBootstrapper(self.logger, self.runtime, self.executor, TIMEOUTS)

    def test_containers_only_skips_wiring(self):
        plan = self._plan(EnterpriseRequest(name="e", containers_only=True))
        self._bootstrapper().bootstrap(plan)
        assert self.runtime.exec_calls == []

    def test_create_join_and_database(self):
        plan = self._plan(EnterpriseRequest(name="e", nodes=2, create_db="cache", password="pw"))
        self._bootstrapper().bootstrap(plan)

        create = self._commands("e-node-1")[0]
        assert create[:3] == ["rladmin", "cluster", "create"]
        assert "e.local" in create
        join = self._commands("e-node-2")[0]
        assert join[:3] == ["rladmin", "cluster", "join"]
        assert self.runtime.container_address("e-node-1", plan.network) in join
        curl = self._commands("e-node-1")[-1]
        assert curl[0] == "curl"
        assert '"port": 12000' in curl[curl.index("-d") + 1]

    def test_failed_create_raises(self):
        plan = self._plan(EnterpriseRequest(name="e", nodes=1))
        self.runtime.exec_handler = lambda name, command: ExecResult(exit_code=1, output="denied")
        with pytest.raises(WiringFailedError):
            self._bootstrapper().bootstrap(plan)
