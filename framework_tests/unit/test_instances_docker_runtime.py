"""Tests for the docker SDK adapter."""

from unittest.mock import MagicMock, Mock, patch

import pytest
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from redis_up.core.errors import ContainerRuntimeError, RuntimeUnavailableError
from redis_up.instances.docker_runtime import DockerRuntime
from redis_up.instances.runtime import LABEL_MANAGED, ContainerSpec


class TestDockerRuntime:
    """Docker SDK errors map onto the runtime error contract."""

    def setup_method(self):
        self.client = MagicMock()
        self.runtime = DockerRuntime(client=self.client)

    def test_unreachable_daemon_on_client_creation(self):
        with patch(
            "redis_up.instances.docker_runtime.docker.from_env",
            side_effect=DockerException("socket missing"),
        ):
            with pytest.raises(RuntimeUnavailableError) as exc_info:
                DockerRuntime().ping()
        assert "hint" in exc_info.value.details

    def test_connection_error_is_unavailable(self):
        self.client.ping.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(RuntimeUnavailableError):
            self.runtime.ping()

    def test_create_container_passes_spec(self):
        self.client.containers.create.return_value = Mock(id="abc123")
        spec = ContainerSpec(
            name="cache",
            image="redis:7-alpine",
            command=["redis-server"],
            ports={6379: 6380},
            network="cache-net",
            volumes={"cache-data": "/data"},
            labels={"redis-up.instance": "cache"},
        )
        assert self.runtime.create_container(spec) == "abc123"
        args, kwargs = self.client.containers.create.call_args
        assert args == ("redis:7-alpine",)
        assert kwargs["name"] == "cache"
        assert kwargs["ports"] == {"6379/tcp": 6380}
        assert kwargs["volumes"] == {"cache-data": {"bind": "/data", "mode": "rw"}}
        assert kwargs["labels"][LABEL_MANAGED] == "true"
        assert kwargs["network"] == "cache-net"

    def test_api_error_is_rejection(self):
        self.client.containers.create.side_effect = APIError(
            "409 Conflict", explanation="name already in use"
        )
        with pytest.raises(ContainerRuntimeError) as exc_info:
            self.runtime.create_container(ContainerSpec(name="cache", image="redis"))
        assert not isinstance(exc_info.value, RuntimeUnavailableError)
        assert "name already in use" in exc_info.value.message
        assert exc_info.value.details == {"container": "cache"}

    def test_removing_missing_container_is_success(self):
        self.client.containers.get.side_effect = NotFound("no such container")
        self.runtime.remove_container("cache")
        self.runtime.stop_container("cache")

    def test_removing_missing_network_and_volume_is_success(self):
        self.client.networks.get.side_effect = NotFound("no such network")
        self.client.volumes.get.side_effect = NotFound("no such volume")
        self.runtime.remove_network("cache-net")
        self.runtime.remove_volume("cache-data")

    def test_volume_exists(self):
        assert self.runtime.volume_exists("cache-data") is True
        self.client.volumes.get.assert_called_once_with("cache-data")

        self.client.volumes.get.side_effect = NotFound("no such volume")
        assert self.runtime.volume_exists("cache-data") is False

    def test_status_of_missing_container(self):
        self.client.containers.get.side_effect = NotFound("no such container")
        assert self.runtime.container_status("cache") is None

    def test_status(self):
        self.client.containers.get.return_value = Mock(status="running")
        assert self.runtime.container_status("cache") == "running"

    def test_start_missing_container(self):
        self.client.containers.get.side_effect = NotFound("no such container")
        with pytest.raises(ContainerRuntimeError, match="does not exist"):
            self.runtime.start_container("cache")

    def test_existing_network_is_reused(self):
        existing = Mock()
        existing.name = "cache-net"
        self.client.networks.list.return_value = [existing]
        assert self.runtime.create_network("cache-net") is False
        self.client.networks.create.assert_not_called()

    def test_network_name_filter_is_exact(self):
        similar = Mock()
        similar.name = "cache-net-2"
        self.client.networks.list.return_value = [similar]
        assert self.runtime.create_network("cache-net") is True
        self.client.networks.create.assert_called_once()

    def test_image_pulled_only_when_missing(self):
        self.runtime.ensure_image("redis:7")
        self.client.images.pull.assert_not_called()

        self.client.images.get.side_effect = ImageNotFound("missing")
        self.runtime.ensure_image("redis:7")
        self.client.images.pull.assert_called_once_with("redis:7")

    def test_exec_decodes_output(self):
        container = Mock()
        container.exec_run.return_value = Mock(exit_code=0, output=b"PONG\n")
        self.client.containers.get.return_value = container
        result = self.runtime.exec("cache", ["redis-cli", "ping"])
        assert result.ok
        assert result.output == "PONG\n"

    def test_container_address(self):
        container = Mock()
        container.attrs = {
            "NetworkSettings": {"Networks": {"cache-net": {"IPAddress": "172.20.0.2"}}}
        }
        self.client.containers.get.return_value = container
        assert self.runtime.container_address("cache", "cache-net") == "172.20.0.2"
        with pytest.raises(ContainerRuntimeError):
            self.runtime.container_address("cache", "other-net")

    def test_tail_logs_without_follow(self):
        container = Mock()
        container.logs.return_value = b"ready to accept connections\n"
        self.client.containers.get.return_value = container
        chunks = list(self.runtime.tail_logs("cache", tail=10))
        assert chunks == ["ready to accept connections\n"]
        container.logs.assert_called_once_with(
            stream=False, follow=False, tail=10, timestamps=False
        )
