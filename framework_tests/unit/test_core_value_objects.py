"""Tests for instance name value objects."""

import pytest

from redis_up.core.enums import DeploymentType
from redis_up.core.value_objects import InstanceName, generated_suffix


class TestInstanceName:
    """Test InstanceName validation."""

    @pytest.mark.parametrize("value", ["basic-1", "my.cache", "A_b-3", "x"])
    def test_valid_names(self, value):
        assert str(InstanceName(value)) == value

    @pytest.mark.parametrize("value", ["", "   ", "-leading", "has space", "slash/name", "a" * 49])
    def test_invalid_names(self, value):
        with pytest.raises(ValueError):
            InstanceName(value)

    def test_generated(self):
        assert str(InstanceName.generated(DeploymentType.CLUSTER, 3)) == "cluster-3"

    def test_hashable(self):
        assert len({InstanceName("a"), InstanceName("a")}) == 1


class TestGeneratedSuffix:
    """Test suffix extraction used for latest-of-type resolution."""

    def test_matching_name(self):
        assert generated_suffix("sentinel-12", DeploymentType.SENTINEL) == 12

    @pytest.mark.parametrize(
        "name",
        ["sentinel-", "sentinel-x", "sentinel-01", "basic-1", "my-sentinel-1"],
    )
    def test_non_matching_names(self, name):
        assert generated_suffix(name, DeploymentType.SENTINEL) is None
