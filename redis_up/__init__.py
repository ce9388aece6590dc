"""
redis-up: Redis topologies on a local container runtime

Provisions standalone, module-enabled, sharded cluster, sentinel-monitored and
enterprise Redis deployments as containers, wires them into working
topologies, and keeps a durable registry of what was created so later
commands can inspect, tail and tear them down.
"""

__version__ = "0.3.0"

from .core.enums import DeploymentType, NodeRole, InstanceStatus, OrchestrationState
from .core.types import (
    TimeoutConfig,
    InfrastructureConfig,
    ImageConfig,
    RedisUpConfig,
)

__all__ = [
    "__version__",
    "DeploymentType",
    "NodeRole",
    "InstanceStatus",
    "OrchestrationState",
    "TimeoutConfig",
    "InfrastructureConfig",
    "ImageConfig",
    "RedisUpConfig",
]
