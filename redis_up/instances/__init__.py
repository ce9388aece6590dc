"""Instance management components.

API:
    - InstanceManager: Main interface for provisioning and teardown
    - DeploymentPlanner: Pure resource planning
    - DeploymentOrchestrator: Bring-up state machine with rollback
    - InstanceRegistry: Durable record of provisioned instances
    - DockerRuntime: Container runtime adapter
"""

from .deployment_orchestrator import DeploymentOrchestrator
from .deployment_planner import DeploymentPlanner
from .docker_runtime import DockerRuntime
from .instance_registry import InstanceRegistry
from .manager import InstanceManager

__all__ = [
    "InstanceManager",
    "DeploymentPlanner",
    "DeploymentOrchestrator",
    "InstanceRegistry",
    "DockerRuntime",
]
