"""Application context for explicit dependency management.

ApplicationContext is the single immutable container for the collaborators
every command needs: configuration, logger, registry handle, container
runtime and planner. Nothing reaches for a global registry or client.

Usage:
    config = initialize_config(load_config())
    app_context = ApplicationContext.create(config)

    with InstanceManager(app_context) as manager:
        manager.start(BasicRequest())

    # For testing
    test_context = ApplicationContext.for_testing(tmp_path, runtime=fake_runtime)
"""

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from .types import RedisUpConfig
from .log import Logger

if TYPE_CHECKING:
    from ..instances.container_spec_builder import ContainerSpecBuilder
    from ..instances.deployment_planner import DeploymentPlanner
    from ..instances.instance_registry import InstanceRegistry
    from ..instances.runtime import ContainerRuntime


@dataclass(frozen=True)
class ApplicationContext:
    """Immutable application-wide context containing all dependencies.

    Attributes:
        config: Initialized configuration
        logger: Logging instance
        registry: Handle on the instance registry document
        runtime: Container runtime adapter
        planner: Resource planner
        spec_builder: Container spec builder
    """

    config: RedisUpConfig
    logger: Logger
    registry: "InstanceRegistry"
    runtime: "ContainerRuntime"
    planner: "DeploymentPlanner"
    spec_builder: "ContainerSpecBuilder"

    @classmethod
    def create(
        cls,
        config: RedisUpConfig,
        *,
        logger: Optional[Logger] = None,
        registry: Optional["InstanceRegistry"] = None,
        runtime: Optional["ContainerRuntime"] = None,
        planner: Optional["DeploymentPlanner"] = None,
    ) -> "ApplicationContext":
        """Create application context with default implementations.

        Any dependency not passed in is built from the configuration. The
        config must already have gone through initialize_config() so the
        registry path is resolved.
        """
        # Import here to avoid circular dependencies at module level
        from .log import get_logger
        from .errors import ConfigurationError
        from ..instances.container_spec_builder import ContainerSpecBuilder
        from ..instances.deployment_planner import DeploymentPlanner
        from ..instances.docker_runtime import DockerRuntime
        from ..instances.instance_registry import InstanceRegistry

        if logger is None:
            logger = get_logger("redis_up")

        if registry is None:
            if config.registry_path is None:
                raise ConfigurationError(
                    "registry_path is unset; call initialize_config() first"
                )
            registry = InstanceRegistry(config.registry_path)

        if runtime is None:
            runtime = DockerRuntime()

        if planner is None:
            planner = DeploymentPlanner(logger=logger, config_provider=config)

        return cls(
            config=config,
            logger=logger,
            registry=registry,
            runtime=runtime,
            planner=planner,
            spec_builder=ContainerSpecBuilder(config, logger),
        )

    @classmethod
    def for_testing(
        cls,
        work_dir: Path,
        config: Optional[RedisUpConfig] = None,
        **overrides,
    ) -> "ApplicationContext":
        """Create application context for tests.

        Uses a registry under ``work_dir``, disables host port probing and
        shortens timeouts; pass ``runtime=`` to inject a fake runtime.
        """
        from .types import InfrastructureConfig, TimeoutConfig

        if config is None:
            config = RedisUpConfig(
                registry_path=Path(work_dir) / "instances.json",
                config_dir=Path(work_dir),
                timeouts=TimeoutConfig(
                    node_ready=2.0,
                    probe_interval=0.01,
                    cluster_converge=2.0,
                    wiring_command=5.0,
                ),
                infrastructure=InfrastructureConfig(probe_host_ports=False),
            )

        return cls.create(config, **overrides)
