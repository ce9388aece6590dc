"""Error hierarchy for redis-up.

Every error carries a human readable message plus a ``details`` dict holding
the identifiers of the resources involved (instance, container, port,
network) so callers can report exactly what failed.
"""

from typing import Optional, Dict, Any, List


class RedisUpError(Exception):
    """Base exception for all redis-up errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# Configuration Errors
class ConfigurationError(RedisUpError):
    """Error in redis-up configuration."""


class DeploymentDocumentError(ConfigurationError):
    """Declarative deployment document could not be parsed or validated."""


# Planning Errors
class PlanningError(RedisUpError):
    """Base class for resource planning errors."""


class NameConflictError(PlanningError):
    """Requested instance or container name is already in use."""

    def __init__(self, name: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(f"Name '{name}' is already in use", details)
        self.name = name


class PortRangeExhaustedError(PlanningError):
    """No free port found within the probe bound."""

    def __init__(self, start_port: int, probes: int,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            f"No free port found in {probes} probes starting at {start_port}",
            details,
        )
        self.start_port = start_port
        self.probes = probes


class PortConflictError(PlanningError):
    """A planned port was taken by another record before the plan was committed."""

    def __init__(self, ports: List[int], details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            f"Planned ports already reserved: {', '.join(str(p) for p in ports)}",
            details,
        )
        self.ports = ports


# Container Runtime Errors
class ContainerRuntimeError(RedisUpError):
    """A container runtime call was rejected."""


class RuntimeUnavailableError(ContainerRuntimeError):
    """The container runtime cannot be reached."""


# Orchestration Errors
class OrchestrationError(RedisUpError):
    """Base class for topology orchestration errors."""


class NodeNotReadyError(OrchestrationError):
    """A node did not pass its readiness probe within the timeout."""

    def __init__(self, message: str, timeout: float,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.timeout = timeout


class WiringFailedError(OrchestrationError):
    """Topology wiring command was rejected or did not converge."""


class DeploymentCancelledError(OrchestrationError):
    """Orchestration was interrupted by the user and rolled back."""


# Registry Errors
class RegistryError(RedisUpError):
    """Base class for instance registry errors."""


class RegistryCorruptError(RegistryError):
    """Registry file exists but is not a valid registry document."""


class RegistryIOError(RegistryError):
    """Registry file could not be read or written."""


class InstanceNotFoundError(RegistryError):
    """No registry record matches the requested instance."""


class InstanceTypeMismatchError(RegistryError):
    """Record exists but belongs to a different deployment type."""


# Data and Codec Errors
class CodecError(RedisUpError):
    """Data encoding/decoding error."""


class SerializationError(CodecError):
    """Data serialization error."""


class DeserializationError(CodecError):
    """Data deserialization error."""


# Filesystem Errors
class FilesystemError(RedisUpError):
    """Filesystem operation error."""


class PathError(FilesystemError):
    """Path-related error."""


class AtomicWriteError(FilesystemError):
    """Atomic file write operation failed."""
