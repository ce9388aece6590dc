"""Durable registry of provisioned instances.

The registry is a single JSON document mapping instance name to
InstanceRecord. Every mutating call reads the whole document, applies the
change in memory and rewrites it atomically. Concurrent invocations race on
last-writer-wins, but a reader never sees a half-written file.
"""

import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, TypeVar

from pydantic import BaseModel, Field, ValidationError

from ..core.errors import (
    AtomicWriteError,
    DeserializationError,
    FilesystemError,
    PathError,
    RegistryCorruptError,
    RegistryIOError,
)
from ..core.log import get_logger
from ..core.types import DeploymentType, InstanceRecord
from ..utils.codec import from_json_string, to_json_string
from ..utils.filesystem import atomic_write, read_text

logger = get_logger(__name__)

REGISTRY_SCHEMA_VERSION = 1

T = TypeVar("T")


class RegistryState(BaseModel):
    """In-memory image of the registry document."""

    schema_version: int = REGISTRY_SCHEMA_VERSION
    instances: Dict[str, InstanceRecord] = Field(default_factory=dict)

    def names(self) -> Set[str]:
        return set(self.instances)

    def used_ports(self) -> Set[int]:
        """Every host port recorded by any instance of any type."""
        ports: Set[int] = set()
        for record in self.instances.values():
            ports.update(record.host_ports)
        return ports

    def container_names(self) -> Set[str]:
        names: Set[str] = set()
        for record in self.instances.values():
            names.update(record.container_names)
        return names

    def find(self, name: str) -> Optional[InstanceRecord]:
        return self.instances.get(name)

    def records(self, deployment_type: Optional[DeploymentType] = None) -> List[InstanceRecord]:
        """Records newest first, optionally restricted to one type."""
        records = [
            record
            for record in self.instances.values()
            if deployment_type is None or record.deployment_type == deployment_type
        ]
        return sorted(records, key=lambda r: (r.created_at, r.name), reverse=True)


class InstanceRegistry:
    """File-backed instance registry handle.

    Components receive this handle explicitly; there is no process-wide
    registry singleton.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()

    def load(self) -> RegistryState:
        """Read the registry document.

        A missing file is a first run and yields an empty registry.

        Raises:
            RegistryCorruptError: If the file exists but is not a valid registry
            RegistryIOError: If the file cannot be read
        """
        with self._lock:
            try:
                text = read_text(self.path)
            except PathError:
                logger.debug("Registry %s does not exist yet, starting empty", self.path)
                return RegistryState()
            except FilesystemError as e:
                if isinstance(e.__cause__, UnicodeDecodeError):
                    raise self._corrupt(f"Registry is not valid UTF-8: {e.message}") from e
                raise RegistryIOError(
                    f"Failed to read registry {self.path}: {e.message}",
                    details={"path": str(self.path)},
                ) from e

            try:
                data = from_json_string(text)
            except DeserializationError as e:
                raise self._corrupt(f"Registry is not valid JSON: {e.message}") from e

            if not isinstance(data, dict):
                raise self._corrupt("Registry document must be a JSON object")

            version = data.get("schema_version")
            if version != REGISTRY_SCHEMA_VERSION:
                raise self._corrupt(f"Unsupported registry schema version: {version!r}")

            try:
                state = RegistryState.model_validate(data)
            except ValidationError as e:
                raise self._corrupt(
                    f"Registry has invalid structure: {e.error_count()} error(s)",
                    errors=e.errors(include_url=False),
                ) from e

            for key, record in state.instances.items():
                if key != record.name:
                    raise self._corrupt(
                        f"Registry key '{key}' does not match record name '{record.name}'"
                    )

            return state

    def save(self, state: RegistryState) -> None:
        """Rewrite the registry document atomically.

        Raises:
            RegistryIOError: If the document cannot be written
        """
        with self._lock:
            text = to_json_string(state.model_dump(mode="json")) + "\n"
            try:
                atomic_write(self.path, text)
            except AtomicWriteError as e:
                raise RegistryIOError(
                    f"Failed to write registry {self.path}: {e.message}",
                    details={"path": str(self.path)},
                ) from e
            logger.debug("Saved registry with %d instance(s)", len(state.instances))

    def update(self, mutator: Callable[[RegistryState], T]) -> T:
        """Load, apply ``mutator`` to the state, save, and return its result.

        Nothing is written if the mutator raises.
        """
        with self._lock:
            state = self.load()
            result = mutator(state)
            self.save(state)
            return result

    def upsert(self, record: InstanceRecord) -> None:
        def _apply(state: RegistryState) -> None:
            state.instances[record.name] = record

        self.update(_apply)

    def remove(self, name: str) -> Optional[InstanceRecord]:
        """Delete a record, returning it if it existed."""
        return self.update(lambda state: state.instances.pop(name, None))

    def find(self, name: str) -> Optional[InstanceRecord]:
        return self.load().find(name)

    def list(self, deployment_type: Optional[DeploymentType] = None) -> List[InstanceRecord]:
        return self.load().records(deployment_type)

    def _corrupt(self, message: str, **details) -> RegistryCorruptError:
        return RegistryCorruptError(
            f"{message} ({self.path}); fix or move the file aside",
            details={"path": str(self.path), **details},
        )
