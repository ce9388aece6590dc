"""Domain primitives for instance identification."""

import re
from dataclasses import dataclass
from typing import Optional

from .enums import DeploymentType

# Container runtimes accept [a-zA-Z0-9][a-zA-Z0-9_.-]*; names are also used
# as prefixes for container, network and volume names.
_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")
_MAX_NAME_LENGTH = 48


@dataclass(frozen=True)
class InstanceName:
    """Validated instance name. Hashable for use as dictionary key."""

    value: str

    def __post_init__(self) -> None:
        if not self.value or not self.value.strip():
            raise ValueError("InstanceName cannot be empty")
        if len(self.value) > _MAX_NAME_LENGTH:
            raise ValueError(
                f"InstanceName must be at most {_MAX_NAME_LENGTH} characters: {self.value}"
            )
        if not _NAME_PATTERN.match(self.value):
            raise ValueError(
                f"InstanceName must start alphanumeric and contain only "
                f"letters, digits, '_', '.' or '-': {self.value}"
            )

    def __str__(self) -> str:
        return self.value

    @classmethod
    def generated(cls, deployment_type: DeploymentType, suffix: int) -> "InstanceName":
        """Name of the form ``<type>-<n>`` used when none was requested."""
        return cls(f"{deployment_type.value}-{suffix}")


def generated_suffix(name: str, deployment_type: DeploymentType) -> Optional[int]:
    """Numeric suffix if the name follows the generated pattern for the type."""
    prefix = f"{deployment_type.value}-"
    if not name.startswith(prefix):
        return None
    tail = name[len(prefix) :]
    if not tail.isdigit() or tail.startswith("0"):
        return None
    return int(tail)
