"""Normalized deployment requests.

One frozen pydantic model per deployment type, discriminated on ``type``.
CLI flags and declarative documents are parsed into these at the boundary;
everything downstream works with typed requests only.
"""

from typing import Annotated, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)

from ..core.enums import DeploymentType
from ..core.types import TopologySpec
from ..core.value_objects import InstanceName

STACK_MODULES = ("json", "search", "timeseries", "bloom", "graph")

DEFAULT_INSIGHT_PORT = 8001
DEFAULT_SENTINEL_PORT = 26379
DEFAULT_ENTERPRISE_DB_PORT = 12000


class _RequestBase(BaseModel):
    """Fields shared by every deployment type."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: Optional[str] = None
    password: Optional[str] = None
    port_base: Optional[int] = Field(
        default=None,
        ge=1,
        le=65535,
        validation_alias=AliasChoices("port_base", "port", "redis_port_base"),
    )
    persist: bool = False
    memory: Optional[str] = None
    with_insight: bool = False
    insight_port: int = Field(default=DEFAULT_INSIGHT_PORT, ge=1, le=65535)

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            InstanceName(value)
        return value

    @property
    def deployment_type(self) -> DeploymentType:
        return DeploymentType(self.type)  # type: ignore[attr-defined]

    def topology(self) -> TopologySpec:
        return TopologySpec()


class BasicRequest(_RequestBase):
    """Single standalone Redis node."""

    type: Literal["basic"] = "basic"


class StackRequest(_RequestBase):
    """Single Redis node with the module bundle loaded."""

    type: Literal["stack"] = "stack"
    modules: List[str] = Field(default_factory=lambda: list(STACK_MODULES))

    @field_validator("modules")
    @classmethod
    def _validate_modules(cls, value: List[str]) -> List[str]:
        unknown = sorted(set(value) - set(STACK_MODULES))
        if unknown:
            raise ValueError(
                f"Unknown modules {unknown}; choose from {list(STACK_MODULES)}"
            )
        return value


class ClusterRequest(_RequestBase):
    """Sharded cluster: masters each owning a slot range, plus replicas."""

    type: Literal["cluster"] = "cluster"
    masters: int = Field(default=3, ge=3)
    replicas: int = Field(default=0, ge=0)

    def topology(self) -> TopologySpec:
        return TopologySpec(
            masters=self.masters,
            replicas=self.replicas,
            nodes=self.masters * (1 + self.replicas),
        )


class SentinelRequest(_RequestBase):
    """Masters with replicas watched by a group of sentinels."""

    type: Literal["sentinel"] = "sentinel"
    masters: int = Field(default=1, ge=1)
    replicas: int = Field(default=0, ge=0)
    sentinels: int = Field(default=3, ge=1)
    quorum: Optional[int] = Field(default=None, ge=1)
    sentinel_port_base: int = Field(default=DEFAULT_SENTINEL_PORT, ge=1, le=65535)

    @model_validator(mode="after")
    def _validate_quorum(self) -> "SentinelRequest":
        if self.quorum is not None and self.quorum > self.sentinels:
            raise ValueError(
                f"quorum ({self.quorum}) cannot exceed sentinels ({self.sentinels})"
            )
        return self

    @property
    def effective_quorum(self) -> int:
        """Requested quorum, or a strict majority of the sentinels."""
        if self.quorum is not None:
            return self.quorum
        return self.sentinels // 2 + 1

    def topology(self) -> TopologySpec:
        return TopologySpec(
            masters=self.masters,
            replicas=self.replicas,
            sentinels=self.sentinels,
            quorum=self.effective_quorum,
            nodes=self.masters * (1 + self.replicas) + self.sentinels,
        )


class EnterpriseRequest(_RequestBase):
    """Multi-node enterprise cluster with an optional database."""

    type: Literal["enterprise"] = "enterprise"
    nodes: int = Field(default=3, ge=1)
    create_db: Optional[str] = None
    db_port: int = Field(default=DEFAULT_ENTERPRISE_DB_PORT, ge=1, le=65535)
    containers_only: bool = False

    def topology(self) -> TopologySpec:
        return TopologySpec(masters=0, nodes=self.nodes)


DeploymentRequest = Annotated[
    Union[BasicRequest, StackRequest, ClusterRequest, SentinelRequest, EnterpriseRequest],
    Field(discriminator="type"),
]

_request_adapter: TypeAdapter = TypeAdapter(DeploymentRequest)


def parse_request(data: dict) -> "DeploymentRequest":
    """Validate an untyped mapping into the matching request variant.

    Raises:
        pydantic.ValidationError: If the type is unknown or a field is invalid
    """
    return _request_adapter.validate_python(data)
