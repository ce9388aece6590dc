"""Core enumerations for redis-up.

Separated from types.py to break circular dependencies. This module contains
only enum definitions with no dependencies on other core modules.
"""

from enum import Enum


class DeploymentType(Enum):
    """Kind of Redis topology a record describes."""

    BASIC = "basic"
    STACK = "stack"
    CLUSTER = "cluster"
    SENTINEL = "sentinel"
    ENTERPRISE = "enterprise"


class NodeRole(Enum):
    """Role a single container plays inside a topology."""

    STANDALONE = "standalone"
    MASTER = "master"
    REPLICA = "replica"
    SENTINEL = "sentinel"
    ENTERPRISE_NODE = "enterprise_node"
    INSIGHT = "insight"


class InstanceStatus(Enum):
    """Persisted lifecycle status of a registry record."""

    STARTING = "starting"
    RUNNING = "running"
    PARTIALLY_FAILED = "partially_failed"
    STOPPED = "stopped"


class OrchestrationState(Enum):
    """States of a single orchestration run."""

    PLANNED = "planned"
    NETWORK_READY = "network_ready"
    NODES_STARTING = "nodes_starting"
    NODES_READY = "nodes_ready"
    WIRING = "wiring"
    WIRED = "wired"
    FAILED = "failed"
