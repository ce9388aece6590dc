"""Core components shared by every redis-up layer."""

from .value_objects import InstanceName

__all__ = ["InstanceName"]
