"""Utility modules for redis-up."""

from .output import write_stdout

__all__ = ["write_stdout"]
