"""
Pytest configuration and fixtures for framework unit tests.
Keeps logging and environment state from leaking between tests.
"""

from typing import Generator

import pytest

from redis_up.core.log import reset_logging


@pytest.fixture(autouse=True)
def cleanup_logging() -> Generator[None, None, None]:
    """Reset the logging system after each test."""
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop REDIS_UP_* variables so host settings never reach a test."""
    import os

    for key in list(os.environ):
        if key.startswith("REDIS_UP_"):
            monkeypatch.delenv(key, raising=False)
