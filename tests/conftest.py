"""
Pytest configuration and fixtures.

This file provides pytest-specific configuration and fixtures.
For standard test utilities, see tests/__init__.py
"""

import pytest

from core.config_loader import _REPORTER_ENV
from tests import MONITOR_ENV_VARS, is_docker_available


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "docker: marks tests as requiring a Docker daemon (deselect with '-m \"not docker\"')"
    )


@pytest.fixture(autouse=True)
def clean_monitor_env(monkeypatch):
    """Keep reporter credentials from the developer's shell out of the tests."""
    for name in list(_REPORTER_ENV) + MONITOR_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(scope="session")
def docker_available():
    """Skip the requesting test when no Docker daemon answers."""
    if not is_docker_available():
        pytest.skip("Docker daemon not available")
    return True
