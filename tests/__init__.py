#!/usr/bin/env python3
"""
Test suite configuration and utilities.

All tests can be run with standard Python tools:

    # Run all tests (unit + Docker if available)
    python -m pytest tests/ -v

    # Run only unit tests (no Docker daemon required)
    python -m pytest tests/ -v -m "not docker"

    # Using unittest
    python -m unittest discover tests -v

Docker Setup:
    Tests marked ``docker`` talk to the daemon configured by DOCKER_HOST
    (or the local socket). Set SKIP_DOCKER_TESTS=true to skip them.
"""

import os
from typing import Optional

# Environment variables read by load_config besides the reporter settings
MONITOR_ENV_VARS = ["DELAY", "FILTER", "EXCLUDE", "LOG_LEVEL", "SERVER_TAG"]

# Check if we should force skip Docker tests
SKIP_DOCKER_TESTS = os.environ.get("SKIP_DOCKER_TESTS", "false").lower() == "true"

# Global flag to cache daemon availability check
_docker_available: Optional[bool] = None


def is_docker_available() -> bool:
    """Cached check whether a Docker daemon answers a ping."""
    global _docker_available
    if SKIP_DOCKER_TESTS:
        return False
    if _docker_available is None:
        import docker
        from docker.errors import DockerException

        try:
            client = docker.from_env()
            try:
                _docker_available = bool(client.ping())
            finally:
                client.close()
        except DockerException:
            _docker_available = False
    return _docker_available
