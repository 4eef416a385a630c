"""Docker events API client with connect retry logic."""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, Iterator, List

import docker
from docker.errors import DockerException
from tenacity import (
    retry,
    stop_after_attempt,
    wait_fixed,
    retry_if_exception_type,
    before_sleep_log
)

logger = logging.getLogger(__name__)


class DockerEventClient:
    """
    Client for the Docker daemon's event stream.

    Responsibilities:
    - Connect to the daemon described by the environment (DOCKER_HOST etc.)
    - Stream decoded events, optionally filtered server-side

    A broken stream is not retried; callers treat it as fatal.
    """

    def __init__(self, filters: Optional[Dict[str, List[str]]] = None, client: Optional[docker.DockerClient] = None):
        """
        Initialize the client.

        Args:
            filters: Docker event filters, e.g. {"type": ["container"]}
            client: Pre-built docker client (mainly for tests)
        """
        self.filters = dict(filters or {})
        self._client = client

    @retry(
        stop=stop_after_attempt(5),
        wait=wait_fixed(2),
        retry=retry_if_exception_type(DockerException),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    def connect(self) -> docker.DockerClient:
        """Create the docker client and check the daemon answers."""
        if self._client is None:
            self._client = docker.from_env()
        self._client.ping()
        logger.info("✓ Connected to Docker daemon")
        return self._client

    def events(self, since: Optional[datetime] = None, until: Optional[datetime] = None) -> Iterator[Dict[str, Any]]:
        """
        Yield raw events as decoded dicts until the stream ends.

        Without ``until`` the stream never ends on its own.
        """
        client = self._client or self.connect()
        if self.filters:
            logger.info(f"Using server-side filters: {self.filters}")
        window = {}
        if since is not None:
            window['since'] = since
        if until is not None:
            window['until'] = until
        return client.events(decode=True, filters=self.filters or None, **window)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
