from dataclasses import dataclass
from typing import Dict

from core.config_loader import AppConfig
from core.docker_client import DockerEventClient
from core.events import ExclusionFilter
from monitor.runner import EventMonitor
from notification.channels import NotificationChannelFactory, ReporterChannel
from notification.service import NotificationDispatcher


@dataclass
class AppContext:
    """Application context container that holds all wired dependencies.

    Everything is built from a single AppConfig; no component reads
    configuration from anywhere else.
    """
    config: AppConfig
    channels: Dict[str, ReporterChannel]
    dispatcher: NotificationDispatcher
    monitor: EventMonitor
    docker_client: DockerEventClient

    @classmethod
    def build(cls, config: AppConfig) -> "AppContext":
        """Build an AppContext from config.

        Args:
            config: Loaded application configuration

        Returns:
            Fully wired AppContext instance (not yet connected to Docker)
        """
        channels = NotificationChannelFactory.from_config(config.reporters)

        dispatcher = NotificationDispatcher(channels, server_tag=config.server_tag)

        monitor = EventMonitor(
            config=config,
            dispatcher=dispatcher,
            exclusion_filter=ExclusionFilter(dict(config.exclude))
        )

        docker_client = DockerEventClient(filters=config.filters)

        return cls(
            config=config,
            channels=channels,
            dispatcher=dispatcher,
            monitor=monitor,
            docker_client=docker_client
        )
