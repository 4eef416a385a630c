import logging
import signal
import sys
import threading
import argparse

import requests
from docker.errors import DockerException
from pydantic import ValidationError

from core.app_context import AppContext
from core.config_loader import load_config, AppConfig
from core.utils import masked_config
from core.version import version, version_string

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Set by the signal handlers, checked between events
stop_event = threading.Event()


def signal_handler(sig, frame):
    logger.info("Shutdown signal received")
    stop_event.set()
    # The event stream blocks until the next event, so interrupt it
    raise KeyboardInterrupt


def configure_logging(log_level: str) -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    if log_level == "debug":
        logging.getLogger().setLevel(logging.DEBUG)


def log_arguments(config: AppConfig) -> None:
    """Log the effective configuration with credentials masked."""
    logger.info(f"Docker event monitor started, version {version_string()}")
    logger.info(f"Options: {masked_config(config.model_dump())}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Docker Event Monitor')
    parser.add_argument('--config', default='config.yaml', help='Path to the YAML config file')
    parser.add_argument('--filter', action='append', dest='filters', metavar='KEY=VALUE',
                        help='Filter docker events using Docker syntax (repeatable)')
    parser.add_argument('--exclude', action='append', metavar='KEY=VALUE',
                        help='Exclude events whose flattened KEY starts with VALUE (repeatable)')
    parser.add_argument('--delay', help='Minimum time per event, e.g. 500ms')
    parser.add_argument('--log-level', dest='log_level', choices=['debug', 'info'])
    parser.add_argument('--server-tag', dest='server_tag', help='Prefix for notification titles')
    parser.add_argument('-v', '--version', action='store_true', help='Print version information')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.version:
        print(f"docker-event-monitor {version_string()}")
        return 0

    overrides = {
        'filters': args.filters,
        'exclude': args.exclude,
        'delay': args.delay,
        'log_level': args.log_level,
        'server_tag': args.server_tag,
    }

    try:
        config = load_config(args.config, overrides=overrides)
    except (ValidationError, ValueError) as e:
        configure_logging("info")
        logger.error(f"Invalid configuration: {e}")
        return 1

    configure_logging(config.log_level)
    log_arguments(config)

    ctx = AppContext.build(config)
    if not ctx.channels:
        logger.warning("No reporter enabled, events will only be logged")

    ctx.monitor.send_startup_notification(version)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        ctx.docker_client.connect()
        result = ctx.monitor.run(ctx.docker_client.events(), stop_event=stop_event)
    except KeyboardInterrupt:
        logger.info("Event monitor stopped")
        return 0
    except (DockerException, requests.RequestException) as e:
        logger.error(f"Docker event stream failed: {e}")
        return 1
    finally:
        ctx.docker_client.close()

    logger.info(
        f"Event monitor stopped: {result.processed} processed, "
        f"{result.excluded} excluded"
    )
    return 0


if __name__ == '__main__':
    sys.exit(main())
