"""Event loop for the docker event monitor.

Pulls events one at a time, drops excluded ones, and turns the rest into
notifications. Each event takes at least `delay_seconds` (measured from its
arrival) so that notifications for consecutive events do not overtake each
other at slow backends such as Pushover.
"""

import time
import logging
import threading
from typing import Optional, Dict, Any, Iterable, Callable
from dataclasses import dataclass

from core.config_loader import AppConfig
from core.events import ExclusionFilter, flatten_event, normalize_event, get_actor_id
from notification.message_builder import NotificationMessage, NotificationMessageBuilder
from notification.service import NotificationDispatcher, DispatchResult


logger = logging.getLogger(__name__)


@dataclass
class MonitorResult:
    """Counters for one run of the event loop."""
    received: int = 0
    excluded: int = 0
    processed: int = 0
    execution_time: float = 0.0


class EventMonitor:
    """
    Serial consumer of docker events.

    Only one event is handled at a time; fan-out to reporters inside the
    dispatcher is the only concurrency.
    """

    def __init__(
        self,
        config: AppConfig,
        dispatcher: NotificationDispatcher,
        exclusion_filter: Optional[ExclusionFilter] = None,
        sleep: Callable[[float], Any] = time.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            config: Loaded application configuration
            dispatcher: Dispatcher wired with the enabled reporters
            exclusion_filter: Defaults to a filter built from config.exclude
            sleep: Blocking wait used for the inter-event delay
            clock: Monotonic clock used to measure the delay
        """
        self.config = config
        self.dispatcher = dispatcher
        self.exclusion_filter = exclusion_filter if exclusion_filter is not None else ExclusionFilter(dict(config.exclude))
        self._sleep = sleep
        self._clock = clock

    def send_startup_notification(self, version: str) -> DispatchResult:
        message = NotificationMessageBuilder.build_startup_message(self.config, version)
        return self.dispatcher.dispatch(message)

    def is_excluded(self, flat: Dict[str, str]) -> bool:
        if not self.exclusion_filter:
            return False
        logger.debug("Performing check for event exclusion")
        return self.exclusion_filter.should_exclude(flat)

    def process_event(self, raw: Dict[str, Any], received_at: Optional[float] = None) -> DispatchResult:
        """
        Normalize one event, notify, and hold until the delay has passed.

        The delay is measured from received_at (a reading of the monitor's
        clock taken when the event was pulled). If dispatching already took
        longer than the delay, no extra wait is added.
        """
        started = received_at if received_at is not None else self._clock()

        event = normalize_event(raw)
        fields = event.log_fields()
        details = " ".join(f"{key}={value}" for key, value in fields.items() if value)
        logger.info(f"{event.title} {details}".rstrip(), extra=fields)

        message = NotificationMessage(
            timestamp=event.timestamp,
            title=event.title,
            body=event.body
        )
        result = self.dispatcher.dispatch(message)

        remaining = self.config.delay_seconds - (self._clock() - started)
        if remaining > 0:
            self._sleep(remaining)

        return result

    def handle_event(self, raw: Dict[str, Any], received_at: Optional[float] = None) -> bool:
        """
        Filter and process one event.

        Args:
            raw: Decoded event as returned by the Docker API
            received_at: Clock reading taken when the event was pulled

        Returns:
            False if the event was excluded, True if it was processed
        """
        logger.debug(f"Received event: {raw}")
        flat = flatten_event(raw)
        if self.is_excluded(flat):
            logger.debug(f"[{get_actor_id(flat)}] Event excluded")
            return False
        self.process_event(raw, received_at=received_at)
        return True

    def run(
        self,
        events: Iterable[Dict[str, Any]],
        stop_event: Optional[threading.Event] = None
    ) -> MonitorResult:
        """Consume events until the source is exhausted or stop_event is set.

        Errors raised by the event source propagate to the caller.

        Args:
            events: Iterable of raw events (e.g. DockerEventClient.events())
            stop_event: Optional threading event to signal early termination

        Returns:
            MonitorResult with counts
        """
        if stop_event is None:
            stop_event = threading.Event()

        result = MonitorResult()
        run_start = time.time()

        for raw in events:
            received_at = self._clock()
            if stop_event.is_set():
                logger.info("Stop requested, leaving event loop")
                break

            result.received += 1
            if self.handle_event(raw, received_at=received_at):
                result.processed += 1
            else:
                result.excluded += 1

        result.execution_time = time.time() - run_start
        return result
