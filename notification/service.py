#!/usr/bin/env python3
"""
Notification Dispatcher

Fans a message out to every active reporter in parallel and reports
failures to the reporters that still work.

Delivery happens in rounds:

1. Every active reporter gets its own worker thread, which sends the
   round's messages in order.
2. All workers are joined before any result is looked at.
3. If nobody failed, the dispatch is done. If every active reporter failed,
   there is no one left to tell, so the failure is logged and the dispatch
   stops. Otherwise the failed reporters are dropped and the next round
   sends one "Error: Reporter <name> failed" message per failure to the
   reporters that are left.

Reporters are only ever removed from the active set, so a dispatch takes at
most as many rounds as there are reporters.

Usage:
    from notification.service import NotificationDispatcher

    dispatcher = NotificationDispatcher(channels, server_tag="east")
    result = dispatcher.dispatch(NotificationMessage(timestamp=..., title=..., body=...))
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Iterable, Sequence

from notification.channels import ReporterChannel
from notification.message_builder import (
    NotificationMessage,
    NotificationMessageBuilder,
    ReporterError,
)

logger = logging.getLogger(__name__)

ALL_REPORTERS_FAILED = "All reporters failed!"


@dataclass
class DispatchResult:
    """Outcome of one dispatch call, including its failure cascade."""
    rounds: int = 0
    errors: List[ReporterError] = field(default_factory=list)
    all_failed: bool = False
    # The original message reached at least one reporter
    delivered: bool = False


class NotificationDispatcher:
    """
    Concurrent fan-out with a failure cascade.

    The set of enabled channels is fixed at construction and only read
    afterwards, so a single dispatcher can be shared by the event loop and
    the startup notification.
    """

    def __init__(self, channels: Dict[str, ReporterChannel], server_tag: Optional[str] = None):
        """
        Args:
            channels: Enabled reporters keyed by name
            server_tag: Optional prefix added to every title as "[tag] "
        """
        self._channels = dict(channels)
        self.server_tag = server_tag or None

    @property
    def reporters(self) -> List[str]:
        return list(self._channels.keys())

    def dispatch(
        self,
        message: NotificationMessage,
        reporters: Optional[Iterable[str]] = None
    ) -> DispatchResult:
        """
        Send a message to the active reporters and cascade any failures.

        Args:
            message: The message to deliver (untagged)
            reporters: Names of the active reporters; defaults to all enabled

        Returns:
            DispatchResult with the number of rounds and every ReporterError
        """
        if reporters is None:
            active = self.reporters
        else:
            wanted = set(reporters)
            active = [name for name in self._channels if name in wanted]

        result = DispatchResult()
        messages = [message]

        while active and messages:
            result.rounds += 1
            tagged = [m.with_server_tag(self.server_tag) for m in messages]
            errors = self._send_round(active, tagged)
            failed = {error.reporter for error in errors}

            if result.rounds == 1:
                result.delivered = not failed.issuperset(active)

            if not errors:
                break

            result.errors.extend(errors)

            if failed.issuperset(active):
                result.all_failed = True
                logger.error(ALL_REPORTERS_FAILED)
                break

            # Failed reporters never come back; the active set shrinks every round
            active = [name for name in active if name not in failed]
            messages = [NotificationMessageBuilder.build_failure_message(error) for error in errors]
            logger.warning(
                f"Reporters failed: {', '.join(sorted(failed))}. "
                f"Reporting to remaining: {', '.join(active)}"
            )

        return result

    def _send_round(self, active: Sequence[str], messages: Sequence[NotificationMessage]) -> List[ReporterError]:
        """Run one worker per reporter, join them all, then collect errors in reporter order."""
        results: Dict[str, List[ReporterError]] = {name: [] for name in active}
        threads = []

        for name in active:
            thread = threading.Thread(
                target=self._send_all,
                args=(self._channels[name], messages, results[name]),
                name=f"reporter-{name}",
                daemon=True,
            )
            threads.append(thread)
            thread.start()

        for thread in threads:
            thread.join()

        errors: List[ReporterError] = []
        for name in active:
            errors.extend(results[name])
        return errors

    @staticmethod
    def _send_all(
        channel: ReporterChannel,
        messages: Sequence[NotificationMessage],
        errors: List[ReporterError]
    ) -> None:
        """
        Worker body; each worker only appends to its own list.

        A reporter that fails is out for the rest of the dispatch, so the
        worker stops at its first error.
        """
        for message in messages:
            try:
                error = channel.send(message.timestamp, message.title, message.body)
            except Exception as e:
                logger.exception(f"[{channel.name}] Unexpected error while sending")
                error = ReporterError(reporter=channel.name, error=str(e))
            if error is not None:
                errors.append(error)
                return
