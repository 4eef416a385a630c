#!/usr/bin/env python3
"""
Tests for the notification dispatcher.

Tests cover:
1. Concurrent fan-out with a join barrier
2. Server tag handling
3. Failure cascade to the remaining reporters
4. Termination: rounds are bounded by the number of reporters
5. The all-failed case

Usage:
    python -m pytest tests/unit/notification/test_service.py -v
"""

import threading
import unittest
from datetime import datetime, timezone
from typing import List, Optional, Set

from notification import (
    ReporterChannel,
    NotificationDispatcher,
    NotificationMessage,
    ReporterError,
    ALL_REPORTERS_FAILED,
)


class FakeChannel(ReporterChannel):
    """Records every send and fails on demand."""

    def __init__(self, name: str, fail: bool = False, fail_titles: Optional[Set[str]] = None):
        self._name = name
        self.fail = fail
        self.fail_titles = fail_titles or set()
        self.sent: List[NotificationMessage] = []
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    def send(self, timestamp, title, body) -> Optional[ReporterError]:
        with self._lock:
            self.sent.append(NotificationMessage(timestamp=timestamp, title=title, body=body))
        if self.fail or any(title.endswith(t) for t in self.fail_titles):
            return ReporterError(reporter=self._name, error=f"{self._name} is down")
        return None


class ExplodingChannel(FakeChannel):
    def send(self, timestamp, title, body):
        raise RuntimeError("boom")


def make_message(title='Container web1: die', body='ID: abcdef12'):
    return NotificationMessage(
        timestamp=datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc),
        title=title,
        body=body,
    )


def make_dispatcher(*channels, server_tag=None):
    return NotificationDispatcher({c.name: c for c in channels}, server_tag=server_tag)


class TestFanOut(unittest.TestCase):

    def test_all_reporters_receive_message(self):
        channels = [FakeChannel(n) for n in ('Pushover', 'Gotify', 'Mail', 'Mattermost')]
        dispatcher = make_dispatcher(*channels)

        result = dispatcher.dispatch(make_message())

        self.assertEqual(result.rounds, 1)
        self.assertEqual(result.errors, [])
        self.assertTrue(result.delivered)
        for channel in channels:
            self.assertEqual([m.title for m in channel.sent], ['Container web1: die'])

    def test_sends_run_concurrently(self):
        """All sends of a round must be in flight at the same time."""
        barrier = threading.Barrier(3, timeout=5)

        class BarrierChannel(FakeChannel):
            def send(self, timestamp, title, body):
                barrier.wait()
                return super().send(timestamp, title, body)

        channels = [BarrierChannel(n) for n in ('A', 'B', 'C')]
        result = make_dispatcher(*channels).dispatch(make_message())

        self.assertEqual(result.errors, [])
        self.assertTrue(all(len(c.sent) == 1 for c in channels))

    def test_join_waits_for_slow_reporter(self):
        release = threading.Event()
        finished = []

        class SlowChannel(FakeChannel):
            def send(self, timestamp, title, body):
                release.wait(timeout=5)
                finished.append(self.name)
                return None

        class FastChannel(FakeChannel):
            def send(self, timestamp, title, body):
                release.set()
                return None

        make_dispatcher(SlowChannel('Slow'), FastChannel('Fast')).dispatch(make_message())

        self.assertEqual(finished, ['Slow'])

    def test_server_tag_prefixes_title_once(self):
        channel = FakeChannel('Gotify')
        dispatcher = make_dispatcher(channel, server_tag='east')

        dispatcher.dispatch(make_message())

        self.assertEqual(channel.sent[0].title, '[east] Container web1: die')

    def test_original_message_not_mutated(self):
        message = make_message()
        make_dispatcher(FakeChannel('Gotify'), server_tag='east').dispatch(message)

        self.assertEqual(message.title, 'Container web1: die')

    def test_reporter_subset(self):
        a, b = FakeChannel('A'), FakeChannel('B')
        dispatcher = make_dispatcher(a, b)

        dispatcher.dispatch(make_message(), reporters=['B', 'Unknown'])

        self.assertEqual(a.sent, [])
        self.assertEqual(len(b.sent), 1)

    def test_no_reporters(self):
        result = make_dispatcher().dispatch(make_message())

        self.assertEqual(result.rounds, 0)
        self.assertFalse(result.delivered)


class TestFailureCascade(unittest.TestCase):

    def test_two_of_four_fail(self):
        pushover = FakeChannel('Pushover', fail=True)
        gotify = FakeChannel('Gotify')
        mail = FakeChannel('Mail', fail=True)
        mattermost = FakeChannel('Mattermost')
        dispatcher = make_dispatcher(pushover, gotify, mail, mattermost)

        result = dispatcher.dispatch(make_message())

        # One extra round against the two survivors, carrying two failure reports
        self.assertEqual(result.rounds, 2)
        self.assertTrue(result.delivered)
        self.assertFalse(result.all_failed)
        self.assertEqual([e.reporter for e in result.errors], ['Pushover', 'Mail'])
        self.assertEqual(len(pushover.sent), 1)
        self.assertEqual(len(mail.sent), 1)
        for survivor in (gotify, mattermost):
            titles = [m.title for m in survivor.sent]
            self.assertEqual(titles, [
                'Container web1: die',
                'Error: Reporter Pushover failed',
                'Error: Reporter Mail failed',
            ])

    def test_failure_message_body(self):
        gotify = FakeChannel('Gotify')
        make_dispatcher(FakeChannel('Pushover', fail=True), gotify).dispatch(make_message())

        failure = gotify.sent[1]
        self.assertEqual(failure.title, 'Error: Reporter Pushover failed')
        self.assertIn('Pushover', failure.body)
        self.assertIn('Pushover is down', failure.body)

    def test_failure_messages_are_tagged(self):
        gotify = FakeChannel('Gotify')
        dispatcher = make_dispatcher(FakeChannel('Pushover', fail=True), gotify, server_tag='east')

        dispatcher.dispatch(make_message())

        self.assertEqual(gotify.sent[1].title, '[east] Error: Reporter Pushover failed')

    def test_cascade_terminates_with_partial_failures_in_every_round(self):
        # A fails the event, B fails the report about A, D fails the report about B
        a = FakeChannel('A', fail=True)
        b = FakeChannel('B', fail_titles={'Error: Reporter A failed'})
        c = FakeChannel('C')
        d = FakeChannel('D', fail_titles={'Error: Reporter B failed'})
        dispatcher = make_dispatcher(a, b, c, d)

        result = dispatcher.dispatch(make_message())

        self.assertEqual(result.rounds, 4)
        self.assertEqual([e.reporter for e in result.errors], ['A', 'B', 'D'])
        self.assertEqual(
            [m.title for m in c.sent],
            ['Container web1: die', 'Error: Reporter A failed',
             'Error: Reporter B failed', 'Error: Reporter D failed']
        )
        self.assertLessEqual(result.rounds, 4)

    def test_rounds_bounded_by_reporter_count(self):
        # Every reporter except the last fails whatever it is asked to send
        channels = [FakeChannel(f'R{i}', fail=True) for i in range(5)] + [FakeChannel('Last')]
        dispatcher = make_dispatcher(*channels)

        result = dispatcher.dispatch(make_message())

        self.assertEqual(result.rounds, 2)
        self.assertLessEqual(result.rounds, len(channels))
        self.assertEqual(len(channels[-1].sent), 6)

    def test_failed_reporter_is_never_used_again(self):
        a = FakeChannel('A', fail=True)
        b = FakeChannel('B')
        c = FakeChannel('C', fail_titles={'Error: Reporter A failed'})

        make_dispatcher(a, b, c).dispatch(make_message())

        self.assertEqual(len(a.sent), 1)
        self.assertEqual(len(c.sent), 2)

    def test_unexpected_exception_becomes_reporter_error(self):
        gotify = FakeChannel('Gotify')
        result = make_dispatcher(ExplodingChannel('Broken'), gotify).dispatch(make_message())

        self.assertEqual(result.errors, [ReporterError(reporter='Broken', error='boom')])
        self.assertEqual(gotify.sent[1].title, 'Error: Reporter Broken failed')


class TestAllFailed(unittest.TestCase):

    def test_single_reporter_fails(self):
        channel = FakeChannel('Pushover', fail=True)
        dispatcher = make_dispatcher(channel)

        with self.assertLogs('notification.service', level='ERROR') as logs:
            result = dispatcher.dispatch(make_message())

        self.assertEqual(result.rounds, 1)
        self.assertTrue(result.all_failed)
        self.assertFalse(result.delivered)
        self.assertEqual(len(channel.sent), 1)
        unrecoverable = [r for r in logs.records if r.getMessage() == ALL_REPORTERS_FAILED]
        self.assertEqual(len(unrecoverable), 1)

    def test_all_of_many_fail_no_cascade(self):
        channels = [FakeChannel(n, fail=True) for n in ('A', 'B', 'C')]

        with self.assertLogs('notification.service', level='ERROR'):
            result = make_dispatcher(*channels).dispatch(make_message())

        self.assertEqual(result.rounds, 1)
        self.assertTrue(all(len(c.sent) == 1 for c in channels))

    def test_survivors_fail_during_cascade(self):
        a = FakeChannel('A', fail=True)
        b = FakeChannel('B', fail_titles={'Error: Reporter A failed'})

        with self.assertLogs('notification.service', level='ERROR') as logs:
            result = make_dispatcher(a, b).dispatch(make_message())

        self.assertEqual(result.rounds, 2)
        self.assertTrue(result.delivered)
        self.assertTrue(result.all_failed)
        self.assertEqual(
            len([r for r in logs.records if r.getMessage() == ALL_REPORTERS_FAILED]), 1
        )


if __name__ == '__main__':
    unittest.main()
