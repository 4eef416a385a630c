"""
Notification Module

Reporters for Pushover, Gotify, Mail and Mattermost, and a dispatcher that
sends to all of them concurrently and reports failures to the ones that
still work.

Usage:
    from notification import NotificationDispatcher, NotificationChannelFactory

    channels = NotificationChannelFactory.from_config(config.reporters)
    dispatcher = NotificationDispatcher(channels, server_tag=config.server_tag)
    dispatcher.dispatch(message)
"""

from notification.message_builder import (
    NotificationMessage,
    NotificationMessageBuilder,
    ReporterError,
)

from notification.channels import (
    ReporterChannel,
    PushoverChannel,
    GotifyChannel,
    MailChannel,
    MattermostChannel,
    NotificationChannelFactory,
)

from notification.service import (
    NotificationDispatcher,
    DispatchResult,
    ALL_REPORTERS_FAILED,
)

__all__ = [
    # Messages
    'NotificationMessage',
    'NotificationMessageBuilder',
    'ReporterError',
    # Channels
    'ReporterChannel',
    'PushoverChannel',
    'GotifyChannel',
    'MailChannel',
    'MattermostChannel',
    'NotificationChannelFactory',
    # Dispatcher
    'NotificationDispatcher',
    'DispatchResult',
    'ALL_REPORTERS_FAILED',
]
