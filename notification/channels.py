#!/usr/bin/env python3
"""
Notification Channels

One channel per notification backend. Every channel exposes the same
contract so the dispatcher can treat them interchangeably:

    error = channel.send(timestamp, title, body)
    if error is not None:
        ...  # ReporterError(reporter=channel.name, error="...")

Channels never raise for delivery problems. Transport errors, rejected
requests, payload problems and SMTP errors all come back as a ReporterError.

Usage:
    from notification.channels import NotificationChannelFactory

    channels = NotificationChannelFactory.from_config(config.reporters)
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Any, Optional
import logging
import smtplib
import ssl
from email.mime.text import MIMEText

import requests

from core.config_loader import (
    ReportersConfig,
    PushoverConfig,
    GotifyConfig,
    MailConfig,
    MattermostConfig,
)
from notification.message_builder import NotificationMessageBuilder, ReporterError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 10

PUSHOVER_API_URL = "https://api.pushover.net/1/messages.json"

# PLAIN auth over an unencrypted connection is only allowed to these hosts
LOCAL_SMTP_HOSTS = ('localhost', '127.0.0.1', '::1')


def _mask_email(email: str) -> str:
    """
    Mask email address for safe logging (PII protection).

    Shows only domain, e.g., "***@example.com"
    """
    if '@' not in email:
        return "***"
    local, domain = email.rsplit('@', 1)
    return f"***@{domain}"


class ReporterChannel(ABC):
    """
    Abstract base class for all reporters.

    Subclasses implement send() and report failures by returning a
    ReporterError instead of raising.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Stable reporter name used in logs and failure reports."""
        pass

    @abstractmethod
    def send(self, timestamp: datetime, title: str, body: str) -> Optional[ReporterError]:
        """
        Deliver one notification.

        Args:
            timestamp: When the reported event happened
            title: Notification title
            body: Notification body

        Returns:
            None if delivered, a ReporterError otherwise
        """
        pass

    def _error(self, error: Any) -> ReporterError:
        return ReporterError(reporter=self.name, error=str(error))

    def _post_json(self, url: str, payload: Dict[str, Any], params: Optional[Dict[str, str]] = None) -> requests.Response:
        """
        POST a JSON payload and return the response.

        Raises:
            ValueError: If the payload cannot be serialized
            requests.RequestException: On connection problems or timeouts
        """
        headers = {'Content-Type': 'application/json; charset=UTF-8'}
        return requests.post(
            url,
            json=payload,
            params=params,
            headers=headers,
            timeout=REQUEST_TIMEOUT_SECONDS
        )

    def _check_status(self, response: requests.Response) -> Optional[ReporterError]:
        """Only HTTP 200 counts as delivered."""
        if response.status_code != 200:
            logger.error(
                f"[{self.name}] Pushing message failed: "
                f"{response.status_code} - {response.text}"
            )
            return self._error(
                f"Pushing message failed\nstatusCode: {response.status_code}\n"
                f"responseBody: {response.text}"
            )
        logger.debug(f"[{self.name}] Message delivered: {response.status_code} - {response.text}")
        return None


class PushoverChannel(ReporterChannel):
    """Pushover notification channel via the messages API."""

    def __init__(self, cfg: PushoverConfig):
        self._cfg = cfg

    @property
    def name(self) -> str:
        return 'Pushover'

    def send(self, timestamp: datetime, title: str, body: str) -> Optional[ReporterError]:
        payload = {
            'token': self._cfg.api_token,
            'user': self._cfg.user_key,
            'title': title,
            'message': body,
            'timestamp': int(timestamp.timestamp()),
        }

        try:
            response = self._post_json(PUSHOVER_API_URL, payload)
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[{self.name}] Failed to send request: {e}")
            return self._error(e)

        error = self._check_status(response)
        if error is not None:
            return error

        # Pushover answers status=1 if the request was valid
        # https://pushover.net/api#response
        try:
            status = response.json().get('status')
        except ValueError as e:
            logger.error(f"[{self.name}] Invalid response body: {response.text}")
            return self._error(f"Invalid response body: {e}")

        if status != 1:
            logger.error(f"[{self.name}] Pushover message not delivered: {response.text}")
            return self._error(f"Pushover message not delivered\nresponseBody: {response.text}")

        logger.debug(f"[{self.name}] Pushover message delivered")
        return None


class GotifyChannel(ReporterChannel):
    """Gotify notification channel."""

    def __init__(self, cfg: GotifyConfig):
        self._cfg = cfg

    @property
    def name(self) -> str:
        return 'Gotify'

    def send(self, timestamp: datetime, title: str, body: str) -> Optional[ReporterError]:
        url = f"{(self._cfg.url or '').rstrip('/')}/message"
        payload = {'title': title, 'message': body}

        try:
            response = self._post_json(url, payload, params={'token': self._cfg.token})
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[{self.name}] Failed to send request: {e}")
            return self._error(e)

        return self._check_status(response)


class MailChannel(ReporterChannel):
    """Email notification channel via SMTP with PLAIN auth."""

    def __init__(self, cfg: MailConfig):
        self._cfg = cfg

    @property
    def name(self) -> str:
        return 'Mail'

    def build_email(self, timestamp: datetime, subject: str, body: str) -> MIMEText:
        msg = MIMEText(body, 'plain', 'utf-8')
        msg['From'] = self._cfg.from_address or self._cfg.user
        msg['To'] = self._cfg.to_address
        msg['Date'] = NotificationMessageBuilder.format_timestamp(timestamp)
        msg['Subject'] = subject
        return msg

    def send(self, timestamp: datetime, title: str, body: str) -> Optional[ReporterError]:
        recipient = self._cfg.to_address or ''
        try:
            msg = self.build_email(timestamp, title, body)

            with smtplib.SMTP(self._cfg.host, self._cfg.port, timeout=REQUEST_TIMEOUT_SECONDS) as server:
                server.ehlo()
                if server.has_extn('starttls'):
                    server.starttls(context=ssl.create_default_context())
                    server.ehlo()
                elif self._cfg.host not in LOCAL_SMTP_HOSTS:
                    raise smtplib.SMTPNotSupportedError(
                        f"{self._cfg.host} does not offer STARTTLS, refusing to send credentials unencrypted"
                    )
                # auth_plain reads the credentials from these attributes
                server.user, server.password = self._cfg.user, self._cfg.password
                server.auth('PLAIN', server.auth_plain)
                server.send_message(msg)

            logger.debug(f"[{self.name}] Email sent to {_mask_email(recipient)}")
            return None

        except (smtplib.SMTPException, OSError, ValueError) as e:
            logger.error(f"[{self.name}] Failed to send email to {_mask_email(recipient)}: {e}")
            return self._error(e)


class MattermostChannel(ReporterChannel):
    """Mattermost notification channel via incoming webhook."""

    def __init__(self, cfg: MattermostConfig):
        self._cfg = cfg

    @property
    def name(self) -> str:
        return 'Mattermost'

    def send(self, timestamp: datetime, title: str, body: str) -> Optional[ReporterError]:
        payload = {
            'username': self._cfg.user,
            'channel': self._cfg.channel or '',
            'text': f"##### {title}\n{body}",
        }

        try:
            response = self._post_json(self._cfg.url, payload)
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[{self.name}] Failed to send request: {e}")
            return self._error(e)

        return self._check_status(response)


class NotificationChannelFactory:
    """
    Builds the enabled reporters from configuration.

    The order is fixed (Pushover, Gotify, Mail, Mattermost) so logs and
    failure cascades are reproducible.
    """

    _channels: Dict[str, type] = {
        'pushover': PushoverChannel,
        'gotify': GotifyChannel,
        'mail': MailChannel,
        'mattermost': MattermostChannel,
    }

    @classmethod
    def from_config(cls, reporters: ReportersConfig) -> Dict[str, ReporterChannel]:
        """
        Create one channel per enabled reporter.

        Returns:
            Mapping of reporter name to channel, in the fixed order above
        """
        channels: Dict[str, ReporterChannel] = {}
        for key, channel_class in cls._channels.items():
            cfg = getattr(reporters, key)
            if not cfg.enabled:
                continue
            channel = channel_class(cfg)
            channels[channel.name] = channel
            logger.info(f"Reporter enabled: {channel.name}")
        return channels

    @classmethod
    def list_channels(cls) -> list:
        """List all available reporter types."""
        return list(cls._channels.keys())
