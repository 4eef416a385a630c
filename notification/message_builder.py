from datetime import datetime, timezone
from email.utils import format_datetime
from typing import List, Optional, TYPE_CHECKING
from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from core.config_loader import AppConfig


STARTUP_TITLE = "Starting docker event monitor"


class NotificationMessage(BaseModel):
    """A single alert: built once, sent to every active reporter, never stored."""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    title: str
    body: str

    def with_server_tag(self, server_tag: Optional[str]) -> "NotificationMessage":
        if not server_tag:
            return self
        return self.model_copy(update={'title': f"[{server_tag}] {self.title}"})


class ReporterError(BaseModel):
    """A failed send: which reporter, and what went wrong."""
    model_config = ConfigDict(frozen=True)

    reporter: str
    error: str


class NotificationMessageBuilder:
    @staticmethod
    def format_timestamp(timestamp: datetime) -> str:
        """RFC 1123 with numeric zone, e.g. "Mon, 02 Jan 2006 15:04:05 -0700"."""
        if timestamp.tzinfo is None:
            timestamp = timestamp.astimezone()
        return format_datetime(timestamp)

    @staticmethod
    def build_failure_message(error: ReporterError, timestamp: Optional[datetime] = None) -> NotificationMessage:
        """Message telling the remaining reporters that one of them failed."""
        return NotificationMessage(
            timestamp=timestamp or datetime.now(timezone.utc).astimezone(),
            title=f"Error: Reporter {error.reporter} failed",
            body=f"Reporter: {error.reporter}\nError: {error.error}",
        )

    @staticmethod
    def format_delay(seconds: float) -> str:
        if seconds >= 1 and seconds == int(seconds):
            return f"{int(seconds)}s"
        if seconds < 1:
            return f"{seconds * 1000:g}ms"
        return f"{seconds:g}s"

    @classmethod
    def build_startup_message(
        cls,
        config: "AppConfig",
        version: str,
        timestamp: Optional[datetime] = None
    ) -> NotificationMessage:
        """Summary of the effective settings, sent once when the monitor starts."""
        timestamp = timestamp or datetime.now(timezone.utc).astimezone()
        reporters = config.reporters

        lines: List[str] = [
            f"Docker event monitor started at {cls.format_timestamp(timestamp)}",
            f"Docker event monitor version: {version}",
        ]

        for label, enabled in (
            ("Pushover", reporters.pushover.enabled),
            ("Gotify", reporters.gotify.enabled),
            ("E-Mail", reporters.mail.enabled),
        ):
            lines.append(f"{label} notification {'enabled' if enabled else 'disabled'}")

        if reporters.mattermost.enabled:
            lines.append("Mattermost notification enabled")
            if reporters.mattermost.channel:
                lines.append(f"Mattermost channel: {reporters.mattermost.channel}")
            if reporters.mattermost.user:
                lines.append(f"Mattermost username: {reporters.mattermost.user}")
        else:
            lines.append("Mattermost notification disabled")

        if config.delay_seconds > 0:
            lines.append(f"Using delay of {cls.format_delay(config.delay_seconds)}")
        else:
            lines.append("Delay disabled")

        lines.append(f"Log level: {config.log_level}")
        lines.append(f"ServerTag: {config.server_tag or 'none'}")

        filter_strings = config.filter_strings()
        lines.append(f"FilterStrings: {' '.join(filter_strings) if filter_strings else 'none'}")

        exclude_strings = config.exclude_strings()
        lines.append(f"ExcludeStrings: {' '.join(exclude_strings) if exclude_strings else 'none'}")

        return NotificationMessage(
            timestamp=timestamp,
            title=STARTUP_TITLE,
            body="\n".join(lines),
        )
