"""
Docker event normalization and exclusion.

Turns a raw event from the Docker events API into a flat key/value view and
derives the notification title and body from it:

    flat = flatten_event(raw)
    ExclusionFilter({'Action': ['exec_']}).should_exclude(flat)

    event = normalize_event(raw)
    event.title  # "Container web1: die"
    event.body   # "ID: 1a2b3c4d\\nImage: nginx:latest\\n..."

Flattened keys follow the API field names joined by dots, e.g.
"Actor.Attributes.image" or "Actor.ID".
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from notification.message_builder import NotificationMessageBuilder

logger = logging.getLogger(__name__)

HASH_PREFIX = "sha256:"
SHORT_ID_LENGTH = 8

# A rule whose key is absent from the event does not apply; evaluation
# continues with the next rule.
MISSING_KEY_POLICY = "continue"

KEY_TYPE = "Type"
KEY_ACTION = "Action"
KEY_ACTOR_ID = "Actor.ID"
KEY_TIME = "time"
KEY_TIME_NANO = "timeNano"
KEY_IMAGE = "Actor.Attributes.image"
KEY_NAME = "Actor.Attributes.name"
KEY_OCI_TITLE = "Actor.Attributes.org.opencontainers.image.title"
KEY_OCI_VERSION = "Actor.Attributes.org.opencontainers.image.version"
KEY_COMPOSE_CONTEXT = "Actor.Attributes.com.docker.compose.project.working_dir"
KEY_COMPOSE_SERVICE = "Actor.Attributes.com.docker.compose.service"


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, str)):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    return json.dumps(value, separators=(',', ':'), sort_keys=True)


def flatten_event(raw: Mapping[str, Any], prefix: str = "") -> Dict[str, str]:
    """
    Flatten a nested event into {"dot.joined.path": "value"}.

    Nested mappings recurse; leaves become strings. Integers keep their
    exact decimal text so "time" and "timeNano" are never rounded. Keys are
    visited in sorted order, so the result is identical for equal inputs.
    """
    flat: Dict[str, str] = {}
    for key in sorted(raw, key=str):
        value = raw[key]
        new_key = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            flat.update(flatten_event(value, new_key))
        else:
            flat[new_key] = _to_text(value)
    return flat


def _short_hash(value: str) -> str:
    if value.startswith(HASH_PREFIX):
        value = value[len(HASH_PREFIX):]
    return value[:SHORT_ID_LENGTH]


def get_actor_id(flat: Mapping[str, str]) -> str:
    """Actor ID without "sha256:" and limited to 8 characters."""
    actor_id = flat.get(KEY_ACTOR_ID, "")
    if not actor_id:
        return ""
    return _short_hash(actor_id)


def get_actor_image(flat: Mapping[str, str]) -> str:
    image = flat.get(KEY_IMAGE, "")
    if image:
        return image
    # Try to recover the image from the OCI labels
    title = flat.get(KEY_OCI_TITLE, "")
    version = flat.get(KEY_OCI_VERSION, "")
    if title and version:
        return f"{title}:{version}"
    return ""


def get_actor_image_version(flat: Mapping[str, str]) -> str:
    return flat.get(KEY_OCI_VERSION, "")


def get_actor_name(flat: Mapping[str, str]) -> str:
    """Name attribute; names that are only a hash are shortened like IDs."""
    name = flat.get(KEY_NAME, "")
    if name.startswith(HASH_PREFIX):
        return _short_hash(name)
    return name


def get_event_time(flat: Mapping[str, str]) -> datetime:
    """Event time in the host's local zone, falling back to now."""
    seconds = flat.get(KEY_TIME, "")
    nanos = flat.get(KEY_TIME_NANO, "")
    try:
        if seconds:
            return datetime.fromtimestamp(int(seconds), tz=timezone.utc).astimezone()
        if nanos:
            return datetime.fromtimestamp(int(nanos) // 1_000_000_000, tz=timezone.utc).astimezone()
    except (ValueError, OverflowError, OSError) as e:
        logger.warning(f"Could not parse event time {seconds or nanos!r}: {e}")
    return datetime.now(timezone.utc).astimezone()


@dataclass(frozen=True)
class NormalizedEvent:
    """Identity fields, title and body derived from one raw event."""
    flat: Dict[str, str]
    title: str
    body: str
    timestamp: datetime
    event_type: str = ""
    action: str = ""
    actor_id: str = ""
    image: str = ""
    image_version: str = ""
    name: str = ""
    compose_context: str = ""
    compose_service: str = ""

    def log_fields(self) -> Dict[str, str]:
        return {
            'eventType': self.event_type,
            'eventAction': self.action,
            'ActorID': self.actor_id,
            'ActorImage': self.image,
            'ActorImageVersion': self.image_version,
            'ActorName': self.name,
            'DockerComposeContext': self.compose_context,
            'DockerComposeService': self.compose_service,
        }


def build_title(event_type: str, action: str, name: str = "", actor_id: str = "") -> str:
    """
    "<Type>[ <name or id>]: <action>".

    Only the event type is title-cased; the name wins over the ID.
    """
    title = event_type.title()
    title_id = name or actor_id
    if title_id:
        title += f" {title_id}"
    return f"{title}: {action}"


def normalize_event(raw: Mapping[str, Any]) -> NormalizedEvent:
    flat = flatten_event(raw)

    actor_id = get_actor_id(flat)
    image = get_actor_image(flat)
    image_version = get_actor_image_version(flat)
    name = get_actor_name(flat)
    compose_context = flat.get(KEY_COMPOSE_CONTEXT, "")
    compose_service = flat.get(KEY_COMPOSE_SERVICE, "")
    event_type = flat.get(KEY_TYPE, "")
    action = flat.get(KEY_ACTION, "")
    timestamp = get_event_time(flat)

    lines: List[str] = []
    if actor_id:
        lines.append(f"ID: {actor_id}")
    if image:
        lines.append(f"Image: {image}")
    if image_version:
        lines.append(f"Image version: {image_version}")
    if name:
        lines.append(f"Name: {name}")
    lines.append(f"Time: {NotificationMessageBuilder.format_timestamp(timestamp)}")
    if compose_context:
        lines.append(f"Docker compose context: {compose_context}")
    if compose_service:
        lines.append(f"Docker compose service: {compose_service}")

    return NormalizedEvent(
        flat=flat,
        title=build_title(event_type, action, name=name, actor_id=actor_id),
        body="\n".join(lines).rstrip("\n"),
        timestamp=timestamp,
        event_type=event_type,
        action=action,
        actor_id=actor_id,
        image=image,
        image_version=image_version,
        name=name,
        compose_context=compose_context,
        compose_service=compose_service,
    )


@dataclass
class ExclusionFilter:
    """
    Prefix-based suppression rules over a flattened event.

    Rules map a flattened key to value prefixes and are checked in the order
    given. Prefixes rather than exact values are compared because some
    actions carry a dynamic suffix, e.g. "exec_start: sh -c ...".

    A key that is missing from the event skips that rule only
    (see MISSING_KEY_POLICY); later rules are still evaluated.
    """
    rules: Dict[str, List[str]] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.rules)

    def should_exclude(self, flat: Mapping[str, str]) -> bool:
        actor_id = get_actor_id(flat)

        for key, prefixes in self.rules.items():
            if key not in flat:
                logger.debug(f"[{actor_id}] Exclusion key \"{key}\" not present in event, skipping rule")
                continue

            value = flat[key]
            logger.debug(f"[{actor_id}] Exclusion key \"{key}\" matched, event value is \"{value}\"")

            for prefix in prefixes:
                if value.startswith(prefix):
                    logger.debug(f"[{actor_id}] Event excluded based on exclusion setting \"{key}={prefix}\"")
                    return True

            logger.debug(f"[{actor_id}] Exclusion key \"{key}\" matched, but values did not match")

        return False
