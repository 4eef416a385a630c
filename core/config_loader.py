import re
import yaml
import os
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator


class PushoverConfig(BaseModel):
    enabled: bool = False
    api_token: Optional[str] = None
    user_key: Optional[str] = None

    @model_validator(mode='after')
    def check_required(self) -> 'PushoverConfig':
        if self.enabled:
            if not self.api_token:
                raise ValueError("Pushover enabled. Pushover API token required!")
            if not self.user_key:
                raise ValueError("Pushover enabled. Pushover user key required!")
        return self


class GotifyConfig(BaseModel):
    enabled: bool = False
    url: Optional[str] = None
    token: Optional[str] = None

    @model_validator(mode='after')
    def check_required(self) -> 'GotifyConfig':
        if self.enabled:
            if not self.url:
                raise ValueError("Gotify enabled. Gotify URL required!")
            if not self.token:
                raise ValueError("Gotify enabled. Gotify APP token required!")
        return self


class MailConfig(BaseModel):
    """SMTP settings. The sender falls back to the SMTP user when unset."""
    enabled: bool = False
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    port: int = 587
    host: Optional[str] = None

    @model_validator(mode='after')
    def check_required(self) -> 'MailConfig':
        if self.enabled:
            if not self.user:
                raise ValueError("E-Mail notification enabled. SMTP username required!")
            if not self.to_address:
                raise ValueError("E-Mail notification enabled. Recipient address required!")
            if not self.password:
                raise ValueError("E-Mail notification enabled. SMTP Password required!")
            if not self.host:
                raise ValueError("E-Mail notification enabled. SMTP host address required!")
            if not self.from_address:
                self.from_address = self.user
        return self


class MattermostConfig(BaseModel):
    enabled: bool = False
    url: Optional[str] = None  # Incoming webhook URL
    channel: Optional[str] = None
    user: str = "Docker Event Monitor"

    @model_validator(mode='after')
    def check_required(self) -> 'MattermostConfig':
        if self.enabled and not self.url:
            raise ValueError("Mattermost enabled. Mattermost URL required!")
        return self


class ReportersConfig(BaseModel):
    pushover: PushoverConfig = Field(default_factory=PushoverConfig)
    gotify: GotifyConfig = Field(default_factory=GotifyConfig)
    mail: MailConfig = Field(default_factory=MailConfig)
    mattermost: MattermostConfig = Field(default_factory=MattermostConfig)


class AppConfig(BaseModel):
    """
    Top-level configuration.

    Built once at startup and handed to every component that needs it.
    """
    reporters: ReportersConfig = Field(default_factory=ReportersConfig)

    # Minimum time spent per event before the next one is processed
    delay_seconds: float = 0.5

    # Server-side filters passed to the Docker events API (key -> values)
    filters: Dict[str, List[str]] = Field(default_factory=dict)

    # Client-side exclusion rules (flattened key -> value prefixes), in order
    exclude: Dict[str, List[str]] = Field(default_factory=dict)

    log_level: str = "info"

    # Prefix for notification titles, e.g. "[east] Container web1: die"
    server_tag: Optional[str] = None

    @field_validator('delay_seconds')
    @classmethod
    def check_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("delay_seconds must not be negative")
        return v

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.strip().lower()

    def filter_strings(self) -> List[str]:
        return [f"{k}={v}" for k, values in self.filters.items() for v in values]

    def exclude_strings(self) -> List[str]:
        return [f"{k}={v}" for k, values in self.exclude.items() for v in values]


_DURATION_PART = re.compile(r'(\d+(?:\.\d+)?)(ms|us|µs|ns|h|m|s)')
_DURATION_UNITS = {
    'h': 3600.0,
    'm': 60.0,
    's': 1.0,
    'ms': 1e-3,
    'us': 1e-6,
    'µs': 1e-6,
    'ns': 1e-9,
}


def parse_duration(value: Any) -> float:
    """
    Parse a delay into seconds.

    Accepts plain numbers (seconds) and Go-style durations such as
    "500ms", "2s" or "1m30s".

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    if not text:
        raise ValueError("Empty duration")

    try:
        return float(text)
    except ValueError:
        pass

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos == 0 or pos != len(text):
        raise ValueError(f"Invalid duration: {value!r}")
    return total


def parse_key_value_pairs(items: List[str], trim_keys: bool = False) -> Dict[str, List[str]]:
    """
    Turn ["key=value", ...] into an ordered {key: [value, ...]} mapping.

    Only the first "=" separates key and value, so values may contain "=".
    Keys keep the order in which they first appear.

    Raises:
        ValueError: If an item has no "="
    """
    result: Dict[str, List[str]] = {}
    for item in items:
        pos = item.find('=')
        if pos == -1:
            raise ValueError(f"each filter should be of the form key=value, got {item!r}")
        key = item[:pos]
        if trim_keys:
            key = key.strip()
        result.setdefault(key, []).append(item[pos + 1:])
    return result


_TRUE_VALUES = ('true', 't', '1', 'yes', 'on')
_FALSE_VALUES = ('false', 'f', '0', 'no', 'off')


def _env_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean value {value!r}, expected true or false")


def _split_list(value: str) -> List[str]:
    return [part.strip() for part in value.split(',') if part.strip()]


# env var -> (reporter section, field, converter)
_REPORTER_ENV = {
    'PUSHOVER': ('pushover', 'enabled', _env_bool),
    'PUSHOVER_APITOKEN': ('pushover', 'api_token', str),
    'PUSHOVER_USER': ('pushover', 'user_key', str),
    'GOTIFY': ('gotify', 'enabled', _env_bool),
    'GOTIFY_URL': ('gotify', 'url', str),
    'GOTIFY_TOKEN': ('gotify', 'token', str),
    'MAIL': ('mail', 'enabled', _env_bool),
    'MAIL_FROM': ('mail', 'from_address', str),
    'MAIL_TO': ('mail', 'to_address', str),
    'MAIL_USER': ('mail', 'user', str),
    'MAIL_PASSWORD': ('mail', 'password', str),
    'MAIL_PORT': ('mail', 'port', int),
    'MAIL_HOST': ('mail', 'host', str),
    'MATTERMOST': ('mattermost', 'enabled', _env_bool),
    'MATTERMOST_URL': ('mattermost', 'url', str),
    'MATTERMOST_CHANNEL': ('mattermost', 'channel', str),
    'MATTERMOST_USER': ('mattermost', 'user', str),
}


def _normalize_rules(raw: Any, trim_keys: bool) -> Dict[str, List[str]]:
    """Accept either a mapping of key -> value(s) or a list of "key=value" strings."""
    if raw is None:
        return {}
    if isinstance(raw, list):
        return parse_key_value_pairs([str(item) for item in raw], trim_keys=trim_keys)
    if isinstance(raw, dict):
        rules: Dict[str, List[str]] = {}
        for key, values in raw.items():
            if isinstance(values, (list, tuple)):
                values = [str(v) for v in values]
            else:
                values = [str(values)]
            key = str(key).strip() if trim_keys else str(key)
            rules.setdefault(key, []).extend(values)
        return rules
    raise ValueError(f"Expected a list of key=value strings or a mapping, got {type(raw).__name__}")


def apply_overrides(data: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """
    Apply command-line overrides on top of file and environment settings.

    Keys with a None value are ignored. "filters"/"exclude" replace the
    configured rules entirely.
    """
    for key, value in overrides.items():
        if value is None:
            continue
        if key == 'delay':
            data['delay_seconds'] = parse_duration(value)
        elif key == 'filters':
            data['filters'] = _normalize_rules(value, trim_keys=False)
        elif key == 'exclude':
            data['exclude'] = _normalize_rules(value, trim_keys=True)
        else:
            data[key] = value
    return data


def load_config(config_path: Optional[str] = "config.yaml", overrides: Optional[Dict[str, Any]] = None) -> AppConfig:
    data: Dict[str, Any] = {}

    if config_path and os.path.exists(config_path):
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}

    # Allow the original daemon's env vars to override the file
    reporters = data.setdefault('reporters', {}) or {}
    data['reporters'] = reporters
    for env_name, (section, field, convert) in _REPORTER_ENV.items():
        env_value = os.environ.get(env_name)
        if env_value is None or env_value == '':
            continue
        if reporters.get(section) is None:
            reporters[section] = {}
        reporters[section][field] = convert(env_value)

    if 'delay' in data:
        data['delay_seconds'] = parse_duration(data.pop('delay'))
    elif 'delay_seconds' in data:
        data['delay_seconds'] = parse_duration(data['delay_seconds'])

    env_delay = os.environ.get("DELAY")
    if env_delay:
        data['delay_seconds'] = parse_duration(env_delay)

    env_filter = os.environ.get("FILTER")
    if env_filter:
        data['filters'] = _split_list(env_filter)

    env_exclude = os.environ.get("EXCLUDE")
    if env_exclude:
        data['exclude'] = _split_list(env_exclude)

    env_log_level = os.environ.get("LOG_LEVEL")
    if env_log_level:
        data['log_level'] = env_log_level

    env_server_tag = os.environ.get("SERVER_TAG")
    if env_server_tag:
        data['server_tag'] = env_server_tag

    data['filters'] = _normalize_rules(data.get('filters'), trim_keys=False)
    data['exclude'] = _normalize_rules(data.get('exclude'), trim_keys=True)

    if overrides:
        apply_overrides(data, overrides)

    return AppConfig(**data)
