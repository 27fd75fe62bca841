"""Client configuration.

Configuration is data passed into the client at construction time. It can be
built in code, from a mapping, or loaded from a YAML file:

    address: ws://localhost:17010/api
    client_name: my-client
    username: user1
    secret: secret1
    poll_interval: 0.2
    max_poll_attempts: 100
    log_level: info
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

DEFAULT_POLL_INTERVAL = 0.2
DEFAULT_MAX_POLL_ATTEMPTS = 100
DEFAULT_SERVICE_NAMESPACE = "zato"

_REQUIRED_KEYS = ("address", "client_name", "username", "secret")


class LogLevel(Enum):
    """Verbosity of the client's own protocol logging."""

    ERROR = "error"
    INFO = "info"


def _new_client_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class ClientConfig:
    """Identity, credentials and protocol tuning for a WSX client.

    Attributes:
        address: WebSocket URL to connect to (e.g., "ws://host:17010/api").
        client_name: Human-readable client name, also the message id prefix.
        username: Username sent in the create-session request.
        secret: Secret sent in the create-session request.
        client_id: Process-assigned client identifier.
        poll_interval: Seconds per response wait step.
        max_poll_attempts: Number of wait steps before a response times out.
        log_level: Protocol logging verbosity.
        service_namespace: Prefix of the built-in pub/sub service names.
        reconnect_base_delay: First reconnect delay in seconds.
        reconnect_max_delay: Upper bound on the reconnect delay.
        max_reconnect_attempts: Reconnect attempts before giving up
            (None reconnects forever).
        ping_interval: WebSocket keepalive ping interval (None disables it).
        connect_timeout: Seconds allowed for opening the connection.
    """

    address: str
    client_name: str
    username: str
    secret: str
    client_id: str = field(default_factory=_new_client_id)
    poll_interval: float = DEFAULT_POLL_INTERVAL
    max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS
    log_level: LogLevel = LogLevel.ERROR
    service_namespace: str = DEFAULT_SERVICE_NAMESPACE
    reconnect_base_delay: float = DEFAULT_POLL_INTERVAL
    reconnect_max_delay: float = 30.0
    max_reconnect_attempts: int | None = None
    ping_interval: int | None = 20
    connect_timeout: float = 15.0

    def __post_init__(self) -> None:
        if not self.address:
            raise ConfigError("address is required")
        if not self.client_name:
            raise ConfigError("client_name is required")
        if self.poll_interval <= 0:
            raise ConfigError(f"poll_interval must be positive, got {self.poll_interval}")
        if self.max_poll_attempts < 1:
            raise ConfigError(
                f"max_poll_attempts must be at least 1, got {self.max_poll_attempts}"
            )
        if self.max_reconnect_attempts is not None and self.max_reconnect_attempts < 0:
            raise ConfigError("max_reconnect_attempts must not be negative")

    @property
    def response_timeout(self) -> float:
        """Total time a caller waits for a response."""
        return self.poll_interval * self.max_poll_attempts

    @property
    def verbose(self) -> bool:
        """True when every frame and response should be logged at INFO."""
        return self.log_level is LogLevel.INFO

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> ClientConfig:
        """Build a config from a plain mapping, e.g. parsed YAML.

        Raises:
            ConfigError: If required keys are missing or values are invalid.
        """
        missing = [key for key in _REQUIRED_KEYS if not data.get(key)]
        if missing:
            raise ConfigError(f"Missing required config keys: {', '.join(missing)}")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

        kwargs = dict(data)
        if "log_level" in kwargs:
            kwargs["log_level"] = _parse_log_level(kwargs["log_level"])
        if kwargs.get("client_id") is None:
            kwargs.pop("client_id", None)

        try:
            return cls(**kwargs)
        except TypeError as err:
            raise ConfigError(f"Invalid config: {err}") from err


def _parse_log_level(value: Any) -> LogLevel:
    if isinstance(value, LogLevel):
        return value
    try:
        return LogLevel(str(value).lower())
    except ValueError as err:
        raise ConfigError(f"Unknown log_level: {value!r}") from err


def load_config(path: Path | str) -> ClientConfig:
    """Load a client config from a YAML file.

    Raises:
        ConfigError: If the file is missing or does not hold a mapping.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"File not found: {path}")
    with path.open() as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}")
    return ClientConfig.from_mapping(data)
