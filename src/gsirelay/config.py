"""Relay configuration for gsirelay."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any

from gsirelay._constants import (
    DEFAULT_AUTH_TOKEN,
    DEFAULT_BROADCAST_CAPACITY,
    DEFAULT_HTTP_HOST,
    DEFAULT_HTTP_PORT,
    DEFAULT_RAW_DIR,
    DEFAULT_RAW_MAX_MB,
    DEFAULT_RAW_QUEUE_SIZE,
    DEFAULT_RELAY_CHANNEL,
    DEFAULT_SOURCE,
)
from gsirelay.exceptions import ConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, raw: str, kind: type[int] | type[float]) -> int | float:
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigError(f"{env_key} must be a number, got {raw!r}") from exc


@dataclasses.dataclass(frozen=True)
class RelayConfig:
    """Relay configuration.

    Parameters
    ----------
    http_host : str
        Listen address for the HTTP/websocket server.
    http_port : int
        Listen port.
    auth_token : str
        Shared secret the game client embeds as ``auth.token`` in every post.
    source : str
        Label stamped into every envelope to identify this collector.
    relay_url : str or None
        MQTT broker URL (``mqtt://`` or ``mqtts://``). ``None`` disables
        the external relay.
    relay_channel : str
        Topic the raw payload JSON is published to.
    relay_publish_timeout : float
        Seconds a single relay publish may wait for the network loop.
    relay_keepalive : int
        MQTT keepalive in seconds.
    raw_log : bool
        Enable the rotating append log.
    raw_dir : Path
        Root directory of the append log; a UTC-date directory is created
        below it.
    raw_path : Path or None
        Explicit base path for the append log, bypassing ``raw_dir``.
    raw_max_mb : int
        Rotation threshold per part file in megabytes.
    raw_queue_size : int
        Envelopes buffered for the log writer before new ones are dropped.
    broadcast_capacity : int
        Messages retained per websocket subscriber before its backlog is
        dropped.
    """

    http_host: str = DEFAULT_HTTP_HOST
    http_port: int = DEFAULT_HTTP_PORT
    auth_token: str = DEFAULT_AUTH_TOKEN
    source: str = DEFAULT_SOURCE
    relay_url: str | None = None
    relay_channel: str = DEFAULT_RELAY_CHANNEL
    relay_publish_timeout: float = 2.0
    relay_keepalive: int = 60
    raw_log: bool = False
    raw_dir: Path = Path(DEFAULT_RAW_DIR)
    raw_path: Path | None = None
    raw_max_mb: int = DEFAULT_RAW_MAX_MB
    raw_queue_size: int = DEFAULT_RAW_QUEUE_SIZE
    broadcast_capacity: int = DEFAULT_BROADCAST_CAPACITY

    def __post_init__(self) -> None:
        if not 0 <= self.http_port <= 65535:
            raise ConfigError(f"http_port out of range: {self.http_port}")
        if not self.auth_token:
            raise ConfigError("auth_token must be non-empty")
        if self.raw_max_mb <= 0:
            raise ConfigError(f"raw_max_mb must be positive, got {self.raw_max_mb}")
        if self.raw_queue_size <= 0:
            raise ConfigError(f"raw_queue_size must be positive, got {self.raw_queue_size}")
        if self.broadcast_capacity <= 0:
            raise ConfigError(f"broadcast_capacity must be positive, got {self.broadcast_capacity}")
        if self.relay_publish_timeout <= 0:
            raise ConfigError("relay_publish_timeout must be positive")
        # Accept plain strings for the path fields.
        if not isinstance(self.raw_dir, Path):
            object.__setattr__(self, "raw_dir", Path(self.raw_dir))
        if self.raw_path is not None and not isinstance(self.raw_path, Path):
            object.__setattr__(self, "raw_path", Path(self.raw_path))
        if self.relay_url is not None and not self.relay_url.strip():
            object.__setattr__(self, "relay_url", None)

    @property
    def raw_max_bytes(self) -> int:
        return self.raw_max_mb * 1024 * 1024

    @property
    def relay_enabled(self) -> bool:
        return self.relay_url is not None

    @property
    def uses_default_token(self) -> bool:
        return self.auth_token == DEFAULT_AUTH_TOKEN

    @classmethod
    def from_env(cls, **overrides: Any) -> RelayConfig:
        """Create configuration from environment variables.

        Reads ``HTTP_HOST``, ``HTTP_PORT``, ``GSI_AUTH_TOKEN``, ``SOURCE``,
        ``RELAY_URL``, ``RELAY_CHANNEL``, ``RAW_LOG``, ``RAW_DATA_DIR``,
        ``RAW_PATH``, ``RAW_MAX_MB``, ``RAW_QUEUE_SIZE`` and
        ``BROADCAST_CAPACITY``. Explicit keyword arguments override
        environment values; ``None`` overrides are ignored so argparse
        defaults can be passed straight through.

        Returns
        -------
        RelayConfig
            Populated configuration.
        """
        env = os.environ
        overrides = {key: value for key, value in overrides.items() if value is not None}

        _ENV_STR_MAP = {
            "HTTP_HOST": "http_host",
            "GSI_AUTH_TOKEN": "auth_token",
            "SOURCE": "source",
            "RELAY_URL": "relay_url",
            "RELAY_CHANNEL": "relay_channel",
            "RAW_DATA_DIR": "raw_dir",
            "RAW_PATH": "raw_path",
        }
        _ENV_INT_MAP = {
            "HTTP_PORT": "http_port",
            "RAW_MAX_MB": "raw_max_mb",
            "RAW_QUEUE_SIZE": "raw_queue_size",
            "BROADCAST_CAPACITY": "broadcast_capacity",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = val

        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, int)

        if "raw_log" not in overrides:
            config_kwargs["raw_log"] = _env_bool(env.get("RAW_LOG"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
