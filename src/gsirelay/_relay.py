"""External relay of raw payload JSON onto an MQTT topic.

The relay is fire-and-forget: the payload text is handed to paho-mqtt's
threaded network loop at QoS 0 and nothing is awaited beyond the publish
call itself. Connection problems surface as publish failures, which the
coordinator logs and ignores.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Protocol, cast
from urllib.parse import unquote, urlsplit

import paho.mqtt.client as mqtt

from gsirelay._constants import MQTT_PORT, MQTTS_PORT
from gsirelay.config import RelayConfig
from gsirelay.exceptions import ConfigError, RelayPublishError

_SCHEMES = {"mqtt": False, "tcp": False, "mqtts": True, "ssl": True}


class RelayPublisher(Protocol):
    """Structural interface of the optional relay collaborator.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`MqttRelayPublisher`) concrete.
    """

    async def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...

    async def publish(self, payload_json: str) -> None:
        ...


@dataclass(frozen=True)
class RelayTarget:
    """Broker and channel the raw payloads are published to."""

    host: str
    port: int
    channel: str
    tls: bool = False
    username: str | None = None
    password: str | None = None


def parse_relay_url(url: str, channel: str) -> RelayTarget:
    """Parse ``mqtt://[user:pass@]host[:port]`` (or ``mqtts://``) into a target.

    A bare ``host[:port]`` is treated as plain ``mqtt://``.
    """
    value = url.strip()
    if not value:
        raise ConfigError("Relay URL is empty")
    if "://" not in value:
        value = f"mqtt://{value}"

    parts = urlsplit(value)
    scheme = parts.scheme.lower()
    if scheme not in _SCHEMES:
        raise ConfigError(f"Unsupported relay URL scheme: {parts.scheme!r}")
    if not parts.hostname:
        raise ConfigError(f"Relay URL has no host: {url!r}")
    if not channel.strip():
        raise ConfigError("Relay channel is empty")

    tls = _SCHEMES[scheme]
    try:
        port = parts.port
    except ValueError as exc:
        raise ConfigError(f"Relay URL has an invalid port: {url!r}") from exc

    return RelayTarget(
        host=parts.hostname,
        port=port if port is not None else (MQTTS_PORT if tls else MQTT_PORT),
        channel=channel,
        tls=tls,
        username=unquote(parts.username) if parts.username else None,
        password=unquote(parts.password) if parts.password else None,
    )


class MqttRelayPublisher:
    """Threaded paho-mqtt client publishing payload text to one topic."""

    def __init__(
        self,
        target: RelayTarget,
        *,
        keepalive: int = 60,
        client_id: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._target = target
        self._keepalive = keepalive
        self._client_id = client_id or f"gsirelay-{secrets.token_hex(4)}"
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._connected = False
        self.published = 0
        self.failed = 0

    @classmethod
    def from_config(cls, config: RelayConfig) -> MqttRelayPublisher | None:
        """Build a publisher, or ``None`` when no relay URL is configured."""
        if config.relay_url is None:
            return None
        target = parse_relay_url(config.relay_url, config.relay_channel)
        return cls(target, keepalive=config.relay_keepalive)

    @property
    def target(self) -> RelayTarget:
        return self._target

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def start(self) -> None:
        """Begin connecting in the background; never raises on network errors."""
        await asyncio.get_running_loop().run_in_executor(None, self._start_sync)

    def _start_sync(self) -> None:
        self._stop_sync()
        target = self._target
        self._logger.debug(
            "Relay start requested host=%s port=%s channel=%s client_id=%s",
            target.host,
            target.port,
            target.channel,
            self._client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if target.username:
            client.username_pw_set(target.username, target.password)
        if target.tls:
            client.tls_set()

        def on_connect(
            _client: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._connected = False
                self._logger.warning("Relay connect failed: %s", reason_code)
                return
            self._connected = True
            self._logger.info("Relay connected to %s:%s", target.host, target.port)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            was_connected = self._connected
            self._connected = False
            if was_connected:
                self._logger.warning("Relay disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_disconnect = on_disconnect

        try:
            client.connect_async(target.host, target.port, keepalive=self._keepalive)
            client.loop_start()
        except (OSError, ValueError) as exc:
            self._logger.warning("Relay connect failed: %s", exc)
            return

        self._client = client
        self._logger.debug("Relay network loop started")

    async def stop(self) -> None:
        await asyncio.get_running_loop().run_in_executor(None, self._stop_sync)

    def _stop_sync(self) -> None:
        client = self._client
        self._client = None
        self._connected = False
        if client is None:
            return
        try:
            client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("Relay network loop stopped")

    async def publish(self, payload_json: str) -> None:
        """Publish *payload_json* to the configured channel.

        Raises
        ------
        RelayPublishError
            If the client is not running, not connected, or the publish call
            itself fails.
        """
        client = self._client
        if client is None:
            self.failed += 1
            raise RelayPublishError("relay client is not running")

        try:
            info = client.publish(self._target.channel, payload_json, qos=0, retain=False)
        except (OSError, ValueError) as exc:
            self.failed += 1
            raise RelayPublishError(f"publish failed: {exc}") from exc

        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self.failed += 1
            raise RelayPublishError(f"publish failed: {mqtt.error_string(info.rc)}")
        self.published += 1
