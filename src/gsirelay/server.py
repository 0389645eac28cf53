"""aiohttp application exposing ingestion, snapshot and websocket routes."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import weakref
from dataclasses import asdict, dataclass, field

from aiohttp import WSCloseCode, WSMsgType, web

from gsirelay._relay import MqttRelayPublisher, RelayPublisher
from gsirelay.broadcast import Broadcaster, Subscription
from gsirelay.config import RelayConfig
from gsirelay.coordinator import IngestionCoordinator, dumps_compact
from gsirelay.exceptions import BadPayloadError, IngestError
from gsirelay.models.health import HealthStatus
from gsirelay.rawlog import RotatingAppendLog
from gsirelay.state.store import StateStore

_logger = logging.getLogger(__name__)


@dataclass
class RelayServices:
    """Everything the route handlers share, stored on the application."""

    config: RelayConfig
    coordinator: IngestionCoordinator
    raw_log: RotatingAppendLog | None = None
    relay: RelayPublisher | None = None
    websockets: weakref.WeakSet[web.WebSocketResponse] = field(default_factory=weakref.WeakSet)

    @property
    def store(self) -> StateStore:
        return self.coordinator.store

    @property
    def broadcaster(self) -> Broadcaster:
        return self.coordinator.broadcaster


SERVICES_KEY = web.AppKey("services", RelayServices)


async def handle_ingest(request: web.Request) -> web.Response:
    services = request.app[SERVICES_KEY]
    try:
        payload = await request.json()
    except (ValueError, LookupError, RecursionError) as exc:
        # Deeply nested bodies overflow the parser with RecursionError.
        _logger.debug("Rejected non-JSON body: %s", exc)
        error = BadPayloadError()
        return web.Response(status=error.status_code, text=error.message)

    try:
        outcome = await services.coordinator.ingest(payload)
    except IngestError as exc:
        return web.Response(status=exc.status_code, text=exc.message)
    return web.Response(text=outcome.value)


async def handle_health(request: web.Request) -> web.Response:
    services = request.app[SERVICES_KEY]
    status = HealthStatus(
        message_count=services.store.message_count,
        full_subscribers=services.broadcaster.full.subscriber_count,
        update_subscribers=services.broadcaster.updates.subscriber_count,
        **asdict(services.coordinator.stats),
    )
    return web.json_response(status.model_dump())


async def handle_state(request: web.Request) -> web.Response:
    services = request.app[SERVICES_KEY]
    snapshot = services.store.read_snapshot()
    if snapshot is None:
        return web.Response(status=404, text="No data yet")
    return web.json_response(snapshot, dumps=dumps_compact)


async def _watch_peer(ws: web.WebSocketResponse, subscription: Subscription) -> None:
    """Consume inbound frames so closes are noticed, then end the stream."""
    try:
        async for msg in ws:
            if msg.type == WSMsgType.ERROR:
                _logger.debug("Websocket error: %s", ws.exception())
                break
    finally:
        subscription.close()


async def _stream(request: web.Request, ws: web.WebSocketResponse, subscription: Subscription) -> None:
    services = request.app[SERVICES_KEY]
    services.websockets.add(ws)
    watcher = asyncio.create_task(_watch_peer(ws, subscription))
    try:
        async for message in subscription:
            try:
                await ws.send_str(message)
            except ConnectionResetError:
                _logger.debug("Websocket send failed topic=%s, dropping subscriber", subscription.topic)
                break
    finally:
        subscription.close()
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher
        services.websockets.discard(ws)
        await ws.close()


async def handle_ws_full(request: web.Request) -> web.WebSocketResponse:
    services = request.app[SERVICES_KEY]
    ws = web.WebSocketResponse()
    await ws.prepare(request)

    # Snapshot read and subscribe happen without yielding, so the replay
    # always precedes every live message.
    snapshot = services.store.read_snapshot()
    replay = dumps_compact(snapshot) if snapshot is not None else None
    subscription = services.broadcaster.subscribe_full(replay)
    await _stream(request, ws, subscription)
    return ws


async def handle_ws_updates(request: web.Request) -> web.WebSocketResponse:
    services = request.app[SERVICES_KEY]
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    subscription = services.broadcaster.subscribe_updates()
    await _stream(request, ws, subscription)
    return ws


async def _on_startup(app: web.Application) -> None:
    services = app[SERVICES_KEY]
    if services.config.uses_default_token:
        _logger.warning("Using the default auth token; set GSI_AUTH_TOKEN to a random secret")
    if services.raw_log is not None:
        services.raw_log.start()
    if services.relay is not None:
        await services.relay.start()


async def _on_shutdown(app: web.Application) -> None:
    services = app[SERVICES_KEY]
    services.broadcaster.close()
    for ws in list(services.websockets):
        await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")


async def _on_cleanup(app: web.Application) -> None:
    services = app[SERVICES_KEY]
    if services.raw_log is not None:
        await services.raw_log.stop()
    if services.relay is not None:
        await services.relay.stop()


def create_app(
    config: RelayConfig,
    *,
    store: StateStore | None = None,
    broadcaster: Broadcaster | None = None,
    raw_log: RotatingAppendLog | None = None,
    relay: RelayPublisher | None = None,
) -> web.Application:
    """Build the relay application.

    The append log and relay publisher are created from *config* unless
    passed in explicitly.
    """
    if raw_log is None and config.raw_log:
        raw_log = RotatingAppendLog.from_config(config)
    if relay is None:
        relay = MqttRelayPublisher.from_config(config)

    coordinator = IngestionCoordinator(
        auth_token=config.auth_token,
        source=config.source,
        store=store or StateStore(),
        broadcaster=broadcaster or Broadcaster(capacity=config.broadcast_capacity),
        log_sink=raw_log,
        relay=relay,
        relay_timeout=config.relay_publish_timeout,
    )

    app = web.Application()
    app[SERVICES_KEY] = RelayServices(config=config, coordinator=coordinator, raw_log=raw_log, relay=relay)
    app.add_routes(
        [
            web.post("/", handle_ingest),
            web.get("/health", handle_health),
            web.get("/state", handle_state),
            web.get("/ws/full", handle_ws_full),
            web.get("/ws/updates", handle_ws_updates),
        ]
    )
    app.on_startup.append(_on_startup)
    app.on_shutdown.append(_on_shutdown)
    app.on_cleanup.append(_on_cleanup)
    return app
