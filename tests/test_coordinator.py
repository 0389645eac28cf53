from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import pytest

from gsirelay.broadcast import Broadcaster
from gsirelay.coordinator import IngestionCoordinator, IngestOutcome, extract_auth_token
from gsirelay.exceptions import BadPayloadError, RelayPublishError, UnauthorizedError
from gsirelay.models.envelope import Envelope
from gsirelay.state.store import StateStore

TOKEN = "T"


@dataclass
class FakeRelay:
    published: list[str] = field(default_factory=list)
    error: Exception | None = None
    delay: float = 0.0

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    async def publish(self, payload_json: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.published.append(payload_json)


@dataclass
class FakeLogSink:
    envelopes: list[Envelope] = field(default_factory=list)
    accept: bool = True
    error: Exception | None = None

    def offer(self, envelope: Envelope) -> bool:
        if self.error is not None:
            raise self.error
        if self.accept:
            self.envelopes.append(envelope)
        return self.accept


def _coordinator(
    *,
    relay: FakeRelay | None = None,
    log_sink: FakeLogSink | None = None,
    relay_timeout: float = 1.0,
) -> IngestionCoordinator:
    return IngestionCoordinator(
        auth_token=TOKEN,
        source="win-gaming-pc",
        store=StateStore(),
        broadcaster=Broadcaster(capacity=16),
        log_sink=log_sink,
        relay=relay,
        relay_timeout=relay_timeout,
        clock=lambda: 1234,
    )


def _payload(**extra: Any) -> dict[str, Any]:
    return {"auth": {"token": TOKEN}, "map": {"matchid": "1"}, **extra}


def test_extract_auth_token() -> None:
    assert extract_auth_token({"auth": {"token": "abc"}}) == "abc"
    assert extract_auth_token({"auth": {"token": 5}}) is None
    assert extract_auth_token({"auth": "abc"}) is None
    assert extract_auth_token(["auth"]) is None


@pytest.mark.asyncio
async def test_accepted_payload_runs_every_side_effect() -> None:
    relay = FakeRelay()
    log_sink = FakeLogSink()
    coordinator = _coordinator(relay=relay, log_sink=log_sink)
    full = coordinator.broadcaster.subscribe_full()
    updates = coordinator.broadcaster.subscribe_updates()

    payload = _payload(added={"hero": {"level": True}})
    outcome = await coordinator.ingest(payload)

    assert outcome == IngestOutcome.PROCESSED
    assert json.loads(relay.published[0]) == payload
    assert log_sink.envelopes == [Envelope(ts_server_ms=1234, source="win-gaming-pc", payload=payload)]
    assert json.loads(await full.get()) == payload
    assert json.loads(await updates.get()) == {"added": {"hero": {"level": True}}}
    assert coordinator.store.message_count == 1


@pytest.mark.asyncio
async def test_duplicate_has_no_side_effects() -> None:
    relay = FakeRelay()
    log_sink = FakeLogSink()
    coordinator = _coordinator(relay=relay, log_sink=log_sink)

    assert await coordinator.ingest(_payload()) == IngestOutcome.PROCESSED
    full = coordinator.broadcaster.subscribe_full()
    reordered = {"map": {"matchid": "1"}, "auth": {"token": TOKEN}}
    assert await coordinator.ingest(reordered) == IngestOutcome.DUPLICATE

    assert len(relay.published) == 1
    assert len(log_sink.envelopes) == 1
    assert full.pending == 0
    assert coordinator.store.message_count == 1
    assert coordinator.stats.duplicates == 1


@pytest.mark.asyncio
async def test_payload_without_delta_produces_no_update_message() -> None:
    coordinator = _coordinator()
    updates = coordinator.broadcaster.subscribe_updates()

    await coordinator.ingest(_payload())

    assert updates.pending == 0
    assert coordinator.broadcaster.full.published == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"map": {"matchid": "1"}},
        {"auth": {"token": "wrong"}, "map": {"matchid": "1"}},
        {"auth": {}},
        [1, 2, 3],
        None,
    ],
)
async def test_unauthorized_never_mutates_state(payload: Any, caplog: pytest.LogCaptureFixture) -> None:
    relay = FakeRelay()
    coordinator = _coordinator(relay=relay)

    with caplog.at_level(logging.WARNING, logger="gsirelay.coordinator"), pytest.raises(UnauthorizedError):
        await coordinator.ingest(payload)

    assert coordinator.store.message_count == 0
    assert coordinator.store.read_snapshot() is None
    assert relay.published == []
    assert "wrong" not in caplog.text


@pytest.mark.asyncio
async def test_non_finite_number_is_bad_payload() -> None:
    coordinator = _coordinator()

    with pytest.raises(BadPayloadError):
        await coordinator.ingest(_payload(hero={"health": float("nan")}))

    assert coordinator.store.message_count == 0
    assert coordinator.stats.bad_payloads == 1


@pytest.mark.asyncio
async def test_relay_failure_does_not_block_log_or_fanout(caplog: pytest.LogCaptureFixture) -> None:
    relay = FakeRelay(error=RelayPublishError("connection refused"))
    log_sink = FakeLogSink()
    coordinator = _coordinator(relay=relay, log_sink=log_sink)
    full = coordinator.broadcaster.subscribe_full()

    with caplog.at_level(logging.WARNING, logger="gsirelay.coordinator"):
        assert await coordinator.ingest(_payload()) == IngestOutcome.PROCESSED

    assert len(log_sink.envelopes) == 1
    assert full.pending == 1
    assert "Relay publish failed" in caplog.text
    assert coordinator.stats.side_effect_failures == 1


@pytest.mark.asyncio
async def test_slow_relay_is_bounded_by_timeout() -> None:
    relay = FakeRelay(delay=5.0)
    coordinator = _coordinator(relay=relay, relay_timeout=0.05)
    full = coordinator.broadcaster.subscribe_full()

    outcome = await asyncio.wait_for(coordinator.ingest(_payload()), timeout=1.0)

    assert outcome == IngestOutcome.PROCESSED
    assert full.pending == 1
    assert coordinator.stats.side_effect_failures == 1


@dataclass
class SlowFirstRelay(FakeRelay):
    """Stalls only on the first publish, like a broker that hiccups once."""

    calls: int = 0

    async def publish(self, payload_json: str) -> None:
        self.calls += 1
        if self.calls == 1:
            await asyncio.sleep(0.05)
        self.published.append(payload_json)


@pytest.mark.asyncio
async def test_fan_out_follows_acceptance_order_despite_slow_relay() -> None:
    relay = SlowFirstRelay()
    coordinator = _coordinator(relay=relay)
    full = coordinator.broadcaster.subscribe_full()

    first = asyncio.create_task(coordinator.ingest(_payload(map={"matchid": "X"})))
    await asyncio.sleep(0)
    second = asyncio.create_task(coordinator.ingest(_payload(map={"matchid": "Y"})))
    await asyncio.gather(first, second)

    frames = [json.loads(await full.get())["map"]["matchid"] for _ in range(2)]
    assert frames == ["X", "Y"]
    assert coordinator.store.read_snapshot()["map"]["matchid"] == "Y"


@pytest.mark.asyncio
async def test_log_sink_errors_do_not_block_fanout() -> None:
    relay = FakeRelay()
    coordinator = _coordinator(relay=relay, log_sink=FakeLogSink(error=OSError("disk full")))
    full = coordinator.broadcaster.subscribe_full()

    assert await coordinator.ingest(_payload()) == IngestOutcome.PROCESSED

    assert len(relay.published) == 1
    assert full.pending == 1


@pytest.mark.asyncio
async def test_full_log_queue_counts_as_side_effect_failure() -> None:
    coordinator = _coordinator(log_sink=FakeLogSink(accept=False))

    assert await coordinator.ingest(_payload()) == IngestOutcome.PROCESSED
    assert coordinator.stats.side_effect_failures == 1


def test_envelope_keeps_source_label_as_configured() -> None:
    envelope = Envelope.build({"map": {}}, " lan pc ", ts_server_ms=1)

    assert envelope.source == " lan pc "
    assert json.loads(envelope.to_json_line())["source"] == " lan pc "
