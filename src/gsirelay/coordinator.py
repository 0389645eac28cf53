"""Per-submission ingestion pipeline.

Sequence for every POSTed payload::

    auth -> fingerprint -> compare-and-replace -> (duplicate: stop)
         -> append-log offer -> full + updates fan-out -> relay publish

Only the first two steps can reject a submission. Every side effect after
acceptance runs in isolation: a failure is logged and the remaining ones
still run.

Nothing between acceptance and fan-out yields to the event loop, so
broadcasts leave in the order the store accepted them. The relay publish
is the only awaited side effect and runs last.
"""

from __future__ import annotations

import asyncio
import hmac
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from gsirelay._redact import redact_for_log
from gsirelay._relay import RelayPublisher
from gsirelay.broadcast import Broadcaster, extract_updates
from gsirelay.exceptions import BadPayloadError, FingerprintError, SideEffectError, UnauthorizedError
from gsirelay.hashing import fingerprint
from gsirelay.models.envelope import Envelope, now_ms
from gsirelay.rawlog import LogSink
from gsirelay.state.store import StateStore

_logger = logging.getLogger(__name__)


class IngestOutcome(StrEnum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"


@dataclass(slots=True)
class IngestStats:
    processed: int = 0
    duplicates: int = 0
    unauthorized: int = 0
    bad_payloads: int = 0
    side_effect_failures: int = 0


def extract_auth_token(payload: Any) -> str | None:
    """Return ``payload["auth"]["token"]`` when it is a string."""
    if not isinstance(payload, dict):
        return None
    auth = payload.get("auth")
    if not isinstance(auth, dict):
        return None
    token = auth.get("token")
    return token if isinstance(token, str) else None


def dumps_compact(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


class IngestionCoordinator:
    """Runs the ingestion pipeline against one store and its consumers.

    ``log_sink`` and ``relay`` are optional collaborators chosen at start-up;
    ``None`` disables that side effect.
    """

    def __init__(
        self,
        *,
        auth_token: str,
        source: str,
        store: StateStore,
        broadcaster: Broadcaster,
        log_sink: LogSink | None = None,
        relay: RelayPublisher | None = None,
        relay_timeout: float = 2.0,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._auth_token = auth_token.encode("utf-8")
        self._source = source
        self._store = store
        self._broadcaster = broadcaster
        self._log_sink = log_sink
        self._relay = relay
        self._relay_timeout = relay_timeout
        self._clock = clock
        self.stats = IngestStats()

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def broadcaster(self) -> Broadcaster:
        return self._broadcaster

    def _authorize(self, payload: Any) -> None:
        token = extract_auth_token(payload)
        if token is None:
            self.stats.unauthorized += 1
            _logger.warning("Rejected payload without auth token")
            raise UnauthorizedError()
        if not hmac.compare_digest(token.encode("utf-8"), self._auth_token):
            self.stats.unauthorized += 1
            _logger.warning(
                "Rejected payload with invalid token auth=%s",
                redact_for_log(payload.get("auth")),
            )
            raise UnauthorizedError()

    async def ingest(self, payload: Any) -> IngestOutcome:
        """Process one submission.

        Raises
        ------
        UnauthorizedError
            Token missing or wrong; nothing was changed.
        BadPayloadError
            Payload has no canonical JSON form; nothing was changed.
        """
        self._authorize(payload)

        try:
            digest = fingerprint(payload)
        except FingerprintError as exc:
            self.stats.bad_payloads += 1
            _logger.error("Fingerprint failed: %s", exc)
            raise BadPayloadError() from exc

        result = await self._store.accept_if_changed(payload, digest=digest)
        if not result.accepted:
            self.stats.duplicates += 1
            return IngestOutcome.DUPLICATE

        try:
            payload_json = dumps_compact(payload)
        except (TypeError, ValueError) as exc:
            self.stats.bad_payloads += 1
            _logger.error("Serialize payload failed: %s", exc)
            raise BadPayloadError() from exc

        envelope = Envelope.build(payload, self._source, ts_server_ms=self._clock())

        self._offer_log(envelope)
        self._fan_out(payload, payload_json)
        await self._publish_relay(payload_json)

        self.stats.processed += 1
        _logger.info("GSI update processed count=%s", result.message_count)
        return IngestOutcome.PROCESSED

    async def _publish_relay(self, payload_json: str) -> None:
        if self._relay is None:
            return
        try:
            await asyncio.wait_for(self._relay.publish(payload_json), self._relay_timeout)
        except TimeoutError:
            self.stats.side_effect_failures += 1
            _logger.warning("Relay publish timed out after %ss", self._relay_timeout)
        except SideEffectError as exc:
            self.stats.side_effect_failures += 1
            _logger.warning("Relay publish failed: %s", exc)
        except Exception:
            self.stats.side_effect_failures += 1
            _logger.exception("Relay publish raised unexpectedly")

    def _offer_log(self, envelope: Envelope) -> None:
        if self._log_sink is None:
            return
        try:
            if not self._log_sink.offer(envelope):
                self.stats.side_effect_failures += 1
        except Exception:
            self.stats.side_effect_failures += 1
            _logger.exception("Raw log enqueue raised unexpectedly")

    def _fan_out(self, payload: Any, payload_json: str) -> None:
        try:
            self._broadcaster.publish_full(payload_json)
        except Exception:
            self.stats.side_effect_failures += 1
            _logger.exception("Full-topic publish failed")

        delta = extract_updates(payload)
        if delta is None:
            return
        try:
            self._broadcaster.publish_update(dumps_compact(delta))
        except Exception:
            self.stats.side_effect_failures += 1
            _logger.exception("Updates-topic publish failed")
