"""In-memory store for the latest accepted snapshot.

This is the only component allowed to replace the snapshot.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict

from gsirelay.hashing import fingerprint
from gsirelay.models.envelope import now_ms
from gsirelay.state.decision import AcceptResult, IngestDecision

_logger = logging.getLogger(__name__)


class StateSnapshot(BaseModel):
    """Immutable record of the store's state at one point in time.

    ``last_fingerprint`` is always the fingerprint of ``current_payload``;
    both are ``None`` until the first submission is accepted.
    """

    model_config = ConfigDict(frozen=True)

    current_payload: Any = None
    last_fingerprint: bytes | None = None
    message_count: int = 0
    updated_at_ms: int | None = None


class StateStore:
    """Latest-snapshot store with an atomic compare-and-replace.

    Writers serialize on an :class:`asyncio.Lock`. The whole record is
    swapped with a single assignment, so readers never need the lock and
    never observe a half-written snapshot.
    """

    def __init__(self, *, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock
        self._lock = asyncio.Lock()
        self._snapshot = StateSnapshot()

    @property
    def snapshot(self) -> StateSnapshot:
        return self._snapshot

    @property
    def message_count(self) -> int:
        return self._snapshot.message_count

    @property
    def last_fingerprint(self) -> bytes | None:
        return self._snapshot.last_fingerprint

    async def accept_if_changed(self, payload: Any, *, digest: bytes | None = None) -> AcceptResult:
        """Replace the snapshot with *payload* unless it matches the current one.

        *digest* may be passed when the caller already fingerprinted the
        payload; otherwise it is computed here, before the lock is taken.

        Raises
        ------
        FingerprintError
            If *payload* has no canonical JSON form.
        """
        if digest is None:
            digest = fingerprint(payload)

        async with self._lock:
            current = self._snapshot
            if current.last_fingerprint == digest:
                _logger.debug("Duplicate payload count=%s", current.message_count)
                return AcceptResult(
                    decision=IngestDecision.DUPLICATE,
                    message_count=current.message_count,
                    fingerprint=digest,
                )

            replacement = StateSnapshot(
                current_payload=copy.deepcopy(payload),
                last_fingerprint=digest,
                message_count=current.message_count + 1,
                updated_at_ms=self._clock(),
            )
            self._snapshot = replacement

        return AcceptResult(
            decision=IngestDecision.ACCEPTED,
            message_count=replacement.message_count,
            fingerprint=digest,
        )

    def read_snapshot(self) -> Any | None:
        """Return a copy of the latest accepted payload, or ``None``."""
        payload = self._snapshot.current_payload
        if payload is None:
            return None
        return copy.deepcopy(payload)
