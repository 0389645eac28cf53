"""Envelope model wrapping an accepted payload for logging."""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return time.time_ns() // 1_000_000


class Envelope(BaseModel):
    """Timestamped, source-tagged form of an accepted payload.

    Parameters
    ----------
    ts_server_ms : int
        Server receive time, epoch milliseconds.
    source : str
        Label of the collector instance that accepted the payload.
    payload : Any
        The payload exactly as submitted.
    """

    model_config = ConfigDict(frozen=True)

    ts_server_ms: int = Field(..., ge=0)
    source: str
    payload: Any

    @classmethod
    def build(cls, payload: Any, source: str, *, ts_server_ms: int | None = None) -> Envelope:
        return cls(
            ts_server_ms=now_ms() if ts_server_ms is None else ts_server_ms,
            source=source,
            payload=payload,
        )

    def to_json_line(self) -> str:
        """Compact single-line JSON (no trailing newline)."""
        return self.model_dump_json()

    @classmethod
    def from_json_line(cls, line: str) -> Envelope:
        return cls.model_validate_json(line)
