"""Outcome of a compare-and-replace against the state store."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class IngestDecision(StrEnum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"


class AcceptResult(BaseModel):
    """Decision plus the counter value observed while the store was held."""

    model_config = ConfigDict(frozen=True)

    decision: IngestDecision
    message_count: int
    fingerprint: bytes

    @property
    def accepted(self) -> bool:
        return self.decision == IngestDecision.ACCEPTED
