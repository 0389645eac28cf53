"""Data models exchanged by the relay."""

from gsirelay.models.envelope import Envelope, now_ms
from gsirelay.models.health import HealthStatus

__all__ = [
    "Envelope",
    "HealthStatus",
    "now_ms",
]
