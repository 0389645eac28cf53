"""Health document served on ``GET /health``."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from gsirelay._constants import LISTENER_NAME


class HealthStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    listener: str = LISTENER_NAME
    message_count: int = 0
    full_subscribers: int = 0
    update_subscribers: int = 0
    processed: int = 0
    duplicates: int = 0
    unauthorized: int = 0
    bad_payloads: int = 0
    side_effect_failures: int = 0
