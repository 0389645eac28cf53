"""gsirelay - Live relay for game state integration snapshots."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("gsirelay")
except PackageNotFoundError:
    __version__ = "0+local"
from gsirelay._relay import MqttRelayPublisher, RelayPublisher, RelayTarget, parse_relay_url
from gsirelay.broadcast import Broadcaster, Subscription, Topic, extract_updates
from gsirelay.config import RelayConfig
from gsirelay.coordinator import IngestionCoordinator, IngestOutcome, extract_auth_token
from gsirelay.exceptions import (
    BadPayloadError,
    ConfigError,
    FingerprintError,
    GsiRelayError,
    IngestError,
    LogWriteError,
    RelayPublishError,
    SideEffectError,
    UnauthorizedError,
)
from gsirelay.hashing import canonical_json_bytes, canonicalize, fingerprint
from gsirelay.models import Envelope, HealthStatus
from gsirelay.rawlog import LogFilePart, RotatingAppendLog, read_envelopes
from gsirelay.server import create_app
from gsirelay.state import AcceptResult, IngestDecision, StateSnapshot, StateStore

__all__ = [
    "__version__",
    "AcceptResult",
    "BadPayloadError",
    "Broadcaster",
    "ConfigError",
    "Envelope",
    "FingerprintError",
    "GsiRelayError",
    "HealthStatus",
    "IngestDecision",
    "IngestError",
    "IngestOutcome",
    "IngestionCoordinator",
    "LogFilePart",
    "LogWriteError",
    "MqttRelayPublisher",
    "RelayConfig",
    "RelayPublishError",
    "RelayPublisher",
    "RelayTarget",
    "RotatingAppendLog",
    "SideEffectError",
    "StateSnapshot",
    "StateStore",
    "Subscription",
    "Topic",
    "UnauthorizedError",
    "canonical_json_bytes",
    "canonicalize",
    "create_app",
    "extract_auth_token",
    "extract_updates",
    "fingerprint",
    "parse_relay_url",
    "read_envelopes",
]
