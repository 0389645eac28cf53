"""Custom exception hierarchy for gsirelay."""

from __future__ import annotations


class GsiRelayError(Exception):
    """Base exception for all gsirelay errors."""


class ConfigError(GsiRelayError):
    """Invalid or missing configuration."""


class IngestError(GsiRelayError):
    """A submission was rejected before any state change.

    Carries the HTTP status the routing layer should answer with.
    """

    status_code: int = 400

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class UnauthorizedError(IngestError):
    """Auth token missing from the payload or not matching the configured secret."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class BadPayloadError(IngestError):
    """Payload could not be parsed, fingerprinted or serialized."""

    def __init__(self, message: str = "Bad payload") -> None:
        super().__init__(message)


class FingerprintError(BadPayloadError):
    """Payload contains values that have no canonical JSON form (e.g. ``NaN``)."""


class SideEffectError(GsiRelayError):
    """Post-acceptance side effect failed.

    These are logged and swallowed; they never change the outcome of the
    submission that triggered them.
    """


class LogWriteError(SideEffectError):
    """Append-log directory, serialization or write failure."""


class RelayPublishError(SideEffectError):
    """External relay connect or publish failure."""
