"""Error taxonomy for the telemetry engine."""


class TelemetryError(Exception):
    """Base class for all telemetry engine errors."""


class InvalidRange(TelemetryError, ValueError):
    """A time range or sample sequence cannot be used (e.g. start >= end)."""


class InvalidConfiguration(TelemetryError, ValueError):
    """A simulator or runner was constructed with unusable parameters."""


class UpstreamUnavailable(TelemetryError):
    """The weather upstream failed or returned a malformed payload."""


class PersistenceError(TelemetryError):
    """The persistence sink rejected or failed to store a record."""
