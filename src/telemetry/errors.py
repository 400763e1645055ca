"""Errors raised by the telemetry connection layer.

Malformed telemetry lines are not errors; the parser drops them.
"""


class TelemetryError(Exception):
    """Base class for all connection layer errors."""


class UnsupportedTransport(TelemetryError):
    """The requested transport is not available on this host."""


class MissingEndpoint(TelemetryError, ValueError):
    """Network-socket transport requested without an endpoint."""


class ConnectionBusy(TelemetryError):
    """A connection is already being established or is active."""


class TransportOpenFailure(TelemetryError, ConnectionError):
    """Opening the transport failed.

    Attributes:
        cancelled: True when the open was aborted by a disconnect request.
            Cancelled opens are not reported to the operator.
    """

    def __init__(self, message: str, cancelled: bool = False):
        super().__init__(message)
        self.cancelled = cancelled


class TransportRuntimeFailure(TelemetryError):
    """The transport failed after it was connected."""


class ReleaseFailure(TelemetryError):
    """Closing a transport handle failed. Logged, never surfaced."""
