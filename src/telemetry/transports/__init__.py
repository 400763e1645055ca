"""Device transports.

Each transport kind has one implementation registered in ``TRANSPORTS``.
"""

from src.models import TransportKind
from src.telemetry.transports.base import BaseTransport
from src.telemetry.transports.serial_link import SerialTransport, list_serial_ports
from src.telemetry.transports.websocket_link import WebSocketTransport, normalize_endpoint

TRANSPORTS: dict[TransportKind, type[BaseTransport]] = {
    TransportKind.LOCAL_LINK: SerialTransport,
    TransportKind.NETWORK_SOCKET: WebSocketTransport,
}

__all__ = [
    "TRANSPORTS",
    "BaseTransport",
    "SerialTransport",
    "WebSocketTransport",
    "list_serial_ports",
    "normalize_endpoint",
]
