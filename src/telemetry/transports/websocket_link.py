"""Network-socket (WebSocket) transport.

The ESP32 firmware runs a WebSocket server on port 81 and broadcasts each
telemetry line as one text message.
"""

import logging
from urllib.parse import urlsplit, urlunsplit

import websockets
from websockets.exceptions import ConnectionClosedOK

from src.models import TransportKind
from src.telemetry.errors import MissingEndpoint
from src.telemetry.transports.base import BaseTransport

logger = logging.getLogger(__name__)

DEFAULT_SCHEME = "ws"
DEFAULT_PORT = 81
DEFAULT_OPEN_TIMEOUT = 10.0
SUPPORTED_SCHEMES = ("ws", "wss")


def normalize_endpoint(endpoint: str | None) -> str:
    """Turn an operator-supplied endpoint into a WebSocket URL.

    A bare host becomes ``ws://<host>:81``. A bare ``host:port`` keeps its
    port. Endpoints with a ws:// or wss:// scheme are used verbatim.

    Args:
        endpoint: IP address, hostname or URL

    Returns:
        WebSocket URL

    Raises:
        MissingEndpoint: If the endpoint is empty or malformed
    """
    endpoint = (endpoint or "").strip()
    if not endpoint:
        raise MissingEndpoint("Please enter the ESP32 IP address")

    if "://" in endpoint:
        scheme = endpoint.split("://", 1)[0].lower()
        if scheme not in SUPPORTED_SCHEMES:
            raise MissingEndpoint(f"Unsupported endpoint scheme: {scheme}")
        url = endpoint
    else:
        url = f"{DEFAULT_SCHEME}://{endpoint}"

    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as e:
        raise MissingEndpoint(f"Invalid endpoint {endpoint!r}: {e}") from e

    if not parts.hostname:
        raise MissingEndpoint(f"Invalid endpoint {endpoint!r}: no host")

    if "://" not in endpoint and port is None:
        url = urlunsplit(parts._replace(netloc=f"{parts.netloc}:{DEFAULT_PORT}"))

    return url


class WebSocketTransport(BaseTransport):
    """Receive telemetry messages from the device's WebSocket server."""

    kind = TransportKind.NETWORK_SOCKET
    message_oriented = True

    def __init__(self, endpoint: str | None, open_timeout: float = DEFAULT_OPEN_TIMEOUT):
        """Initialize WebSocket transport.

        Args:
            endpoint: Device IP/hostname or ws:// URL
            open_timeout: Handshake timeout in seconds

        Raises:
            MissingEndpoint: If the endpoint is empty or malformed
        """
        super().__init__()
        self.url = normalize_endpoint(endpoint)
        self.open_timeout = open_timeout
        self._ws = None

    @property
    def description(self) -> str:
        return f"websocket {self.url}"

    async def _open(self) -> None:
        logger.info(f"Connecting to {self.url}...")
        self._ws = await websockets.connect(self.url, open_timeout=self.open_timeout)

    async def _receive(self) -> str | None:
        if self._ws is None:
            return None
        try:
            message = await self._ws.recv()
        except ConnectionClosedOK:
            return None
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        return message

    async def _release(self) -> None:
        ws = self._ws
        self._ws = None
        if ws is not None:
            await ws.close()
            logger.debug(f"Closed {self.description}")
