"""Connection manager - owns the device transport and its lifecycle.

State machine::

    DISCONNECTED --connect()--> CONNECTING --open ok--> CONNECTED
         ^                          |                       |
         +------ open failure ------+                       |
         +---- disconnect() / end of stream / error --------+

At most one transport exists at a time. A connect request while another is
CONNECTING or CONNECTED is rejected, never queued. No reconnect is ever
attempted; every failure requires a new explicit connect().
"""

import asyncio
import logging
from collections.abc import Callable

from src.models import ConnectionState, TransportKind
from src.telemetry.errors import (
    ConnectionBusy,
    MissingEndpoint,
    ReleaseFailure,
    TelemetryError,
    TransportOpenFailure,
    TransportRuntimeFailure,
    UnsupportedTransport,
)
from src.telemetry.framing import DEFAULT_MAX_LINE_LENGTH, LineFramer, split_message
from src.telemetry.transports import TRANSPORTS, BaseTransport
from src.telemetry.transports.serial_link import DEFAULT_BAUD_RATE
from src.telemetry.transports.websocket_link import DEFAULT_OPEN_TIMEOUT

logger = logging.getLogger(__name__)

LineCallback = Callable[[str], None]
StateCallback = Callable[[ConnectionState], None]
FailureCallback = Callable[[TelemetryError], None]
TransportFactory = Callable[[TransportKind, "str | None"], BaseTransport]


class ConnectionManager:
    """Manage the single active device connection.

    Raw text from the transport is framed into lines and handed to the
    callback registered with ``on_data``.
    """

    def __init__(
        self,
        serial_port: str | None = None,
        baud_rate: int = DEFAULT_BAUD_RATE,
        open_timeout: float = DEFAULT_OPEN_TIMEOUT,
        max_line_length: int | None = DEFAULT_MAX_LINE_LENGTH,
        transport_factory: TransportFactory | None = None,
    ):
        """Initialize connection manager.

        Args:
            serial_port: Serial device for the local link (None = auto-detect)
            baud_rate: Serial line speed
            open_timeout: WebSocket handshake timeout in seconds
            max_line_length: Carry-over cap passed to the line framer
            transport_factory: Optional replacement for the built-in transports
        """
        self.serial_port = serial_port
        self.baud_rate = baud_rate
        self.open_timeout = open_timeout
        self.max_line_length = max_line_length
        self._transport_factory = transport_factory or self._create_transport

        self._state = ConnectionState.DISCONNECTED
        self._transport: BaseTransport | None = None
        self._framer: LineFramer | None = None
        self._open_task: asyncio.Future | None = None

        self._line_callback: LineCallback | None = None
        self._state_callbacks: list[StateCallback] = []
        self._failure_callbacks: list[FailureCallback] = []

    # ---------- callbacks ----------

    def on_data(self, callback: LineCallback | None) -> None:
        """Register the sink for complete telemetry lines (replaces the previous one)."""
        self._line_callback = callback

    def on_state_change(self, callback: StateCallback) -> None:
        """Register a listener for connection state transitions."""
        self._state_callbacks.append(callback)

    def on_failure(self, callback: FailureCallback) -> None:
        """Register a listener for failures of an established connection."""
        self._failure_callbacks.append(callback)

    # ---------- state ----------

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if a transport is connected."""
        return self._state is ConnectionState.CONNECTED

    @property
    def transport(self) -> BaseTransport | None:
        """Active transport, if any."""
        return self._transport

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.debug(f"Connection state: {self._state.value} -> {state.value}")
        self._state = state
        for callback in list(self._state_callbacks):
            callback(state)

    # ---------- transports ----------

    def _create_transport(self, kind: TransportKind, endpoint: str | None) -> BaseTransport:
        """Build the transport for ``kind``.

        Raises:
            UnsupportedTransport: If the transport is unavailable
            MissingEndpoint: If a WebSocket endpoint is missing or malformed
        """
        transport_class = TRANSPORTS.get(kind)
        if transport_class is None:
            raise UnsupportedTransport(f"Unsupported transport: {kind}")

        if kind is TransportKind.LOCAL_LINK:
            return transport_class(port=self.serial_port, baud_rate=self.baud_rate)
        return transport_class(endpoint, open_timeout=self.open_timeout)

    # ---------- lifecycle ----------

    async def connect(self, kind: TransportKind | str, endpoint: str | None = None) -> None:
        """Connect to the device over one transport.

        Args:
            kind: Transport kind (or its name, e.g. "serial", "websocket")
            endpoint: Device address, required for the WebSocket transport

        Raises:
            ConnectionBusy: If a connection is already in progress or active
            UnsupportedTransport: If the transport is unavailable on this host
            MissingEndpoint: If a WebSocket endpoint is missing or malformed
            TransportOpenFailure: If the transport could not be opened
        """
        if self._state is not ConnectionState.DISCONNECTED:
            raise ConnectionBusy(f"Cannot connect while {self._state.value}")

        try:
            kind = kind if isinstance(kind, TransportKind) else TransportKind.from_name(kind)
        except ValueError as e:
            raise UnsupportedTransport(str(e)) from e

        if kind is TransportKind.NETWORK_SOCKET and not (endpoint or "").strip():
            raise MissingEndpoint("Please enter the ESP32 IP address")

        transport = self._transport_factory(kind, endpoint)
        transport.on_data(self._handle_chunk)
        transport.on_close(self._handle_transport_closed)

        self._transport = transport
        self._framer = LineFramer(self.max_line_length)
        self._set_state(ConnectionState.CONNECTING)

        open_task = asyncio.ensure_future(transport.open())
        self._open_task = open_task
        try:
            await open_task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                # The caller itself was cancelled
                await self._abort_open(transport)
                raise
            logger.debug(f"Connection to {transport.description} cancelled")
            raise TransportOpenFailure("Connection cancelled", cancelled=True) from None
        except Exception as e:
            logger.error(f"Connection to {transport.description} failed: {e}")
            await self._abort_open(transport)
            raise TransportOpenFailure(f"Connection failed: {e}") from e
        finally:
            if self._open_task is open_task:
                self._open_task = None

        if self._transport is not transport:
            # disconnect() won the race against a completed open
            raise TransportOpenFailure("Connection cancelled", cancelled=True)

        logger.info(f"Connected to {transport.description}")
        self._set_state(ConnectionState.CONNECTED)
        # Data flows only once CONNECTED has been published
        transport.start()

    async def _abort_open(self, transport: BaseTransport) -> None:
        if self._transport is not transport:
            return
        self._transport = None
        self._framer = None
        await self._release(transport)
        self._set_state(ConnectionState.DISCONNECTED)

    async def disconnect(self) -> None:
        """Disconnect and release the transport.

        Idempotent and never raises; release errors are logged.
        """
        transport = self._transport
        self._transport = None
        self._framer = None

        if self._open_task is not None and not self._open_task.done():
            self._open_task.cancel()

        if transport is not None:
            logger.info(f"Disconnecting from {transport.description}...")
            await self._release(transport)
            logger.info("Disconnected")

        self._set_state(ConnectionState.DISCONNECTED)

    async def _release(self, transport: BaseTransport) -> None:
        try:
            await transport.close()
        except ReleaseFailure as e:
            logger.warning(str(e))
        except Exception as e:
            logger.warning(f"Error during disconnect: {e}")

    # ---------- transport events ----------

    def _handle_chunk(self, chunk: str) -> None:
        transport = self._transport
        if transport is None or self._framer is None:
            return

        if transport.message_oriented:
            lines = split_message(chunk)
        else:
            lines = self._framer.feed(chunk)

        for line in lines:
            logger.debug(f"RX < {line!r}")
            if self._line_callback is not None:
                self._line_callback(line)

    def _handle_transport_closed(self, error: BaseException | None) -> None:
        transport = self._transport
        if transport is None:
            return
        self._transport = None
        self._framer = None

        if error is not None:
            failure = TransportRuntimeFailure(f"Connection lost on {transport.description}: {error}")
            logger.error(str(failure))
            for callback in list(self._failure_callbacks):
                callback(failure)
        else:
            logger.warning(f"{transport.description} closed by device")

        self._set_state(ConnectionState.DISCONNECTED)
