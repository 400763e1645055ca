"""Local-link (USB serial) transport.

The ESP32 firmware prints telemetry over its USB-UART bridge at 115200 baud.
pyserial is blocking, so every call that may block runs in the default
executor and the event loop stays responsive.
"""

import asyncio
import codecs
import logging

import serial
from serial.tools import list_ports

from src.models import TransportKind
from src.telemetry.errors import UnsupportedTransport
from src.telemetry.transports.base import BaseTransport

logger = logging.getLogger(__name__)

DEFAULT_BAUD_RATE = 115200
DEFAULT_READ_TIMEOUT = 0.1  # seconds per blocking read
READ_SIZE = 256


def list_serial_ports() -> list[str]:
    """List serial ports present on this host.

    Returns:
        Device paths (e.g. "/dev/ttyUSB0", "COM3")
    """
    ports = sorted(list_ports.comports(), key=lambda p: p.device)
    for port in ports:
        logger.debug(f"Found serial port: {port.device} - {port.description}")
    return [port.device for port in ports]


def _close_opened_port(future: asyncio.Future) -> None:
    if future.cancelled() or future.exception() is not None:
        return
    future.result().close()


class SerialTransport(BaseTransport):
    """Read telemetry text from a serial port."""

    kind = TransportKind.LOCAL_LINK
    message_oriented = False

    def __init__(
        self,
        port: str | None = None,
        baud_rate: int = DEFAULT_BAUD_RATE,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        encoding: str = "utf-8",
    ):
        """Initialize serial transport.

        Args:
            port: Serial device path; None selects the first detected port
            baud_rate: Line speed
            read_timeout: Timeout of a single blocking read in seconds
            encoding: Text encoding of the telemetry stream

        Raises:
            UnsupportedTransport: If no port is given and none can be found
        """
        super().__init__()
        if port is None:
            detected = list_serial_ports()
            if not detected:
                raise UnsupportedTransport(
                    "No serial ports found on this host. "
                    "Plug in the device or configure the port explicitly."
                )
            port = detected[0]
            logger.info(f"No serial port configured, using {port}")

        self.port = port
        self.baud_rate = baud_rate
        self.read_timeout = read_timeout
        self.encoding = encoding
        self._serial: serial.Serial | None = None
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

    @property
    def description(self) -> str:
        return f"serial {self.port} @ {self.baud_rate}"

    def _open_port(self) -> serial.Serial:
        return serial.Serial(
            port=self.port,
            baudrate=self.baud_rate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=self.read_timeout,
        )

    def _read_available(self) -> bytes:
        ser = self._serial
        if ser is None or not ser.is_open:
            return b""
        return bytes(ser.read(ser.in_waiting or 1))

    async def _open(self) -> None:
        loop = asyncio.get_running_loop()
        logger.info(f"Opening {self.description}...")
        self._decoder.reset()
        future = loop.run_in_executor(None, self._open_port)
        try:
            self._serial = await asyncio.shield(future)
        except asyncio.CancelledError:
            # The executor thread still finishes opening; close the port when it does
            future.add_done_callback(_close_opened_port)
            raise

    async def _receive(self) -> str | None:
        loop = asyncio.get_running_loop()
        while True:
            ser = self._serial
            if ser is None or not ser.is_open:
                return None
            data = await loop.run_in_executor(None, self._read_available)
            if data:
                # Multi-byte characters split across reads are held by the decoder
                return self._decoder.decode(data)

    async def _release(self) -> None:
        ser = self._serial
        self._serial = None
        if ser is None:
            return
        if hasattr(ser, "cancel_read"):
            ser.cancel_read()
        ser.close()
        logger.debug(f"Closed {self.description}")
