"""Base transport for NeuroCalm devices.

A transport moves raw text from the device into the connection manager.
Each concrete transport implements three hooks (``_open``, ``_receive``,
``_release``); this class turns them into the ``open`` / ``start`` /
``on_data`` / ``close`` capability set the manager depends on and runs the
receive pump.
"""

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from src.models import TransportKind
from src.telemetry.errors import ReleaseFailure

logger = logging.getLogger(__name__)

DataCallback = Callable[[str], None]
CloseCallback = Callable[[BaseException | None], None]


class BaseTransport(ABC):
    """Abstract base class for device transports.

    Subclasses set ``kind`` and ``message_oriented`` and implement the
    abstract hooks. ``_receive`` returns the next chunk of text, an empty
    string if nothing decodable arrived yet, or None at end of stream.
    """

    kind: TransportKind
    # True if every received chunk is a complete message (no carry-over)
    message_oriented: bool = False

    def __init__(self) -> None:
        self._data_callback: DataCallback | None = None
        self._close_callback: CloseCallback | None = None
        self._pump: asyncio.Task | None = None
        self._closing = False
        self._is_open = False

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable target of this transport (port or URL)."""
        raise NotImplementedError

    @abstractmethod
    async def _open(self) -> None:
        """Acquire the transport handle."""
        raise NotImplementedError

    @abstractmethod
    async def _receive(self) -> str | None:
        """Wait for the next chunk of text."""
        raise NotImplementedError

    @abstractmethod
    async def _release(self) -> None:
        """Release the transport handle. Must tolerate a partial open."""
        raise NotImplementedError

    def on_data(self, callback: DataCallback) -> None:
        """Register the sink for received text (replaces any previous one)."""
        self._data_callback = callback

    def on_close(self, callback: CloseCallback) -> None:
        """Register the callback invoked when the stream ends on its own.

        The callback receives the error that ended the stream, or None on a
        clean end of stream. It is not invoked for ``close()``.
        """
        self._close_callback = callback

    @property
    def is_open(self) -> bool:
        """Check if the transport is open."""
        return self._is_open

    async def open(self) -> None:
        """Acquire the transport handle. No data is delivered until ``start``."""
        self._closing = False
        await self._open()
        self._is_open = True

    def start(self) -> None:
        """Start the receive pump.

        Raises:
            RuntimeError: If the transport is not open
        """
        if not self._is_open:
            raise RuntimeError(f"Cannot start {self.description}: not open")
        if self._pump is None:
            self._pump = asyncio.create_task(self._pump_loop(), name=f"pump {self.description}")

    async def close(self) -> None:
        """Stop the receive pump and release the handle. Idempotent.

        Raises:
            ReleaseFailure: If releasing the handle failed
        """
        self._closing = True
        self._is_open = False

        pump = self._pump
        self._pump = None
        if pump is not None and not pump.done() and pump is not asyncio.current_task():
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump

        try:
            await self._release()
        except Exception as e:
            raise ReleaseFailure(f"Failed to release {self.description}: {e}") from e

    async def _pump_loop(self) -> None:
        """Pull chunks until end of stream or error."""
        error: BaseException | None = None
        try:
            while True:
                chunk = await self._receive()
                if chunk is None:
                    logger.info(f"End of stream on {self.description}")
                    break
                if chunk and self._data_callback is not None:
                    self._data_callback(chunk)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e

        if self._closing:
            return

        self._is_open = False
        try:
            await self._release()
        except Exception as e:
            logger.warning(f"Error releasing {self.description}: {e}")

        if self._close_callback is not None:
            self._close_callback(error)
