"""Stress monitor - the state the dashboard (or any other front end) consumes.

The monitor is the single writer of the live state: current heart rate,
SpO2 calibration, connection state, chart history, latest analysis and the
analyzing flag. Front ends read the properties and subscribe to
``StateUpdate`` messages instead of mutating anything themselves.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from src.classifier import DEFAULT_ANALYSIS_DELAY, analyze
from src.history import GRAPH_HISTORY_LENGTH, HistoryBuffer
from src.models import (
    ClassificationResult,
    ConnectionState,
    HistoryPoint,
    StressLevel,
    TransportKind,
)
from src.telemetry.connection import ConnectionManager
from src.telemetry.errors import TelemetryError, TransportOpenFailure
from src.telemetry.framing import ReadingParser

logger = logging.getLogger(__name__)

SPO2_MIN = 80
SPO2_MAX = 100
DEFAULT_SPO2 = 98

NOT_CONNECTED_RESULT = ClassificationResult(
    stress_level=StressLevel.NO_DATA,
    reason="Device disconnected or no heartbeat detected.",
    suggestion="Please connect the ESP32 device and ensure sensor placement.",
)

# StateUpdate kinds
HEART_RATE = "heart_rate"
SPO2 = "spo2"
CONNECTION = "connection"
HISTORY = "history"
ANALYSIS = "analysis"
ANALYZING = "analyzing"
NOTICE = "notice"


@dataclass(frozen=True)
class StateUpdate:
    """One change of monitor state, delivered to subscribers in order."""

    kind: str
    value: Any


Subscriber = Callable[[StateUpdate], None]


def validate_spo2(value: int) -> int:
    """Check a SpO2 calibration value.

    Raises:
        ValueError: If the value is not a whole number or is outside 80-100 %
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"SpO2 must be a whole number, got {value!r}")
    if not SPO2_MIN <= value <= SPO2_MAX:
        raise ValueError(f"SpO2 must be between {SPO2_MIN} and {SPO2_MAX}, got {value}")
    return value


class StressMonitor:
    """Live heart rate monitoring with on-demand stress analysis."""

    def __init__(
        self,
        connection: ConnectionManager | None = None,
        history_length: int = GRAPH_HISTORY_LENGTH,
        spo2: int = DEFAULT_SPO2,
        analysis_delay: float = DEFAULT_ANALYSIS_DELAY,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the monitor.

        Args:
            connection: Connection manager (a default one is created if omitted)
            history_length: Number of points kept for the chart
            spo2: Initial SpO2 calibration value
            analysis_delay: Seconds an analysis takes
            rng: Optional random generator for suggestions
            clock: Source of the current time for history labels
        """
        self.connection = connection or ConnectionManager()
        self.parser = ReadingParser()
        self.history = HistoryBuffer(history_length, clock=clock)
        self.history.initialize()
        self.analysis_delay = analysis_delay
        self._rng = rng

        self._heart_rate = 0
        self._spo2 = validate_spo2(spo2)
        self._analysis: ClassificationResult | None = None
        self._analyzing = False
        self._subscribers: list[Subscriber] = []

        self.connection.on_data(self._handle_line)
        self.connection.on_state_change(self._handle_state_change)
        self.connection.on_failure(self._handle_failure)

    # ---------- read-only state ----------

    @property
    def heart_rate(self) -> int:
        """Latest heart rate in bpm (0 = no reading)."""
        return self._heart_rate

    @property
    def spo2(self) -> int:
        """Current SpO2 calibration value."""
        return self._spo2

    @property
    def connection_state(self) -> ConnectionState:
        return self.connection.state

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    @property
    def history_points(self) -> tuple[HistoryPoint, ...]:
        """Chart history, oldest first."""
        return self.history.snapshot()

    @property
    def analysis(self) -> ClassificationResult | None:
        """Latest analysis result, if any."""
        return self._analysis

    @property
    def is_analyzing(self) -> bool:
        return self._analyzing

    # ---------- subscriptions ----------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Receive every state update.

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def on_notice(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Receive operator notifications (connection errors etc.) only."""

        def forward(update: StateUpdate) -> None:
            if update.kind == NOTICE:
                callback(update.value)

        return self.subscribe(forward)

    def _emit(self, kind: str, value: Any) -> None:
        update = StateUpdate(kind, value)
        for callback in list(self._subscribers):
            try:
                callback(update)
            except Exception as e:
                logger.error(f"State subscriber failed on {kind}: {e}")

    def _notify(self, message: str) -> None:
        self._emit(NOTICE, message)

    # ---------- commands ----------

    def set_spo2(self, value: int) -> None:
        """Set the SpO2 calibration value (80-100 %).

        Raises:
            ValueError: If the value is out of range
        """
        value = validate_spo2(value)
        if value == self._spo2:
            return
        self._spo2 = value
        self._emit(SPO2, value)

    async def connect(self, kind: TransportKind | str, endpoint: str | None = None) -> bool:
        """Connect to the device.

        Failures are logged and reported through the notice channel.

        Returns:
            True if connected
        """
        try:
            await self.connection.connect(kind, endpoint)
            return True
        except TransportOpenFailure as e:
            if e.cancelled:
                logger.debug("Connection attempt cancelled")
                return False
            self._notify(str(e))
            return False
        except TelemetryError as e:
            logger.error(f"Cannot connect: {e}")
            self._notify(str(e))
            return False

    async def disconnect(self) -> None:
        """Disconnect from the device. Never raises."""
        await self.connection.disconnect()
        self._set_heart_rate(0)

    async def analyze(self) -> ClassificationResult | None:
        """Classify the current reading and store the result.

        Returns:
            The new result, or None if an analysis is already running
        """
        if self._analyzing:
            logger.warning("Analysis already in progress")
            return None

        self._set_analyzing(True)
        try:
            heart_rate = self._heart_rate if self.is_connected else 0
            if heart_rate <= 0:
                result = NOT_CONNECTED_RESULT
            else:
                result = await analyze(heart_rate, self._spo2, self.analysis_delay, self._rng)

            logger.info(f"Analysis: {result}")
            self._analysis = result
            self._emit(ANALYSIS, result)
            return result
        finally:
            self._set_analyzing(False)

    # ---------- internals ----------

    def _set_heart_rate(self, value: int) -> None:
        if value == self._heart_rate:
            return
        self._heart_rate = value
        self._emit(HEART_RATE, value)

    def _set_analyzing(self, value: bool) -> None:
        self._analyzing = value
        self._emit(ANALYZING, value)

    def _handle_line(self, line: str) -> None:
        reading = self.parser.parse(line)
        if reading is None:
            return
        self._set_heart_rate(reading.heart_rate)
        point = self.history.append(reading.heart_rate, self._spo2)
        self._emit(HISTORY, point)

    def _handle_state_change(self, state: ConnectionState) -> None:
        self._emit(CONNECTION, state)
        if state is ConnectionState.DISCONNECTED:
            self._set_heart_rate(0)

    def _handle_failure(self, failure: TelemetryError) -> None:
        self._notify(str(failure))
