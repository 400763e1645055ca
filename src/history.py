"""Rolling heart rate history for the live chart."""

import logging
from collections import deque
from collections.abc import Callable
from datetime import datetime, timedelta

from src.models import HistoryPoint

logger = logging.getLogger(__name__)

# Points visible in the chart window (one per second)
GRAPH_HISTORY_LENGTH = 30

TIME_FORMAT = "%M:%S"


def format_time(moment: datetime) -> str:
    """Format a chart label ("mm:ss", zero padded)."""
    return moment.strftime(TIME_FORMAT)


class HistoryBuffer:
    """Fixed-capacity, chronologically ordered list of history points.

    Appending to a full buffer drops the oldest point.
    """

    def __init__(
        self,
        capacity: int = GRAPH_HISTORY_LENGTH,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize an empty buffer.

        Args:
            capacity: Maximum number of points
            clock: Source of the current time
        """
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._clock = clock
        self._points: deque[HistoryPoint] = deque(maxlen=capacity)

    def initialize(self, capacity: int | None = None) -> None:
        """Reset the buffer to a full-width zero baseline.

        Seeds ``capacity`` zero points stamped one second apart, the newest
        one second before now.

        Args:
            capacity: New capacity (defaults to the current one)
        """
        if capacity is not None:
            if capacity <= 0:
                raise ValueError(f"capacity must be positive, got {capacity}")
            self.capacity = capacity

        now = self._clock()
        self._points = deque(
            (
                HistoryPoint(time=format_time(now - timedelta(seconds=i)), heart_rate=0, spo2=0)
                for i in range(self.capacity, 0, -1)
            ),
            maxlen=self.capacity,
        )
        logger.debug(f"History initialized with {self.capacity} baseline points")

    def append(self, heart_rate: int, spo2: int) -> HistoryPoint:
        """Append a point stamped with the current time.

        Args:
            heart_rate: Heart rate in bpm
            spo2: SpO2 calibration value in effect

        Returns:
            The new point
        """
        point = HistoryPoint(time=format_time(self._clock()), heart_rate=heart_rate, spo2=spo2)
        self._points.append(point)
        return point

    def snapshot(self) -> tuple[HistoryPoint, ...]:
        """Return an immutable copy, oldest point first."""
        return tuple(self._points)

    def latest(self) -> HistoryPoint | None:
        """Return the newest point, or None if empty."""
        return self._points[-1] if self._points else None

    def __len__(self) -> int:
        return len(self._points)
