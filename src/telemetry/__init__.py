"""Device telemetry module.

Connects to the NeuroCalm ESP32 over USB serial or WebSocket and turns its
text output into heart rate readings.
"""

from src.telemetry.connection import ConnectionManager
from src.telemetry.framing import LineFramer, ReadingParser, parse_reading

__all__ = [
    "ConnectionManager",
    "LineFramer",
    "ReadingParser",
    "parse_reading",
]
