"""Line framing and parsing for the device telemetry stream.

The firmware prints one reading per line, e.g.::

    Heart rate: 75.00
    Beat!
    Heart rate: 76.12

Only the "Heart rate" lines carry data. Everything else is ignored.
"""

import logging
import math
import re

from src.models import Reading

logger = logging.getLogger(__name__)

LINE_TERMINATOR = "\n"

# Default cap for a single buffered line (characters)
DEFAULT_MAX_LINE_LENGTH = 4096

HEART_RATE_PATTERN = re.compile(r"Heart rate:\s*([\d.]+)")

# Longest leading decimal number of a captured value ("72.5.3" -> "72.5")
NUMBER_PREFIX = re.compile(r"\d*\.?\d*")


class LineFramer:
    """Split a chunked text stream into complete newline-terminated lines.

    Chunks may be split anywhere. The unterminated tail of the stream is kept
    in a carry-over buffer until its newline arrives.

    If the carry-over grows beyond ``max_line_length`` it is discarded and the
    framer skips everything up to the next newline before framing again.
    """

    def __init__(self, max_line_length: int | None = DEFAULT_MAX_LINE_LENGTH):
        """Initialize the framer.

        Args:
            max_line_length: Carry-over cap in characters (None = unbounded)
        """
        if max_line_length is not None and max_line_length <= 0:
            raise ValueError(f"max_line_length must be positive, got {max_line_length}")
        self.max_line_length = max_line_length
        self._buffer = ""
        self._resyncing = False
        self.dropped_chars = 0

    @property
    def carry_over(self) -> str:
        """Text received after the last newline."""
        return self._buffer

    @property
    def resyncing(self) -> bool:
        """True while discarding an oversized line."""
        return self._resyncing

    def feed(self, chunk: str) -> list[str]:
        """Feed a chunk of text and return the lines it completed.

        Args:
            chunk: Decoded text, split at an arbitrary position

        Returns:
            Complete lines in arrival order, without the newline
        """
        if not chunk:
            return []

        if self._resyncing:
            newline = chunk.find(LINE_TERMINATOR)
            if newline < 0:
                self.dropped_chars += len(chunk)
                return []
            self.dropped_chars += newline + 1
            chunk = chunk[newline + 1 :]
            self._resyncing = False
            logger.debug("Line framing resynchronized")

        parts = (self._buffer + chunk).split(LINE_TERMINATOR)
        self._buffer = parts.pop()

        if self.max_line_length is not None and len(self._buffer) > self.max_line_length:
            logger.warning(
                f"Discarding {len(self._buffer)} buffered characters without a newline "
                f"(limit {self.max_line_length}), resyncing on next line"
            )
            self.dropped_chars += len(self._buffer)
            self._buffer = ""
            self._resyncing = True

        return parts

    def reset(self) -> None:
        """Drop the carry-over buffer."""
        self._buffer = ""
        self._resyncing = False


def split_message(message: str) -> list[str]:
    """Split a self-contained message into lines.

    Used for message-oriented transports where every message is complete
    and nothing carries over to the next one.
    """
    lines = message.split(LINE_TERMINATOR)
    if lines and lines[-1] == "":
        lines.pop()
    return lines


class ReadingParser:
    """Extract heart rate readings from telemetry lines.

    Stateless; never raises for text input.
    """

    pattern = HEART_RATE_PATTERN

    def parse(self, line: str) -> Reading | None:
        """Parse a single line.

        Args:
            line: One telemetry line (surrounding whitespace is ignored)

        Returns:
            Reading rounded to the nearest bpm, or None if the line carries no
            usable heart rate
        """
        match = self.pattern.search(line.strip())
        if not match:
            return None

        number = NUMBER_PREFIX.match(match.group(1)).group(0)
        if number in ("", "."):
            logger.debug(f"Ignoring malformed heart rate: {match.group(1)!r}")
            return None
        value = float(number)

        if not math.isfinite(value) or value < 0:
            return None

        # Half-up rounding (75.5 -> 76), not banker's rounding
        return Reading(heart_rate=int(math.floor(value + 0.5)))


def parse_reading(line: str) -> Reading | None:
    """Convenience function to parse a line with a default parser."""
    return _DEFAULT_PARSER.parse(line)


_DEFAULT_PARSER = ReadingParser()
